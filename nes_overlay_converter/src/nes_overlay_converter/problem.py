"""Constraint problem instances and their CMPL data-file serialisation.

Two problems are built per conversion:

``FirstPass``
    The whole-image cell grid. Decides the background palettes, the background
    palette of every cell and which colors of a cell must go to the overlay.
``SecondPass``
    The overlay cut into sprite cells. Decides the sprite palettes and the
    sprite palette of every sprite cell while bounding the sprites per sprite
    row. The first-pass background palettes are a fixed lower bound; an overlay
    color may be absorbed back into a background palette (``Absorb``).

Serialisation is deterministic: cells row-major, colors ascending.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence, TextIO, Tuple

from .layer import CellGrid
from .palettes import Palette

FIRST_PASS = "FirstPass"
SECOND_PASS = "SecondPass"

AbsorbKey = Tuple[int, int, int]
LayerCallback = Callable[[int, int, int], Optional[Tuple[int, ...]]]


@dataclass
class CmplProblem:
    name: str
    layer: CellGrid
    num_background_palettes: int
    num_sprite_palettes: int
    color_limit: int
    sprite_color_limit: int
    max_row_size: int
    sprites_per_cell: int = 1
    fixed_background: Tuple[Palette, ...] = ()
    absorb: Dict[AbsorbKey, int] = field(default_factory=dict)

    @property
    def second_pass(self) -> bool:
        return self.name == SECOND_PASS

    @property
    def colors(self) -> Tuple[int, ...]:
        found = set(self.layer.all_colors())
        for palette in self.fixed_background:
            found.update(palette)
        return tuple(sorted(found))


def build_first_pass_problem(
    layer: CellGrid,
    grid_cell_color_limit: int,
    max_background_palettes: int,
    max_sprite_palettes: int,
    max_row_size: int,
    sprites_per_cell: int,
    sprite_color_limit: int,
) -> CmplProblem:
    return CmplProblem(
        name=FIRST_PASS,
        layer=layer,
        num_background_palettes=max_background_palettes,
        num_sprite_palettes=max_sprite_palettes,
        color_limit=grid_cell_color_limit,
        sprite_color_limit=sprite_color_limit,
        max_row_size=max_row_size,
        sprites_per_cell=sprites_per_cell,
    )


def build_second_pass_problem(
    overlay_layer: CellGrid,
    background_palettes: Sequence[Palette],
    absorb: Dict[AbsorbKey, int],
    grid_cell_color_limit: int,
    max_background_palettes: int,
    max_sprite_palettes: int,
    max_sprites_per_scanline: int,
    sprite_color_limit: int,
) -> CmplProblem:
    return CmplProblem(
        name=SECOND_PASS,
        layer=overlay_layer,
        num_background_palettes=max_background_palettes,
        num_sprite_palettes=max_sprite_palettes,
        color_limit=grid_cell_color_limit,
        sprite_color_limit=sprite_color_limit,
        max_row_size=max_sprites_per_scanline,
        fixed_background=tuple(tuple(p) for p in background_palettes[:max_background_palettes]),
        absorb=dict(absorb),
    )


def _range_set(count: int) -> str:
    return f"< 0..{count - 1} >" if count > 0 else "< >"


def write_cmpl_layer_data(
    f: TextIO,
    name: str,
    layer: CellGrid,
    callback: LayerCallback,
    arity: int = 3,
) -> int:
    """Write one tuple per (cell, color) pair for which ``callback`` answers.

    The tuple is ``row col color`` followed by whatever ``callback`` returned.
    Returns the number of tuples written.
    """

    count = 0
    f.write(f"%{name} set[{arity}] <\n")
    for row, col in layer.active_cells():
        for color in sorted(layer.colors(row, col)):
            extra = callback(row, col, color)
            if extra is None:
                continue
            values = (row, col, color) + tuple(extra)
            if len(values) != arity:
                raise ValueError(f"{name} expects {arity} values per tuple, got {values}")
            f.write("  " + " ".join(str(v) for v in values) + "\n")
            count += 1
    f.write(">\n")
    return count


def write_cmpl_data_file(problem: CmplProblem, path: str | Path) -> None:
    layer = problem.layer
    colors = " ".join(str(c) for c in problem.colors)
    with open(path, "w", encoding="ascii", newline="\n") as f:
        f.write(f"# {problem.name} problem data\n")
        f.write(f"%CellRows set {_range_set(layer.rows)}\n")
        f.write(f"%CellCols set {_range_set(layer.cols)}\n")
        f.write(f"%Colors set < {colors} >\n" if colors else "%Colors set < >\n")
        f.write(f"%BgPalettes set {_range_set(problem.num_background_palettes)}\n")
        f.write(f"%SprPalettes set {_range_set(problem.num_sprite_palettes)}\n")
        f.write(f"%ColorLimit < {problem.color_limit} >\n")
        f.write(f"%SpriteColorLimit < {problem.sprite_color_limit} >\n")
        f.write(f"%MaxRowSize < {problem.max_row_size} >\n")
        f.write(f"%SpritesPerCell < {problem.sprites_per_cell} >\n")
        write_cmpl_layer_data(f, "Need", layer, lambda row, col, color: ())
        if not problem.second_pass:
            return

        f.write("%FixedBg set[2] <\n")
        for index, palette in enumerate(problem.fixed_background):
            for color in palette:
                f.write(f"  {index} {color}\n")
        f.write(">\n")

        def absorb_palette(row: int, col: int, color: int) -> Optional[Tuple[int, ...]]:
            palette = problem.absorb.get((row, col, color))
            return None if palette is None else (palette,)

        write_cmpl_layer_data(f, "Absorb", layer, absorb_palette, arity=4)

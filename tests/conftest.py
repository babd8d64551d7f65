from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

import pytest

from nes_overlay_converter.grid import PixelGrid
from nes_overlay_converter.problem import CmplProblem
from nes_overlay_converter.solution import format_solution_csv
from nes_overlay_converter.solver import CmplSolver, SolverConfig

Values = List[Tuple[str, Tuple[int, ...], int]]


def _palette_values(name: str, palettes: Sequence[Set[int]], colors: Iterable[int]) -> Values:
    colors = list(colors)
    return [
        (name, (index, color), int(color in palette))
        for index, palette in enumerate(palettes)
        for color in colors
    ]


def _assign_sprite_palettes(
    cells: Dict[Tuple[int, int], Set[int]], count: int, limit: int
) -> Optional[Tuple[List[Set[int]], Dict[Tuple[int, int], int]]]:
    palettes: List[Set[int]] = [set() for _ in range(count)]
    chosen: Dict[Tuple[int, int], int] = {}
    for cell, colors in cells.items():
        if not colors:
            continue
        index = next((i for i, p in enumerate(palettes) if len(p | colors) <= limit), None)
        if index is None:
            return None
        palettes[index] |= colors
        chosen[cell] = index
    return palettes, chosen


def _rows_within(chosen: Dict[Tuple[int, int], int], weight: int, limit: int) -> bool:
    per_row: Dict[int, int] = {}
    for row, _col in chosen:
        per_row[row] = per_row.get(row, 0) + weight
    return all(count <= limit for count in per_row.values())


def greedy_first_pass(problem: CmplProblem) -> Optional[Values]:
    layer = problem.layer
    limit = problem.color_limit
    palettes: List[Set[int]] = [set() for _ in range(problem.num_background_palettes)]
    cell_bg: Dict[Tuple[int, int], int] = {}
    overlay: Dict[Tuple[int, int], Set[int]] = {}

    for cell in layer.active_cells():
        colors = set(layer.colors(*cell))
        choice = next(
            (i for i, p in enumerate(palettes) if p and len(p | colors) <= limit), None
        )
        if choice is None:
            choice = next((i for i, p in enumerate(palettes) if not p), None)
        if choice is None:
            choice = max(range(len(palettes)), key=lambda i: (len(palettes[i] & colors), -i))
        palette = palettes[choice]
        if len(palette | colors) <= limit:
            palette |= colors
        elif not palette:
            palette |= set(sorted(colors)[:limit])
        cell_bg[cell] = choice
        overlay[cell] = colors - palette

    assigned = _assign_sprite_palettes(overlay, problem.num_sprite_palettes, problem.sprite_color_limit)
    if assigned is None:
        return None
    sprite_palettes, cell_spr = assigned
    if not _rows_within(cell_spr, problem.sprites_per_cell, problem.max_row_size):
        return None

    values = _palette_values("bgPal", palettes, problem.colors)
    values += _palette_values("sprPal", sprite_palettes, problem.colors)
    values += [("cellBg", cell + (p,), 1) for cell, p in cell_bg.items()]
    values += [("cellSpr", cell + (q,), 1) for cell, q in cell_spr.items()]
    values += [
        ("ovColor", cell + (color,), int(color in overlay[cell]))
        for cell in cell_bg
        for color in sorted(layer.colors(*cell))
    ]
    return values


def greedy_second_pass(problem: CmplProblem) -> Optional[Values]:
    layer = problem.layer
    cells = {cell: set(layer.colors(*cell)) for cell in layer.active_cells()}
    assigned = _assign_sprite_palettes(cells, problem.num_sprite_palettes, problem.sprite_color_limit)
    if assigned is None:
        return None
    sprite_palettes, cell_spr = assigned
    if not _rows_within(cell_spr, 1, problem.max_row_size):
        return None

    fixed = [set(p) for p in problem.fixed_background]
    fixed += [set() for _ in range(problem.num_background_palettes - len(fixed))]
    values = _palette_values("bgPal", fixed, problem.colors)
    values += _palette_values("sprPal", sprite_palettes, problem.colors)
    values += [("cellSpr", cell + (q,), 1) for cell, q in cell_spr.items()]
    return values


class GreedyCmplSolver(CmplSolver):
    """Stands in for the cmpl executable: answers each pass with a greedy
    assignment written as a CSV export, or reports the listed passes as
    infeasible."""

    def __init__(self, config: SolverConfig, infeasible: Iterable[str] = ()):
        super().__init__(config)
        self.infeasible = set(infeasible)
        self.calls: List[str] = []

    def run_program(self, problem, program_file: Path, solution_file: Path, time_out: int) -> bool:
        self.calls.append(problem.name)
        values = None
        if problem.name not in self.infeasible:
            values = greedy_second_pass(problem) if problem.second_pass else greedy_first_pass(problem)
        status = "optimal" if values is not None else "infeasible"
        solution_file.write_text(format_solution_csv(problem.name, status, values or []))
        return True


def paint(width: int, height: int, background: int, spots: Dict[Tuple[int, int], int]) -> PixelGrid:
    rows = [[background] * width for _ in range(height)]
    for (x, y), color in spots.items():
        rows[y][x] = color
    return PixelGrid.from_rows(rows)


def striped_image() -> PixelGrid:
    """32x16 image: two 16x16 cells striped with colors 1-3, plus a 2x2 blob
    of color 4 in the right cell."""

    spots: Dict[Tuple[int, int], int] = {}
    for y in range(16):
        for x in range(32):
            if (x + y) % 4:
                spots[(x, y)] = (x + y) % 4
    for x in (20, 21):
        for y in (4, 5):
            spots[(x, y)] = 4
    return paint(32, 16, 0, spots)


@pytest.fixture
def solver_config(tmp_path: Path) -> SolverConfig:
    return SolverConfig(executable_path=tmp_path / "bin", work_path=tmp_path / "work")


@pytest.fixture
def greedy_solver(solver_config: SolverConfig) -> GreedyCmplSolver:
    return GreedyCmplSolver(solver_config)

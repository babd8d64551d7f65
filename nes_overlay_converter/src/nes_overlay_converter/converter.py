"""Two-pass conversion of an indexed image into background and sprite layers."""

# Reference: NES picture processing unit
# Item                  | Limit            | Notes
# ----------------------|------------------|-----------------------------------------------------
# Background palettes   | 4 x 3 colors     | plus the shared backdrop color in slot 0
# Attribute cell        | 16x16 pixels     | one background palette per cell
# Sprite palettes       | 4 x 3 colors     | slot 0 is transparent
# Sprite size           | 8x8 or 8x16      | 8 pixels wide, freely placed
# Sprites per scanline  | 8                | further sprites on the same line are dropped

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from .errors import ConversionError, InconsistentLayersError
from .grid import Array2D, PixelGrid
from .layer import CellGrid
from .merge import get_max_sprites_per_scanline, optimize_horizontally_adjacent_sprites
from .palettes import (
    EMPTY_PALETTE_INDEX,
    NUM_BACKGROUND_PALETTES,
    NUM_SPRITE_PALETTES,
    PALETTE_GROUP_SIZE,
    SPRITE_COLOR_LIMIT,
    SPRITE_WIDTH,
    Palette,
    fill_missing_palette_groups,
    make_palette,
    palettes_within_limit,
)
from .problem import AbsorbKey, build_first_pass_problem, build_second_pass_problem
from .render import composite, remap_colors, render_sprites, set_empty_palette_indices, split_layers
from .solver import CmplSolver, SolverConfig
from .sprites import Sprite, extract_free_sprites, extract_grid_sprites

logger = logging.getLogger(__name__)


@dataclass
class ConvertOptions:
    """Hardware limits and solver budget for one conversion."""

    background_color: int = 0
    grid_cell_width: int = 16
    grid_cell_height: int = 16
    sprite_height: int = 8
    grid_cell_color_limit: int = PALETTE_GROUP_SIZE - 1
    max_background_palettes: int = NUM_BACKGROUND_PALETTES
    max_sprite_palettes: int = NUM_SPRITE_PALETTES
    max_sprites_per_scanline: int = 8
    time_out: int = 0  # seconds, <= 0 waits for the solver indefinitely

    def validate(self) -> None:
        if not 0 <= self.background_color <= 255:
            raise ConversionError("Background color must be between 0 and 255")
        if self.grid_cell_width <= 0 or self.grid_cell_height <= 0:
            raise ConversionError("Grid cell dimensions must be positive")
        if self.sprite_height <= 0:
            raise ConversionError("Sprite height must be positive")
        if not 1 <= self.grid_cell_color_limit <= PALETTE_GROUP_SIZE - 1:
            raise ConversionError(
                f"Grid cell color limit must be between 1 and {PALETTE_GROUP_SIZE - 1}"
            )
        if not 1 <= self.max_background_palettes <= NUM_BACKGROUND_PALETTES:
            raise ConversionError(
                f"Background palettes must be between 1 and {NUM_BACKGROUND_PALETTES}"
            )
        if not 1 <= self.max_sprite_palettes <= NUM_SPRITE_PALETTES:
            raise ConversionError(f"Sprite palettes must be between 1 and {NUM_SPRITE_PALETTES}")
        if self.max_sprites_per_scanline <= 0:
            raise ConversionError("Sprites per scanline must be positive")


class ConversionState(Enum):
    BACKGROUND_SOLVE = "background_solve"
    NO_BACKGROUND_RETRY = "no_background_retry"
    OVERLAY_SOLVE = "overlay_solve"
    CONSISTENT = "consistent"
    FAILED = "failed"


@dataclass
class BackgroundAssignment:
    """Background palettes plus the palette chosen for every background cell."""

    palettes: List[Palette]
    palette_indices: Array2D[int]


@dataclass
class OverlayAssignment:
    background: BackgroundAssignment
    sprite_palettes: List[Palette]
    background_image: PixelGrid
    overlay_image: PixelGrid
    layer_background: CellGrid
    layer_overlay: CellGrid
    palette_indices_overlay: Array2D[int]


@dataclass(frozen=True)
class ConversionResult:
    """Everything one call to :meth:`OverlayOptimiser.convert` produced.

    When ``successful`` is False the images and layers are diagnostics only.
    """

    successful: bool
    states: Tuple[ConversionState, ...]
    message: str
    background_color: int
    sprite_height: int
    palettes: Tuple[Palette, ...]
    layer_background: CellGrid
    layer_overlay: CellGrid
    palette_indices_background: Array2D[int]
    palette_indices_overlay: Array2D[int]
    output_image_background: PixelGrid
    output_image_overlay_grid: PixelGrid
    output_image_overlay_free: PixelGrid
    output_image: PixelGrid
    sprites_overlay_grid: Tuple[Sprite, ...] = ()
    sprites_overlay_free: Tuple[Sprite, ...] = ()
    sprites_overlay: Tuple[Sprite, ...] = field(default=())

    @property
    def state(self) -> ConversionState:
        return self.states[-1]

    def conversion_successful(self) -> bool:
        return self.successful

    @property
    def background_palettes(self) -> Tuple[Palette, ...]:
        return self.palettes[:NUM_BACKGROUND_PALETTES]

    @property
    def sprite_palettes(self) -> Tuple[Palette, ...]:
        return self.palettes[NUM_BACKGROUND_PALETTES:]

    def remapped_background(self) -> PixelGrid:
        """Background as hardware palette slots (0-3) per pixel."""

        return remap_colors(
            self.output_image_background,
            self.layer_background,
            self.background_palettes,
            self.palette_indices_background,
            self.background_color,
        )

    def to_report(self) -> dict:
        return {
            "successful": self.successful,
            "states": [state.value for state in self.states],
            "message": self.message,
            "background_color": self.background_color,
            "background_palettes": [list(p) for p in self.background_palettes],
            "sprite_palettes": [list(p) for p in self.sprite_palettes],
            "background_palette_indices": self.palette_indices_background.to_lists(),
            "max_sprites_per_scanline": get_max_sprites_per_scanline(self.sprites_overlay),
            "sprites": [sprite.to_dict() for sprite in self.sprites_overlay],
        }


def consistent_layers(
    image: PixelGrid,
    layer: CellGrid,
    palettes: Sequence[Palette],
    palette_indices: Array2D[int],
    background_color: int,
) -> bool:
    """Check that every pixel of ``image`` can be shown by its cell's palette.

    ``layer`` must record exactly the colors found in each cell.
    """

    for row, col in layer.active_cells():
        colors = layer.colors(row, col)
        index = palette_indices[row, col]
        if not colors:
            continue
        if index == EMPTY_PALETTE_INDEX or index >= len(palettes):
            return False
        if not colors <= set(palettes[index]):
            return False

    for y in range(image.height):
        for x in range(image.width):
            color = image.pixel(x, y)
            if color == background_color:
                continue
            cell = layer.cell_of_pixel(x, y)
            if not layer.is_active(*cell) or color not in layer.colors(*cell):
                return False
    return True


def within_capacity(layer: CellGrid, options: ConvertOptions) -> bool:
    """Quick rejection of images no palette assignment can ever show."""

    sprite_colors = options.max_sprite_palettes * SPRITE_COLOR_LIMIT
    if not layer.fits_color_limit(options.grid_cell_color_limit + sprite_colors):
        return False
    total = options.max_background_palettes * options.grid_cell_color_limit + sprite_colors
    return len(layer.all_colors()) <= total


def absorbable_colors(
    overlay_image: PixelGrid,
    overlay_layer: CellGrid,
    layer: CellGrid,
    palette_indices: Array2D[int],
) -> dict[AbsorbKey, int]:
    """Map (sprite row, sprite col, color) to the single background palette
    used by every background cell holding that color's overlay pixels."""

    seen: dict[AbsorbKey, set[int]] = {}
    background_color = overlay_layer.background_color
    for y in range(overlay_image.height):
        for x in range(overlay_image.width):
            color = overlay_image.pixel(x, y)
            if color == background_color:
                continue
            row, col = overlay_layer.cell_of_pixel(x, y)
            seen.setdefault((row, col, color), set()).add(palette_indices[layer.cell_of_pixel(x, y)])
    return {
        key: next(iter(palettes))
        for key, palettes in seen.items()
        if len(palettes) == 1 and EMPTY_PALETTE_INDEX not in palettes
    }


def claimed_background_layer(
    layer: CellGrid, overlay_colors: dict[AbsorbKey, int]
) -> CellGrid:
    """Cell colors the first pass left in the background.

    A needed color without an ``ovColor`` entry counts as background.
    """

    claimed = layer.copy()
    for row, col in layer.active_cells():
        kept = {
            color
            for color in layer.colors(row, col)
            if not overlay_colors.get((row, col, color), 0)
        }
        claimed.set_colors(row, col, kept)
        claimed.set_active(row, col, bool(kept))
    return claimed


def claimed_background_image(image: PixelGrid, claimed: CellGrid) -> PixelGrid:
    background_color = claimed.background_color
    pixels = bytearray(image.pixels)
    for y in range(image.height):
        for x in range(image.width):
            offset = y * image.width + x
            if pixels[offset] == background_color:
                continue
            cell = claimed.cell_of_pixel(x, y)
            if pixels[offset] not in claimed.colors(*cell):
                pixels[offset] = background_color
    return image.with_pixels(pixels)


def convert_first_pass_no_bg(
    image: PixelGrid,
    layer: CellGrid,
    options: ConvertOptions,
) -> Optional[BackgroundAssignment]:
    """Background made of the backdrop color only; everything else is overlay.

    Cells with content still point at palette 0 so the second pass can grow
    it. Returns ``None`` when even that cannot work.
    """

    sprite_layer = CellGrid.from_image(
        image, SPRITE_WIDTH, options.sprite_height, options.background_color
    )
    if not sprite_layer.fits_color_limit(options.grid_cell_color_limit + SPRITE_COLOR_LIMIT):
        return None
    total = options.max_sprite_palettes * SPRITE_COLOR_LIMIT + options.grid_cell_color_limit
    if len(layer.all_colors()) > total:
        return None
    for row in range(sprite_layer.rows):
        forced = sum(
            1
            for col in range(sprite_layer.cols)
            if len(sprite_layer.colors(row, col)) > options.grid_cell_color_limit
        )
        if forced > options.max_sprites_per_scanline:
            return None

    palette_indices: Array2D[int] = Array2D(layer.rows, layer.cols, 0)
    set_empty_palette_indices(palette_indices, layer, EMPTY_PALETTE_INDEX)
    return BackgroundAssignment(
        fill_missing_palette_groups([], NUM_BACKGROUND_PALETTES), palette_indices
    )


def _check_capacity(palettes: Sequence[Palette], limit: int, what: str) -> None:
    if not palettes_within_limit(palettes, limit):
        raise InconsistentLayersError(f"{what} palette exceeds {limit} colors: {list(palettes)}")


class OverlayOptimiser:
    """Drive the palette solver through both passes and build the layers."""

    def __init__(self, solver: CmplSolver | None = None, config: SolverConfig | None = None):
        self.solver = solver or CmplSolver(config)

    def convert_first_pass(
        self, image: PixelGrid, layer: CellGrid, options: ConvertOptions
    ) -> Optional[BackgroundAssignment]:
        problem = build_first_pass_problem(
            layer,
            options.grid_cell_color_limit,
            options.max_background_palettes,
            options.max_sprite_palettes,
            max_row_size=options.max_sprites_per_scanline,
            sprites_per_cell=(options.grid_cell_width + SPRITE_WIDTH - 1) // SPRITE_WIDTH,
            sprite_color_limit=SPRITE_COLOR_LIMIT,
        )
        solution = self.solver.solve(problem, options.time_out)
        if solution is None:
            return None

        palettes = fill_missing_palette_groups(
            solution.background_palettes, NUM_BACKGROUND_PALETTES
        )
        _check_capacity(palettes, options.grid_cell_color_limit, "Background")
        palette_indices: Array2D[int] = Array2D(layer.rows, layer.cols, EMPTY_PALETTE_INDEX)
        for cell, palette in solution.cell_background.items():
            palette_indices[cell] = palette

        claimed = claimed_background_layer(layer, solution.overlay_colors)
        if not consistent_layers(
            claimed_background_image(image, claimed),
            claimed,
            palettes,
            palette_indices,
            options.background_color,
        ):
            raise InconsistentLayersError(
                "Background palettes do not hold the colors the solver kept in the background"
            )
        set_empty_palette_indices(palette_indices, layer)
        return BackgroundAssignment(palettes, palette_indices)

    def convert_second_pass(
        self,
        image: PixelGrid,
        layer: CellGrid,
        background: BackgroundAssignment,
        overlay_image: PixelGrid,
        options: ConvertOptions,
    ) -> Optional[OverlayAssignment]:
        background_color = options.background_color
        overlay_layer = CellGrid.from_image(
            overlay_image, SPRITE_WIDTH, options.sprite_height, background_color
        )
        problem = build_second_pass_problem(
            overlay_layer,
            background.palettes,
            absorbable_colors(overlay_image, overlay_layer, layer, background.palette_indices),
            options.grid_cell_color_limit,
            options.max_background_palettes,
            options.max_sprite_palettes,
            options.max_sprites_per_scanline,
            sprite_color_limit=SPRITE_COLOR_LIMIT,
        )
        solution = self.solver.solve(problem, options.time_out)
        if solution is None:
            return None

        solved = fill_missing_palette_groups(solution.background_palettes, NUM_BACKGROUND_PALETTES)
        palettes = [make_palette(fixed + solved[i]) for i, fixed in enumerate(background.palettes)]
        _check_capacity(palettes, options.grid_cell_color_limit, "Background")
        sprite_palettes = fill_missing_palette_groups(solution.sprite_palettes, NUM_SPRITE_PALETTES)
        _check_capacity(sprite_palettes, SPRITE_COLOR_LIMIT, "Sprite")

        grown = BackgroundAssignment(palettes, background.palette_indices)
        background_image, overlay_image = split_layers(
            image, layer, palettes, grown.palette_indices, background_color
        )
        layer_background = CellGrid.from_image(
            background_image, options.grid_cell_width, options.grid_cell_height, background_color
        )
        layer_overlay = CellGrid.from_image(
            overlay_image, SPRITE_WIDTH, options.sprite_height, background_color
        )
        overlay_indices: Array2D[int] = Array2D(
            layer_overlay.rows, layer_overlay.cols, EMPTY_PALETTE_INDEX
        )
        for cell, palette in solution.cell_sprite.items():
            overlay_indices[cell] = palette
        set_empty_palette_indices(overlay_indices, layer_overlay)

        if not consistent_layers(
            overlay_image, layer_overlay, sprite_palettes, overlay_indices, background_color
        ):
            raise InconsistentLayersError("Sprite palettes do not cover the overlay layer")
        return OverlayAssignment(
            grown,
            sprite_palettes,
            background_image,
            overlay_image,
            layer_background,
            layer_overlay,
            overlay_indices,
        )

    def convert(self, image: PixelGrid, options: ConvertOptions | None = None) -> ConversionResult:
        options = options or ConvertOptions()
        options.validate()
        background_color = options.background_color
        layer = CellGrid.from_image(
            image, options.grid_cell_width, options.grid_cell_height, background_color
        )
        states: List[ConversionState] = [ConversionState.BACKGROUND_SOLVE]

        if not within_capacity(layer, options):
            logger.warning("image needs more colors per cell than all palettes can hold")
            return self._failed(image, layer, options, states, "Too many colors for the palettes")

        logger.info("first pass: %s", layer)
        background = self.convert_first_pass(image, layer, options)
        if background is None:
            logger.warning("first pass infeasible, retrying without background")
            states.append(ConversionState.NO_BACKGROUND_RETRY)
            background = convert_first_pass_no_bg(image, layer, options)
            if background is None:
                return self._failed(image, layer, options, states, "No feasible background")

        background_image, overlay_image = split_layers(
            image, layer, background.palettes, background.palette_indices, background_color
        )

        states.append(ConversionState.OVERLAY_SOLVE)
        logger.info("second pass: overlay of %d pixels", _opaque(overlay_image, background_color))
        overlay = self.convert_second_pass(image, layer, background, overlay_image, options)
        if overlay is None:
            logger.warning("second pass infeasible")
            return self._failed(
                image,
                layer,
                options,
                states,
                "No feasible sprite assignment",
                background=background,
                background_image=background_image,
                overlay_image=overlay_image,
            )
        return self._finish(image, options, states, overlay)

    def _finish(
        self,
        image: PixelGrid,
        options: ConvertOptions,
        states: List[ConversionState],
        overlay: OverlayAssignment,
    ) -> ConversionResult:
        background_color = options.background_color
        palettes = overlay.sprite_palettes[: options.max_sprite_palettes]
        grid_sprites = optimize_horizontally_adjacent_sprites(
            extract_grid_sprites(overlay.overlay_image, overlay.layer_overlay, palettes, background_color)
        )
        free_sprites = optimize_horizontally_adjacent_sprites(
            extract_free_sprites(
                overlay.overlay_image, SPRITE_WIDTH, options.sprite_height, palettes, background_color
            )
        )
        grid_image = render_sprites(grid_sprites, overlay.sprite_palettes, image, background_color)
        free_image = render_sprites(free_sprites, overlay.sprite_palettes, image, background_color)

        budget = options.max_sprites_per_scanline
        candidates = [
            (grid_sprites, grid_image),
            (free_sprites, free_image),
        ]

        def rank(index: int) -> Tuple[bool, bool, int, int, int]:
            sprites, rendered = candidates[index]
            per_line = get_max_sprites_per_scanline(sprites)
            return (
                rendered.pixels != overlay.overlay_image.pixels,
                per_line > budget,
                per_line,
                len(sprites),
                index,
            )

        sprites, rendered = candidates[min(range(len(candidates)), key=rank)]
        output = composite(overlay.background_image, rendered, background_color)
        per_line = get_max_sprites_per_scanline(sprites)

        if output.pixels != image.pixels:
            successful, message = False, "Sprites do not reproduce every overlay pixel"
        elif per_line > budget:
            successful, message = False, f"{per_line} sprites on one scanline, limit is {budget}"
        else:
            successful = True
            message = f"{len(sprites)} sprites, at most {per_line} per scanline"
        states.append(ConversionState.CONSISTENT if successful else ConversionState.FAILED)
        logger.info("conversion %s: %s", "succeeded" if successful else "failed", message)

        return ConversionResult(
            successful=successful,
            states=tuple(states),
            message=message,
            background_color=background_color,
            sprite_height=options.sprite_height,
            palettes=tuple(overlay.background.palettes) + tuple(overlay.sprite_palettes),
            layer_background=overlay.layer_background,
            layer_overlay=overlay.layer_overlay,
            palette_indices_background=overlay.background.palette_indices,
            palette_indices_overlay=overlay.palette_indices_overlay,
            output_image_background=overlay.background_image,
            output_image_overlay_grid=grid_image,
            output_image_overlay_free=free_image,
            output_image=output,
            sprites_overlay_grid=tuple(grid_sprites),
            sprites_overlay_free=tuple(free_sprites),
            sprites_overlay=tuple(sprites),
        )

    def _failed(
        self,
        image: PixelGrid,
        layer: CellGrid,
        options: ConvertOptions,
        states: List[ConversionState],
        message: str,
        background: BackgroundAssignment | None = None,
        background_image: PixelGrid | None = None,
        overlay_image: PixelGrid | None = None,
    ) -> ConversionResult:
        background_color = options.background_color
        if background is None:
            background = BackgroundAssignment(
                fill_missing_palette_groups([], NUM_BACKGROUND_PALETTES),
                Array2D(layer.rows, layer.cols, EMPTY_PALETTE_INDEX),
            )
        if background_image is None or overlay_image is None:
            background_image = PixelGrid.blank(image.width, image.height, background_color, image.palette)
            overlay_image = image
        layer_background = CellGrid.from_image(
            background_image, options.grid_cell_width, options.grid_cell_height, background_color
        )
        layer_overlay = CellGrid.from_image(
            overlay_image, SPRITE_WIDTH, options.sprite_height, background_color
        )
        states.append(ConversionState.FAILED)
        logger.info("conversion failed: %s", message)
        return ConversionResult(
            successful=False,
            states=tuple(states),
            message=message,
            background_color=background_color,
            sprite_height=options.sprite_height,
            palettes=tuple(background.palettes)
            + tuple(fill_missing_palette_groups([], NUM_SPRITE_PALETTES)),
            layer_background=layer_background,
            layer_overlay=layer_overlay,
            palette_indices_background=background.palette_indices,
            palette_indices_overlay=Array2D(layer_overlay.rows, layer_overlay.cols, EMPTY_PALETTE_INDEX),
            output_image_background=background_image,
            output_image_overlay_grid=overlay_image,
            output_image_overlay_free=PixelGrid.blank(
                image.width, image.height, background_color, image.palette
            ),
            output_image=composite(background_image, overlay_image, background_color),
        )


def _opaque(image: PixelGrid, background_color: int) -> int:
    return sum(1 for value in image.pixels if value != background_color)


def convert_image(
    image: PixelGrid,
    options: ConvertOptions | None = None,
    config: SolverConfig | None = None,
) -> ConversionResult:
    return OverlayOptimiser(config=config).convert(image, options)


def convert_png(
    path: str | Path,
    options: ConvertOptions | None = None,
    config: SolverConfig | None = None,
) -> ConversionResult:
    path = Path(path)
    try:
        with Image.open(path) as img:
            image = PixelGrid.from_pil(img)
    except FileNotFoundError as exc:
        raise ConversionError(f"Input file not found: {path}") from exc
    except OSError as exc:
        raise ConversionError(f"Failed to read PNG: {path}") from exc
    return convert_image(image, options, config)

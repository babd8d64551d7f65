"""Layer splitting, palette-slot remapping and image reconstruction."""

from __future__ import annotations

from typing import Sequence, Tuple

from .errors import ConversionError
from .grid import Array2D, PixelGrid
from .layer import CellGrid
from .palettes import EMPTY_PALETTE_INDEX, Palette, color_at_index, index_in_palette
from .sprites import Sprite


def _cell_palette(
    layer: CellGrid,
    palettes: Sequence[Palette],
    palette_indices: Array2D[int],
    x: int,
    y: int,
) -> Palette:
    index = palette_indices[layer.cell_of_pixel(x, y)]
    if index == EMPTY_PALETTE_INDEX:
        return ()
    return palettes[index]


def split_layers(
    image: PixelGrid,
    layer: CellGrid,
    palettes: Sequence[Palette],
    palette_indices: Array2D[int],
    background_color: int,
) -> Tuple[PixelGrid, PixelGrid]:
    """Return ``(background, overlay)`` images.

    A pixel stays in the background when its cell's palette holds its color;
    every other non-background pixel moves to the overlay.
    """

    background = bytearray(image.pixels)
    overlay = bytearray([background_color]) * len(image.pixels)
    for y in range(image.height):
        for x in range(image.width):
            offset = y * image.width + x
            color = image.pixels[offset]
            if color == background_color:
                continue
            if color not in _cell_palette(layer, palettes, palette_indices, x, y):
                background[offset] = background_color
                overlay[offset] = color
    return image.with_pixels(background), image.with_pixels(overlay)


def remap_colors(
    image: PixelGrid,
    layer: CellGrid,
    palettes: Sequence[Palette],
    palette_indices: Array2D[int],
    background_color: int,
) -> PixelGrid:
    """Replace every color by its slot in the palette of its cell (0 = background)."""

    slots = bytearray(len(image.pixels))
    for y in range(image.height):
        for x in range(image.width):
            offset = y * image.width + x
            color = image.pixels[offset]
            if color == background_color:
                continue
            palette = _cell_palette(layer, palettes, palette_indices, x, y)
            slots[offset] = index_in_palette(palette, color)
    return PixelGrid(image.width, image.height, bytes(slots))


def restore_colors(
    slots: PixelGrid,
    layer: CellGrid,
    palettes: Sequence[Palette],
    palette_indices: Array2D[int],
    background_color: int,
    palette_rgb=(),
) -> PixelGrid:
    """Inverse of :func:`remap_colors`."""

    colors = bytearray(len(slots.pixels))
    for y in range(slots.height):
        for x in range(slots.width):
            offset = y * slots.width + x
            palette = _cell_palette(layer, palettes, palette_indices, x, y)
            colors[offset] = color_at_index(palette, slots.pixels[offset], background_color)
    return PixelGrid(slots.width, slots.height, bytes(colors), tuple(palette_rgb))


def set_empty_palette_indices(
    palette_indices: Array2D[int], layer: CellGrid, empty_index: int = EMPTY_PALETTE_INDEX
) -> None:
    """Mark cells without content in ``layer`` with ``empty_index``."""

    for row, col in layer.row_major():
        if not layer.is_active(row, col) or not layer.colors(row, col):
            palette_indices[row, col] = empty_index


def render_sprites(
    sprites: Sequence[Sprite],
    sprite_palettes: Sequence[Palette],
    template: PixelGrid,
    background_color: int,
) -> PixelGrid:
    """Draw ``sprites`` on a blank canvas shaped like ``template``.

    Earlier sprites are drawn in front of later ones.
    """

    canvas = bytearray([background_color]) * (template.width * template.height)
    for sprite in reversed(sprites):
        palette = sprite_palettes[sprite.palette]
        for dy, row in enumerate(sprite.pixels):
            y = sprite.y + dy
            if not 0 <= y < template.height:
                continue
            for dx, slot in enumerate(row):
                x = sprite.x + dx
                if slot == 0 or not 0 <= x < template.width:
                    continue
                canvas[y * template.width + x] = color_at_index(palette, slot, background_color)
    return template.with_pixels(canvas)


def sprite_to_image(
    sprite: Sprite,
    sprite_palettes: Sequence[Palette],
    background_color: int,
    palette_rgb=(),
) -> PixelGrid:
    palette = sprite_palettes[sprite.palette]
    pixels = bytes(
        color_at_index(palette, slot, background_color) for row in sprite.pixels for slot in row
    )
    return PixelGrid(sprite.width, sprite.height, pixels, tuple(palette_rgb))


def composite(bottom: PixelGrid, top: PixelGrid, background_color: int) -> PixelGrid:
    if (bottom.width, bottom.height) != (top.width, top.height):
        raise ConversionError("Cannot composite images of different sizes")
    pixels = bytes(
        t if t != background_color else b for b, t in zip(bottom.pixels, top.pixels)
    )
    return bottom.with_pixels(pixels)

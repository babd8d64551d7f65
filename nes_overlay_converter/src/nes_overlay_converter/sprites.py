"""Sprite values and extraction of sprites from the overlay layer."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, replace
from typing import List, Sequence, Set, Tuple

from .errors import ConversionError
from .grid import PixelGrid
from .layer import CellGrid
from .palettes import Palette, index_in_palette, palette_wasted_slots

SlotRows = Tuple[Tuple[int, ...], ...]


@dataclass(frozen=True)
class Sprite:
    """A placed sprite.

    ``pixels`` holds ``height`` rows of ``width`` palette slots; slot 0 is
    transparent. ``palette`` indexes the sprite palette pool.
    """

    x: int
    y: int
    width: int
    height: int
    palette: int
    pixels: SlotRows

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "palette": self.palette,
            "pixels": [list(row) for row in self.pixels],
        }


class OverlayBuffer:
    """Mutable copy of the overlay image that extraction removes pixels from."""

    def __init__(self, width: int, height: int, pixels: bytearray, background_color: int):
        self.width = width
        self.height = height
        self.pixels = pixels
        self.background_color = background_color

    @classmethod
    def from_image(cls, image: PixelGrid, background_color: int) -> "OverlayBuffer":
        return cls(image.width, image.height, bytearray(image.pixels), background_color)

    def get(self, x: int, y: int) -> int:
        if 0 <= x < self.width and 0 <= y < self.height:
            return self.pixels[y * self.width + x]
        return self.background_color

    def clear(self, x: int, y: int) -> None:
        self.pixels[y * self.width + x] = self.background_color

    def is_opaque(self, x: int, y: int) -> bool:
        return self.get(x, y) != self.background_color

    def opaque_count(self) -> int:
        return sum(1 for value in self.pixels if value != self.background_color)


def _column_blank(sprite: Sprite, column: int) -> bool:
    return all(row[column] == 0 for row in sprite.pixels)


def get_num_blank_pixels_left(sprite: Sprite) -> int:
    for column in range(sprite.width):
        if not _column_blank(sprite, column):
            return column
    return sprite.width


def get_num_blank_pixels_right(sprite: Sprite) -> int:
    for offset in range(sprite.width):
        if not _column_blank(sprite, sprite.width - 1 - offset):
            return offset
    return sprite.width


def trim_sprite(sprite: Sprite) -> Sprite:
    """Drop blank columns at both edges; a fully blank sprite gets width 0."""

    left = get_num_blank_pixels_left(sprite)
    if left == sprite.width:
        return replace(sprite, width=0, pixels=tuple(() for _ in sprite.pixels))
    right = get_num_blank_pixels_right(sprite)
    if left == 0 and right == 0:
        return sprite
    end = sprite.width - right
    return replace(
        sprite,
        x=sprite.x + left,
        width=end - left,
        pixels=tuple(row[left:end] for row in sprite.pixels),
    )


def choose_best_palette(colors: Counter, sprite_palettes: Sequence[Palette]) -> int:
    """Pick the palette leaving the fewest pixels uncovered, then the fewest
    unused slots, then the lowest index."""

    if not sprite_palettes:
        raise ConversionError("No sprite palettes to choose from")

    def score(index: int) -> Tuple[int, int, int]:
        palette = sprite_palettes[index]
        uncovered = sum(count for color, count in colors.items() if color not in palette)
        return uncovered, palette_wasted_slots(palette, colors), index

    return min(range(len(sprite_palettes)), key=score)


def extract_sprite_with_best_palette(
    overlay: OverlayBuffer,
    x: int,
    y: int,
    sprite_width: int,
    sprite_height: int,
    sprite_palettes: Sequence[Palette],
    remove_pixels: bool,
) -> Sprite:
    block = [
        [overlay.get(x + dx, y + dy) for dx in range(sprite_width)]
        for dy in range(sprite_height)
    ]
    colors: Counter = Counter(
        color for row in block for color in row if color != overlay.background_color
    )
    palette_index = choose_best_palette(colors, sprite_palettes)
    palette = sprite_palettes[palette_index]

    rows = []
    for dy, row in enumerate(block):
        slots = []
        for dx, color in enumerate(row):
            if color != overlay.background_color and color in palette:
                slots.append(index_in_palette(palette, color))
                if remove_pixels:
                    overlay.clear(x + dx, y + dy)
            else:
                slots.append(0)
        rows.append(tuple(slots))

    sprite = Sprite(x, y, sprite_width, sprite_height, palette_index, tuple(rows))
    if remove_pixels:
        sprite = trim_sprite(sprite)
    return sprite


def extract_grid_sprites(
    overlay_image: PixelGrid,
    layer: CellGrid,
    sprite_palettes: Sequence[Palette],
    background_color: int,
) -> List[Sprite]:
    """Cut one sprite per active cell of the sprite-aligned overlay grid."""

    overlay = OverlayBuffer.from_image(overlay_image, background_color)
    sprites: List[Sprite] = []
    for row, col in layer.active_cells():
        x0, y0, _, _ = layer.cell_rect(row, col)
        sprite = extract_sprite_with_best_palette(
            overlay, x0, y0, layer.cell_width, layer.cell_height, sprite_palettes, True
        )
        if sprite.width > 0:
            sprites.append(sprite)
    return sprites


def _leftmost_free(overlay: OverlayBuffer, y: int, stuck: Set[Tuple[int, int]]) -> int:
    for x in range(overlay.width):
        if overlay.is_opaque(x, y) and (x, y) not in stuck:
            return x
    raise ConversionError(f"Row {y} has no remaining overlay pixel")


def extract_free_sprites(
    overlay_image: PixelGrid,
    sprite_width: int,
    sprite_height: int,
    sprite_palettes: Sequence[Palette],
    background_color: int,
) -> List[Sprite]:
    """Place sprites freely, top to bottom, at the first remaining pixels.

    Each sprite starts at the topmost remaining overlay row and the leftmost
    remaining pixel within the sprite's height from there. Pixels no sprite
    palette can show are left in place.
    """

    overlay = OverlayBuffer.from_image(overlay_image, background_color)
    # opaque pixels per row not yet taken by a sprite or marked stuck
    remaining = [
        sum(1 for value in overlay_image.row(y) if value != background_color)
        for y in range(overlay.height)
    ]
    stuck: Set[Tuple[int, int]] = set()
    sprites: List[Sprite] = []
    y = 0
    while y < overlay.height:
        if not remaining[y]:
            y += 1
            continue
        band_end = min(y + sprite_height, overlay.height)
        x = min(_leftmost_free(overlay, yy, stuck) for yy in range(y, band_end) if remaining[yy])

        sprite = extract_sprite_with_best_palette(
            overlay, x, y, sprite_width, sprite_height, sprite_palettes, True
        )
        cleared = 0
        for dy, row in enumerate(sprite.pixels):
            taken = sum(1 for slot in row if slot)
            if taken:
                remaining[sprite.y + dy] -= taken
                cleared += taken
        if cleared:
            sprites.append(sprite)
            continue

        for yy in range(y, band_end):
            for xx in range(x, min(x + sprite_width, overlay.width)):
                if overlay.is_opaque(xx, yy) and (xx, yy) not in stuck:
                    stuck.add((xx, yy))
                    remaining[yy] -= 1
    return sprites

"""Hardware palette limits and palette slot lookup.

A palette is stored as a sorted tuple of non-background colors. Slot 0 always
shows the background color, so a palette with ``PALETTE_GROUP_SIZE`` slots can
hold ``PALETTE_GROUP_SIZE - 1`` colors of its own, placed in ascending color
order in slots 1..3.
"""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from .errors import ConversionError

Palette = Tuple[int, ...]

SPRITE_WIDTH = 8
PALETTE_GROUP_SIZE = 4
NUM_BACKGROUND_PALETTES = 4
NUM_SPRITE_PALETTES = 4
SPRITE_COLOR_LIMIT = PALETTE_GROUP_SIZE - 1
EMPTY_PALETTE_INDEX = 0xFF


def make_palette(colors: Iterable[int]) -> Palette:
    return tuple(sorted(set(colors)))


def index_in_palette(palette: Sequence[int], color: int) -> int:
    """Return the hardware slot of ``color`` within ``palette`` (1-based)."""

    for slot, entry in enumerate(palette, start=1):
        if entry == color:
            return slot
    raise ConversionError(f"Color {color} is not part of palette {tuple(palette)}")


def color_at_index(palette: Sequence[int], slot: int, background_color: int) -> int:
    """Reverse of :func:`index_in_palette`; slot 0 maps to the background color."""

    if slot == 0:
        return background_color
    if not 1 <= slot <= len(palette):
        raise ConversionError(f"Slot {slot} is empty in palette {tuple(palette)}")
    return palette[slot - 1]


def fill_missing_palette_groups(palettes: Sequence[Palette], num_palettes: int) -> List[Palette]:
    """Pad ``palettes`` with empty groups so it has exactly ``num_palettes`` entries."""

    if len(palettes) > num_palettes:
        raise ConversionError(
            f"Solution holds {len(palettes)} palettes, only {num_palettes} are available"
        )
    return list(palettes) + [()] * (num_palettes - len(palettes))


def palette_wasted_slots(palette: Sequence[int], colors: Iterable[int]) -> int:
    used = set(colors)
    return sum(1 for color in palette if color not in used)


def palettes_within_limit(palettes: Sequence[Palette], limit: int) -> bool:
    return all(len(palette) <= limit for palette in palettes)

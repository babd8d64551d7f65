"""Horizontal merging of adjacent sprites to save sprites per scanline."""

from __future__ import annotations

from typing import List, Sequence

from .palettes import SPRITE_WIDTH
from .sprites import Sprite


def get_max_sprites_per_scanline(sprites: Sequence[Sprite]) -> int:
    counts: dict[int, int] = {}
    for sprite in sprites:
        if sprite.width <= 0:
            continue
        for y in range(sprite.y, sprite.y + sprite.height):
            counts[y] = counts.get(y, 0) + 1
    return max(counts.values(), default=0)


def get_adjacent_slices(sprites: Sequence[Sprite]) -> List[List[Sprite]]:
    """Group sprites into maximal runs sharing ``y`` and ``height`` whose
    x ranges touch without a gap. Runs come out in row-major order."""

    ordered = sorted(sprites, key=lambda s: (s.y, s.height, s.x))
    slices: List[List[Sprite]] = []
    for sprite in ordered:
        if slices:
            last = slices[-1][-1]
            if (
                last.y == sprite.y
                and last.height == sprite.height
                and last.x + last.width == sprite.x
            ):
                slices[-1].append(sprite)
                continue
        slices.append([sprite])
    return slices


def merge_sprites(left: Sprite, right: Sprite) -> Sprite:
    return Sprite(
        x=left.x,
        y=left.y,
        width=left.width + right.width,
        height=left.height,
        palette=left.palette,
        pixels=tuple(a + b for a, b in zip(left.pixels, right.pixels)),
    )


def optimize_horizontally_adjacent_sprites(
    sprites: Sequence[Sprite], max_width: int = SPRITE_WIDTH
) -> List[Sprite]:
    """Merge runs of same-palette neighbours into sprites up to ``max_width``.

    Left to right inside each slice: a neighbour joins the current group while
    the palette matches and the group stays within ``max_width``; otherwise it
    starts a new group.
    """

    merged: List[Sprite] = []
    for run in get_adjacent_slices(sprites):
        group = run[0]
        for sprite in run[1:]:
            if sprite.palette == group.palette and group.width + sprite.width <= max_width:
                group = merge_sprites(group, sprite)
            else:
                merged.append(group)
                group = sprite
        merged.append(group)

    if get_max_sprites_per_scanline(merged) > get_max_sprites_per_scanline(sprites):
        return list(sprites)
    return merged

from collections import Counter

import pytest

from nes_overlay_converter.errors import ConversionError
from nes_overlay_converter.grid import PixelGrid
from nes_overlay_converter.layer import CellGrid
from nes_overlay_converter.sprites import (
    OverlayBuffer,
    Sprite,
    choose_best_palette,
    extract_free_sprites,
    extract_grid_sprites,
    extract_sprite_with_best_palette,
    get_num_blank_pixels_left,
    get_num_blank_pixels_right,
    trim_sprite,
)

from conftest import paint


def _overlay():
    return paint(16, 8, 0, {(3, 2): 5, (4, 2): 5, (12, 7): 6})


def test_trim_drops_blank_edge_columns() -> None:
    sprite = Sprite(10, 0, 8, 2, 0, ((0, 0, 1, 0, 2, 0, 0, 0), (0, 0, 0, 3, 0, 0, 0, 0)))

    assert get_num_blank_pixels_left(sprite) == 2
    assert get_num_blank_pixels_right(sprite) == 3
    trimmed = trim_sprite(sprite)
    assert (trimmed.x, trimmed.width) == (12, 3)
    assert trimmed.pixels == ((1, 0, 2), (0, 3, 0))
    assert trim_sprite(trimmed) == trimmed


def test_trim_blank_sprite_gives_zero_width() -> None:
    sprite = Sprite(0, 0, 8, 1, 0, ((0,) * 8,))

    assert trim_sprite(sprite).width == 0


def test_choose_best_palette_prefers_coverage_then_fewer_unused_slots() -> None:
    colors = Counter({1: 2, 2: 1})

    assert choose_best_palette(colors, [(1,), (1, 2, 3), (1, 2)]) == 2
    assert choose_best_palette(colors, [(1, 2), (1, 2)]) == 0
    assert choose_best_palette(Counter({7: 1}), [(1,), (2,)]) == 0
    with pytest.raises(ConversionError):
        choose_best_palette(colors, [])


def test_extract_keeps_pixels_unless_asked_to_remove() -> None:
    overlay = OverlayBuffer.from_image(_overlay(), 0)

    kept = extract_sprite_with_best_palette(overlay, 0, 0, 8, 8, [(5,)], remove_pixels=False)
    assert kept.width == 8
    assert overlay.opaque_count() == 3

    removed = extract_sprite_with_best_palette(overlay, 0, 0, 8, 8, [(5,)], remove_pixels=True)
    assert (removed.x, removed.width) == (3, 2)
    assert removed.pixels[2] == (1, 1)
    assert overlay.opaque_count() == 1


def test_grid_sprites_follow_sprite_cells() -> None:
    image = _overlay()
    layer = CellGrid.from_image(image, 8, 8, background_color=0)
    sprites = extract_grid_sprites(image, layer, [(5, 6)], 0)

    assert [(s.x, s.y, s.width, s.height) for s in sprites] == [(3, 0, 2, 8), (12, 0, 1, 8)]
    assert sprites[1].pixels[7] == (2,)


def test_free_sprites_start_at_topmost_leftmost_pixel() -> None:
    sprites = extract_free_sprites(_overlay(), 8, 8, [(5, 6)], 0)

    assert [(s.x, s.y, s.width) for s in sprites] == [(3, 2, 2), (12, 7, 1)]
    assert sprites[0].pixels[0] == (1, 1)


def test_free_sprites_tile_a_full_screen_overlay() -> None:
    image = PixelGrid.blank(256, 240, 5)
    sprites = extract_free_sprites(image, 8, 8, [(5,)], 0)

    assert len(sprites) == 32 * 30
    assert all(s.width == 8 and s.x % 8 == 0 and s.y % 8 == 0 for s in sprites)
    assert sorted((s.y, s.x) for s in sprites) == [(s.y, s.x) for s in sprites]


def test_free_extraction_continues_past_stuck_pixels() -> None:
    image = paint(8, 20, 0, {(0, 2): 9, (3, 2): 9, (4, 15): 5, (0, 19): 9})
    sprites = extract_free_sprites(image, 8, 8, [(5,)], 0)

    assert [(s.x, s.y, s.width) for s in sprites] == [(4, 15, 1)]


def test_free_extraction_stops_on_uncoverable_pixels() -> None:
    image = paint(8, 8, 0, {(0, 0): 9, (2, 0): 5})
    sprites = extract_free_sprites(image, 8, 8, [(5,)], 0)

    assert [(s.x, s.y, s.width) for s in sprites] == [(2, 0, 1)]

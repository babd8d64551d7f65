import pytest

from nes_overlay_converter.errors import ConversionError
from nes_overlay_converter.grid import Array2D, PixelGrid
from nes_overlay_converter.layer import CellGrid

from conftest import paint, striped_image


def test_pixel_grid_rejects_wrong_buffer_size() -> None:
    with pytest.raises(ConversionError):
        PixelGrid(4, 4, bytes(15))


def test_array2d_bounds_and_copy() -> None:
    table = Array2D(2, 3, 0)
    table[1, 2] = 7
    clone = table.copy()
    clone[0, 0] = 1

    assert table[1, 2] == 7
    assert table[0, 0] == 0
    assert clone.to_lists() == [[1, 0, 0], [0, 0, 7]]
    with pytest.raises(IndexError):
        table[2, 0]


@pytest.mark.parametrize("width,height,cell_w,cell_h", [(32, 16, 16, 16), (20, 13, 8, 8), (7, 5, 3, 2)])
def test_every_pixel_belongs_to_exactly_one_cell(width, height, cell_w, cell_h) -> None:
    layer = CellGrid(width, height, cell_w, cell_h, background_color=0)
    owners = {}
    for cell in layer.row_major():
        x0, y0, x1, y1 = layer.cell_rect(*cell)
        for y in range(y0, y1):
            for x in range(x0, x1):
                assert (x, y) not in owners
                owners[(x, y)] = cell

    assert len(owners) == width * height
    for (x, y), cell in owners.items():
        assert layer.cell_of_pixel(x, y) == cell


def test_cells_record_colors_without_background() -> None:
    layer = CellGrid.from_image(striped_image(), 16, 16, background_color=0)

    assert (layer.rows, layer.cols) == (1, 2)
    assert layer.colors(0, 0) == {1, 2, 3}
    assert layer.colors(0, 1) == {1, 2, 3, 4}
    assert layer.all_colors() == {1, 2, 3, 4}


def test_union_of_cell_colors_reconstructs_image_colors() -> None:
    image = paint(20, 10, 5, {(0, 0): 1, (19, 9): 2, (9, 4): 3})
    layer = CellGrid.from_image(image, 8, 8, background_color=5)

    assert layer.all_colors() == image.colors() - {5}
    assert layer.colors(1, 2) == {2}
    assert not layer.is_active(0, 2)


def test_over_capacity_cells_are_reported_not_raised() -> None:
    layer = CellGrid.from_image(striped_image(), 16, 16, background_color=0)

    assert layer.over_capacity_cells(3) == [(0, 1)]
    assert not layer.fits_color_limit(3)
    assert layer.fits_color_limit(4)
    assert layer.max_colors() == 4

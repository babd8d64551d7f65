"""Cell grid layers: per-cell color sets over an indexed image."""

from __future__ import annotations

from typing import FrozenSet, Iterator, List, Optional, Tuple

from .errors import ConversionError
from .grid import Array2D, PixelGrid

Cell = Tuple[int, int]


class CellGrid:
    """Partition of an image into ``cell_width`` x ``cell_height`` cells.

    Each cell records the set of colors drawn inside it. The background color
    is never recorded because it lives in the fixed slot 0 of every palette.
    Cells on the right and bottom edge may be partial, so every pixel of the
    source belongs to exactly one cell.
    """

    def __init__(
        self,
        image_width: int,
        image_height: int,
        cell_width: int,
        cell_height: int,
        background_color: Optional[int] = None,
    ):
        if cell_width <= 0 or cell_height <= 0:
            raise ConversionError("Grid cell dimensions must be positive")
        self.image_width = image_width
        self.image_height = image_height
        self.cell_width = cell_width
        self.cell_height = cell_height
        self.background_color = background_color
        self.rows = (image_height + cell_height - 1) // cell_height
        self.cols = (image_width + cell_width - 1) // cell_width
        self._colors: Array2D[FrozenSet[int]] = Array2D(self.rows, self.cols, frozenset())
        self._active: Array2D[bool] = Array2D(self.rows, self.cols, False)

    @classmethod
    def from_image(
        cls,
        image: PixelGrid,
        cell_width: int,
        cell_height: int,
        background_color: Optional[int] = None,
    ) -> "CellGrid":
        layer = cls(image.width, image.height, cell_width, cell_height, background_color)
        found: List[set[int]] = [set() for _ in range(layer.rows * layer.cols)]
        for y in range(image.height):
            row_base = (y // cell_height) * layer.cols
            line = image.row(y)
            for x, color in enumerate(line):
                if color != background_color:
                    found[row_base + x // cell_width].add(color)
        for row, col in layer.row_major():
            colors = frozenset(found[row * layer.cols + col])
            layer._colors[row, col] = colors
            layer._active[row, col] = bool(colors)
        return layer

    def row_major(self) -> Iterator[Cell]:
        return self._colors.keys()

    def cell_rect(self, row: int, col: int) -> Tuple[int, int, int, int]:
        """Return ``(x0, y0, x1, y1)`` with exclusive end coordinates."""

        x0 = col * self.cell_width
        y0 = row * self.cell_height
        return (
            x0,
            y0,
            min(x0 + self.cell_width, self.image_width),
            min(y0 + self.cell_height, self.image_height),
        )

    def cell_of_pixel(self, x: int, y: int) -> Cell:
        return y // self.cell_height, x // self.cell_width

    def colors(self, row: int, col: int) -> FrozenSet[int]:
        return self._colors[row, col]

    def set_colors(self, row: int, col: int, colors) -> None:
        self._colors[row, col] = frozenset(colors)

    def is_active(self, row: int, col: int) -> bool:
        return self._active[row, col]

    def set_active(self, row: int, col: int, active: bool) -> None:
        self._active[row, col] = active

    def active_cells(self) -> Iterator[Cell]:
        return (cell for cell in self.row_major() if self._active[cell])

    def all_colors(self) -> FrozenSet[int]:
        found: set[int] = set()
        for cell in self.active_cells():
            found |= self._colors[cell]
        return frozenset(found)

    def max_colors(self) -> int:
        return max((len(self._colors[cell]) for cell in self.active_cells()), default=0)

    def over_capacity_cells(self, limit: int) -> List[Cell]:
        return [cell for cell in self.active_cells() if len(self._colors[cell]) > limit]

    def fits_color_limit(self, limit: int) -> bool:
        return not self.over_capacity_cells(limit)

    def copy(self) -> "CellGrid":
        clone = CellGrid(
            self.image_width,
            self.image_height,
            self.cell_width,
            self.cell_height,
            self.background_color,
        )
        clone._colors = self._colors.copy()
        clone._active = self._active.copy()
        return clone

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CellGrid):
            return NotImplemented
        return (
            self.image_width == other.image_width
            and self.image_height == other.image_height
            and self.cell_width == other.cell_width
            and self.cell_height == other.cell_height
            and self._colors == other._colors
            and self._active == other._active
        )

    def __repr__(self) -> str:
        return (
            f"CellGrid({self.rows}x{self.cols} cells of "
            f"{self.cell_width}x{self.cell_height})"
        )

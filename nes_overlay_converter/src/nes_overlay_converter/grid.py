"""Indexed pixel buffers and small 2D tables."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Iterator, List, Sequence, Tuple, TypeVar

from PIL import Image

from .errors import ConversionError

Color = Tuple[int, int, int]
T = TypeVar("T")


@dataclass(frozen=True)
class PixelGrid:
    """Immutable ``width`` x ``height`` image of palette indices.

    ``palette`` keeps the RGB entries of the source image so derived images can
    be written back to PNG with the original colors.
    """

    width: int
    height: int
    pixels: bytes
    palette: Tuple[Color, ...] = ()

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ConversionError("Image dimensions must not be negative")
        if len(self.pixels) != self.width * self.height:
            raise ConversionError(
                f"Pixel buffer holds {len(self.pixels)} values, expected {self.width * self.height}"
            )

    @classmethod
    def blank(
        cls, width: int, height: int, color: int = 0, palette: Sequence[Color] = ()
    ) -> "PixelGrid":
        return cls(width, height, bytes([color]) * (width * height), tuple(palette))

    @classmethod
    def from_rows(
        cls, rows: Sequence[Sequence[int]], palette: Sequence[Color] = ()
    ) -> "PixelGrid":
        height = len(rows)
        width = len(rows[0]) if rows else 0
        buf = bytearray()
        for row in rows:
            if len(row) != width:
                raise ConversionError("All pixel rows must have the same length")
            buf.extend(row)
        return cls(width, height, bytes(buf), tuple(palette))

    @classmethod
    def from_pil(cls, image: Image.Image) -> "PixelGrid":
        """Wrap an indexed (mode ``P``) Pillow image."""

        if image.mode != "P":
            raise ConversionError(
                f"Input must be an indexed-color image (mode P), got mode {image.mode}"
            )
        raw = image.getpalette() or []
        palette = tuple(
            (raw[i], raw[i + 1], raw[i + 2]) for i in range(0, len(raw) - 2, 3)
        )
        return cls(image.width, image.height, image.tobytes(), palette)

    def to_pil(self) -> Image.Image:
        image = Image.frombytes("P", (self.width, self.height), self.pixels)
        if self.palette:
            flat: List[int] = []
            for r, g, b in self.palette:
                flat.extend((r, g, b))
            image.putpalette(flat)
        return image

    def save(self, path: str | Path) -> None:
        self.to_pil().save(Path(path))

    def pixel(self, x: int, y: int) -> int:
        return self.pixels[y * self.width + x]

    def row(self, y: int) -> bytes:
        start = y * self.width
        return self.pixels[start : start + self.width]

    def with_pixels(self, pixels: bytes | bytearray) -> "PixelGrid":
        """Return a new image of the same size and palette holding ``pixels``."""

        return PixelGrid(self.width, self.height, bytes(pixels), self.palette)

    def colors(self) -> set[int]:
        return set(self.pixels)


class Array2D(Generic[T]):
    """Row-major ``rows`` x ``cols`` table addressed as ``table[row, col]``."""

    def __init__(self, rows: int, cols: int, fill: T):
        if rows < 0 or cols < 0:
            raise ValueError("Array2D dimensions must not be negative")
        self.rows = rows
        self.cols = cols
        self._data: List[T] = [fill] * (rows * cols)

    def _offset(self, key: Tuple[int, int]) -> int:
        row, col = key
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(f"Cell ({row}, {col}) outside {self.rows}x{self.cols} table")
        return row * self.cols + col

    def __getitem__(self, key: Tuple[int, int]) -> T:
        return self._data[self._offset(key)]

    def __setitem__(self, key: Tuple[int, int], value: T) -> None:
        self._data[self._offset(key)] = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Array2D):
            return NotImplemented
        return (self.rows, self.cols, self._data) == (other.rows, other.cols, other._data)

    def __repr__(self) -> str:
        return f"Array2D({self.rows}x{self.cols})"

    def copy(self) -> "Array2D[T]":
        clone: Array2D[T] = Array2D(self.rows, self.cols, self._data[0] if self._data else None)  # type: ignore[arg-type]
        clone._data = list(self._data)
        return clone

    def keys(self) -> Iterator[Tuple[int, int]]:
        for row in range(self.rows):
            for col in range(self.cols):
                yield row, col

    def to_lists(self) -> List[List[T]]:
        return [self._data[r * self.cols : (r + 1) * self.cols] for r in range(self.rows)]

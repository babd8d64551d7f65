"""Indexed image to NES background + sprite overlay converter.

This package splits an indexed PNG into a palette-constrained background layer
and a set of 8-pixel-wide sprites, using an external CMPL solver for the
palette assignment. It can be invoked through the CLI (``python -m
nes_overlay_converter``) or imported to convert a single image.
"""

from .converter import (
    ConversionResult,
    ConversionState,
    ConvertOptions,
    OverlayOptimiser,
    consistent_layers,
    convert_image,
    convert_png,
)
from .errors import (
    ConversionError,
    InconsistentLayersError,
    SolutionParseError,
    SolverConfigurationError,
)
from .grid import Array2D, PixelGrid
from .layer import CellGrid
from .solver import CmplSolver, SolverConfig
from .sprites import Sprite

__all__ = [
    "Array2D",
    "CellGrid",
    "CmplSolver",
    "ConversionError",
    "ConversionResult",
    "ConversionState",
    "ConvertOptions",
    "InconsistentLayersError",
    "OverlayOptimiser",
    "PixelGrid",
    "SolutionParseError",
    "SolverConfig",
    "SolverConfigurationError",
    "Sprite",
    "consistent_layers",
    "convert_image",
    "convert_png",
]

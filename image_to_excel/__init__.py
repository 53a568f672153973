"""Image-to-Excel: render a raster image as a grid of colored worksheet cells."""

from .converter import ConversionAborted, ConversionResult, RowProcessor, convert_image
from .sizing import GridBounds, TargetSize, column_letters, compute_target_size

__all__ = [
    "ConversionAborted",
    "ConversionResult",
    "GridBounds",
    "RowProcessor",
    "TargetSize",
    "column_letters",
    "compute_target_size",
    "convert_image",
]

"""Core utilities -- re-exports all public symbols for convenience."""

from .errors import (
    ErrorKind,
    TextureError,
    InvalidDimensionsError,
    UnsupportedFormatError,
    DimensionMismatchError,
    IOFailureError,
    OutOfMemoryError,
    error_kind_for,
)
from .buffers import (
    ImageBuffer, ScalarField, NormalField,
    ClassificationField, MaterialClass,
)
from .io import (
    load_image,
    save_image,
    StagedWriter,
    ensure_rgb,
    luminance_bt709,
    to_uint8,
)
from .parallel import WorkerPool
from .tiling import pad_to_multiple, crop_from_padded, row_bands
from .paths import get_output_path, resolve_resource_path
from .logging import setup_logging

__all__ = [
    "ErrorKind", "TextureError", "InvalidDimensionsError",
    "UnsupportedFormatError", "DimensionMismatchError",
    "IOFailureError", "OutOfMemoryError", "error_kind_for",
    "ImageBuffer", "ScalarField", "NormalField",
    "ClassificationField", "MaterialClass",
    "load_image", "save_image", "StagedWriter",
    "ensure_rgb", "luminance_bt709", "to_uint8",
    "WorkerPool",
    "pad_to_multiple", "crop_from_padded", "row_bands",
    "get_output_path", "resolve_resource_path",
    "setup_logging",
]

"""Error taxonomy shared by every generation and packing stage."""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Enumerate the failure reasons surfaced by entry operations."""

    INVALID_DIMENSIONS = "InvalidDimensions"
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    DIMENSION_MISMATCH = "DimensionMismatch"
    IO_FAILURE = "IOFailure"
    OUT_OF_MEMORY = "OutOfMemory"


class TextureError(Exception):
    """Base class for texture generation failures."""

    kind: ErrorKind = None


class InvalidDimensionsError(TextureError, ValueError):
    """Raised for zero-sized, degenerate, or mismatched image dimensions."""

    kind = ErrorKind.INVALID_DIMENSIONS


class UnsupportedFormatError(TextureError, ValueError):
    """Raised when the image codec cannot parse an input."""

    kind = ErrorKind.UNSUPPORTED_FORMAT


class DimensionMismatchError(TextureError, ValueError):
    """Raised when pack inputs do not share the same width and height."""

    kind = ErrorKind.DIMENSION_MISMATCH


class IOFailureError(TextureError, OSError):
    """Raised when reading or writing an image fails."""

    kind = ErrorKind.IO_FAILURE


class OutOfMemoryError(TextureError, MemoryError):
    """Raised when an input is too large to process."""

    kind = ErrorKind.OUT_OF_MEMORY


def error_kind_for(exc: BaseException) -> Optional[ErrorKind]:
    """Map an exception to the error kind reported to callers.

    Returns ``None`` for exceptions outside the taxonomy.
    """
    if isinstance(exc, TextureError):
        return exc.kind
    if isinstance(exc, MemoryError):
        return ErrorKind.OUT_OF_MEMORY

    from PIL import UnidentifiedImageError

    # UnidentifiedImageError subclasses OSError, so it must be checked first.
    if isinstance(exc, UnidentifiedImageError):
        return ErrorKind.UNSUPPORTED_FORMAT
    if isinstance(exc, OSError):
        return ErrorKind.IO_FAILURE
    return None

"""Immutable pixel containers passed between pipeline stages.

Every stage receives read-only arrays and produces new ones; nothing is
mutated after construction, so the same buffer can be shared by worker
threads without locking.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Tuple

import numpy as np

from .errors import InvalidDimensionsError, UnsupportedFormatError


def _frozen_copy(arr: np.ndarray, dtype=None) -> np.ndarray:
    out = np.array(arr, dtype=dtype, copy=True, order="C")
    out.setflags(write=False)
    return out


def _require_positive(h: int, w: int, what: str):
    if h < 1 or w < 1:
        raise InvalidDimensionsError(
            f"{what} must be at least 1x1, got {w}x{h}"
        )


class MaterialClass(IntEnum):
    """Material categories inferred by the classifier."""

    DIFFUSE = 0
    METALLIC = 1
    WOOD = 2
    STONE = 3

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True, eq=False)
class ImageBuffer:
    """Decoded image with 1, 3, or 4 channels of uint8 or float data.

    ``pixels`` is stored as ``(H, W)`` for single-channel data and
    ``(H, W, C)`` otherwise. Float data is interpreted in [0, 1].
    """

    pixels: np.ndarray

    def __post_init__(self):
        arr = np.asarray(self.pixels)
        if arr.ndim == 3 and arr.shape[2] == 1:
            arr = arr[:, :, 0]
        if arr.ndim not in (2, 3) or (arr.ndim == 3 and arr.shape[2] not in (3, 4)):
            raise InvalidDimensionsError(
                f"Image buffer must be HxW, HxWx3 or HxWx4, got shape {arr.shape}"
            )
        _require_positive(arr.shape[0], arr.shape[1], "Image buffer")
        if arr.dtype == np.uint8:
            frozen = _frozen_copy(arr)
        elif np.issubdtype(arr.dtype, np.floating):
            frozen = _frozen_copy(arr, dtype=np.float32)
        else:
            raise UnsupportedFormatError(
                f"Image buffer must be uint8 or float, got {arr.dtype}"
            )
        object.__setattr__(self, "pixels", frozen)

    @classmethod
    def from_image(cls, img) -> "ImageBuffer":
        """Build a buffer from a Pillow image."""
        from .io import image_to_array

        return cls(image_to_array(img))

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def channels(self) -> int:
        return 1 if self.pixels.ndim == 2 else int(self.pixels.shape[2])

    @property
    def stride(self) -> int:
        """Elements per row."""
        return self.width * self.channels

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def as_float(self) -> np.ndarray:
        """Return pixels as float32 in [0, 1], preserving channel count."""
        if self.pixels.dtype == np.uint8:
            return self.pixels.astype(np.float32) / 255.0
        return np.clip(self.pixels, 0.0, 1.0).astype(np.float32)

    def rgb(self) -> np.ndarray:
        """Return an ``(H, W, 3)`` float32 view of the color channels."""
        from .io import ensure_rgb

        return np.ascontiguousarray(ensure_rgb(self.as_float()))

    def luminance(self) -> np.ndarray:
        """Return BT.709 luminance as ``(H, W)`` float32."""
        from .io import luminance_bt709

        if self.channels == 1:
            return self.as_float()
        return luminance_bt709(self.rgb())


@dataclass(frozen=True, eq=False)
class ScalarField:
    """Single-channel float32 grid clamped to [0, 1] (height, roughness)."""

    values: np.ndarray

    def __post_init__(self):
        arr = np.asarray(self.values)
        if arr.ndim != 2:
            raise InvalidDimensionsError(
                f"Scalar field must be 2-D, got shape {arr.shape}"
            )
        _require_positive(arr.shape[0], arr.shape[1], "Scalar field")
        arr = np.clip(np.nan_to_num(arr.astype(np.float32), nan=0.0), 0.0, 1.0)
        object.__setattr__(self, "values", _frozen_copy(arr))

    @property
    def height(self) -> int:
        return int(self.values.shape[0])

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def to_uint8(self) -> np.ndarray:
        return np.round(self.values * 255.0).astype(np.uint8)


@dataclass(frozen=True, eq=False)
class NormalField:
    """Tangent-space unit normals, ``(H, W, 3)`` float32 with z > 0."""

    vectors: np.ndarray

    def __post_init__(self):
        arr = np.asarray(self.vectors)
        if arr.ndim != 3 or arr.shape[2] != 3:
            raise InvalidDimensionsError(
                f"Normal field must be HxWx3, got shape {arr.shape}"
            )
        _require_positive(arr.shape[0], arr.shape[1], "Normal field")
        object.__setattr__(self, "vectors", _frozen_copy(arr, dtype=np.float32))

    @property
    def height(self) -> int:
        return int(self.vectors.shape[0])

    @property
    def width(self) -> int:
        return int(self.vectors.shape[1])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def encode(self) -> np.ndarray:
        """Encode to 8-bit per channel via ``(v + 1) / 2 * 255``."""
        encoded = np.round((self.vectors + 1.0) * 0.5 * 255.0)
        return np.clip(encoded, 0, 255).astype(np.uint8)

    @classmethod
    def from_encoded(cls, encoded: np.ndarray) -> "NormalField":
        vec = encoded[:, :, :3].astype(np.float32) / 255.0 * 2.0 - 1.0
        length = np.maximum(np.sqrt(np.sum(vec ** 2, axis=-1, keepdims=True)), 1e-8)
        return cls(vec / length)


@dataclass(frozen=True, eq=False)
class ClassificationField:
    """Per-pixel material labels with a [0, 1] confidence margin."""

    labels: np.ndarray
    confidence: np.ndarray

    def __post_init__(self):
        labels = np.asarray(self.labels)
        confidence = np.asarray(self.confidence)
        if labels.ndim != 2 or labels.shape != confidence.shape:
            raise InvalidDimensionsError(
                f"Classification labels {labels.shape} and confidence "
                f"{confidence.shape} must be matching 2-D grids"
            )
        _require_positive(labels.shape[0], labels.shape[1], "Classification field")
        object.__setattr__(self, "labels", _frozen_copy(labels, dtype=np.uint8))
        object.__setattr__(
            self, "confidence",
            _frozen_copy(np.clip(confidence, 0.0, 1.0), dtype=np.float32),
        )

    @property
    def height(self) -> int:
        return int(self.labels.shape[0])

    @property
    def width(self) -> int:
        return int(self.labels.shape[1])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def fraction(self, material: MaterialClass) -> float:
        return float(np.mean(self.labels == int(material)))

    def label_counts(self) -> Dict[MaterialClass, int]:
        counts = np.bincount(self.labels.ravel(), minlength=len(MaterialClass))
        return {m: int(counts[int(m)]) for m in MaterialClass}

    def dominant(self) -> Tuple[MaterialClass, float]:
        """Return the majority label and its mean confidence."""
        counts = self.label_counts()
        material = max(MaterialClass, key=lambda m: (counts[m], -int(m)))
        mask = self.labels == int(material)
        return material, float(np.mean(self.confidence[mask]))

"""Derive a height field from an albedo image.

The base layer comes from a self-guided filter (He et al.), which keeps
large structure without the halo artifacts of a bilateral filter. Per-scale
detail from a 3-level Laplacian pyramid is fused back in, local contrast is
normalized with tiled CLAHE, and a final unsharp pass restores crispness.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np
import cv2
from scipy.ndimage import gaussian_filter

from ..config import GeneratorConfig
from ..core import (
    ImageBuffer, ScalarField, WorkerPool, InvalidDimensionsError,
)

logger = logging.getLogger("photonic_ring.height")

GUIDED_RADIUS = 8
GUIDED_EPS = 0.01
PYRAMID_LEVELS = 3
PYRAMID_SIGMA = 1.0
# Finest band first; finer bands get less weight to avoid amplifying noise.
DETAIL_WEIGHTS = (0.35, 0.6, 0.85)
CLAHE_CLIP_LIMIT = 2.5
CLAHE_MAX_TILES = 8
CLAHE_MIN_TILE = 8
UNSHARP_SIGMA = 1.5
UNSHARP_AMOUNT = 1.2

# Box mean of box means reaches 2 * radius rows away.
_GUIDED_HALO = 2 * GUIDED_RADIUS + 1
_UNSHARP_HALO = int(4.0 * UNSHARP_SIGMA + 0.5) + 1


def _box_mean(arr: np.ndarray, radius: int) -> np.ndarray:
    ksize = (2 * radius + 1, 2 * radius + 1)
    return cv2.boxFilter(
        arr, cv2.CV_32F, ksize, normalize=True, borderType=cv2.BORDER_REPLICATE
    )


def guided_filter(guide: np.ndarray, src: np.ndarray,
                  radius: int = GUIDED_RADIUS, eps: float = GUIDED_EPS) -> np.ndarray:
    """Edge-preserving smoothing of ``src`` steered by ``guide``."""
    guide = np.ascontiguousarray(guide, dtype=np.float32)
    src = np.ascontiguousarray(src, dtype=np.float32)
    mean_i = _box_mean(guide, radius)
    mean_p = _box_mean(src, radius)
    corr_i = _box_mean(guide * guide, radius)
    corr_ip = _box_mean(guide * src, radius)

    var_i = corr_i - mean_i * mean_i
    cov_ip = corr_ip - mean_i * mean_p
    a = cov_ip / (var_i + eps)
    b = mean_p - a * mean_i
    return (_box_mean(a, radius) * guide + _box_mean(b, radius)).astype(np.float32)


def laplacian_pyramid(img: np.ndarray, levels: int = PYRAMID_LEVELS,
                      sigma: float = PYRAMID_SIGMA) -> Tuple[List[np.ndarray], np.ndarray]:
    """Decompose ``img`` into ``levels`` detail bands plus a residual.

    Bands are returned finest first, each at its own level's resolution.
    """
    details = []
    current = img.astype(np.float32, copy=False)
    for _ in range(levels):
        blurred = gaussian_filter(current, sigma=sigma, mode="nearest")
        down = np.ascontiguousarray(blurred[::2, ::2])
        up = cv2.resize(
            down, (current.shape[1], current.shape[0]), interpolation=cv2.INTER_LINEAR
        )
        details.append(current - up)
        current = down
    return details, current


def _clahe_tiles(size: int) -> int:
    return max(1, min(CLAHE_MAX_TILES, size // CLAHE_MIN_TILE))


def apply_clahe(field: np.ndarray) -> np.ndarray:
    """Tiled CLAHE on an 8-bit quantization of ``field``."""
    h, w = field.shape
    u8 = np.round(np.clip(field, 0.0, 1.0) * 255.0).astype(np.uint8)
    clahe = cv2.createCLAHE(
        clipLimit=CLAHE_CLIP_LIMIT,
        tileGridSize=(_clahe_tiles(w), _clahe_tiles(h)),
    )
    return clahe.apply(u8).astype(np.float32) / 255.0


def _unsharp(field: np.ndarray) -> np.ndarray:
    blurred = gaussian_filter(field, sigma=UNSHARP_SIGMA, mode="nearest")
    return field + UNSHARP_AMOUNT * (field - blurred)


class HeightMapGenerator:
    """Generate height fields from albedo buffers."""

    def __init__(self, config: Optional[GeneratorConfig] = None,
                 pool: Optional[WorkerPool] = None):
        self.config = config or GeneratorConfig()
        self.pool = pool or WorkerPool.from_config(self.config)

    def generate(self, albedo: ImageBuffer) -> ScalarField:
        if albedo.width < 2 or albedo.height < 2:
            raise InvalidDimensionsError(
                f"Height generation needs at least 2x2 pixels, got "
                f"{albedo.width}x{albedo.height}"
            )
        h, w = albedo.height, albedo.width
        lum = albedo.luminance()

        base = self.pool.map_bands(
            lambda band: guided_filter(band, band), [lum], halo=_GUIDED_HALO
        )

        details, _ = laplacian_pyramid(lum)
        fused = base.copy()
        for weight, band in zip(DETAIL_WEIGHTS, details):
            if band.shape != (h, w):
                band = cv2.resize(band, (w, h), interpolation=cv2.INTER_LINEAR)
            fused += weight * band

        equalized = apply_clahe(fused)
        sharpened = self.pool.map_bands(_unsharp, [equalized], halo=_UNSHARP_HALO)

        logger.debug(
            "Height field %dx%d: range [%.3f, %.3f]",
            w, h, float(sharpened.min()), float(sharpened.max()),
        )
        return ScalarField(np.clip(sharpened, 0.0, 1.0))


def generate_height(albedo: ImageBuffer, pool: Optional[WorkerPool] = None) -> ScalarField:
    """Derive a [0, 1] height field with the same size as ``albedo``."""
    return HeightMapGenerator(pool=pool).generate(albedo)

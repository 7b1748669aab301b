"""Generate tangent-space normal maps from height fields.

Gradients come from the Scharr operator. A Gaussian-weighted structure
tensor gives each pixel a principal direction and coherence; coherent
neighborhoods take the eigen-direction estimate, noisy ones fall back to
the smoothed gradient.
"""

import logging
from typing import Optional, Tuple

import numpy as np
import cv2
from scipy.ndimage import gaussian_filter

from ..config import GeneratorConfig
from ..core import NormalField, ScalarField, WorkerPool

logger = logging.getLogger("photonic_ring.normal")

SCHARR_NORMALIZATION = 16.0
TENSOR_SIGMA = 1.5
_HALO = 1 + int(4.0 * TENSOR_SIGMA + 0.5) + 1


def scharr_gradients(field: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Return (gx, gy) with clamp-to-edge borders."""
    # Copy: OpenCV may reject read-only views of frozen fields.
    src = np.array(field, dtype=np.float32, order="C")
    gx = cv2.Scharr(src, cv2.CV_32F, 1, 0, borderType=cv2.BORDER_REPLICATE)
    gy = cv2.Scharr(src, cv2.CV_32F, 0, 1, borderType=cv2.BORDER_REPLICATE)
    return gx / SCHARR_NORMALIZATION, gy / SCHARR_NORMALIZATION


def structure_tensor(gx: np.ndarray, gy: np.ndarray, sigma: float = TENSOR_SIGMA):
    """Gaussian-weighted tensor entries (Jxx, Jxy, Jyy)."""
    jxx = gaussian_filter(gx * gx, sigma=sigma, mode="nearest")
    jxy = gaussian_filter(gx * gy, sigma=sigma, mode="nearest")
    jyy = gaussian_filter(gy * gy, sigma=sigma, mode="nearest")
    return jxx, jxy, jyy


def tensor_eigen(jxx: np.ndarray, jxy: np.ndarray, jyy: np.ndarray):
    """Closed-form 2x2 eigen decomposition.

    Returns (lambda1, ex, ey, coherence) where (ex, ey) is the unit
    principal direction and coherence is ((l1 - l2) / (l1 + l2)) ** 2.
    """
    trace = jxx + jyy
    diff = jxx - jyy
    root = np.sqrt(diff * diff + 4.0 * jxy * jxy)
    lambda1 = np.maximum(0.5 * (trace + root), 0.0)
    theta = 0.5 * np.arctan2(2.0 * jxy, diff)
    safe_trace = np.where(trace > 1e-12, trace, 1.0)
    coherence = np.where(trace > 1e-12, (root / safe_trace) ** 2, 0.0)
    return lambda1, np.cos(theta), np.sin(theta), np.clip(coherence, 0.0, 1.0)


def stabilized_gradients(field: np.ndarray, sigma: float = TENSOR_SIGMA):
    """Blend eigen-smoothed and Gaussian-averaged gradients by coherence."""
    gx, gy = scharr_gradients(field)
    lambda1, ex, ey, coherence = tensor_eigen(*structure_tensor(gx, gy, sigma))
    mean_gx = gaussian_filter(gx, sigma=sigma, mode="nearest")
    mean_gy = gaussian_filter(gy, sigma=sigma, mode="nearest")

    # The eigenvector has no sign; orient it along the averaged gradient.
    sign = np.where(mean_gx * ex + mean_gy * ey < 0.0, -1.0, 1.0)
    magnitude = np.sqrt(lambda1)
    eig_gx = sign * magnitude * ex
    eig_gy = sign * magnitude * ey

    out_gx = coherence * eig_gx + (1.0 - coherence) * mean_gx
    out_gy = coherence * eig_gy + (1.0 - coherence) * mean_gy
    return out_gx.astype(np.float32), out_gy.astype(np.float32)


class NormalMapGenerator:
    """Generate normal fields from height fields."""

    def __init__(self, config: Optional[GeneratorConfig] = None,
                 pool: Optional[WorkerPool] = None):
        self.config = config or GeneratorConfig()
        self.cfg = self.config.normal
        self.pool = pool or WorkerPool.from_config(self.config)

    def _band(self, heights: np.ndarray) -> np.ndarray:
        gx, gy = stabilized_gradients(heights)
        k = float(self.cfg.strength)
        nx = -gx * k
        ny = gy * k if self.cfg.invert_y else -gy * k
        nz = np.ones_like(nx)
        length = np.maximum(np.sqrt(nx * nx + ny * ny + nz * nz), 1e-8)
        return np.stack([nx / length, ny / length, nz / length], axis=-1).astype(np.float32)

    def generate(self, height: ScalarField) -> NormalField:
        vectors = self.pool.map_bands(self._band, [height.values], halo=_HALO)
        logger.debug(
            "Normal field %dx%d (strength=%.2f, invert_y=%s)",
            height.width, height.height, self.cfg.strength, self.cfg.invert_y,
        )
        return NormalField(vectors)


def generate_normal(height: ScalarField, pool: Optional[WorkerPool] = None,
                    config: Optional[GeneratorConfig] = None) -> NormalField:
    """Derive unit normals with the same size as ``height``."""
    return NormalMapGenerator(config, pool=pool).generate(height)

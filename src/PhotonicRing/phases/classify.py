"""Per-pixel material classification feeding the roughness model.

Six windowed features (mean luminance, luminance spread, gradient density,
saturation, specular response, height curvature) plus gradient coherence
drive a fixed-threshold score per material. The highest score wins and the
margin over the runner-up becomes the confidence. Misclassification only
biases roughness weighting; it is never an error.
"""

import logging
from typing import Dict, Optional

import numpy as np
import cv2
from scipy.ndimage import gaussian_filter

from ..config import GeneratorConfig
from ..core import (
    ClassificationField, ImageBuffer, InvalidDimensionsError,
    MaterialClass, ScalarField, WorkerPool,
)
from .normal import scharr_gradients, structure_tensor, tensor_eigen

logger = logging.getLogger("photonic_ring.classify")

FEATURE_RADIUS = 4  # 9x9 feature window
COHERENCE_SIGMA = 2.0
ISOLATION_SIGMA = 4.0

DIFFUSE_PRIOR = 0.3
SPREAD_SCALE = 0.15
HIGHLIGHT_FLOOR = 0.6
HIGHLIGHT_RANGE = 0.3
ISOLATION_GAIN = 6.0
SPECULAR_SCALE = 0.08
GRADIENT_SCALE = 0.04
CURVATURE_SCALE = 0.05
STONE_SPREAD_CEIL = 0.2
DARK_LUMINANCE = 0.2

METALLIC_SATURATION_GATE = 0.25
WOOD_SPREAD_GATE = 0.04
WOOD_COHERENCE_GATE = 0.3
STONE_COHERENCE_GATE = 0.5
STONE_GRADIENT_GATE = 0.02

_HALO = int(4.0 * ISOLATION_SIGMA + 0.5) + FEATURE_RADIUS + 4


def _window_mean(arr: np.ndarray) -> np.ndarray:
    k = 2 * FEATURE_RADIUS + 1
    return cv2.boxFilter(
        np.ascontiguousarray(arr, dtype=np.float32), cv2.CV_32F, (k, k),
        normalize=True, borderType=cv2.BORDER_REPLICATE,
    )


def saturation(rgb: np.ndarray) -> np.ndarray:
    """HSV saturation, (max - min) / max with black mapped to 0."""
    cmax = rgb.max(axis=-1)
    cmin = rgb.min(axis=-1)
    safe = np.where(cmax > 1e-6, cmax, 1.0)
    return np.where(cmax > 1e-6, (cmax - cmin) / safe, 0.0).astype(np.float32)


def extract_features(lum: np.ndarray, sat: np.ndarray,
                     height: np.ndarray) -> Dict[str, np.ndarray]:
    """Compute windowed classification features for one band."""
    mean_lum = _window_mean(lum)
    spread = np.sqrt(np.maximum(_window_mean(lum * lum) - mean_lum * mean_lum, 0.0))

    gx, gy = scharr_gradients(lum)
    gradient = _window_mean(np.sqrt(gx * gx + gy * gy))
    _, _, _, coherence = tensor_eigen(*structure_tensor(gx, gy, COHERENCE_SIGMA))

    mean_sat = _window_mean(sat)

    highlight = np.clip((lum - HIGHLIGHT_FLOOR) / HIGHLIGHT_RANGE, 0.0, 1.0)
    surround = gaussian_filter(lum, sigma=ISOLATION_SIGMA, mode="nearest")
    isolation = np.clip(ISOLATION_GAIN * (lum - surround), 0.0, 1.0)
    specular = _window_mean(highlight * (1.0 - sat) * isolation)

    laplacian = cv2.Laplacian(
        np.array(height, dtype=np.float32, order="C"), cv2.CV_32F,
        ksize=1, borderType=cv2.BORDER_REPLICATE,
    )
    curvature = _window_mean(np.abs(laplacian))

    return {
        "mean_luminance": mean_lum,
        "spread": spread,
        "gradient": gradient,
        "coherence": coherence.astype(np.float32),
        "saturation": mean_sat,
        "specular": specular,
        "curvature": curvature,
    }


def score_materials(features: Dict[str, np.ndarray]) -> np.ndarray:
    """Return a (4, H, W) score stack indexed by :class:`MaterialClass`."""
    spread_n = np.clip(features["spread"] / SPREAD_SCALE, 0.0, 1.0)
    coherence = features["coherence"]
    sat = features["saturation"]
    gradient_n = np.clip(features["gradient"] / GRADIENT_SCALE, 0.0, 1.0)
    curvature_n = np.clip(features["curvature"] / CURVATURE_SCALE, 0.0, 1.0)
    specular_n = np.clip(features["specular"] / SPECULAR_SCALE, 0.0, 1.0)

    scores = np.empty((len(MaterialClass),) + spread_n.shape, dtype=np.float32)
    scores[MaterialClass.DIFFUSE] = DIFFUSE_PRIOR

    # Dark regions cannot show a specular lobe.
    lit = np.clip(features["mean_luminance"] / DARK_LUMINANCE, 0.0, 1.0)
    metallic = (1.0 - sat) * specular_n * lit
    scores[MaterialClass.METALLIC] = np.where(
        sat < METALLIC_SATURATION_GATE, metallic, 0.0
    )

    wood = spread_n * coherence
    scores[MaterialClass.WOOD] = np.where(
        (features["spread"] >= WOOD_SPREAD_GATE) & (coherence >= WOOD_COHERENCE_GATE),
        wood, 0.0,
    )

    stone = (
        (1.0 - np.clip(features["spread"] / STONE_SPREAD_CEIL, 0.0, 1.0))
        * gradient_n
        * (1.0 - coherence)
        * (0.8 + 0.2 * curvature_n)
    )
    scores[MaterialClass.STONE] = np.where(
        (coherence < STONE_COHERENCE_GATE) & (features["gradient"] >= STONE_GRADIENT_GATE),
        stone, 0.0,
    )
    return scores


def decide(scores: np.ndarray):
    """Pick the top label per pixel; confidence is the top-two margin."""
    # argmax keeps the lowest index on ties, so Diffuse wins a tie.
    labels = np.argmax(scores, axis=0).astype(np.uint8)
    ordered = np.sort(scores, axis=0)
    confidence = np.clip(ordered[-1] - ordered[-2], 0.0, 1.0).astype(np.float32)
    return labels, confidence


class MaterialClassifier:
    """Classify albedo pixels into Diffuse, Metallic, Wood, or Stone."""

    def __init__(self, config: Optional[GeneratorConfig] = None,
                 pool: Optional[WorkerPool] = None):
        self.config = config or GeneratorConfig()
        self.pool = pool or WorkerPool.from_config(self.config)

    @staticmethod
    def _band(lum, sat, height):
        return decide(score_materials(extract_features(lum, sat, height)))

    def classify(self, albedo: ImageBuffer, height: ScalarField) -> ClassificationField:
        if albedo.size != height.size:
            raise InvalidDimensionsError(
                f"Albedo {albedo.width}x{albedo.height} and height "
                f"{height.width}x{height.height} must match"
            )
        rgb = albedo.rgb()
        lum = albedo.luminance()
        sat = saturation(rgb)
        labels, confidence = self.pool.map_bands(
            self._band, [lum, sat, height.values], halo=_HALO
        )
        field = ClassificationField(labels, confidence)
        if logger.isEnabledFor(logging.DEBUG):
            counts = field.label_counts()
            logger.debug(
                "Classification %dx%d: %s",
                albedo.width, albedo.height,
                ", ".join(f"{m.label}={counts[m]}" for m in MaterialClass),
            )
        return field


def classify(albedo: ImageBuffer, height: ScalarField,
             pool: Optional[WorkerPool] = None) -> ClassificationField:
    """Infer per-pixel material labels with [0, 1] confidence."""
    return MaterialClassifier(pool=pool).classify(albedo, height)

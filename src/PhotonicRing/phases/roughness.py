"""Synthesize perceptual roughness from albedo statistics and material labels."""

import logging
from typing import Optional

import numpy as np
import cv2
from scipy.ndimage import gaussian_filter

from ..config import GeneratorConfig
from ..core import (
    ClassificationField, ImageBuffer, InvalidDimensionsError,
    MaterialClass, ScalarField, WorkerPool,
)
from .classify import saturation

logger = logging.getLogger("photonic_ring.roughness")

MATERIAL_BASELINES = {
    MaterialClass.DIFFUSE: 0.5,
    MaterialClass.METALLIC: 0.25,
    MaterialClass.WOOD: 0.65,
    MaterialClass.STONE: 0.7,
}

VARIANCE_WEIGHT = 0.4
DETAIL_WEIGHT = 0.3
METALLIC_WEIGHT = 0.3
ROUGHNESS_SPREAD = 1.5

VARIANCE_RADIUS = 3
VARIANCE_SCALE = 0.15
DETAIL_SIGMAS = (1.0, 3.0)
DETAIL_SCALE = 0.1
SMOOTHING_SIGMA = 1.0

_TERM_HALO = int(4.0 * DETAIL_SIGMAS[1] + 0.5) + 1
_SMOOTH_HALO = int(4.0 * SMOOTHING_SIGMA + 0.5) + 1

# (weight, sign, material whose confidence strengthens the term)
_TERMS = (
    (VARIANCE_WEIGHT, 1.0, MaterialClass.STONE),
    (DETAIL_WEIGHT, 1.0, MaterialClass.WOOD),
    (METALLIC_WEIGHT, -1.0, MaterialClass.METALLIC),
)


def _variance_term(lum: np.ndarray) -> np.ndarray:
    k = 2 * VARIANCE_RADIUS + 1
    src = np.ascontiguousarray(lum, dtype=np.float32)
    mean = cv2.boxFilter(src, cv2.CV_32F, (k, k), borderType=cv2.BORDER_REPLICATE)
    mean_sq = cv2.boxFilter(src * src, cv2.CV_32F, (k, k), borderType=cv2.BORDER_REPLICATE)
    std = np.sqrt(np.maximum(mean_sq - mean * mean, 0.0))
    return np.clip(std / VARIANCE_SCALE, 0.0, 1.0)


def _detail_term(lum: np.ndarray) -> np.ndarray:
    fine = gaussian_filter(lum, sigma=DETAIL_SIGMAS[0], mode="nearest")
    coarse = gaussian_filter(lum, sigma=DETAIL_SIGMAS[1], mode="nearest")
    return np.clip(np.abs(fine - coarse) / DETAIL_SCALE, 0.0, 1.0)


def _metallic_term(sat: np.ndarray) -> np.ndarray:
    # Desaturated albedo reads as metal; metal pushes roughness down.
    return 1.0 - sat


def _terms_band(lum: np.ndarray, sat: np.ndarray):
    return (
        _variance_term(lum).astype(np.float32),
        _detail_term(lum).astype(np.float32),
        _metallic_term(sat).astype(np.float32),
    )


def _smooth_band(field: np.ndarray) -> np.ndarray:
    return gaussian_filter(field, sigma=SMOOTHING_SIGMA, mode="nearest")


class RoughnessMapGenerator:
    """Generate roughness fields from albedo and classification."""

    def __init__(self, config: Optional[GeneratorConfig] = None,
                 pool: Optional[WorkerPool] = None):
        self.config = config or GeneratorConfig()
        self.pool = pool or WorkerPool.from_config(self.config)

    def generate(self, albedo: ImageBuffer,
                 classification: ClassificationField) -> ScalarField:
        if albedo.size != classification.size:
            raise InvalidDimensionsError(
                f"Albedo {albedo.width}x{albedo.height} and classification "
                f"{classification.width}x{classification.height} must match"
            )
        lum = albedo.luminance()
        sat = saturation(albedo.rgb())
        terms = self.pool.map_bands(_terms_band, [lum, sat], halo=_TERM_HALO)

        labels = classification.labels
        confidence = classification.confidence
        baselines = np.zeros(len(MaterialClass), dtype=np.float32)
        for material, value in MATERIAL_BASELINES.items():
            baselines[int(material)] = value
        roughness = baselines[labels]

        for term, (weight, sign, material) in zip(terms, _TERMS):
            modulation = np.where(labels == int(material), 1.0 + confidence, 1.0)
            centered = term - np.float32(term.mean())
            roughness = roughness + ROUGHNESS_SPREAD * sign * weight * modulation * centered

        smoothed = self.pool.map_bands(
            _smooth_band, [roughness.astype(np.float32)], halo=_SMOOTH_HALO
        )
        logger.debug(
            "Roughness field %dx%d: mean %.3f",
            albedo.width, albedo.height, float(smoothed.mean()),
        )
        return ScalarField(np.clip(smoothed, 0.0, 1.0))


def generate_roughness(albedo: ImageBuffer, classification: ClassificationField,
                       pool: Optional[WorkerPool] = None) -> ScalarField:
    """Derive a [0, 1] roughness field with the same size as ``albedo``."""
    return RoughnessMapGenerator(pool=pool).generate(albedo, classification)

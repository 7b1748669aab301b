"""Padding and partition helpers for block and band processing."""

from typing import List, Tuple
import logging

import numpy as np

logger = logging.getLogger("photonic_ring.tiling")


def pad_to_multiple(arr: np.ndarray, multiple: int = 4) -> Tuple[np.ndarray, dict]:
    """Pad bottom/right edges so both dimensions are multiples of ``multiple``.

    Added pixels replicate the nearest edge pixel (``np.pad`` edge mode), so
    block encoders never see undefined data.

    Returns (padded_image, padding_info) where padding_info stores the
    logical and padded sizes for cropping later.
    """
    if multiple < 1:
        raise ValueError(f"multiple must be >= 1, got {multiple}")
    h, w = arr.shape[:2]
    pad_h = (-h) % multiple
    pad_w = (-w) % multiple

    if pad_h or pad_w:
        if arr.ndim == 3:
            padded = np.pad(arr, ((0, pad_h), (0, pad_w), (0, 0)), mode="edge")
        else:
            padded = np.pad(arr, ((0, pad_h), (0, pad_w)), mode="edge")
        logger.debug("Padded %dx%d -> %dx%d", w, h, w + pad_w, h + pad_h)
    else:
        padded = arr

    info = {
        "original_h": h,
        "original_w": w,
        "pad_h": pad_h,
        "pad_w": pad_w,
        "padded_h": padded.shape[0],
        "padded_w": padded.shape[1],
    }
    return padded, info


def crop_from_padded(arr: np.ndarray, pad_info: dict) -> np.ndarray:
    """Drop the padding added by :func:`pad_to_multiple`."""
    # .copy() so the caller does not keep the padded buffer alive.
    return arr[:pad_info["original_h"], :pad_info["original_w"]].copy()


def row_bands(height: int, band_rows: int) -> List[Tuple[int, int]]:
    """Split ``height`` rows into ``[start, stop)`` bands of ``band_rows``.

    The layout depends only on the two arguments, never on worker count.
    """
    if band_rows < 1:
        raise ValueError(f"band_rows must be >= 1, got {band_rows}")
    return [(y, min(y + band_rows, height)) for y in range(0, height, band_rows)]

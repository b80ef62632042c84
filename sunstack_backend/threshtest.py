"""Visual check of the object detection threshold."""

from __future__ import annotations

import logging

import numpy as np

from sunstack_backend.image_processing import normalize_to_bit_depth

logger = logging.getLogger(__name__)


def compute_threshtest_image(frame: np.ndarray, threshold: float) -> np.ndarray:
    """
    Single-band 8-bit image of a (bands, H, W) frame: pixels whose band
    average exceeds the threshold are saturated, the rest show band 0.
    Returns (1, H, W) uint8.
    """
    logger.info("Checking threshold value %s across %dx%d frame", threshold, frame.shape[2], frame.shape[1])
    avg = frame.mean(axis=0)
    out = np.where(avg > threshold, 65535.0, frame[0]).astype(np.float32)
    return normalize_to_bit_depth(out[None, :, :], 8)


def compute_rgb_threshtest_image(frame: np.ndarray, threshold: float, pixel_depth: int = 16) -> np.ndarray:
    """
    Three-band image that saturates every band value >= threshold.

    A mono frame saturates only the red band, so the detected area shows
    red over the grey frame. Values keep the input scale (float32).
    """
    max_val = 255.0 if pixel_depth == 8 else 65535.0
    data = np.asarray(frame, dtype=np.float32)
    if data.shape[0] == 1:
        v = data[0]
        return np.stack([np.where(v >= threshold, max_val, v), v, v], axis=0).astype(np.float32)
    return np.where(data[:3] >= threshold, max_val, data[:3]).astype(np.float32)

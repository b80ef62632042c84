"""Local sharpness estimate used to rank frames."""

from __future__ import annotations

import numpy as np

DEFAULT_WINDOW_SIZE = 128


def extract_window(band: np.ndarray, center_x: float, center_y: float, window_size: int) -> np.ndarray:
    """Square window of a 2D band around (center_x, center_y), shifted to stay inside the band."""
    h, w = band.shape
    size_x = min(int(window_size), w)
    size_y = min(int(window_size), h)
    x0 = int(round(center_x)) - size_x // 2
    y0 = int(round(center_y)) - size_y // 2
    x0 = min(max(x0, 0), w - size_x)
    y0 = min(max(y0, 0), h - size_y)
    return band[y0:y0 + size_y, x0:x0 + size_x]


def estimate_quality(window: np.ndarray) -> float:
    """
    Sharpness of a 2D window: the standard deviation of the Laplacian of the
    max-normalized, lightly blurred window, times 100.

    Higher is sharper. A flat or empty window scores 0.
    """
    import cv2

    data = np.asarray(window, dtype=np.float32)
    if data.size == 0:
        return 0.0
    peak = float(np.max(data))
    if peak <= 0 or not np.isfinite(peak):
        return 0.0

    norm = data / peak
    blurred = cv2.GaussianBlur(norm, (3, 3), 0)
    lap = cv2.Laplacian(blurred, cv2.CV_32F)
    return float(np.std(lap)) * 100.0


def get_point_quality(band: np.ndarray, window_size: int, center_x: float, center_y: float) -> float:
    return estimate_quality(extract_window(band, center_x, center_y, window_size))

"""
Sensor defect handling.

A hot pixel map is a YAML (or JSON) document:

    sensor_width: 1936
    sensor_height: 1216
    hotpixels:
      - [10, 20]
      - [1500, 977]

It is rasterized once per run into a boolean mask; flagged pixels are
replaced by the mean of their unflagged neighbors.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from sunstack_backend.errors import ResourceError
from sunstack_backend.image_processing import inpaint_masked

logger = logging.getLogger(__name__)


@dataclass
class HotPixelMap:
    sensor_width: int
    sensor_height: int
    hotpixels: list[Any] = field(default_factory=list)


def load_hotpixel_map(file_path: str | Path) -> HotPixelMap:
    p = Path(file_path).expanduser()
    if not p.is_file():
        raise ResourceError(f"File not found: {p}")

    try:
        doc = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ResourceError(f"Unable to parse hot pixel map {p}", original_error=e)

    if not isinstance(doc, dict):
        raise ResourceError(f"Hot pixel map must be a mapping: {p}")
    try:
        width = int(doc["sensor_width"])
        height = int(doc["sensor_height"])
    except (KeyError, TypeError, ValueError) as e:
        raise ResourceError(f"Hot pixel map requires sensor_width and sensor_height: {p}", original_error=e)

    hotpixels = doc.get("hotpixels") or []
    if not isinstance(hotpixels, list):
        raise ResourceError(f"Hot pixel map 'hotpixels' must be a list: {p}")

    return HotPixelMap(sensor_width=width, sensor_height=height, hotpixels=hotpixels)


def create_hotpixel_mask(hpm: HotPixelMap) -> np.ndarray:
    """Rasterize the defect list into a (sensor_height, sensor_width) bool mask."""
    mask = np.zeros((hpm.sensor_height, hpm.sensor_width), dtype=bool)

    for xy in hpm.hotpixels:
        if not isinstance(xy, (list, tuple)) or len(xy) != 2:
            logger.warning("Invalid pixel location: %r", xy)
            continue
        try:
            x, y = int(xy[0]), int(xy[1])
        except (TypeError, ValueError):
            logger.warning("Invalid pixel location: %r", xy)
            continue
        if not (0 <= x < hpm.sensor_width and 0 <= y < hpm.sensor_height):
            logger.warning("Pixel location outside sensor: %r", xy)
            continue
        logger.debug("Hot pixel: x = %d, y = %d", x, y)
        mask[y, x] = True

    return mask


def replace_hot_pixels(image: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Return a copy of a (bands, H, W) image with every masked pixel inpainted."""
    if image.shape[1:] != mask.shape:
        raise ResourceError(
            f"Hot pixel mask {mask.shape[::-1]} does not match image {image.shape[:0:-1]}"
        )
    return np.stack([inpaint_masked(band, mask) for band in image], axis=0)

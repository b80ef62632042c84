"""
Memory checks before memory-hungry stages.

Median stacking keeps one float32 sample per frame, band and output pixel;
the runner compares that estimate with the memory psutil reports as
available and warns before starting.
"""

import logging
from typing import Any, Dict

import psutil

logger = logging.getLogger(__name__)

DEFAULT_MAX_FRACTION = 0.8


def estimate_median_stack_bytes(num_frames: int, num_bands: int, out_width: int, out_height: int) -> int:
    return int(num_frames) * int(num_bands) * int(out_width) * int(out_height) * 4


def check_median_memory(
    num_frames: int,
    num_bands: int,
    out_width: int,
    out_height: int,
    max_fraction: float = DEFAULT_MAX_FRACTION,
) -> Dict[str, Any]:
    """
    Compare the median sample store with available memory.

    Returns a status dict; ``ok`` is False (and a warning is logged) when the
    estimate exceeds max_fraction of the available memory.
    """
    required = estimate_median_stack_bytes(num_frames, num_bands, out_width, out_height)
    available = int(psutil.virtual_memory().available)
    limit = int(available * float(max_fraction))
    ok = required <= limit

    status = {
        "ok": ok,
        "required_gb": required / (1024**3),
        "available_gb": available / (1024**3),
        "max_fraction": float(max_fraction),
    }
    if not ok:
        logger.warning(
            f"Median stacking of {num_frames} frames needs ~{status['required_gb']:.2f} GB, "
            f"more than {max_fraction:.0%} of the {status['available_gb']:.2f} GB available"
        )
    else:
        logger.info(f"Median stacking memory estimate: {status['required_gb']:.2f} GB")
    return status

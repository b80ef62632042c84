from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import numpy as np

from sunstack_backend.datasource import FrameSource
from sunstack_backend.errors import ConfigError, EmptyResultError, ResourceError
from sunstack_backend.image_io import read_image
from sunstack_backend.parallel import contiguous_chunks, parallel_map, worker_count
from sunstack_backend.ser import SerFile

logger = logging.getLogger(__name__)

CONTAINER_EXTENSIONS = {".ser"}


class ComputeMethod(Enum):
    MEAN = "mean"
    MEDIAN = "median"

    @classmethod
    def from_string(cls, s: str) -> "ComputeMethod":
        try:
            return cls(str(s).strip().lower())
        except ValueError:
            raise ConfigError(f"Invalid calibration method: '{s}'. Valid options: mean, median")


@dataclass(frozen=True, eq=False)
class CalibrationImage:
    """A master reference frame, or an empty placeholder meaning 'no correction'."""
    image: np.ndarray | None = None

    @classmethod
    def new_empty(cls) -> "CalibrationImage":
        return cls(image=None)

    @property
    def is_empty(self) -> bool:
        return self.image is None

    @classmethod
    def build(cls, path: str | Path | None, method: ComputeMethod = ComputeMethod.MEAN) -> "CalibrationImage":
        """Build a master from a still image or by reducing every frame of a container."""
        if path is None:
            return cls.new_empty()

        p = Path(path).expanduser()
        if not p.suffix:
            raise ResourceError(f"Unable to determine file type: {p}")
        if not p.is_file():
            raise ResourceError(f"Calibration input not found: {p}")

        logger.info("Building %s calibration master from %s", method.value, p)
        if p.suffix.lower() in CONTAINER_EXTENSIONS:
            source = SerFile.open([str(p)])
            try:
                source.validate()
                if method is ComputeMethod.MEDIAN:
                    return cls(image=compute_median(source))
                return cls(image=compute_mean(source))
            finally:
                source.close()

        try:
            return cls(image=read_image(p))
        except (OSError, RuntimeError, ValueError) as e:
            raise ResourceError(f"Unable to read calibration image {p}", original_error=e)


def _sum_frames(source: FrameSource, indices) -> tuple[np.ndarray | None, int]:
    acc: np.ndarray | None = None
    n = 0
    for i in indices:
        frame = source.get_frame(i).buffer
        if acc is None:
            acc = np.zeros_like(frame, dtype=np.float64)
        acc += frame
        n += 1
    return acc, n


def compute_mean(source: FrameSource, max_workers: int | None = None) -> np.ndarray:
    """Streaming mean of every frame in a source."""
    indices = list(range(source.frame_count))
    chunk_size = max(1, len(indices) // worker_count(max_workers))
    partials = parallel_map(
        lambda chunk: _sum_frames(source, chunk),
        contiguous_chunks(indices, chunk_size),
        max_workers=max_workers,
    )

    acc: np.ndarray | None = None
    count = 0
    for part, n in partials:
        if part is None:
            continue
        acc = part if acc is None else acc + part
        count += n

    if acc is None or count == 0:
        raise EmptyResultError(f"No frames used for mean of {source.source_file}")

    mean = (acc / float(count)).astype(np.float32)
    logger.info(
        "    Stack Min/Max : %s, %s (%d images)",
        float(mean.min()), float(mean.max()), count,
    )
    return mean


def compute_median(source: FrameSource) -> np.ndarray:
    """Exact per-pixel median of every frame in a source.

    Holds all frames in memory; intended for small calibration captures.
    For an even number of frames the upper of the two middle samples is taken.
    """
    if source.frame_count == 0:
        raise EmptyResultError(f"No frames used for median of {source.source_file}")

    samples = np.stack([source.get_frame(i).buffer for i in range(source.frame_count)], axis=0)
    samples.sort(axis=0)
    return samples[samples.shape[0] // 2].astype(np.float32)


def calibrate(
    frame: np.ndarray,
    flat: CalibrationImage,
    dark: CalibrationImage,
    darkflat: CalibrationImage,
    bias: CalibrationImage,
    denom_eps: float = 1e-6,
) -> np.ndarray:
    """Apply master frames to a (bands, H, W) frame. Returns a new array."""
    cal = frame.astype("float32", copy=True)

    if not bias.is_empty:
        cal -= bias.image
    if not dark.is_empty:
        cal -= dark.image

    if not flat.is_empty:
        flat_arr = flat.image.astype("float32", copy=True)
        if not darkflat.is_empty:
            flat_arr -= darkflat.image
        elif not bias.is_empty:
            flat_arr -= bias.image

        mean = float(np.mean(flat_arr))
        if np.isfinite(mean) and mean != 0.0:
            flat_arr /= mean
        denom = np.where(np.abs(flat_arr) < float(denom_eps), 1.0, flat_arr)
        cal /= denom

    return cal.astype("float32", copy=False)


def check_geometry(name: str, calibration: CalibrationImage, bands: int, height: int, width: int) -> None:
    """Raise ResourceError when a master cannot be applied to frames of the given shape."""
    if calibration.is_empty:
        return
    _, h, w = calibration.image.shape
    cb = calibration.image.shape[0]
    if (h, w) != (height, width) or cb not in (1, bands):
        raise ResourceError(
            f"Master {name} geometry {calibration.image.shape} does not match frames "
            f"({bands}, {height}, {width})"
        )

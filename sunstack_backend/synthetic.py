"""
Synthetic SER containers.

Used by the test-suite and the ``make-synthetic`` CLI command to produce
captures with known header fields and pixel values.
"""

from __future__ import annotations

import struct
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from sunstack_backend.datasource import ColorFormatId

DEFAULT_FILE_ID = "LUCAM-RECORDER"


def _fixed_string(s: str, size: int) -> bytes:
    return s.encode("latin-1")[:size].ljust(size, b"\x00")


def build_ser_header(
    width: int,
    height: int,
    frame_count: int,
    bit_depth: int = 16,
    color_id: ColorFormatId | int = ColorFormatId.MONO,
    big_endian: bool = False,
    camera_series_id: int = 0,
    observer: str = "",
    instrument: str = "",
    telescope: str = "",
    date_time: int = 0,
    date_time_utc: int = 0,
    file_id: str = DEFAULT_FILE_ID,
) -> bytes:
    bo = ">" if big_endian else "<"
    color_value = color_id.value if isinstance(color_id, ColorFormatId) else int(color_id)
    header = b"".join([
        _fixed_string(file_id, 14),
        struct.pack(bo + "iii", camera_series_id, color_value, 1 if big_endian else 0),
        struct.pack(bo + "iiii", width, height, bit_depth, frame_count),
        _fixed_string(observer, 40),
        _fixed_string(instrument, 40),
        _fixed_string(telescope, 40),
        struct.pack(bo + "QQ", date_time, date_time_utc),
    ])
    return header


def write_ser_file(
    path: str | Path,
    frames: Sequence[np.ndarray],
    bit_depth: int = 16,
    color_id: ColorFormatId | int = ColorFormatId.MONO,
    timestamps: Optional[Sequence[int]] = None,
    big_endian: bool = False,
    declared_frame_count: Optional[int] = None,
    **header_fields,
) -> Path:
    """Write 2D frames (all the same shape) as a SER container.

    ``timestamps`` (in .NET ticks, one per frame) are appended as the trailer.
    ``declared_frame_count`` overrides the header frame count, to produce
    inconsistent files.
    """
    if not frames:
        raise ValueError("at least one frame is required")
    height, width = frames[0].shape
    if bit_depth not in (8, 16):
        raise ValueError(f"unsupported bit depth: {bit_depth}")

    count = len(frames) if declared_frame_count is None else int(declared_frame_count)
    header = build_ser_header(
        width, height, count,
        bit_depth=bit_depth,
        color_id=color_id,
        big_endian=big_endian,
        **header_fields,
    )

    if bit_depth == 8:
        dtype = np.dtype(np.uint8)
    else:
        dtype = np.dtype(">u2" if big_endian else "<u2")
    max_val = 255 if bit_depth == 8 else 65535

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with p.open("wb") as f:
        f.write(header)
        for frame in frames:
            if frame.shape != (height, width):
                raise ValueError(f"frame shape {frame.shape} differs from {(height, width)}")
            f.write(np.clip(np.rint(frame), 0, max_val).astype(dtype).tobytes())
        if timestamps is not None:
            if len(timestamps) != len(frames):
                raise ValueError("one timestamp per frame is required")
            f.write(np.asarray(timestamps, dtype="<u8").tobytes())
    return p


def uniform_frames(width: int, height: int, values: Sequence[float]) -> List[np.ndarray]:
    """One constant frame per value."""
    return [np.full((height, width), v, dtype=np.float64) for v in values]


def disk_frames(
    width: int,
    height: int,
    count: int,
    radius: float,
    level: float = 30000.0,
    background: float = 500.0,
    jitter: float = 0.0,
    noise: float = 0.0,
    seed: int = 0,
) -> List[np.ndarray]:
    """Bright disk on a dark background, randomly displaced by up to jitter pixels per frame."""
    rng = np.random.default_rng(seed)
    yy, xx = np.mgrid[0:height, 0:width]
    frames = []
    for _ in range(count):
        cx = width / 2.0 + rng.uniform(-jitter, jitter)
        cy = height / 2.0 + rng.uniform(-jitter, jitter)
        frame = np.where((xx - cx) ** 2 + (yy - cy) ** 2 <= radius ** 2, level, background).astype(np.float64)
        if noise > 0:
            frame = frame + rng.normal(0.0, noise, size=frame.shape)
        frames.append(np.clip(frame, 0, None))
    return frames

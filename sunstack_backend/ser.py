"""
SER container reader.

Layout: a fixed 178 byte header, frame_count raw frames of
width * height * bytes_per_pixel bytes each (row-major), then an optional
trailer of frame_count 8-byte time stamps.
"""

from __future__ import annotations

import hashlib
import logging
import os
import struct
from pathlib import Path
from typing import Any

import numpy as np

from sunstack_backend.datasource import ColorFormatId, DataFrame, FrameSource
from sunstack_backend.errors import (
    HeaderError,
    IndexOutOfRangeError,
    ResourceError,
    SizeMismatchError,
    TruncatedReadError,
    UnsupportedFormatError,
)
from sunstack_backend.image_processing import demosaic_cfa
from sunstack_backend.timestamp import ticks_to_iso

logger = logging.getLogger(__name__)

HEADER_SIZE_BYTES = 178
TIMESTAMP_SIZE_BYTES = 8
ENDIANNESS_OFFSET = 22

# Field offsets after the endianness flag (26..41) are all int32.
_HEADER_INTS = "iiii"


def _read_string(raw: bytes) -> str:
    return raw.split(b"\x00", 1)[0].decode("latin-1").strip()


def _compute_file_sha256(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def read_endianness(header: bytes) -> str:
    """Return the struct byte-order prefix declared by the header.

    The flag is read little-endian first; a value that only makes sense when
    read big-endian is accepted as such. 0 means little-endian, 1 big-endian.
    """
    for prefix in ("<", ">"):
        (flag,) = struct.unpack_from(prefix + "i", header, ENDIANNESS_OFFSET)
        if flag == 0:
            return "<"
        if flag == 1:
            return ">"
    raise HeaderError(
        f"Invalid endianness flag at offset {ENDIANNESS_OFFSET}: "
        f"{header[ENDIANNESS_OFFSET:ENDIANNESS_OFFSET + 4]!r}"
    )


class SerFile(FrameSource):
    def __init__(self, path: Path, header: bytes, total_size: int):
        self._path = path
        self.total_size = total_size

        self.byte_order = read_endianness(header)
        bo = self.byte_order

        self.file_id = _read_string(header[0:14])
        (self.camera_series_id,) = struct.unpack_from(bo + "i", header, 14)
        (color_value,) = struct.unpack_from(bo + "i", header, 18)
        self._color_id = ColorFormatId.from_int(color_value)
        width, height, depth, count = struct.unpack_from(bo + _HEADER_INTS, header, 26)
        self.observer = _read_string(header[42:82])
        self.instrument = _read_string(header[82:122])
        self.telescope = _read_string(header[122:162])
        self.date_time, self.date_time_utc_ticks = struct.unpack_from(bo + "QQ", header, 162)

        if width <= 0 or height <= 0:
            raise HeaderError(f"Invalid frame geometry: {width}x{height}")
        if count < 0:
            raise HeaderError(f"Invalid frame count: {count}")
        if depth not in (8, 16):
            raise UnsupportedFormatError(f"Encountered unsupported pixel depth: {depth}")

        self._width = width
        self._height = height
        self._depth = depth
        self._count = count
        self._hash: str | None = None
        self._mm: np.memmap | None = None

    @classmethod
    def open(cls, paths: list[str] | str) -> "SerFile":
        if isinstance(paths, (str, os.PathLike)):
            paths = [paths]
        if len(paths) != 1:
            raise ResourceError("Only one ser file supported at this time")
        path = Path(paths[0]).expanduser()
        if not path.is_file():
            raise ResourceError(f"File not found: {path}")

        total_size = path.stat().st_size
        with path.open("rb") as f:
            header = f.read(HEADER_SIZE_BYTES)
        if len(header) < HEADER_SIZE_BYTES:
            raise HeaderError(
                f"File too small for SER header: {len(header)} < {HEADER_SIZE_BYTES} bytes ({path})"
            )

        ser = cls(path, header, total_size)
        logger.debug("Opened SER file %s: %s", path, ser.header_details())
        return ser

    @property
    def color_id(self) -> ColorFormatId:
        return self._color_id

    @property
    def image_width(self) -> int:
        return self._width

    @property
    def image_height(self) -> int:
        return self._height

    @property
    def pixel_depth(self) -> int:
        return self._depth

    @property
    def frame_count(self) -> int:
        return self._count

    @property
    def source_file(self) -> str:
        return str(self._path)

    @property
    def date_time_utc(self) -> int:
        return self.date_time_utc_ticks

    @property
    def bytes_per_pixel(self) -> int:
        return self._depth // 8

    def image_frame_size_bytes(self) -> int:
        return self._width * self._height * self.bytes_per_pixel

    def image_frame_start_index(self, frame_num: int) -> int:
        return HEADER_SIZE_BYTES + self.image_frame_size_bytes() * frame_num

    def timestamp_block_start_index(self) -> int:
        return HEADER_SIZE_BYTES + self.image_frame_size_bytes() * self._count

    def timestamp_start_index(self, frame_num: int) -> int:
        return self.timestamp_block_start_index() + frame_num * TIMESTAMP_SIZE_BYTES

    def has_timestamps(self) -> bool:
        return self.total_size > self.timestamp_block_start_index()

    def expected_size(self) -> int:
        has_ts = 1 if self.has_timestamps() else 0
        return (
            HEADER_SIZE_BYTES
            + self.image_frame_size_bytes() * self._count
            + TIMESTAMP_SIZE_BYTES * self._count * has_ts
        )

    def validate(self) -> None:
        expected = self.expected_size()
        if self.total_size != expected:
            raise SizeMismatchError(self.total_size, expected)

    def file_hash(self) -> str:
        if self._hash is None:
            self._hash = _compute_file_sha256(self._path)
        return self._hash

    def _bytes(self) -> np.memmap:
        if self._mm is None:
            self._mm = np.memmap(self._path, dtype=np.uint8, mode="r")
        return self._mm

    def _read(self, start: int, length: int) -> np.ndarray:
        end = start + length
        if end > self.total_size:
            raise TruncatedReadError(
                f"Read of {length} bytes at {start} exceeds file size {self.total_size} ({self._path})"
            )
        return self._bytes()[start:end]

    def get_frame_timestamp(self, index: int) -> int:
        if index < 0 or index >= self._count:
            raise IndexOutOfRangeError(index, self._count)
        if not self.has_timestamps():
            return 0
        raw = self._read(self.timestamp_start_index(index), TIMESTAMP_SIZE_BYTES)
        return int(np.frombuffer(raw, dtype="<u8")[0])

    def get_raw_frame(self, index: int) -> np.ndarray:
        """Undecoded sensor values (height, width) as native uint8/uint16."""
        if index < 0 or index >= self._count:
            raise IndexOutOfRangeError(index, self._count)

        size = self.image_frame_size_bytes()
        start = self.image_frame_start_index(index)
        logger.debug(
            "Extracting image frame #%d of %d from %s. Size %d at byte index %d",
            index, self._count, self._path, size, start,
        )
        raw = self._read(start, size)
        dtype = np.dtype(np.uint8) if self._depth == 8 else np.dtype(self.byte_order + "u2")
        values = np.frombuffer(raw, dtype=dtype).reshape(self._height, self._width)
        return values.astype(dtype.newbyteorder("="))

    def get_frame(self, index: int) -> DataFrame:
        raw = self.get_raw_frame(index)
        timestamp = self.get_frame_timestamp(index)

        if self._color_id is ColorFormatId.MONO:
            buffer = raw.astype(np.float32)[np.newaxis, :, :]
        elif self._color_id.bayer_pattern is not None:
            buffer = demosaic_cfa(raw, self._color_id.bayer_pattern)
        else:
            raise UnsupportedFormatError(f"Unsupported color mode: {self._color_id.name}")

        return DataFrame(buffer=buffer, timestamp=timestamp)

    def header_details(self) -> dict[str, Any]:
        return {
            "source_file": self.source_file,
            "file_id": self.file_id,
            "camera_series_id": self.camera_series_id,
            "color_id": self._color_id.name,
            "byte_order": "little" if self.byte_order == "<" else "big",
            "image_width": self._width,
            "image_height": self._height,
            "pixel_depth": self._depth,
            "frame_count": self._count,
            "observer": self.observer,
            "instrument": self.instrument,
            "telescope": self.telescope,
            "date_time": ticks_to_iso(self.date_time),
            "date_time_utc": ticks_to_iso(self.date_time_utc_ticks),
            "total_size": self.total_size,
            "expected_size": self.expected_size(),
            "bytes_per_frame": self.image_frame_size_bytes(),
            "has_timestamps": self.has_timestamps(),
        }

    def close(self) -> None:
        self._mm = None

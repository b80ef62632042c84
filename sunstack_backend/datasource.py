"""
Frame source capability shared by every container format.

The pipeline only talks to FrameSource, so analysis and stacking code stay
independent of the on-disk format. SerFile is the production implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

import numpy as np

from sunstack_backend.errors import HeaderError


class ColorFormatId(Enum):
    MONO = 0
    BAYER_RGGB = 8
    BAYER_GRBG = 9
    BAYER_GBRG = 10
    BAYER_BGGR = 11
    BAYER_CYYM = 16
    BAYER_YCMY = 17
    BAYER_YMCY = 18
    BAYER_MYYC = 19
    RGB = 100
    BGR = 101

    @classmethod
    def from_int(cls, value: int) -> "ColorFormatId":
        try:
            return cls(int(value))
        except ValueError:
            raise HeaderError(f"Invalid color format enum value: {value}")

    @property
    def bayer_pattern(self) -> str | None:
        """Bayer pattern name for the RGB Bayer family, None otherwise."""
        if self.name.startswith("BAYER_") and self.value <= 11:
            return self.name[len("BAYER_"):]
        return None

    @property
    def num_bands(self) -> int:
        return 1 if self is ColorFormatId.MONO else 3


@dataclass
class DataFrame:
    """One decoded frame: float32 pixels shaped (bands, height, width)."""
    buffer: np.ndarray
    timestamp: int

    @property
    def num_bands(self) -> int:
        return int(self.buffer.shape[0])

    @property
    def width(self) -> int:
        return int(self.buffer.shape[2])

    @property
    def height(self) -> int:
        return int(self.buffer.shape[1])


class FrameSource(ABC):
    """An opened multi-frame container."""

    @classmethod
    @abstractmethod
    def open(cls, paths: list[str]) -> "FrameSource":
        ...

    @property
    @abstractmethod
    def color_id(self) -> ColorFormatId:
        ...

    @property
    @abstractmethod
    def image_width(self) -> int:
        ...

    @property
    @abstractmethod
    def image_height(self) -> int:
        ...

    @property
    @abstractmethod
    def pixel_depth(self) -> int:
        ...

    @property
    @abstractmethod
    def frame_count(self) -> int:
        ...

    @property
    @abstractmethod
    def source_file(self) -> str:
        ...

    @abstractmethod
    def file_hash(self) -> str:
        ...

    @abstractmethod
    def validate(self) -> None:
        ...

    @abstractmethod
    def get_frame(self, index: int) -> DataFrame:
        ...

    @abstractmethod
    def get_frame_timestamp(self, index: int) -> int:
        ...

    @abstractmethod
    def header_details(self) -> dict[str, Any]:
        ...

    @property
    def num_bands(self) -> int:
        return self.color_id.num_bands

    @property
    def date_time_utc(self) -> int:
        return 0

    def close(self) -> None:
        pass

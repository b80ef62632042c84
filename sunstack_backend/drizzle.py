"""
Drizzle resampling and the per-pixel accumulation buffers.

Buffers are sized to the output (upscaled) grid and store data as
(bands, height, width). A frame contributes a full output-sized layer
plus a mask of the pixels it actually writes; buffers of the same kind
and size can be merged, which is what the chunked parallel path relies on.
"""

from __future__ import annotations

import logging
import math
import warnings
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np

from sunstack_backend.errors import NoFramesAddedError
from sunstack_backend.framerecord import Offset
from sunstack_backend.parameters import DrizzleScale, StackAlgorithm

logger = logging.getLogger(__name__)


class StackBuffer(ABC):
    supports_parallel_merge = True

    def __init__(self, width: int, height: int, num_bands: int):
        self.width = int(width)
        self.height = int(height)
        self.num_bands = int(num_bands)

    @property
    def shape(self) -> tuple:
        return (self.num_bands, self.height, self.width)

    @abstractmethod
    def put(self, values: np.ndarray, mask: np.ndarray, valid: Optional[np.ndarray] = None) -> None:
        """Accumulate values (bands, H, W) at every pixel where mask (H, W) is set.

        valid (H, W) marks samples that came from inside the input frame;
        None means every masked sample did.
        """

    @abstractmethod
    def merge(self, other: "StackBuffer") -> None:
        """Fold another buffer of the same kind and shape into this one."""

    @abstractmethod
    def get_finalized(self) -> np.ndarray:
        """Return the combined float32 image (bands, H, W)."""

    def _check_compatible(self, other: "StackBuffer") -> None:
        if type(other) is not type(self) or other.shape != self.shape:
            raise ValueError(
                f"Cannot merge {type(other).__name__}{other.shape} into {type(self).__name__}{self.shape}"
            )


class AverageStackBuffer(StackBuffer):
    def __init__(self, width: int, height: int, num_bands: int):
        super().__init__(width, height, num_bands)
        self.sum = np.zeros(self.shape, dtype=np.float64)
        self.divisor = np.zeros((self.height, self.width), dtype=np.int64)

    def put(self, values: np.ndarray, mask: np.ndarray, valid: Optional[np.ndarray] = None) -> None:
        self.sum[:, mask] += values[:, mask]
        self.divisor[mask] += 1

    def merge(self, other: "StackBuffer") -> None:
        self._check_compatible(other)
        self.sum += other.sum
        self.divisor += other.divisor

    def get_finalized(self) -> np.ndarray:
        # Pixels nothing was written to stay 0
        out = np.zeros(self.shape, dtype=np.float64)
        np.divide(self.sum, self.divisor[None, :, :], out=out, where=self.divisor[None, :, :] > 0)
        return out.astype(np.float32)


class MinimumStackBuffer(StackBuffer):
    """Running per-pixel minimum over in-frame samples; pixels never given one finalize to 0."""

    def __init__(self, width: int, height: int, num_bands: int):
        super().__init__(width, height, num_bands)
        self.minimum = np.full(self.shape, np.inf, dtype=np.float32)

    def put(self, values: np.ndarray, mask: np.ndarray, valid: Optional[np.ndarray] = None) -> None:
        use = mask if valid is None else mask & valid
        use = use[None, :, :]
        np.minimum(self.minimum, np.where(use, values, np.inf), out=self.minimum)

    def merge(self, other: "StackBuffer") -> None:
        self._check_compatible(other)
        np.minimum(self.minimum, other.minimum, out=self.minimum)

    def get_finalized(self) -> np.ndarray:
        return np.where(np.isinf(self.minimum), 0.0, self.minimum).astype(np.float32)


class MedianStackBuffer(StackBuffer):
    """Keeps every contributed sample; memory grows with the number of frames."""

    supports_parallel_merge = False

    def __init__(self, width: int, height: int, num_bands: int):
        super().__init__(width, height, num_bands)
        self.layers: List[np.ndarray] = []

    def put(self, values: np.ndarray, mask: np.ndarray, valid: Optional[np.ndarray] = None) -> None:
        self.layers.append(np.where(mask[None, :, :], values, np.nan).astype(np.float32))

    def merge(self, other: "StackBuffer") -> None:
        self._check_compatible(other)
        self.layers.extend(other.layers)

    def get_finalized(self) -> np.ndarray:
        if not self.layers:
            return np.zeros(self.shape, dtype=np.float32)
        samples = np.stack(self.layers, axis=0)
        with warnings.catch_warnings():
            # All-NaN pixels (never written) finalize to 0
            warnings.simplefilter("ignore", category=RuntimeWarning)
            med = np.nanmedian(samples, axis=0)
        return np.nan_to_num(med, nan=0.0).astype(np.float32)


def make_stack_buffer(algorithm: StackAlgorithm, width: int, height: int, num_bands: int) -> StackBuffer:
    buffers = {
        StackAlgorithm.AVERAGE: AverageStackBuffer,
        StackAlgorithm.MEDIAN: MedianStackBuffer,
        StackAlgorithm.MINIMUM: MinimumStackBuffer,
    }
    return buffers[algorithm](width, height, num_bands)


def bilinear_sample(band: np.ndarray, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Sample a 2D band at fractional coordinates.

    Returns (values, valid). A coordinate is valid when 0 <= x <= w-1 and
    0 <= y <= h-1; invalid coordinates sample as 0.
    """
    h, w = band.shape
    valid = (x >= 0) & (x <= w - 1) & (y >= 0) & (y <= h - 1)

    xc = np.clip(x, 0, w - 1)
    yc = np.clip(y, 0, h - 1)
    x0 = np.floor(xc).astype(np.intp)
    y0 = np.floor(yc).astype(np.intp)
    x1 = np.minimum(x0 + 1, w - 1)
    y1 = np.minimum(y0 + 1, h - 1)
    fx = (xc - x0).astype(np.float32)
    fy = (yc - y0).astype(np.float32)

    top = band[y0, x0] * (1 - fx) + band[y0, x1] * fx
    bottom = band[y1, x0] * (1 - fx) + band[y1, x1] * fx
    values = top * (1 - fy) + bottom * fy
    return np.where(valid, values, 0.0).astype(np.float32), valid


def _shift_slices(n: int, d: int) -> tuple[slice, slice]:
    """(source, destination) slices moving an axis of length n by d pixels."""
    if abs(d) >= n:
        return slice(0, 0), slice(0, 0)
    if d >= 0:
        return slice(0, n - d), slice(d, n)
    return slice(-d, n), slice(0, n + d)


class BilinearDrizzle:
    def __init__(
        self,
        in_width: int,
        in_height: int,
        scale: DrizzleScale,
        horiz_offset: int,
        vert_offset: int,
        buffer: StackBuffer,
    ):
        self.in_width = int(in_width)
        self.in_height = int(in_height)
        self.scale = scale
        self.out_width = scale.scaled(self.in_width)
        self.out_height = scale.scaled(self.in_height)
        self.horiz_offset = int(horiz_offset)
        self.vert_offset = int(vert_offset)
        if (buffer.width, buffer.height) != (self.out_width, self.out_height):
            raise ValueError(
                f"Stack buffer {buffer.width}x{buffer.height} does not match drizzle output "
                f"{self.out_width}x{self.out_height}"
            )
        self.buffer = buffer
        self.frame_add_count = 0

        # Output pixel -> input coordinate by linear scale
        ox = np.arange(self.out_width, dtype=np.float64)
        oy = np.arange(self.out_height, dtype=np.float64)
        self._in_x = np.round(ox / self.out_width * self.in_width, 5)
        self._in_y = np.round(oy / self.out_height * self.in_height, 5)

    @classmethod
    def create(
        cls,
        in_width: int,
        in_height: int,
        scale: DrizzleScale,
        horiz_offset: int,
        vert_offset: int,
        algorithm: StackAlgorithm,
        num_bands: int,
    ) -> "BilinearDrizzle":
        buffer = make_stack_buffer(algorithm, scale.scaled(in_width), scale.scaled(in_height), num_bands)
        return cls(in_width, in_height, scale, horiz_offset, vert_offset, buffer)

    @property
    def supports_parallel_merge(self) -> bool:
        return self.buffer.supports_parallel_merge

    def add_with_transform(self, image: np.ndarray, offset: Offset, rotation: float) -> None:
        """
        Resample one (bands, H, W) frame onto the output grid and accumulate it.

        Each output pixel maps back to the input grid, is rotated by
        ``rotation`` radians about the input center and moved by -offset.
        The result lands at the output pixel moved by the global shift;
        pixels shifted off the grid are dropped.
        """
        bands, h, w = image.shape
        if (w, h) != (self.in_width, self.in_height):
            raise ValueError(f"Frame {w}x{h} does not match drizzle input {self.in_width}x{self.in_height}")
        logger.debug(
            "Adding drizzle frame of offset (%.3f, %.3f) and rotation %.4f deg",
            offset.x, offset.y, math.degrees(rotation),
        )

        cx = float(w // 2)
        cy = float(h // 2)
        gx, gy = np.meshgrid(self._in_x - cx, self._in_y - cy)
        cos_r = math.cos(rotation)
        sin_r = math.sin(rotation)
        src_x = gx * cos_r - gy * sin_r + cx - offset.x
        src_y = gx * sin_r + gy * cos_r + cy - offset.y

        sampled = np.zeros((self.buffer.num_bands, self.out_height, self.out_width), dtype=np.float32)
        in_frame = None
        for b in range(min(bands, self.buffer.num_bands)):
            sampled[b], in_frame = bilinear_sample(image[b], src_x, src_y)
        if bands == 1 and self.buffer.num_bands > 1:
            sampled[1:] = sampled[0]

        values = np.zeros_like(sampled)
        mask = np.zeros((self.out_height, self.out_width), dtype=bool)
        valid = np.zeros_like(mask)
        sx, dx = _shift_slices(self.out_width, self.horiz_offset)
        sy, dy = _shift_slices(self.out_height, self.vert_offset)
        values[:, dy, dx] = sampled[:, sy, sx]
        mask[dy, dx] = True
        valid[dy, dx] = in_frame[sy, sx]

        self.buffer.put(values, mask, valid)
        self.frame_add_count += 1

    def merge(self, other: "BilinearDrizzle") -> None:
        if (other.out_width, other.out_height) != (self.out_width, self.out_height):
            raise ValueError("Buffer dimensions are different. Cannot merge")
        self.buffer.merge(other.buffer)
        self.frame_add_count += other.frame_add_count

    def get_finalized(self) -> np.ndarray:
        if self.frame_add_count == 0:
            raise NoFramesAddedError()
        return self.buffer.get_finalized()

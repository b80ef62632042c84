from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from sunstack_backend.calibration import calibrate
from sunstack_backend.datasource import DataFrame
from sunstack_backend.hotpixel import replace_hot_pixels

if TYPE_CHECKING:
    from sunstack_backend.context import ProcessContext


@dataclass(frozen=True)
class Offset:
    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: "Offset") -> "Offset":
        return Offset(self.x + other.x, self.y + other.y)


@dataclass(frozen=True)
class FrameRecord:
    """
    One frame selected for processing.

    Identity is (source_id, frame_index); source_id is the content hash of the
    owning source in the context's registry. sigma, computed_rotation (radians)
    and offset are each filled by exactly one analysis stage; stages return
    updated copies via ``with_*`` and never mutate a record.
    """
    source_id: str
    frame_index: int
    frame_width: int
    frame_height: int
    sigma: float = 0.0
    computed_rotation: float = 0.0
    offset: Offset = field(default_factory=Offset)

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_id, self.frame_index)

    def with_sigma(self, sigma: float) -> "FrameRecord":
        return replace(self, sigma=float(sigma))

    def with_rotation(self, radians: float) -> "FrameRecord":
        return replace(self, computed_rotation=float(radians))

    def with_offset(self, offset: Offset) -> "FrameRecord":
        return replace(self, offset=offset)

    def get_frame(self, context: "ProcessContext") -> DataFrame:
        return context.get_source(self.source_id).get_frame(self.frame_index)

    def get_calibrated_frame(self, context: "ProcessContext") -> DataFrame:
        """Frame with master calibration applied, then hot pixels patched."""
        frame = self.get_frame(context)
        buffer = calibrate(
            frame.buffer,
            context.master_flat,
            context.master_dark,
            context.master_darkflat,
            context.master_bias,
        )
        if context.hotpixel_mask is not None:
            buffer = replace_hot_pixels(buffer, context.hotpixel_mask)
        return DataFrame(buffer=buffer, timestamp=frame.timestamp)

    def get_timestamp(self, context: "ProcessContext") -> int:
        """Capture time in .NET ticks, falling back to the container's start time."""
        source = context.get_source(self.source_id)
        ticks = source.get_frame_timestamp(self.frame_index)
        if ticks == 0:
            ticks = source.date_time_utc
        return ticks

from __future__ import annotations

import logging
import math
from typing import List

from sunstack_backend.context import ProcessContext
from sunstack_backend.errors import ConfigError
from sunstack_backend.framerecord import FrameRecord
from sunstack_backend.parallel import parallel_map
from sunstack_backend.progress import ProgressCallback, no_progress
from sunstack_backend.target import Target

logger = logging.getLogger(__name__)


def frame_rotation_analysis(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
) -> List[FrameRecord]:
    """Set each record's de-rotation: radians(initial_rotation - parallactic angle)."""
    params = context.parameters

    def _rotate(fr: FrameRecord) -> FrameRecord:
        if params.target is Target.NONE:
            q = 0.0
        else:
            ticks = fr.get_timestamp(context)
            if ticks == 0:
                raise ConfigError(
                    f"Frame {fr.frame_index} of {fr.source_id[:12]} has no timestamp; "
                    f"cannot compute {params.target.value} position"
                )
            q = params.target.position_from_lat_lon_and_time(
                params.obs_latitude, params.obs_longitude, ticks
            ).rotation
        rotated = fr.with_rotation(math.radians(params.initial_rotation - q))
        on_frame_checked(rotated)
        return rotated

    records = parallel_map(_rotate, context.frame_records, max_workers=params.workers)
    if records:
        logger.info(
            "Rotation analysis: %d frames, first=%.4f deg last=%.4f deg",
            len(records),
            math.degrees(records[0].computed_rotation),
            math.degrees(records[-1].computed_rotation),
        )
    return records

from __future__ import annotations

import logging
import math
from typing import List, Optional

from sunstack_backend.context import ProcessContext
from sunstack_backend.errors import EmptyResultError
from sunstack_backend.framerecord import FrameRecord
from sunstack_backend.progress import ProgressCallback, no_progress

logger = logging.getLogger(__name__)


def round_half_away(x: float) -> int:
    return int(math.floor(x + 0.5)) if x >= 0 else -int(math.floor(-x + 0.5))


def limit_records(
    records: List[FrameRecord],
    min_sigma: Optional[float] = None,
    max_sigma: Optional[float] = None,
    top_percentage: Optional[float] = None,
    max_frames: Optional[int] = None,
    on_frame_checked: ProgressCallback = no_progress,
) -> List[FrameRecord]:
    """
    Select the frames to stack.

    1. keep records with min_sigma <= sigma <= max_sigma (a missing bound is open)
    2. sort by sigma, best first
    3. keep the top top_percentage percent, rounded half away from zero
    4. cap at max_frames

    Raises EmptyResultError when nothing survives.
    """
    kept = []
    for fr in records:
        ok = (min_sigma is None or fr.sigma >= min_sigma) and (max_sigma is None or fr.sigma <= max_sigma)
        on_frame_checked(fr)
        if ok:
            kept.append(fr)

    # Stable sort keeps capture order among equal sigmas
    kept.sort(key=lambda fr: fr.sigma, reverse=True)

    if top_percentage is not None:
        kept = kept[:round_half_away(top_percentage / 100.0 * len(kept))]

    if max_frames is not None and max_frames <= len(kept):
        kept = kept[:max_frames]

    if not kept:
        raise EmptyResultError(
            f"Frame limiting discarded all {len(records)} frames "
            f"(min_sigma={min_sigma}, max_sigma={max_sigma}, top_percentage={top_percentage})"
        )

    logger.info("Frame limiting: kept %d of %d frames", len(kept), len(records))
    return kept


def frame_limit_determinate(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
) -> List[FrameRecord]:
    params = context.parameters
    return limit_records(
        context.frame_records,
        min_sigma=params.min_sigma,
        max_sigma=params.max_sigma,
        top_percentage=params.top_percentage,
        max_frames=params.max_frames,
        on_frame_checked=on_frame_checked,
    )

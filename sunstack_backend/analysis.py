from __future__ import annotations

import logging
from typing import List

from sunstack_backend.context import ProcessContext
from sunstack_backend.framerecord import FrameRecord
from sunstack_backend.parallel import parallel_map
from sunstack_backend.progress import ProgressCallback, no_progress
from sunstack_backend.quality import DEFAULT_WINDOW_SIZE, get_point_quality

logger = logging.getLogger(__name__)


def frame_sigma_analysis(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
    window_size: int = DEFAULT_WINDOW_SIZE,
) -> List[FrameRecord]:
    """Score every record's sharpness around the target position.

    The window is centered on frame_center - offset, i.e. on the target when
    an offset stage has already run and on the frame center otherwise. Only
    band 0 is measured (red for demosaiced frames).
    """

    def _score(fr: FrameRecord) -> FrameRecord:
        frame = fr.get_frame(context)
        x = frame.width / 2.0 - fr.offset.x
        y = frame.height / 2.0 - fr.offset.y
        sigma = get_point_quality(frame.buffer[0], window_size, x, y)
        scored = fr.with_sigma(sigma)
        on_frame_checked(scored)
        return scored

    records = parallel_map(_score, context.frame_records, max_workers=context.parameters.workers)
    if records:
        sigmas = [r.sigma for r in records]
        logger.info(
            "Sigma analysis: %d frames, min=%.4f max=%.4f",
            len(records), min(sigmas), max(sigmas),
        )
    return records

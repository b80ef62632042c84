from __future__ import annotations

import logging
from typing import List

import numpy as np

from sunstack_backend.context import ProcessContext
from sunstack_backend.framerecord import FrameRecord, Offset
from sunstack_backend.parallel import parallel_map
from sunstack_backend.progress import ProgressCallback, no_progress

logger = logging.getLogger(__name__)


def center_of_mass_offset(band: np.ndarray, threshold: float) -> Offset:
    """Displacement from the band's center to the centroid of pixels >= threshold.

    Returns a zero offset when no pixel reaches the threshold.
    """
    mask = np.asarray(band) >= threshold
    if not np.any(mask):
        return Offset(0.0, 0.0)

    ys, xs = np.nonzero(mask)
    h, w = mask.shape
    com_x = float(xs.mean())
    com_y = float(ys.mean())
    return Offset(w / 2.0 - com_x, h / 2.0 - com_y)


def frame_offset_analysis(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
) -> List[FrameRecord]:
    params = context.parameters
    shift = Offset(float(params.horizontal_offset), float(params.vertical_offset))

    def _offset(fr: FrameRecord) -> FrameRecord:
        frame = fr.get_calibrated_frame(context)
        offset = center_of_mass_offset(frame.buffer[0], params.detection_threshold) + shift
        moved = fr.with_offset(offset)
        on_frame_checked(moved)
        return moved

    records = parallel_map(_offset, context.frame_records, max_workers=params.workers)
    logger.info("Offset analysis: %d frames", len(records))
    return records

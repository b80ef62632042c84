from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from sunstack_backend.context import ProcessContext
from sunstack_backend.drizzle import BilinearDrizzle
from sunstack_backend.errors import EmptyResultError
from sunstack_backend.framerecord import FrameRecord
from sunstack_backend.image_processing import center_crop, normalize_to_bit_depth
from sunstack_backend.limiting import round_half_away
from sunstack_backend.parallel import contiguous_chunks, parallel_map, worker_count
from sunstack_backend.parameters import PipelineParameters
from sunstack_backend.progress import ProgressCallback, no_progress

logger = logging.getLogger(__name__)


def _new_drizzle(context: ProcessContext) -> BilinearDrizzle:
    params = context.parameters
    first = context.frame_records[0]
    num_bands = context.get_source(first.source_id).num_bands
    return BilinearDrizzle.create(
        first.frame_width,
        first.frame_height,
        params.drizzle_scale,
        params.horizontal_offset,
        params.vertical_offset,
        params.algorithm,
        num_bands,
    )


def _add_records(
    drizzle: BilinearDrizzle,
    context: ProcessContext,
    records: Sequence[FrameRecord],
    on_frame_checked: ProgressCallback,
) -> BilinearDrizzle:
    for fr in records:
        frame = fr.get_calibrated_frame(context)
        drizzle.add_with_transform(frame.buffer, fr.offset, fr.computed_rotation)
        on_frame_checked(fr)
    return drizzle


def process_frame_stacking(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
) -> np.ndarray:
    """Drizzle every record onto the output grid and return the finalized (bands, H, W) image."""
    if not context.frame_records:
        raise EmptyResultError("No frames to stack")

    if context.parameters.algorithm.allow_parallel:
        return process_frame_stacking_parallel(context, on_frame_checked)
    return process_frame_stacking_linear(context, on_frame_checked)


def process_frame_stacking_parallel(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
) -> np.ndarray:
    """One drizzle per contiguous chunk of records, merged in chunk order."""
    if not context.frame_records:
        raise EmptyResultError("No frames to stack")

    records = context.frame_records
    workers = worker_count(context.parameters.workers)
    chunks = contiguous_chunks(records, max(1, len(records) // workers))
    logger.info(
        "Stacking %d frames (%s, %s) in %d chunks",
        len(records), context.parameters.algorithm.value, context.parameters.drizzle_scale.factor, len(chunks),
    )

    sub_drizzles = parallel_map(
        lambda chunk: _add_records(_new_drizzle(context), context, chunk, on_frame_checked),
        chunks,
        max_workers=context.parameters.workers,
    )

    master = _new_drizzle(context)
    for d in sub_drizzles:
        master.merge(d)
    return master.get_finalized()


def process_frame_stacking_linear(
    context: ProcessContext,
    on_frame_checked: ProgressCallback = no_progress,
) -> np.ndarray:
    if not context.frame_records:
        raise EmptyResultError("No frames to stack")

    logger.info(
        "Stacking %d frames (%s, %s) linearly",
        len(context.frame_records), context.parameters.algorithm.value, context.parameters.drizzle_scale.factor,
    )
    master = _add_records(_new_drizzle(context), context, context.frame_records, on_frame_checked)
    return master.get_finalized()


def finalize_output(stacked: np.ndarray, params: PipelineParameters) -> np.ndarray:
    """Crop a stacked image to the scaled crop size and normalize it to the output bit depth.

    The crop is centered and applied only when the scaled crop fits inside
    the stacked image; otherwise the image is kept whole.
    """
    _, h, w = stacked.shape
    cw, ch = params.crop_width or 0, params.crop_height or 0
    scaled_w = round_half_away(cw * params.drizzle_scale.factor)
    scaled_h = round_half_away(ch * params.drizzle_scale.factor)
    if 0 < scaled_w <= w and 0 < scaled_h <= h:
        logger.info("Cropping image to width/height: %d / %d", scaled_w, scaled_h)
        stacked = center_crop(stacked, scaled_w, scaled_h)

    logger.info(
        "    Stack Min/Max : %s, %s",
        float(np.min(stacked)), float(np.max(stacked)),
    )
    out = normalize_to_bit_depth(stacked, params.bit_depth)
    logger.info("Final image size: %d, %d", out.shape[2], out.shape[1])
    return out

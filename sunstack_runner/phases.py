"""
Phase sequence of a stacking run.

Each phase consumes the context's frame records and assigns back the new
collection. Phases emit phase_start/phase_end (and per-frame
phase_progress) events. An EmptyResultError ends the run early with status
"empty"; any other ProcessingError ends it with status "error".
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from sunstack_backend.analysis import frame_sigma_analysis
from sunstack_backend.calibration import CalibrationImage
from sunstack_backend.context import ProcessContext
from sunstack_backend.errors import EmptyResultError, ProcessingError
from sunstack_backend.image_io import write_image
from sunstack_backend.limiting import frame_limit_determinate
from sunstack_backend.offsetting import frame_offset_analysis
from sunstack_backend.parameters import PipelineParameters, StackAlgorithm
from sunstack_backend.progress import ProgressChannel, ProgressEvent
from sunstack_backend.rotation import frame_rotation_analysis
from sunstack_backend.stacking import finalize_output, process_frame_stacking
from sunstack_backend.stats import ProcessStats

from .error_handling import stage_guard
from .events import phase_end, phase_progress, phase_start, stop_requested
from .oom_prevention import DEFAULT_MAX_FRACTION, check_median_memory

logger = logging.getLogger(__name__)

PHASES = [
    (0, "CALIBRATION"),
    (1, "CONTEXT"),
    (2, "SIGMA_ANALYSIS"),
    (3, "FRAME_LIMITING"),
    (4, "ROTATION_ANALYSIS"),
    (5, "OFFSET_ANALYSIS"),
    (6, "STACKING"),
    (7, "OUTPUT"),
]
_PHASE_IDS = {name: pid for pid, name in PHASES}


@stage_guard("CALIBRATION")
def _build_masters(params: PipelineParameters) -> Dict[str, CalibrationImage]:
    method = params.calibration_method
    return {
        "flat": CalibrationImage.build(params.flat_inputs, method),
        "dark": CalibrationImage.build(params.dark_inputs, method),
        "darkflat": CalibrationImage.build(params.darkflat_inputs, method),
        "bias": CalibrationImage.build(params.bias_inputs, method),
    }


@stage_guard("CONTEXT")
def _create_context(params: PipelineParameters, masters: Dict[str, CalibrationImage]) -> ProcessContext:
    return ProcessContext.create(params, masters["flat"], masters["dark"], masters["darkflat"], masters["bias"])


def _guarded(stage_name: str, fn: Callable) -> Callable:
    return stage_guard(stage_name)(fn)


def _default_output_path(run_dir: Path) -> Path:
    return run_dir / "outputs" / "stack.tif"


def run_phases(
    run_id: str,
    log_fp,
    run_dir: Path,
    params: PipelineParameters,
    cfg: Optional[Dict[str, Any]] = None,
    stop_flag: Callable[[], bool] = lambda: False,
) -> str:
    """
    Run every phase. Returns the run status: "ok", "empty", "error" or "stopped".
    """
    cfg = cfg or {}
    stats = ProcessStats(initial_rotation=params.initial_rotation)

    channel = ProgressChannel()

    def _on_progress(ev: ProgressEvent) -> None:
        phase_progress(
            run_id, log_fp, _PHASE_IDS.get(ev.stage, -1), ev.stage, ev.current, ev.total,
            {"source_id": ev.source_id, "frame_index": ev.frame_index},
        )

    channel.subscribe(_on_progress)

    current = {"id": 0, "name": PHASES[0][1]}

    def _begin(phase_id: int, phase_name: str) -> bool:
        current["id"], current["name"] = phase_id, phase_name
        phase_start(run_id, log_fp, phase_id, phase_name)
        if stop_requested(run_id, log_fp, phase_id, phase_name, stop_flag()):
            _skip_rest(phase_id - 1, "stopped")
            return False
        return True

    def _skip_rest(after_id: int, reason: str) -> None:
        for pid, name in PHASES:
            if pid > after_id:
                phase_end(run_id, log_fp, pid, name, "skipped", {"reason": reason})

    def _records_stage(phase_id: int, phase_name: str, stage_fn: Callable, ctx: ProcessContext):
        total = len(ctx.frame_records)
        logger.info(f"{phase_name}: {total} frames")
        return _guarded(phase_name, stage_fn)(ctx, channel.callback_for(phase_name, total))

    ctx: Optional[ProcessContext] = None
    try:
        if not _begin(0, "CALIBRATION"):
            return "stopped"
        masters = _build_masters(params)
        phase_end(run_id, log_fp, 0, "CALIBRATION", "ok", {
            name: (not cal.is_empty) for name, cal in masters.items()
        })

        if not _begin(1, "CONTEXT"):
            return "stopped"
        ctx = _create_context(params, masters)
        stats.total_frames = len(ctx.frame_records)
        phase_end(run_id, log_fp, 1, "CONTEXT", "ok", {
            "sources": len(ctx.registry),
            "frame_records": len(ctx.frame_records),
        })

        if not _begin(2, "SIGMA_ANALYSIS"):
            return "stopped"
        ctx.frame_records = _records_stage(2, "SIGMA_ANALYSIS", frame_sigma_analysis, ctx)
        stats.record_sigma(ctx.frame_records)
        phase_end(run_id, log_fp, 2, "SIGMA_ANALYSIS", "ok", {
            "min_sigma": stats.min_sigma,
            "max_sigma": stats.max_sigma,
        })

        if not _begin(3, "FRAME_LIMITING"):
            return "stopped"
        before = list(ctx.frame_records)
        try:
            limited = _records_stage(3, "FRAME_LIMITING", frame_limit_determinate, ctx)
        except EmptyResultError:
            stats.record_limiting(before, [], params)
            raise
        stats.record_limiting(before, limited, params)
        ctx.frame_records = limited
        phase_end(run_id, log_fp, 3, "FRAME_LIMITING", "ok", {
            "frames_used": stats.num_frames_used,
            "frames_discarded": stats.num_frames_discarded,
        })

        if not _begin(4, "ROTATION_ANALYSIS"):
            return "stopped"
        ctx.frame_records = _records_stage(4, "ROTATION_ANALYSIS", frame_rotation_analysis, ctx)
        phase_end(run_id, log_fp, 4, "ROTATION_ANALYSIS", "ok", {"target": params.target.value})

        if not _begin(5, "OFFSET_ANALYSIS"):
            return "stopped"
        ctx.frame_records = _records_stage(5, "OFFSET_ANALYSIS", frame_offset_analysis, ctx)
        phase_end(run_id, log_fp, 5, "OFFSET_ANALYSIS", "ok")

        if not _begin(6, "STACKING"):
            return "stopped"
        extra: Dict[str, Any] = {
            "algorithm": params.algorithm.value,
            "scale": params.drizzle_scale.factor,
            "frames": len(ctx.frame_records),
        }
        if params.algorithm is StackAlgorithm.MEDIAN:
            first = ctx.frame_records[0]
            memory_cfg = cfg.get("memory") if isinstance(cfg.get("memory"), dict) else {}
            extra["memory"] = check_median_memory(
                len(ctx.frame_records),
                ctx.get_source(first.source_id).num_bands,
                params.drizzle_scale.scaled(first.frame_width),
                params.drizzle_scale.scaled(first.frame_height),
                float(memory_cfg.get("max_fraction", DEFAULT_MAX_FRACTION)),
            )
        stacked = _records_stage(6, "STACKING", process_frame_stacking, ctx)
        phase_end(run_id, log_fp, 6, "STACKING", "ok", extra)

        if not _begin(7, "OUTPUT"):
            return "stopped"
        out_path = Path(params.output_path) if params.output_path else _default_output_path(run_dir)
        _guarded("OUTPUT", _write_output)(stacked, params, out_path)
        report_path = Path(params.report_path) if params.report_path else run_dir / "artifacts" / "report.json"
        stats.write_json(report_path)
        phase_end(run_id, log_fp, 7, "OUTPUT", "ok", {"output": str(out_path), "report": str(report_path)})
        return "ok"

    except EmptyResultError as e:
        logger.warning(f"{current['name']}: {e}")
        phase_end(run_id, log_fp, current["id"], current["name"], "empty", {"error": str(e)})
        if params.report_path:
            stats.write_json(params.report_path)
        _skip_rest(current["id"], "empty_result")
        return "empty"
    except ProcessingError as e:
        phase_end(run_id, log_fp, current["id"], current["name"], "error", {
            "error": str(e),
            "error_type": type(e).__name__,
            "stage": e.stage or current["name"],
        })
        return "error"
    finally:
        if ctx is not None:
            ctx.close()


def _write_output(stacked, params: PipelineParameters, out_path: Path) -> None:
    image = finalize_output(stacked, params)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    write_image(out_path, image)
    logger.info(f"Saved stacked image to {out_path}")

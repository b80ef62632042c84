"""
Event emission and phase tracking for the sunstack runner.

Events are JSON lines written to stdout and to the run's event log. Progress
events arrive from worker threads, so every line is written under one lock.
"""

import json
import sys
import threading
from datetime import datetime, timezone
from typing import Any

_EMIT_LOCK = threading.Lock()


def json_dumps_canonical(obj) -> bytes:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def emit(event: dict, log_fp=None, stream=None) -> None:
    """Emit event as JSON line to stdout (or stream) and optional log file."""
    line = json_dumps_canonical(event).decode("utf-8") + "\n"
    out = stream if stream is not None else sys.stdout
    with _EMIT_LOCK:
        out.write(line)
        out.flush()
        if log_fp is not None:
            log_fp.write(line)
            log_fp.flush()


def _event(event_type: str, run_id: str, extra: dict[str, Any] | None = None, **fields: Any) -> dict[str, Any]:
    ev: dict[str, Any] = {"type": event_type, "run_id": run_id, "ts": _now()}
    ev.update(fields)
    if extra:
        ev.update(extra)
    return ev


def _phase_event(
    event_type: str,
    run_id: str,
    phase_id: int,
    phase_name: str,
    extra: dict[str, Any] | None = None,
    **fields: Any,
) -> dict[str, Any]:
    return _event(event_type, run_id, extra, phase=phase_id, phase_name=phase_name, **fields)


def run_start(run_id: str, log_fp, extra: dict[str, Any] | None = None) -> None:
    emit(_event("run_start", run_id, extra), log_fp)


def run_end(run_id: str, log_fp, status: str, extra: dict[str, Any] | None = None) -> None:
    emit(_event("run_end", run_id, extra, status=status), log_fp)


def phase_start(run_id: str, log_fp, phase_id: int, phase_name: str, extra: dict[str, Any] | None = None) -> None:
    emit(_phase_event("phase_start", run_id, phase_id, phase_name, extra), log_fp)


def phase_end(
    run_id: str,
    log_fp,
    phase_id: int,
    phase_name: str,
    status: str,
    extra: dict[str, Any] | None = None,
) -> None:
    emit(_phase_event("phase_end", run_id, phase_id, phase_name, extra, status=status), log_fp)


def phase_progress(
    run_id: str,
    log_fp,
    phase_id: int,
    phase_name: str,
    current: int,
    total: int,
    extra: dict[str, Any] | None = None
) -> None:
    """Per-record progress inside a phase. May be called from worker threads."""
    emit(_phase_event("phase_progress", run_id, phase_id, phase_name, extra, current=current, total=total), log_fp)


def stop_requested(run_id: str, log_fp, phase_id: int, phase_name: str, stop_flag: bool) -> bool:
    """Check if stop was requested and emit event if so."""
    if not stop_flag:
        return False
    emit(_phase_event("run_stop_requested", run_id, phase_id, phase_name), log_fp)
    return True

"""
sunstack runner

Runs the full stacking pipeline from a YAML config. Every run gets its own
directory (config copy, metadata, logs, JSON-lines events, outputs).

Usage:
    python sunstack_runner_cli.py run --config sunstack.yaml [--runs-dir runs]
"""

import argparse
import hashlib
import logging
import shutil
import signal
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import yaml

from sunstack_backend.errors import ConfigError
from sunstack_backend.parameters import PipelineParameters
from sunstack_backend.validate import validate_config_yaml_text
from sunstack_runner.events import emit, json_dumps_canonical, run_end, run_start
from sunstack_runner.logging_config import setup_logging
from sunstack_runner.phases import PHASES, run_phases

_STOP = False


def _handle_signal(_signum, _frame):
    global _STOP
    _STOP = True


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def cmd_run(args) -> int:
    config_path = Path(args.config).expanduser().resolve()
    runs_dir = Path(args.runs_dir).expanduser().resolve()

    if not config_path.exists() or not config_path.is_file():
        sys.stderr.write(f"config not found: {config_path}\n")
        return 2

    config_bytes = config_path.read_bytes()
    config_text = config_bytes.decode("utf-8")
    result = validate_config_yaml_text(config_text, schema_path=args.schema)
    if not result["valid"]:
        for err in result["errors"]:
            sys.stderr.write(f"{err['path']}: {err['message']}\n")
        return 2

    cfg = yaml.safe_load(config_text)
    try:
        params = PipelineParameters.from_config(cfg, base_dir=config_path.parent)
    except ConfigError as e:
        sys.stderr.write(f"invalid config: {e}\n")
        return 2

    run_id = str(uuid.uuid4())
    ts_compact = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    run_dir = runs_dir / f"{ts_compact}_{run_id}"

    run_dir.mkdir(parents=True, exist_ok=False)
    (run_dir / "logs").mkdir(parents=True, exist_ok=True)
    (run_dir / "artifacts").mkdir(parents=True, exist_ok=True)
    (run_dir / "outputs").mkdir(parents=True, exist_ok=True)

    setup_logging(
        log_level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        log_dir=str(run_dir / "logs"),
        log_prefix="sunstack",
        console=False,
    )

    config_hash = _sha256_bytes(config_bytes)
    shutil.copy2(config_path, run_dir / "config.yaml")
    (run_dir / "config_hash.txt").write_text(config_hash + "\n", encoding="utf-8")

    run_metadata = {
        "run_id": run_id,
        "created_at": datetime.now(timezone.utc).isoformat(),
        "config_path": str(config_path),
        "inputs": list(params.input_files),
        "warnings": result["warnings"],
    }
    (run_dir / "run_metadata.json").write_bytes(json_dumps_canonical(run_metadata))

    log_path = run_dir / "logs" / "run_events.jsonl"
    with log_path.open("w", encoding="utf-8") as log_fp:
        run_start(run_id, log_fp, {
            "paths": {"run_dir": str(run_dir), "runs_dir": str(runs_dir), "config_path": str(config_path)},
            "config_hash": config_hash,
            "inputs": list(params.input_files),
            "dry_run": bool(args.dry_run),
        })

        if args.dry_run:
            for phase_id, phase_name in PHASES:
                emit({
                    "type": "phase_end",
                    "run_id": run_id,
                    "phase": phase_id,
                    "phase_name": phase_name,
                    "ts": datetime.now(timezone.utc).isoformat(),
                    "status": "skipped",
                    "reason": "dry_run",
                }, log_fp)
            run_end(run_id, log_fp, "ok")
            return 0

        status = run_phases(run_id, log_fp, run_dir, params, cfg=cfg, stop_flag=lambda: _STOP)
        run_end(run_id, log_fp, status)

    return 0 if status in ("ok", "empty") else 1


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sunstack_runner")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run")
    p_run.add_argument("--config", required=True)
    p_run.add_argument("--runs-dir", default="runs")
    p_run.add_argument("--schema", default=None)
    p_run.add_argument("--log-level", default="INFO")
    p_run.add_argument("--dry-run", action="store_true")
    p_run.set_defaults(func=cmd_run)

    return p


def main(argv=None) -> int:
    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    parser = build_arg_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())

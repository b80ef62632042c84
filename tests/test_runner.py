import io
import json
import logging
from pathlib import Path

import pytest
import yaml
from astropy.io import fits

import sunstack_runner_cli as runner_cli
from sunstack_backend.parameters import PipelineParameters, StackAlgorithm
from sunstack_backend.progress import ProgressChannel
from sunstack_backend.synthetic import disk_frames
from sunstack_backend.target import Target
from sunstack_runner import phases, run_phases
from sunstack_runner.phases import PHASES


def _parse_events(log_text: str) -> list[dict]:
    return [json.loads(line) for line in log_text.splitlines() if line.strip()]


def _phase_end(events: list[dict], name: str) -> dict:
    return next(e for e in events if e.get("type") == "phase_end" and e.get("phase_name") == name)


@pytest.fixture
def disk_ser(make_ser):
    return make_ser(disk_frames(48, 40, 6, radius=10, jitter=2.0, noise=100.0, seed=11), name="disk.ser")


@pytest.fixture
def restore_root_logging():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    for h in handlers:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


def _params(paths, tmp_path, **kwargs):
    kwargs.setdefault("output_path", str(tmp_path / "out" / "stack.fits"))
    return PipelineParameters(input_files=tuple(str(p) for p in paths), target=Target.NONE, **kwargs)


def test_run_phases_writes_stack_and_report(tmp_path, disk_ser):
    run_dir = tmp_path / "run"
    params = _params([disk_ser], tmp_path, top_percentage=50, crop_width=32, crop_height=32)

    log_fp = io.StringIO()
    status = run_phases("test", log_fp, run_dir, params)
    assert status == "ok"

    events = _parse_events(log_fp.getvalue())
    for _, name in PHASES:
        assert _phase_end(events, name)["status"] == "ok"

    assert _phase_end(events, "CONTEXT")["frame_records"] == 6
    assert _phase_end(events, "FRAME_LIMITING")["frames_used"] == 3

    progress = [e for e in events if e["type"] == "phase_progress" and e["phase_name"] == "SIGMA_ANALYSIS"]
    assert len(progress) == 6
    assert {e["total"] for e in progress} == {6}
    assert sorted(e["current"] for e in progress) == list(range(1, 7))

    data = fits.getdata(str(tmp_path / "out" / "stack.fits"))
    assert data.shape == (32, 32)
    assert data.max() == 65535

    report = json.loads((run_dir / "artifacts" / "report.json").read_text(encoding="utf-8"))
    assert report["total_frames"] == 6
    assert report["num_frames_used"] == 3
    assert report["num_frames_discarded_top_percentage"] == 3
    assert len(report["quality_values"]) == 6


def test_run_phases_median_checks_memory(tmp_path, disk_ser):
    params = _params([disk_ser], tmp_path, algorithm=StackAlgorithm.MEDIAN)
    log_fp = io.StringIO()
    assert run_phases("test", log_fp, tmp_path / "run", params) == "ok"

    stacking_end = _phase_end(_parse_events(log_fp.getvalue()), "STACKING")
    assert stacking_end["algorithm"] == "median"
    assert stacking_end["memory"]["ok"] is True


def test_run_phases_empty_result(tmp_path, disk_ser):
    report = tmp_path / "report.json"
    params = _params([disk_ser], tmp_path, min_sigma=1e9, report_path=str(report))

    log_fp = io.StringIO()
    status = run_phases("test", log_fp, tmp_path / "run", params)
    assert status == "empty"

    events = _parse_events(log_fp.getvalue())
    assert _phase_end(events, "FRAME_LIMITING")["status"] == "empty"
    for name in ("ROTATION_ANALYSIS", "OFFSET_ANALYSIS", "STACKING", "OUTPUT"):
        assert _phase_end(events, name)["status"] == "skipped"

    stats = json.loads(report.read_text(encoding="utf-8"))
    assert stats["num_frames_used"] == 0
    assert stats["num_frames_discarded_min_sigma"] == 6
    assert not (tmp_path / "out" / "stack.fits").exists()


def test_run_phases_missing_input(tmp_path):
    params = _params([tmp_path / "missing.ser"], tmp_path)
    log_fp = io.StringIO()
    assert run_phases("test", log_fp, tmp_path / "run", params) == "error"

    context_end = _phase_end(_parse_events(log_fp.getvalue()), "CONTEXT")
    assert context_end["status"] == "error"
    assert context_end["error_type"] == "ResourceError"
    assert context_end["stage"] == "CONTEXT"


def test_run_phases_stop_requested(tmp_path, disk_ser):
    params = _params([disk_ser], tmp_path)
    log_fp = io.StringIO()
    assert run_phases("test", log_fp, tmp_path / "run", params, stop_flag=lambda: True) == "stopped"

    events = _parse_events(log_fp.getvalue())
    assert any(e["type"] == "run_stop_requested" and e["phase_name"] == "CALIBRATION" for e in events)
    ends = [e for e in events if e["type"] == "phase_end"]
    assert [e["phase_name"] for e in ends] == [name for _, name in PHASES]
    assert {(e["status"], e["reason"]) for e in ends} == {("skipped", "stopped")}


def test_run_phases_stop_midway_skips_remaining(tmp_path, disk_ser):
    params = _params([disk_ser], tmp_path)
    flags = iter([False, False, True])
    log_fp = io.StringIO()
    assert run_phases("test", log_fp, tmp_path / "run", params, stop_flag=lambda: next(flags)) == "stopped"

    events = _parse_events(log_fp.getvalue())
    assert _phase_end(events, "CONTEXT")["status"] == "ok"
    for _, name in PHASES[2:]:
        end = _phase_end(events, name)
        assert (end["status"], end["reason"]) == ("skipped", "stopped")
    assert len([e for e in events if e["type"] == "phase_end"]) == len(PHASES)


def test_run_phases_progress_is_not_retained(tmp_path, disk_ser, monkeypatch):
    channels = []
    received = []

    class _RecordingChannel(ProgressChannel):
        def __init__(self):
            super().__init__()
            channels.append(self)
            self.subscribe(received.append)

    monkeypatch.setattr(phases, "ProgressChannel", _RecordingChannel)
    log_fp = io.StringIO()
    assert run_phases("test", log_fp, tmp_path / "run", _params([disk_ser], tmp_path)) == "ok"

    progress = [e for e in _parse_events(log_fp.getvalue()) if e["type"] == "phase_progress"]
    assert len(channels) == 1
    assert len(received) == len(progress) > 0
    assert set(vars(channels[0])) == {"_subscribers", "_lock"}


def test_cli_run(tmp_path, disk_ser, restore_root_logging):
    cfg = {
        "inputs": [disk_ser.name],
        "target": "none",
        "drizzle": {"scale": "1.5", "algorithm": "minimum"},
        "output": {"path": "stack.tif", "bit_depth": 8},
        "workers": 2,
    }
    config_path = tmp_path / "sunstack.yaml"
    config_path.write_text(yaml.safe_dump(cfg), encoding="utf-8")
    runs_dir = tmp_path / "runs"

    rc = runner_cli.main(["run", "--config", str(config_path), "--runs-dir", str(runs_dir)])
    assert rc == 0

    run_dir = next(runs_dir.iterdir())
    assert (run_dir / "config.yaml").read_bytes() == config_path.read_bytes()
    assert (run_dir / "config_hash.txt").exists()
    meta = json.loads((run_dir / "run_metadata.json").read_text(encoding="utf-8"))
    assert [Path(p).resolve() for p in meta["inputs"]] == [disk_ser.resolve()]

    events = _parse_events((run_dir / "logs" / "run_events.jsonl").read_text(encoding="utf-8"))
    assert events[0]["type"] == "run_start"
    assert events[-1]["type"] == "run_end"
    assert events[-1]["status"] == "ok"
    assert (tmp_path / "stack.tif").exists()


def test_cli_rejects_invalid_config(tmp_path, restore_root_logging):
    config_path = tmp_path / "bad.yaml"
    config_path.write_text("inputs: []\n", encoding="utf-8")
    assert runner_cli.main(["run", "--config", str(config_path), "--runs-dir", str(tmp_path / "runs")]) == 2
    assert not (tmp_path / "runs").exists()


def test_cli_dry_run(tmp_path, disk_ser, restore_root_logging):
    config_path = tmp_path / "sunstack.yaml"
    config_path.write_text(yaml.safe_dump({"inputs": [str(disk_ser)], "target": "none"}), encoding="utf-8")
    runs_dir = tmp_path / "runs"

    assert runner_cli.main(["run", "--config", str(config_path), "--runs-dir", str(runs_dir), "--dry-run"]) == 0

    run_dir = next(runs_dir.iterdir())
    events = _parse_events((run_dir / "logs" / "run_events.jsonl").read_text(encoding="utf-8"))
    skipped = [e for e in events if e["type"] == "phase_end"]
    assert len(skipped) == len(PHASES)
    assert all(e["status"] == "skipped" for e in skipped)
    assert not (run_dir / "outputs" / "stack.tif").exists()

"""
sunstack Backend CLI

Command-line interface for backend utilities:
- Config validation and schema output
- SER container inspection
- Master calibration frames (mean / median)
- Detection threshold preview
- Synthetic SER containers for testing

All commands output JSON.

Usage:
    python sunstack_backend_cli.py <command> [args]
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import numpy as np

from sunstack_backend.calibration import CalibrationImage, ComputeMethod
from sunstack_backend.context import ProcessContext
from sunstack_backend.datasource import ColorFormatId
from sunstack_backend.errors import ProcessingError
from sunstack_backend.hotpixel import create_hotpixel_mask, load_hotpixel_map, replace_hot_pixels
from sunstack_backend.image_io import is_fits_image_path, write_image
from sunstack_backend.image_processing import normalize_to_bit_depth
from sunstack_backend.parameters import PipelineParameters
from sunstack_backend.schema import load_schema_json
from sunstack_backend.ser import SerFile
from sunstack_backend.synthetic import disk_frames, uniform_frames, write_ser_file
from sunstack_backend.target import Target
from sunstack_backend.threshtest import compute_rgb_threshtest_image, compute_threshtest_image
from sunstack_backend.timestamp import TICKS_PER_SECOND, datetime_to_ticks
from sunstack_backend.validate import validate_config_yaml_text


def _print_json(obj: object) -> None:
    sys.stdout.write(json.dumps(obj, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")
    sys.stdout.flush()


def _print_error(e: ProcessingError) -> int:
    _print_json({"ok": False, "error": str(e), "error_type": type(e).__name__})
    return 1


def cmd_get_schema(_: argparse.Namespace) -> int:
    schema = load_schema_json()
    _print_json(schema)
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    if args.path is not None:
        yaml_text = Path(args.path).expanduser().read_text(encoding="utf-8")
    else:
        if args.stdin:
            yaml_text = sys.stdin.read()
        else:
            yaml_text = args.yaml

    result = validate_config_yaml_text(yaml_text=yaml_text, schema_path=args.schema)
    if args.path is not None:
        result["path"] = args.path
    _print_json(result)
    if args.strict_exit_codes:
        return 0 if result.get("valid") else 1
    return 0


def cmd_ser_info(args: argparse.Namespace) -> int:
    try:
        ser = SerFile.open([args.path])
    except ProcessingError as e:
        return _print_error(e)

    try:
        details = ser.header_details()
        try:
            ser.validate()
            details["valid"] = True
        except ProcessingError as e:
            details["valid"] = False
            details["error"] = str(e)
        if args.hash:
            details["file_hash"] = ser.file_hash()
    finally:
        ser.close()

    _print_json(details)
    return 0 if details["valid"] else 1


def _write_master(image: np.ndarray, output: Path) -> None:
    if is_fits_image_path(output):
        write_image(output, image.astype(np.float32))
    else:
        write_image(output, np.clip(np.rint(image), 0, 65535).astype(np.uint16))


def _cmd_master(args: argparse.Namespace, method: ComputeMethod) -> int:
    output = Path(args.output).expanduser()
    try:
        master = CalibrationImage.build(args.input, method)
        image = master.image
        hot_pixel_map = getattr(args, "hot_pixel_map", None)
        if hot_pixel_map:
            mask = create_hotpixel_mask(load_hotpixel_map(hot_pixel_map))
            image = replace_hot_pixels(image, mask)
    except ProcessingError as e:
        return _print_error(e)

    _write_master(image, output)
    _print_json({
        "ok": True,
        "method": method.value,
        "input": args.input,
        "output": str(output),
        "shape": list(image.shape),
        "min": float(np.min(image)),
        "max": float(np.max(image)),
    })
    return 0


def cmd_mean(args: argparse.Namespace) -> int:
    return _cmd_master(args, ComputeMethod.MEAN)


def cmd_median(args: argparse.Namespace) -> int:
    return _cmd_master(args, ComputeMethod.MEDIAN)


def cmd_thresh_test(args: argparse.Namespace) -> int:
    params = PipelineParameters(
        input_files=tuple(args.input),
        target=Target.NONE,
        detection_threshold=float(args.threshold),
        max_frames=1,
        flat_inputs=args.flat,
        dark_inputs=args.dark,
        darkflat_inputs=args.darkflat,
        bias_inputs=args.bias,
    )
    output = Path(args.output).expanduser()
    try:
        with ProcessContext.from_parameters(params) as ctx:
            record = ctx.frame_records[0]
            frame = record.get_calibrated_frame(ctx)
            if args.rgb:
                pixel_depth = ctx.get_source(record.source_id).pixel_depth
                rgb = compute_rgb_threshtest_image(frame.buffer, params.detection_threshold, pixel_depth)
                image = normalize_to_bit_depth(rgb, 8)
            else:
                image = compute_threshtest_image(frame.buffer, params.detection_threshold)
    except ProcessingError as e:
        return _print_error(e)

    write_image(output, image)
    _print_json({
        "ok": True,
        "threshold": params.detection_threshold,
        "output": str(output),
        "saturated_fraction": float(np.mean(frame.buffer.mean(axis=0) > params.detection_threshold)),
    })
    return 0


def cmd_make_synthetic(args: argparse.Namespace) -> int:
    if args.pattern == "disk":
        radius = args.radius if args.radius is not None else min(args.width, args.height) / 4.0
        frames = disk_frames(
            args.width, args.height, args.frames, radius,
            level=args.value, background=args.background,
            jitter=args.jitter, noise=args.noise, seed=args.seed,
        )
    else:
        frames = uniform_frames(args.width, args.height, [args.value] * args.frames)

    start_ticks = 0
    timestamps = None
    if args.start is not None:
        start = datetime.fromisoformat(args.start)
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        start_ticks = datetime_to_ticks(start)
        step = int(round(args.interval * TICKS_PER_SECOND))
        timestamps = [start_ticks + i * step for i in range(args.frames)]

    path = write_ser_file(
        Path(args.output).expanduser(),
        frames,
        bit_depth=args.bit_depth,
        color_id=ColorFormatId.from_int(args.color_id),
        timestamps=timestamps,
        big_endian=args.big_endian,
        date_time=start_ticks,
        date_time_utc=start_ticks,
        observer=args.observer,
    )
    _print_json({
        "ok": True,
        "output": str(path),
        "frames": args.frames,
        "width": args.width,
        "height": args.height,
        "bit_depth": args.bit_depth,
        "timestamps": timestamps is not None,
    })
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sunstack_backend_cli")
    p.add_argument("--log-level", default="WARNING")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_schema = sub.add_parser("get-schema")
    p_schema.set_defaults(func=cmd_get_schema)

    p_validate = sub.add_parser("validate-config")
    src = p_validate.add_mutually_exclusive_group(required=True)
    src.add_argument("--path")
    src.add_argument("--yaml")
    src.add_argument("--stdin", action="store_true")
    p_validate.add_argument(
        "--schema",
        default=None,
        help="Optional path to a schema file (defaults to the bundled sunstack.schema.json)",
    )
    p_validate.add_argument(
        "--strict-exit-codes",
        action="store_true",
        help="Return exit code 1 when validation fails (CLI mode). Default: always 0 and rely on JSON result.",
    )
    p_validate.set_defaults(func=cmd_validate_config)

    p_info = sub.add_parser("ser-info")
    p_info.add_argument("path")
    p_info.add_argument("--hash", action="store_true", help="Also compute the content hash")
    p_info.set_defaults(func=cmd_ser_info)

    p_mean = sub.add_parser("mean")
    p_mean.add_argument("--input", required=True, help="Input SER file or still image")
    p_mean.add_argument("--output", required=True)
    p_mean.add_argument("--hot-pixel-map", default=None)
    p_mean.set_defaults(func=cmd_mean)

    p_median = sub.add_parser("median")
    p_median.add_argument("--input", required=True, help="Input SER file or still image")
    p_median.add_argument("--output", required=True)
    p_median.set_defaults(func=cmd_median)

    p_thresh = sub.add_parser("thresh-test")
    p_thresh.add_argument("--input", required=True, nargs="+")
    p_thresh.add_argument("--output", required=True)
    p_thresh.add_argument("--threshold", type=float, default=5000.0)
    p_thresh.add_argument("--flat", default=None)
    p_thresh.add_argument("--dark", default=None)
    p_thresh.add_argument("--darkflat", default=None)
    p_thresh.add_argument("--bias", default=None)
    p_thresh.add_argument("--rgb", action="store_true", help="Mark saturated pixels in red over a colour image")
    p_thresh.set_defaults(func=cmd_thresh_test)

    p_syn = sub.add_parser("make-synthetic")
    p_syn.add_argument("--output", required=True)
    p_syn.add_argument("--width", type=int, default=256)
    p_syn.add_argument("--height", type=int, default=256)
    p_syn.add_argument("--frames", type=int, default=10)
    p_syn.add_argument("--bit-depth", type=int, choices=[8, 16], default=16)
    p_syn.add_argument("--color-id", type=int, default=0)
    p_syn.add_argument("--pattern", choices=["uniform", "disk"], default="disk")
    p_syn.add_argument("--value", type=float, default=30000.0)
    p_syn.add_argument("--background", type=float, default=500.0)
    p_syn.add_argument("--radius", type=float, default=None)
    p_syn.add_argument("--jitter", type=float, default=0.0)
    p_syn.add_argument("--noise", type=float, default=0.0)
    p_syn.add_argument("--seed", type=int, default=0)
    p_syn.add_argument("--start", default=None, help="ISO capture start time; enables per-frame timestamps")
    p_syn.add_argument("--interval", type=float, default=0.01, help="Seconds between frames")
    p_syn.add_argument("--big-endian", action="store_true")
    p_syn.add_argument("--observer", default="")
    p_syn.set_defaults(func=cmd_make_synthetic)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        stream=sys.stderr,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())

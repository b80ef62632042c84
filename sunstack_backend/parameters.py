"""Immutable run configuration and the enums it is built from."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from sunstack_backend.calibration import ComputeMethod
from sunstack_backend.errors import ConfigError
from sunstack_backend.target import Target

DEFAULT_DETECTION_THRESHOLD = 5000.0
DEFAULT_BIT_DEPTH = 16


class DrizzleScale(Enum):
    SCALE_1_0 = 1.0
    SCALE_1_5 = 1.5
    SCALE_2_0 = 2.0
    SCALE_3_0 = 3.0

    @classmethod
    def from_string(cls, s: Any) -> "DrizzleScale":
        try:
            return cls(float(str(s).strip()))
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid drizzle scale: '{s}'. Valid options: 1.0, 1.5, 2.0, 3.0")

    @property
    def factor(self) -> float:
        return float(self.value)

    def scaled(self, n: int) -> int:
        """Output extent for an input extent of n pixels."""
        return int(math.ceil(n * self.factor))


class StackAlgorithm(Enum):
    AVERAGE = "average"
    MEDIAN = "median"
    MINIMUM = "minimum"

    @classmethod
    def from_string(cls, s: str) -> "StackAlgorithm":
        try:
            return cls(str(s).strip().lower())
        except ValueError:
            raise ConfigError(f"Invalid stacking algorithm: '{s}'. Valid options: average, median, minimum")

    @property
    def allow_parallel(self) -> bool:
        # Median keeps every sample; chunked merging only multiplies the memory
        return self is not StackAlgorithm.MEDIAN


def _resolve(path: Optional[str], base_dir: Optional[Path]) -> Optional[str]:
    if path is None or str(path).strip() == "":
        return None
    p = Path(str(path)).expanduser()
    if base_dir is not None and not p.is_absolute():
        p = base_dir / p
    return str(p)


def _opt_float(v: Any) -> Optional[float]:
    return None if v is None else float(v)


def _opt_int(v: Any) -> Optional[int]:
    return None if v is None else int(v)


@dataclass(frozen=True)
class PipelineParameters:
    input_files: Tuple[str, ...]
    target: Target = Target.SUN
    obs_latitude: float = 0.0
    obs_longitude: float = 0.0
    detection_threshold: float = DEFAULT_DETECTION_THRESHOLD
    crop_width: Optional[int] = None
    crop_height: Optional[int] = None
    max_frames: Optional[int] = None
    min_sigma: Optional[float] = None
    max_sigma: Optional[float] = None
    top_percentage: Optional[float] = None
    drizzle_scale: DrizzleScale = DrizzleScale.SCALE_1_0
    algorithm: StackAlgorithm = StackAlgorithm.AVERAGE
    initial_rotation: float = 0.0
    horizontal_offset: int = 0
    vertical_offset: int = 0
    flat_inputs: Optional[str] = None
    dark_inputs: Optional[str] = None
    darkflat_inputs: Optional[str] = None
    bias_inputs: Optional[str] = None
    calibration_method: ComputeMethod = ComputeMethod.MEAN
    hot_pixel_map: Optional[str] = None
    output_path: Optional[str] = None
    bit_depth: int = DEFAULT_BIT_DEPTH
    report_path: Optional[str] = None
    workers: Optional[int] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], base_dir: Optional[Path] = None) -> "PipelineParameters":
        """Map a validated config document onto parameters.

        Relative paths are resolved against base_dir when given.
        Raises ConfigError for unknown enum strings or missing inputs.
        """
        if not isinstance(cfg, dict):
            raise ConfigError("config must be a mapping")

        inputs = cfg.get("inputs") or []
        if isinstance(inputs, str):
            inputs = [inputs]
        if not inputs:
            raise ConfigError("Missing required config key: inputs")

        observer = cfg.get("observer") or {}
        crop = cfg.get("crop") or {}
        limits = cfg.get("limits") or {}
        drizzle = cfg.get("drizzle") or {}
        rotation = cfg.get("rotation") or {}
        shift = cfg.get("shift") or {}
        calibration = cfg.get("calibration") or {}
        output = cfg.get("output") or {}

        crop_width = _opt_int(crop.get("width"))
        crop_height = _opt_int(crop.get("height"))
        if (crop_width is None) != (crop_height is None):
            raise ConfigError("crop.width and crop.height must be given together")

        bit_depth = int(output.get("bit_depth", DEFAULT_BIT_DEPTH))
        if bit_depth not in (8, 16):
            raise ConfigError(f"Invalid output bit depth: {bit_depth}. Valid options: 8, 16")

        return cls(
            input_files=tuple(_resolve(p, base_dir) for p in inputs),
            target=Target.from_string(cfg.get("target", "sun")),
            obs_latitude=float(observer.get("latitude", 0.0)),
            obs_longitude=float(observer.get("longitude", 0.0)),
            detection_threshold=float(cfg.get("detection_threshold", DEFAULT_DETECTION_THRESHOLD)),
            crop_width=crop_width,
            crop_height=crop_height,
            max_frames=_opt_int(limits.get("max_frames")),
            min_sigma=_opt_float(limits.get("min_sigma")),
            max_sigma=_opt_float(limits.get("max_sigma")),
            top_percentage=_opt_float(limits.get("top_percentage")),
            drizzle_scale=DrizzleScale.from_string(drizzle.get("scale", "1.0")),
            algorithm=StackAlgorithm.from_string(drizzle.get("algorithm", "average")),
            initial_rotation=float(rotation.get("initial", 0.0)),
            horizontal_offset=int(shift.get("horizontal", 0)),
            vertical_offset=int(shift.get("vertical", 0)),
            flat_inputs=_resolve(calibration.get("flat"), base_dir),
            dark_inputs=_resolve(calibration.get("dark"), base_dir),
            darkflat_inputs=_resolve(calibration.get("darkflat"), base_dir),
            bias_inputs=_resolve(calibration.get("bias"), base_dir),
            calibration_method=ComputeMethod.from_string(calibration.get("method", "mean")),
            hot_pixel_map=_resolve(cfg.get("hot_pixel_map"), base_dir),
            output_path=_resolve(output.get("path"), base_dir),
            bit_depth=bit_depth,
            report_path=_resolve(cfg.get("report"), base_dir),
            workers=_opt_int(cfg.get("workers")),
        )

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from sunstack_backend.schema import load_schema_json


@dataclass
class ValidationIssue:
    severity: str  # "error" | "warning"
    code: str
    path: str
    message: str


def _json_path(parts: list[str | int]) -> str:
    if not parts:
        return "$"
    out = "$"
    for p in parts:
        if isinstance(p, int):
            out += f"[{p}]"
        else:
            if p.isidentifier():
                out += f".{p}"
            else:
                out += f"['{p}']"
    return out


def _as_float(x: Any) -> float | None:
    if isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        return float(x)
    return None


def _result(issues: list[ValidationIssue]) -> dict:
    return {
        "valid": not any(i.severity == "error" for i in issues),
        "errors": [i.__dict__ for i in issues if i.severity == "error"],
        "warnings": [i.__dict__ for i in issues if i.severity == "warning"],
    }


def validate_config_yaml_text(
    yaml_text: str,
    schema_path: str | None = None,
) -> dict:
    issues: list[ValidationIssue] = []

    try:
        cfg = yaml.safe_load(yaml_text)
    except yaml.YAMLError as e:
        issues.append(ValidationIssue("error", "yaml_parse_error", "$", str(e)))
        return _result(issues)

    if not isinstance(cfg, dict):
        issues.append(
            ValidationIssue("error", "config_not_object", "$", "configuration root must be a mapping/object")
        )
        return _result(issues)

    schema = load_schema_json(schema_path)
    validator = Draft202012Validator(schema)

    for err in sorted(validator.iter_errors(cfg), key=lambda e: [str(p) for p in e.path]):
        issues.append(
            ValidationIssue(
                severity="error",
                code="schema_validation_error",
                path=_json_path(list(err.path)),
                message=err.message,
            )
        )

    def get_path(obj: dict, keys: list[str]) -> Any:
        cur: Any = obj
        for k in keys:
            if not isinstance(cur, dict) or k not in cur:
                return None
            cur = cur[k]
        return cur

    # Cross-field checks (hard errors)
    min_sigma = _as_float(get_path(cfg, ["limits", "min_sigma"]))
    max_sigma = _as_float(get_path(cfg, ["limits", "max_sigma"]))
    if min_sigma is not None and max_sigma is not None and max_sigma < min_sigma:
        issues.append(
            ValidationIssue(
                severity="error",
                code="sigma_range_invalid",
                path="$.limits",
                message="limits.max_sigma must be >= limits.min_sigma",
            )
        )

    crop = get_path(cfg, ["crop"])
    if isinstance(crop, dict) and (("width" in crop) != ("height" in crop)):
        issues.append(
            ValidationIssue(
                severity="error",
                code="crop_incomplete",
                path="$.crop",
                message="crop.width and crop.height must be given together",
            )
        )

    # Soft checks
    target = get_path(cfg, ["target"])
    observer = get_path(cfg, ["observer"])
    if target in (None, "sun", "moon") and not isinstance(observer, dict):
        issues.append(
            ValidationIssue(
                severity="warning",
                code="observer_missing",
                path="$.observer",
                message="no observer location given; parallactic rotation will assume latitude 0, longitude 0",
            )
        )

    if get_path(cfg, ["output", "path"]) is None:
        issues.append(
            ValidationIssue(
                severity="warning",
                code="output_path_missing",
                path="$.output",
                message="output.path not set; the stacked image will be written into the run directory",
            )
        )

    if get_path(cfg, ["drizzle", "algorithm"]) == "median":
        issues.append(
            ValidationIssue(
                severity="warning",
                code="median_memory",
                path="$.drizzle.algorithm",
                message="median stacking keeps every sample in memory and runs single-threaded",
            )
        )

    return _result(issues)

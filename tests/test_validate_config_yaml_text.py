import copy

import yaml

from sunstack_backend.validate import validate_config_yaml_text


def _base_cfg() -> dict:
    return {
        "inputs": ["captures/sun_001.ser", "captures/sun_002.ser"],
        "target": "sun",
        "observer": {"latitude": 48.2, "longitude": 16.4},
        "detection_threshold": 5000,
        "crop": {"width": 1200, "height": 1000},
        "limits": {"max_frames": 400, "min_sigma": 1.0, "max_sigma": 40.0, "top_percentage": 25},
        "drizzle": {"scale": "1.5", "algorithm": "average"},
        "rotation": {"initial": 12.0},
        "shift": {"horizontal": 0, "vertical": 0},
        "calibration": {"flat": "flat.ser", "dark": "dark.ser", "method": "mean"},
        "hot_pixel_map": "hotpixels.yaml",
        "output": {"path": "stack.tif", "bit_depth": 16},
        "report": "report.json",
        "workers": 4,
        "memory": {"max_fraction": 0.8},
    }


def _validate(cfg: dict) -> dict:
    yaml_text = yaml.safe_dump(cfg, sort_keys=False)
    return validate_config_yaml_text(yaml_text=yaml_text)


def _codes(result: dict) -> set[str]:
    return {e.get("code") for e in result.get("errors", [])}


def _warning_codes(result: dict) -> set[str]:
    return {w.get("code") for w in result.get("warnings", [])}


def test_valid_config_is_valid() -> None:
    res = _validate(_base_cfg())
    assert res["valid"] is True
    assert res["errors"] == []
    assert res["warnings"] == []


def test_minimal_config_is_valid_with_warnings() -> None:
    res = _validate({"inputs": ["a.ser"]})
    assert res["valid"] is True
    assert {"observer_missing", "output_path_missing"} <= _warning_codes(res)


def test_yaml_parse_error() -> None:
    res = validate_config_yaml_text("inputs: [a.ser\n")
    assert res["valid"] is False
    assert "yaml_parse_error" in _codes(res)


def test_config_not_object() -> None:
    res = validate_config_yaml_text("- a.ser\n")
    assert res["valid"] is False
    assert "config_not_object" in _codes(res)


def test_sigma_range_invalid() -> None:
    cfg = _base_cfg()
    cfg["limits"]["min_sigma"] = 50.0
    res = _validate(cfg)
    assert res["valid"] is False
    assert "sigma_range_invalid" in _codes(res)


def test_crop_incomplete() -> None:
    cfg = _base_cfg()
    del cfg["crop"]["height"]
    res = _validate(cfg)
    assert res["valid"] is False
    assert "crop_incomplete" in _codes(res)


def test_unknown_drizzle_scale() -> None:
    cfg = _base_cfg()
    cfg["drizzle"]["scale"] = "2.5"
    res = _validate(cfg)
    assert res["valid"] is False
    assert "schema_validation_error" in _codes(res)
    assert any(e["path"] == "$.drizzle.scale" for e in res["errors"])


def test_unknown_key_is_invalid() -> None:
    cfg = _base_cfg()
    cfg["stacking"] = {"method": "average"}
    res = _validate(cfg)
    assert res["valid"] is False
    assert "schema_validation_error" in _codes(res)


def test_schema_missing_inputs_is_invalid() -> None:
    cfg = _base_cfg()
    del cfg["inputs"]
    res = _validate(cfg)
    assert res["valid"] is False
    assert "schema_validation_error" in _codes(res)


def test_median_memory_warning() -> None:
    cfg = copy.deepcopy(_base_cfg())
    cfg["drizzle"]["algorithm"] = "median"
    res = _validate(cfg)
    assert res["valid"] is True
    assert "median_memory" in _warning_codes(res)


def test_no_observer_warning_without_target() -> None:
    cfg = _base_cfg()
    cfg["target"] = "none"
    del cfg["observer"]
    res = _validate(cfg)
    assert "observer_missing" not in _warning_codes(res)

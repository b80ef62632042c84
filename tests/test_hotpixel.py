import logging

import numpy as np
import pytest

from sunstack_backend.errors import ResourceError
from sunstack_backend.hotpixel import (
    HotPixelMap,
    create_hotpixel_mask,
    load_hotpixel_map,
    replace_hot_pixels,
)


def _write_map(tmp_path, text):
    p = tmp_path / "hotpixels.yaml"
    p.write_text(text, encoding="utf-8")
    return p


class TestLoadHotPixelMap:
    def test_parse(self, tmp_path):
        p = _write_map(tmp_path, "sensor_width: 8\nsensor_height: 6\nhotpixels:\n  - [1, 2]\n  - [7, 5]\n")
        hpm = load_hotpixel_map(p)

        assert (hpm.sensor_width, hpm.sensor_height) == (8, 6)
        assert hpm.hotpixels == [[1, 2], [7, 5]]

    def test_empty_list(self, tmp_path):
        p = _write_map(tmp_path, "sensor_width: 8\nsensor_height: 6\n")
        assert load_hotpixel_map(p).hotpixels == []

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResourceError):
            load_hotpixel_map(tmp_path / "nope.yaml")

    def test_missing_sensor_size(self, tmp_path):
        p = _write_map(tmp_path, "hotpixels: []\n")
        with pytest.raises(ResourceError):
            load_hotpixel_map(p)

    def test_not_a_mapping(self, tmp_path):
        p = _write_map(tmp_path, "- 1\n- 2\n")
        with pytest.raises(ResourceError):
            load_hotpixel_map(p)


class TestHotPixelMask:
    def test_mask_marks_listed_pixels(self):
        mask = create_hotpixel_mask(HotPixelMap(5, 4, [[0, 0], [4, 3], [2, 1]]))

        assert mask.shape == (4, 5)
        assert mask.sum() == 3
        assert mask[0, 0] and mask[3, 4] and mask[1, 2]

    def test_malformed_entries_are_skipped(self, caplog):
        hpm = HotPixelMap(5, 4, [[1, 1], [1], "x", [5, 0], [0, -1], ["a", 2]])
        with caplog.at_level(logging.WARNING, logger="sunstack_backend.hotpixel"):
            mask = create_hotpixel_mask(hpm)

        assert mask.sum() == 1
        assert mask[1, 1]
        assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 5


class TestReplaceHotPixels:
    def test_hot_pixel_becomes_neighbor_mean(self):
        image = np.full((1, 5, 5), 100.0, dtype=np.float32)
        image[0, 2, 2] = 65000.0
        mask = np.zeros((5, 5), dtype=bool)
        mask[2, 2] = True

        out = replace_hot_pixels(image, mask)

        assert out[0, 2, 2] == pytest.approx(100.0)
        assert image[0, 2, 2] == 65000.0
        np.testing.assert_array_equal(out[0][~mask], image[0][~mask])

    def test_masked_neighbors_are_excluded(self):
        image = np.full((1, 4, 4), 10.0, dtype=np.float32)
        image[0, 1, 1] = 5000.0
        image[0, 1, 2] = 7000.0
        mask = np.zeros((4, 4), dtype=bool)
        mask[1, 1] = mask[1, 2] = True

        out = replace_hot_pixels(image, mask)
        assert out[0, 1, 1] == pytest.approx(10.0)
        assert out[0, 1, 2] == pytest.approx(10.0)

    def test_every_band_is_patched(self):
        image = np.stack([np.full((3, 3), v, dtype=np.float32) for v in (1.0, 2.0, 3.0)])
        image[:, 1, 1] = 999.0
        mask = np.zeros((3, 3), dtype=bool)
        mask[1, 1] = True

        out = replace_hot_pixels(image, mask)
        np.testing.assert_allclose(out[:, 1, 1], [1.0, 2.0, 3.0])

    def test_shape_mismatch(self):
        with pytest.raises(ResourceError):
            replace_hot_pixels(np.zeros((1, 4, 4), dtype=np.float32), np.zeros((4, 5), dtype=bool))

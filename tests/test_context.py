import numpy as np
import pytest

from sunstack_backend.calibration import CalibrationImage
from sunstack_backend.context import ProcessContext
from sunstack_backend.errors import AlreadyOpenError, ResourceError
from sunstack_backend.framerecord import FrameRecord, Offset
from sunstack_backend.parameters import PipelineParameters
from sunstack_backend.synthetic import uniform_frames
from sunstack_backend.target import Target


def _params(paths, **kwargs):
    return PipelineParameters(input_files=tuple(str(p) for p in paths), target=Target.NONE, **kwargs)


class TestProcessContext:
    def test_one_record_per_frame(self, make_ser, make_context):
        a = make_ser(uniform_frames(16, 12, [1, 2, 3]))
        b = make_ser(uniform_frames(16, 12, [4, 5]))
        ctx = make_context([a, b])

        assert len(ctx.frame_records) == 5
        assert len(ctx.registry) == 2
        assert [r.frame_index for r in ctx.frame_records] == [0, 1, 2, 0, 1]
        assert all((r.frame_width, r.frame_height) == (16, 12) for r in ctx.frame_records)
        assert all(ctx.registry.contains(r.source_id) for r in ctx.frame_records)

    def test_max_frames_caps_each_source(self, make_ser, make_context):
        a = make_ser(uniform_frames(16, 12, [1, 2, 3]))
        b = make_ser(uniform_frames(16, 12, [4, 5, 6]))
        ctx = make_context([a, b], max_frames=2)
        assert len(ctx.frame_records) == 4

    def test_same_source_twice(self, make_ser):
        path = make_ser()
        empty = CalibrationImage.new_empty()
        with pytest.raises(AlreadyOpenError):
            ProcessContext.create(_params([path, path]), empty, empty, empty, empty)

    def test_calibration_geometry_mismatch(self, make_ser):
        empty = CalibrationImage.new_empty()
        dark = CalibrationImage(np.zeros((1, 10, 10), dtype=np.float32))
        with pytest.raises(ResourceError):
            ProcessContext.create(_params([make_ser()]), empty, dark, empty, empty)

    def test_hot_pixel_map_geometry_mismatch(self, make_ser, tmp_path):
        hp = tmp_path / "hp.yaml"
        hp.write_text("sensor_width: 10\nsensor_height: 10\n", encoding="utf-8")
        empty = CalibrationImage.new_empty()
        with pytest.raises(ResourceError):
            ProcessContext.create(_params([make_ser()], hot_pixel_map=str(hp)), empty, empty, empty, empty)

    def test_from_parameters_builds_masters(self, make_ser):
        dark = make_ser(uniform_frames(16, 12, [10, 30]), name="dark.ser")
        lights = make_ser(uniform_frames(16, 12, [120]), name="lights.ser")

        with ProcessContext.from_parameters(_params([lights], dark_inputs=str(dark))) as ctx:
            np.testing.assert_allclose(ctx.master_dark.image, 20.0)
            frame = ctx.frame_records[0].get_calibrated_frame(ctx)
            np.testing.assert_allclose(frame.buffer, 100.0)


class TestFrameRecord:
    def test_with_methods_return_copies(self):
        fr = FrameRecord("a" * 64, 3, 16, 12)
        scored = fr.with_sigma(4.5)
        moved = scored.with_offset(Offset(1.0, -2.0)).with_rotation(0.25)

        assert fr.sigma == 0.0
        assert moved.sigma == 4.5
        assert moved.offset == Offset(1.0, -2.0)
        assert moved.computed_rotation == 0.25
        assert moved.key == fr.key == ("a" * 64, 3)

    def test_offset_addition(self):
        assert Offset(1.0, 2.0) + Offset(0.5, -3.0) == Offset(1.5, -1.0)

    def test_calibrated_frame_patches_hot_pixels(self, make_ser, make_context, tmp_path):
        frame = np.full((12, 16), 100.0)
        frame[5, 7] = 50000.0
        hp = tmp_path / "hp.yaml"
        hp.write_text("sensor_width: 16\nsensor_height: 12\nhotpixels:\n  - [7, 5]\n", encoding="utf-8")
        ctx = make_context([make_ser([frame])], hot_pixel_map=str(hp))

        fr = ctx.frame_records[0]
        assert fr.get_frame(ctx).buffer[0, 5, 7] == 50000.0
        assert fr.get_calibrated_frame(ctx).buffer[0, 5, 7] == pytest.approx(100.0)

    def test_timestamp_falls_back_to_container_start(self, make_ser, make_context):
        path = make_ser(date_time_utc=638000000000000000)
        ctx = make_context([path])
        assert ctx.frame_records[1].get_timestamp(ctx) == 638000000000000000

    def test_frame_timestamp(self, make_ser, make_context):
        path = make_ser(timestamps=[638000000000000000, 638000000000500000], date_time_utc=1)
        ctx = make_context([path])
        assert ctx.frame_records[1].get_timestamp(ctx) == 638000000000500000

from datetime import datetime, timezone

import numpy as np
import pytest

from sunstack_backend.datasource import ColorFormatId
from sunstack_backend.errors import (
    FormatError,
    HeaderError,
    IndexOutOfRangeError,
    ResourceError,
    SizeMismatchError,
    TruncatedReadError,
    UnsupportedFormatError,
)
from sunstack_backend.ser import HEADER_SIZE_BYTES, SerFile
from sunstack_backend.synthetic import build_ser_header, uniform_frames, write_ser_file
from sunstack_backend.timestamp import datetime_to_ticks, ticks_to_unix


class TestSerHeader:
    def setup_method(self):
        self.start = datetime(2023, 10, 14, 17, 30, tzinfo=timezone.utc)
        self.ticks = datetime_to_ticks(self.start)

    def test_round_trip_header_fields(self, make_ser):
        frames = [np.full((6, 8), 1000 + i) for i in range(3)]
        path = make_ser(
            frames,
            bit_depth=16,
            observer="K. Gill",
            instrument="ZWO ASI174MM",
            telescope="Lunt LS60",
            camera_series_id=42,
            date_time=self.ticks,
            date_time_utc=self.ticks,
        )
        ser = SerFile.open([str(path)])

        assert ser.file_id == "LUCAM-RECORDER"
        assert ser.camera_series_id == 42
        assert ser.color_id is ColorFormatId.MONO
        assert ser.image_width == 8
        assert ser.image_height == 6
        assert ser.pixel_depth == 16
        assert ser.frame_count == 3
        assert ser.observer == "K. Gill"
        assert ser.instrument == "ZWO ASI174MM"
        assert ser.telescope == "Lunt LS60"
        assert ser.date_time == self.ticks
        assert ser.date_time_utc == self.ticks
        assert ser.byte_order == "<"

    def test_header_details(self, make_ser):
        path = make_ser(date_time_utc=self.ticks)
        details = SerFile.open(str(path)).header_details()

        assert details["frame_count"] == 2
        assert details["byte_order"] == "little"
        assert details["date_time_utc"].startswith("2023-10-14T17:30:00")
        assert details["date_time"] is None
        assert details["expected_size"] == details["total_size"]

    def test_big_endian_header(self, make_ser):
        frames = [np.full((4, 5), 258), np.full((4, 5), 4097)]
        path = make_ser(frames, big_endian=True)
        ser = SerFile.open([str(path)])

        assert ser.byte_order == ">"
        assert (ser.image_width, ser.image_height, ser.frame_count) == (5, 4, 2)
        ser.validate()
        assert np.all(ser.get_frame(0).buffer == 258)
        assert np.all(ser.get_frame(1).buffer == 4097)

    def test_undersized_header(self, tmp_path):
        p = tmp_path / "short.ser"
        p.write_bytes(b"LUCAM-RECORDER" + b"\x00" * 20)
        with pytest.raises(HeaderError):
            SerFile.open([str(p)])

    def test_invalid_endianness_flag(self, tmp_path):
        header = bytearray(build_ser_header(4, 4, 1))
        header[22:26] = (7).to_bytes(4, "little")
        p = tmp_path / "bad.ser"
        p.write_bytes(bytes(header) + b"\x00" * 32)
        with pytest.raises(HeaderError):
            SerFile.open([str(p)])

    def test_unsupported_depth(self, tmp_path):
        p = tmp_path / "depth12.ser"
        p.write_bytes(build_ser_header(4, 4, 1, bit_depth=12) + b"\x00" * 32)
        with pytest.raises(UnsupportedFormatError):
            SerFile.open([str(p)])

    def test_missing_file(self, tmp_path):
        with pytest.raises(ResourceError):
            SerFile.open([str(tmp_path / "nope.ser")])

    def test_multiple_paths_rejected(self, make_ser):
        a = make_ser()
        b = make_ser()
        with pytest.raises(ResourceError):
            SerFile.open([str(a), str(b)])


class TestSerValidation:
    def test_validate_exact_size(self, make_ser):
        ser = SerFile.open(str(make_ser()))
        assert ser.expected_size() == HEADER_SIZE_BYTES + 2 * 16 * 12 * 2
        ser.validate()

    def test_validate_truncated_by_one_byte(self, make_ser):
        path = make_ser()
        data = path.read_bytes()
        path.write_bytes(data[:-1])
        with pytest.raises(SizeMismatchError):
            SerFile.open(str(path)).validate()

    def test_validate_extended_by_one_byte(self, make_ser):
        path = make_ser()
        path.write_bytes(path.read_bytes() + b"\x00")
        with pytest.raises(SizeMismatchError) as exc:
            SerFile.open(str(path)).validate()
        assert isinstance(exc.value, FormatError)

    def test_declared_count_exceeds_frames(self, make_ser):
        frames = uniform_frames(8, 8, range(9))
        path = make_ser(frames, declared_frame_count=10)
        ser = SerFile.open(str(path))

        with pytest.raises(SizeMismatchError):
            ser.validate()
        for i in range(9):
            assert np.all(ser.get_frame(i).buffer == i)
        with pytest.raises(TruncatedReadError):
            ser.get_frame(9)
        with pytest.raises(IndexOutOfRangeError):
            ser.get_frame(10)


class TestSerFrames:
    @pytest.mark.parametrize("bit_depth, scale", [(8, 1), (16, 257)])
    def test_frame_values(self, make_ser, bit_depth, scale):
        rng = np.random.default_rng(7)
        frames = [rng.integers(0, 255, size=(10, 14)) * scale for _ in range(4)]
        ser = SerFile.open(str(make_ser(frames, bit_depth=bit_depth)))
        ser.validate()

        for i, expected in enumerate(frames):
            frame = ser.get_frame(i)
            assert frame.buffer.dtype == np.float32
            assert frame.buffer.shape == (1, 10, 14)
            np.testing.assert_array_equal(frame.buffer[0], expected.astype(np.float32))

    def test_index_out_of_range(self, make_ser):
        ser = SerFile.open(str(make_ser()))
        with pytest.raises(IndexOutOfRangeError):
            ser.get_frame(2)
        with pytest.raises(IndexOutOfRangeError):
            ser.get_frame_timestamp(5)

    def test_timestamps(self, make_ser):
        base = datetime_to_ticks(datetime(2024, 4, 8, 18, 0, tzinfo=timezone.utc))
        stamps = [base, base + 100_000, base + 200_000]
        frames = uniform_frames(8, 8, [1, 2, 3])
        ser = SerFile.open(str(make_ser(frames, timestamps=stamps)))

        assert ser.has_timestamps()
        ser.validate()
        assert [ser.get_frame_timestamp(i) for i in range(3)] == stamps
        assert ser.get_frame(2).timestamp == stamps[2]
        assert ticks_to_unix(stamps[1]) - ticks_to_unix(stamps[0]) == pytest.approx(0.01)

    def test_no_timestamps_returns_zero(self, make_ser):
        ser = SerFile.open(str(make_ser()))
        assert not ser.has_timestamps()
        assert ser.get_frame_timestamp(0) == 0
        assert ser.get_frame(1).timestamp == 0

    def test_bayer_frame_has_three_bands(self, make_ser):
        frames = uniform_frames(16, 12, [1000, 1000])
        ser = SerFile.open(str(make_ser(frames, color_id=ColorFormatId.BAYER_RGGB)))
        frame = ser.get_frame(0)

        assert ser.num_bands == 3
        assert frame.buffer.shape == (3, 12, 16)
        np.testing.assert_allclose(frame.buffer, 1000.0)

    @pytest.mark.parametrize("color_id", [ColorFormatId.RGB, ColorFormatId.BAYER_CYYM])
    def test_unsupported_color_mode(self, make_ser, color_id):
        ser = SerFile.open(str(make_ser(color_id=color_id)))
        with pytest.raises(UnsupportedFormatError):
            ser.get_frame(0)

    def test_content_hash_ignores_path(self, make_ser, tmp_path):
        path = make_ser()
        copy = tmp_path / "copy.ser"
        copy.write_bytes(path.read_bytes())
        assert SerFile.open(str(path)).file_hash() == SerFile.open(str(copy)).file_hash()

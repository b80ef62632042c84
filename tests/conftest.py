import numpy as np
import pytest

from sunstack_backend.calibration import CalibrationImage
from sunstack_backend.context import ProcessContext
from sunstack_backend.parameters import PipelineParameters
from sunstack_backend.synthetic import uniform_frames, write_ser_file
from sunstack_backend.target import Target


@pytest.fixture
def make_ser(tmp_path):
    """Factory writing a SER file under tmp_path; returns its path."""
    counter = {"n": 0}

    def _make(frames=None, name=None, **kwargs):
        if frames is None:
            frames = uniform_frames(16, 12, [100, 300])
        counter["n"] += 1
        path = tmp_path / (name or f"capture_{counter['n']}.ser")
        return write_ser_file(path, frames, **kwargs)

    return _make


@pytest.fixture
def make_context():
    """Factory building a ProcessContext over SER paths with no calibration."""
    contexts = []

    def _make(paths, **overrides):
        params = PipelineParameters(
            input_files=tuple(str(p) for p in paths),
            target=overrides.pop("target", Target.NONE),
            **overrides,
        )
        empty = CalibrationImage.new_empty()
        ctx = ProcessContext.create(params, empty, empty, empty, empty)
        contexts.append(ctx)
        return ctx

    yield _make

    for ctx in contexts:
        ctx.close()


def gradient_frame(width: int, height: int, scale: float = 10.0) -> np.ndarray:
    yy, xx = np.mgrid[0:height, 0:width]
    return (xx + yy * width) * scale

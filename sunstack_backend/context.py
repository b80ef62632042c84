"""
Shared state of one pipeline run.

The context owns the parameters, the master calibration images, the
hot pixel mask and the source registry; all of these are read-only once
``create`` returns and may be read from worker threads. ``frame_records``
is replaced wholesale by the caller after each stage.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from sunstack_backend.calibration import CalibrationImage, check_geometry
from sunstack_backend.datasource import FrameSource
from sunstack_backend.errors import ResourceError
from sunstack_backend.framerecord import FrameRecord
from sunstack_backend.hotpixel import create_hotpixel_mask, load_hotpixel_map
from sunstack_backend.parameters import PipelineParameters
from sunstack_backend.registry import SourceRegistry

logger = logging.getLogger(__name__)


@dataclass
class ProcessContext:
    parameters: PipelineParameters
    master_flat: CalibrationImage
    master_dark: CalibrationImage
    master_darkflat: CalibrationImage
    master_bias: CalibrationImage
    registry: SourceRegistry
    hotpixel_mask: Optional[np.ndarray] = None
    frame_records: List[FrameRecord] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        parameters: PipelineParameters,
        master_flat: CalibrationImage,
        master_dark: CalibrationImage,
        master_darkflat: CalibrationImage,
        master_bias: CalibrationImage,
        registry: Optional[SourceRegistry] = None,
    ) -> "ProcessContext":
        """Open every input, build the hot pixel mask and one record per frame."""
        registry = registry if registry is not None else SourceRegistry()

        hotpixel_mask = None
        if parameters.hot_pixel_map:
            logger.info("Loading hot pixel map from %s", parameters.hot_pixel_map)
            hotpixel_mask = create_hotpixel_mask(load_hotpixel_map(parameters.hot_pixel_map))

        ctx = cls(
            parameters=parameters,
            master_flat=master_flat,
            master_dark=master_dark,
            master_darkflat=master_darkflat,
            master_bias=master_bias,
            registry=registry,
            hotpixel_mask=hotpixel_mask,
        )

        try:
            records: List[FrameRecord] = []
            for path in parameters.input_files:
                file_hash = registry.open(path)
                source = registry.get(file_hash)
                ctx._check_source_geometry(source)
                records.extend(_records_for_source(file_hash, source, parameters.max_frames))
        except Exception:
            registry.close()
            raise

        ctx.frame_records = records
        logger.info("Context created: %d sources, %d frame records", len(registry), len(records))
        return ctx

    @classmethod
    def from_parameters(cls, parameters: PipelineParameters) -> "ProcessContext":
        """Build the master calibration images named in the parameters, then create."""
        method = parameters.calibration_method
        return cls.create(
            parameters,
            CalibrationImage.build(parameters.flat_inputs, method),
            CalibrationImage.build(parameters.dark_inputs, method),
            CalibrationImage.build(parameters.darkflat_inputs, method),
            CalibrationImage.build(parameters.bias_inputs, method),
        )

    def _check_source_geometry(self, source: FrameSource) -> None:
        bands, h, w = source.num_bands, source.image_height, source.image_width
        for name, cal in (
            ("flat", self.master_flat),
            ("dark", self.master_dark),
            ("darkflat", self.master_darkflat),
            ("bias", self.master_bias),
        ):
            check_geometry(name, cal, bands, h, w)
        if self.hotpixel_mask is not None and self.hotpixel_mask.shape != (h, w):
            raise ResourceError(
                f"Hot pixel map sensor size {self.hotpixel_mask.shape[::-1]} does not match "
                f"{source.source_file} ({w}, {h})"
            )

    def get_source(self, source_id: str) -> FrameSource:
        return self.registry.get(source_id)

    def close(self) -> None:
        self.registry.close()

    def __enter__(self) -> "ProcessContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def _records_for_source(file_hash: str, source: FrameSource, max_frames: Optional[int]) -> List[FrameRecord]:
    count = source.frame_count
    if max_frames is not None:
        count = min(count, max_frames)
    return [
        FrameRecord(
            source_id=file_hash,
            frame_index=i,
            frame_width=source.image_width,
            frame_height=source.image_height,
        )
        for i in range(count)
    ]

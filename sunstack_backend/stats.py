from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import List, Sequence

from sunstack_backend.framerecord import FrameRecord
from sunstack_backend.limiting import round_half_away
from sunstack_backend.parameters import PipelineParameters


@dataclass
class ProcessStats:
    """Run summary written to the JSON report."""
    total_frames: int = 0
    num_frames_used: int = 0
    min_sigma: float = 0.0
    max_sigma: float = 0.0
    num_frames_discarded: int = 0
    num_frames_discarded_min_sigma: int = 0
    num_frames_discarded_max_sigma: int = 0
    num_frames_discarded_top_percentage: int = 0
    num_frames_discarded_max_frames: int = 0
    initial_rotation: float = 0.0
    quality_values: List[float] = field(default_factory=list)

    def record_sigma(self, records: Sequence[FrameRecord]) -> None:
        self.total_frames = len(records)
        self.quality_values = [float(r.sigma) for r in records]
        if self.quality_values:
            self.min_sigma = min(self.quality_values)
            self.max_sigma = max(self.quality_values)

    def record_limiting(
        self,
        before: Sequence[FrameRecord],
        after: Sequence[FrameRecord],
        params: PipelineParameters,
    ) -> None:
        """Attribute every discarded frame to the rule that dropped it."""
        below = [r for r in before if params.min_sigma is not None and r.sigma < params.min_sigma]
        above = [
            r for r in before
            if params.max_sigma is not None and r.sigma > params.max_sigma
            and not (params.min_sigma is not None and r.sigma < params.min_sigma)
        ]
        within = len(before) - len(below) - len(above)
        after_pct = within
        if params.top_percentage is not None:
            after_pct = round_half_away(params.top_percentage / 100.0 * within)

        self.num_frames_discarded_min_sigma = len(below)
        self.num_frames_discarded_max_sigma = len(above)
        self.num_frames_discarded_top_percentage = within - after_pct
        self.num_frames_discarded_max_frames = max(0, after_pct - len(after))
        self.num_frames_discarded = len(before) - len(after)
        self.num_frames_used = len(after)

    def to_dict(self) -> dict:
        return asdict(self)

    def write_json(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return p

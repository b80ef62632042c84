"""
Progress notifications for the per-record stages.

Stages only ever see a plain callable taking the record they finished.
``ProgressChannel`` turns those calls into ProgressEvent messages and hands
each one to every subscriber on the calling thread; nothing is retained.
Callbacks are invoked from worker threads; ordering across workers is not
guaranteed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from sunstack_backend.framerecord import FrameRecord

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[FrameRecord], None]


def no_progress(record: FrameRecord) -> None:
    pass


@dataclass(frozen=True)
class ProgressEvent:
    stage: str
    current: int
    total: int
    source_id: Optional[str] = None
    frame_index: Optional[int] = None


class ProgressChannel:
    def __init__(self):
        self._subscribers: List[Callable[[ProgressEvent], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, fn: Callable[[ProgressEvent], None]) -> None:
        with self._lock:
            self._subscribers.append(fn)

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for fn in subscribers:
            fn(event)

    def callback_for(self, stage: str, total: int) -> ProgressCallback:
        """A thread-safe per-record callback for one stage."""
        counter = {"n": 0}
        lock = threading.Lock()

        def _callback(record: FrameRecord) -> None:
            with lock:
                counter["n"] += 1
                current = counter["n"]
            self.publish(ProgressEvent(
                stage=stage,
                current=current,
                total=total,
                source_id=record.source_id,
                frame_index=record.frame_index,
            ))

        return _callback

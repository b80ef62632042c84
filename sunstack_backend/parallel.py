"""
Worker pool helpers for the data-parallel stages.

Stages share read-only state (registry, calibration images), so a thread
pool is used; the heavy per-pixel work runs inside numpy and OpenCV.
"""

import os
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def worker_count(max_workers: Optional[int] = None) -> int:
    cpu_cores = os.cpu_count() or 1
    if max_workers is None or max_workers <= 0:
        return cpu_cores
    return min(int(max_workers), cpu_cores)


def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: Optional[int] = None,
) -> List[R]:
    """Apply func to every item on the worker pool, preserving input order.

    The first exception raised by a worker propagates to the caller.
    """
    items = list(items)
    workers = worker_count(max_workers)
    if workers <= 1 or len(items) <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=workers) as exe:
        return list(exe.map(func, items))


def contiguous_chunks(items: Sequence[T], chunk_size: int) -> List[Sequence[T]]:
    chunk_size = max(1, int(chunk_size))
    return [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]

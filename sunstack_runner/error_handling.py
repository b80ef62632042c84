"""
Stage error handling for the runner.

Failures are never retried; they are tagged with the stage that
raised them and propagated so the run ends with an error status.
"""

import functools
from typing import Callable

from sunstack_backend.errors import ProcessingError


class StageError(ProcessingError):
    """Unexpected (non-pipeline) exception raised inside a stage"""
    def __init__(self, stage: str, message: str, original_error: Exception | None = None):
        super().__init__(f"{stage}: {message}", original_error=original_error)
        self.stage = stage


def stage_guard(stage_name: str) -> Callable:
    """
    Decorator for pipeline stages.

    ProcessingErrors gain the failing stage name in ``err.stage``; anything
    else is wrapped into a StageError for that stage.
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except ProcessingError as e:
                if e.stage is None:
                    e.stage = stage_name
                raise
            except Exception as e:
                raise StageError(stage_name, str(e), original_error=e) from e
        return wrapper
    return decorator

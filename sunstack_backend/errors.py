"""
Error taxonomy for the stacking pipeline.

Every failure the pipeline reports is a ProcessingError. Subclasses group
failures by cause so callers can tell malformed data from unsatisfiable
parameters.
"""

import logging
import traceback
from typing import Optional


class ProcessingError(Exception):
    """Base class for pipeline errors"""
    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.original_error = original_error
        self.stage: Optional[str] = None
        self.log_error()

    def log_error(self):
        """Log error details"""
        logger = logging.getLogger('ProcessingError')
        logger.error(f"{type(self).__name__}: {self}")
        if self.original_error:
            logger.error(f"Original Error: {self.original_error}")
            logger.error(
                "".join(traceback.format_exception(self.original_error))
            )


class FormatError(ProcessingError):
    """Corrupt or unsupported container data"""
    pass


class HeaderError(FormatError):
    pass


class SizeMismatchError(FormatError):
    def __init__(self, actual_size: int, expected_size: int):
        self.actual_size = actual_size
        self.expected_size = expected_size
        super().__init__(f"Size mismatch: {actual_size} != {expected_size}")


class IndexOutOfRangeError(FormatError):
    def __init__(self, index: int, frame_count: int):
        self.index = index
        self.frame_count = frame_count
        super().__init__(f"Frame number out of range: {index} >= {frame_count}")


class TruncatedReadError(FormatError):
    pass


class UnsupportedFormatError(FormatError):
    pass


class ConfigError(ProcessingError):
    """Invalid run configuration, raised before any frame I/O"""
    pass


class EmptyResultError(ProcessingError):
    """Valid parameters that leave nothing to process"""
    pass


class NoFramesAddedError(EmptyResultError):
    def __init__(self, message: str = "No frames have been added, cannot finalize stack"):
        super().__init__(message)


class ResourceError(ProcessingError):
    """Input resources that cannot be opened or used"""
    pass


class AlreadyOpenError(ResourceError):
    def __init__(self, file_hash: str):
        self.file_hash = file_hash
        super().__init__(f"File already opened: {file_hash}")


class StaleRecordError(ProcessingError):
    """A frame record references a source that is not in the registry"""
    pass

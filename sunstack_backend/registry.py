"""Registry of opened frame sources, keyed by content hash."""

from __future__ import annotations

import logging
from typing import Iterator, Type

from sunstack_backend.datasource import FrameSource
from sunstack_backend.errors import AlreadyOpenError, StaleRecordError
from sunstack_backend.ser import SerFile

logger = logging.getLogger(__name__)


class SourceRegistry:
    def __init__(self, source_type: Type[FrameSource] = SerFile):
        self.source_type = source_type
        self._sources: dict[str, FrameSource] = {}

    def open(self, paths: list[str] | str) -> str:
        """Open, validate and register a source. Returns its content hash."""
        source = self.source_type.open(paths)
        try:
            source.validate()
            file_hash = source.file_hash()
            if file_hash in self._sources:
                raise AlreadyOpenError(file_hash)
        except Exception:
            source.close()
            raise

        self._sources[file_hash] = source
        logger.info("Registered %s as %s", source.source_file, file_hash[:12])
        return file_hash

    def contains(self, file_hash: str) -> bool:
        return file_hash in self._sources

    def get(self, file_hash: str) -> FrameSource:
        try:
            return self._sources[file_hash]
        except KeyError:
            raise StaleRecordError(f"No source registered for hash {file_hash}")

    def items(self) -> Iterator[tuple[str, FrameSource]]:
        return iter(list(self._sources.items()))

    def __len__(self) -> int:
        return len(self._sources)

    def close(self) -> None:
        for source in self._sources.values():
            source.close()

"""Route reads to the transport named in each server's endpoint."""

from __future__ import annotations

from typing import List, Mapping, Sequence, Tuple

from core.models import ServerSource
from core.ports import LogReaderPort

DEFAULT_TRANSPORT = "local"


class ReaderRouter:
    """LogReaderPort that delegates on ``endpoint["type"]``."""

    def __init__(self, readers: Mapping[str, LogReaderPort]) -> None:
        self._readers = dict(readers)

    def _reader_for(self, server: ServerSource) -> LogReaderPort:
        transport = str(server.endpoint.get("type", DEFAULT_TRANSPORT)).lower()
        reader = self._readers.get(transport)
        if reader is None:
            raise ValueError(f"Unsupported endpoint type {transport!r} for server {server.server_id}")
        return reader

    async def read_lines_since(self, server: ServerSource, offset: int) -> Tuple[List[str], int]:
        return await self._reader_for(server).read_lines_since(server, offset)

    async def list_death_log_files(self, server: ServerSource) -> Sequence[str]:
        return await self._reader_for(server).list_death_log_files(server)

    async def read_file_content(self, server: ServerSource, filename: str) -> str:
        return await self._reader_for(server).read_file_content(server, filename)

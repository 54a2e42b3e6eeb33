"""Filesystem log reader adapter.

Reads server logs and death logs from a local directory, for hosts where the
game server's files are mounted or synced onto the machine running the
watcher. Endpoint shape::

    {"type": "local", "log_path": ".../Deadside.log", "deathlog_dir": ".../deathlogs"}
"""

from __future__ import annotations

import asyncio
import os
from typing import List, Sequence, Tuple

from core.cursors import sort_death_log_files
from core.errors import FileTruncated, SourceNotFound
from core.models import ServerSource

DEATH_LOG_SUFFIX = ".csv"


def split_complete_lines(content: str) -> List[str]:
    """Return only newline-terminated lines.

    A trailing fragment is still being written by the game server and is
    picked up on a later read once it is complete.
    """

    lines = content.split("\n")
    # The element after the final newline is either "" or an unfinished line.
    return [line.rstrip("\r") for line in lines[:-1]]


def lines_since(content: str, offset: int) -> Tuple[List[str], int]:
    """Slice the complete lines after ``offset``, signalling truncation."""

    lines = split_complete_lines(content)
    if len(lines) < offset:
        raise FileTruncated(len(lines))
    return lines[offset:], len(lines)


def _endpoint_path(server: ServerSource, key: str) -> str:
    path = server.endpoint.get(key)
    if not path:
        raise SourceNotFound(f"Server {server.server_id} has no {key} configured")
    return str(path)


def _read_text(path: str) -> str:
    try:
        with open(path, "rb") as handle:
            return handle.read().decode("utf-8", errors="replace")
    except FileNotFoundError as exc:
        raise SourceNotFound(f"No such file: {path}") from exc


def _list_csv(directory: str) -> List[str]:
    if not os.path.isdir(directory):
        raise SourceNotFound(f"No such directory: {directory}")
    found: List[str] = []
    for root, _dirs, files in os.walk(directory):
        for filename in files:
            if filename.lower().endswith(DEATH_LOG_SUFFIX):
                relative = os.path.relpath(os.path.join(root, filename), directory)
                found.append(relative.replace(os.sep, "/"))
    return sort_death_log_files(found)


class LocalLogReader:
    """LogReaderPort backed by the local filesystem."""

    async def read_lines_since(self, server: ServerSource, offset: int) -> Tuple[List[str], int]:
        path = _endpoint_path(server, "log_path")
        content = await asyncio.to_thread(_read_text, path)
        return lines_since(content, offset)

    async def list_death_log_files(self, server: ServerSource) -> Sequence[str]:
        directory = _endpoint_path(server, "deathlog_dir")
        return await asyncio.to_thread(_list_csv, directory)

    async def read_file_content(self, server: ServerSource, filename: str) -> str:
        directory = _endpoint_path(server, "deathlog_dir")
        return await asyncio.to_thread(_read_text, os.path.join(directory, filename))

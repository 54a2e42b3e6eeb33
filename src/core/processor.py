"""Per-server source processing.

This module is transport-agnostic. It only relies on ports for reads,
cursor storage and dispatch. Both processors enforce the same order:

1) Read what is new since the stored cursor (every read bounded by a timeout)
2) Classify lines into events
3) Dispatch events (notifications + stat mutations)
4) Commit the cursor

A failure before step 4 leaves the cursor untouched, so the same lines are
read again on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from core.classifier import classify_lines
from core.cursors import predates_registry
from core.deathlog import classify_death_log
from core.dispatcher import DispatchReport, EventDispatcher
from core.errors import FileTruncated
from core.models import ServerSource
from core.ports import CursorStorePort, LogReaderPort

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

SERVER_LOG = "server_log"
DEATH_LOG = "death_log"


class _TimedReads:
    def __init__(self, read_timeout: Optional[float]) -> None:
        self._read_timeout = read_timeout

    async def _timed(self, call: Awaitable[T]) -> T:
        # asyncio.TimeoutError propagates; the scheduler logs it and moves on.
        if self._read_timeout is None:
            return await call
        return await asyncio.wait_for(call, timeout=self._read_timeout)


class ServerLogProcessor(_TimedReads):
    """Incremental reader for the append-only server log."""

    source = SERVER_LOG

    def __init__(
        self,
        reader: LogReaderPort,
        store: CursorStorePort,
        dispatcher: EventDispatcher,
        read_timeout: Optional[float] = 30.0,
    ) -> None:
        super().__init__(read_timeout)
        self._reader = reader
        self._store = store
        self._dispatcher = dispatcher

    async def process(self, server: ServerSource) -> DispatchReport:
        server_id = server.server_id
        offset = self._store.get_offset(server_id)
        try:
            lines, new_offset = await self._timed(self._reader.read_lines_since(server, offset))
        except FileTruncated as exc:
            self._handle_rotation(server, exc.reported_size)
            return DispatchReport()

        if new_offset < offset:
            self._handle_rotation(server, new_offset)
            return DispatchReport()
        if not lines:
            return DispatchReport()

        events = classify_lines(lines)
        report = await self._dispatcher.dispatch(server, events)
        self._store.commit_offset(server_id, new_offset)
        LOGGER.info(
            "Server log %s: %s new lines, %s events, offset %s -> %s",
            server_id,
            len(lines),
            len(events),
            offset,
            new_offset,
        )
        return report

    def _handle_rotation(self, server: ServerSource, reported_size: int) -> None:
        if self._store.detect_rotation(server.server_id, reported_size):
            # The whole replacement file is read as new on the next tick; lines
            # seen before the rotation may be announced and scored again.
            LOGGER.info(
                "Log rotation detected for %s (size %s), resetting line offset",
                server.server_id,
                reported_size,
            )
            self._store.reset_offset(server.server_id)


class DeathLogProcessor(_TimedReads):
    """Ingests rotated CSV death logs, one unprocessed file at a time."""

    source = DEATH_LOG

    def __init__(
        self,
        reader: LogReaderPort,
        store: CursorStorePort,
        dispatcher: EventDispatcher,
        read_timeout: Optional[float] = 30.0,
    ) -> None:
        super().__init__(read_timeout)
        self._reader = reader
        self._store = store
        self._dispatcher = dispatcher

    async def process(self, server: ServerSource) -> DispatchReport:
        server_id = server.server_id
        total = DispatchReport()
        filenames = await self._timed(self._reader.list_death_log_files(server))
        registered = self._store.list_processed_files(server_id)

        for filename in filenames:
            if self._store.is_processed(server_id, filename):
                continue
            if predates_registry(filename, registered):
                LOGGER.debug("Skipping %s for %s, older than every registered file", filename, server_id)
                continue

            content = await self._timed(self._reader.read_file_content(server, filename))
            since = self._store.get_last_processed_timestamp(server_id)
            events = [
                item
                for item in classify_death_log(content)
                if since is None or (item.occurred_at is not None and item.occurred_at >= since)
            ]
            report = await self._dispatcher.dispatch(server, events)
            newest = max((item.occurred_at for item in events if item.occurred_at), default=None)
            self._store.commit_death_file(server_id, filename, newest)
            total.merge(report)
            LOGGER.info(
                "Processed death log file %s for %s, %s deaths",
                filename,
                server_id,
                len(events),
            )
        return total

"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for cursor storage, remote reads,
notifications and stat mutation so that the core can be reused with
different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol, Sequence, Tuple

from core.models import Notification, ServerSource


class CursorStorePort(Protocol):
    """Per-server cursor operations, always keyed by the stable server id."""

    def get_offset(self, server_id: str) -> int:
        ...

    def commit_offset(self, server_id: str, new_offset: int) -> None:
        ...

    def detect_rotation(self, server_id: str, reported_size: int) -> bool:
        ...

    def reset_offset(self, server_id: str) -> None:
        ...

    def is_processed(self, server_id: str, filename: str) -> bool:
        ...

    def mark_processed(self, server_id: str, filename: str) -> None:
        ...

    def prune_processed_files(self, server_id: str) -> int:
        ...

    def list_processed_files(self, server_id: str) -> List[str]:
        """Registered filenames, oldest first."""
        ...

    def get_last_processed_timestamp(self, server_id: str) -> Optional[datetime]:
        ...

    def commit_death_file(
        self, server_id: str, filename: str, newest_timestamp: Optional[datetime]
    ) -> None:
        ...


class LogReaderPort(Protocol):
    """Remote read capability supplied by a transport adapter."""

    async def read_lines_since(self, server: ServerSource, offset: int) -> Tuple[List[str], int]:
        ...

    async def list_death_log_files(self, server: ServerSource) -> Sequence[str]:
        ...

    async def read_file_content(self, server: ServerSource, filename: str) -> str:
        ...


class NotifierPort(Protocol):
    """Notification delivery required by the dispatcher."""

    async def send(self, notification: Notification) -> None:
        ...


class StatSinkPort(Protocol):
    """Player counters mutated by scored kills and deaths."""

    def increment_kills(self, player_id: str, name: str) -> None:
        ...

    def increment_deaths(self, player_id: str, name: str) -> None:
        ...

    def grant_currency(self, player_id: str, amount: int) -> None:
        ...

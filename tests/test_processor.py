from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

import pytest

from adapters.local_reader import lines_since
from core.cursors import files_to_prune, is_rotation, sort_death_log_files
from core.dispatcher import DispatchReport, EventDispatcher
from core.errors import RemoteConnectionError
from core.models import Notification, ServerSource
from core.processor import DeathLogProcessor, ServerLogProcessor

SERVER = ServerSource(
    server_id="main",
    name="Main",
    log_channel="https://example.invalid/log",
    killfeed_channel="https://example.invalid/killfeed",
)

KILL = "[2025.04.10-00.00.00:000][  1]LogSFPS: [Kill] PlayerB killed PlayerA with AK74 at distance 150"
AIRDROP = "[2025.04.10-00.00.01:000][  2]LogSFPS: AirDrop switched to Waiting"


class FakeCursorStore:
    def __init__(self) -> None:
        self.offsets: dict[str, int] = {}
        self.processed: dict[str, list[str]] = {}
        self.watermarks: dict[str, datetime] = {}

    def get_offset(self, server_id: str) -> int:
        return self.offsets.get(server_id, 0)

    def commit_offset(self, server_id: str, new_offset: int) -> None:
        self.offsets[server_id] = new_offset

    def detect_rotation(self, server_id: str, reported_size: int) -> bool:
        return is_rotation(reported_size, self.get_offset(server_id))

    def reset_offset(self, server_id: str) -> None:
        self.offsets[server_id] = 0

    def is_processed(self, server_id: str, filename: str) -> bool:
        return filename in self.processed.get(server_id, [])

    def mark_processed(self, server_id: str, filename: str) -> None:
        self.processed.setdefault(server_id, []).append(filename)
        self.prune_processed_files(server_id)

    def prune_processed_files(self, server_id: str) -> int:
        stale = files_to_prune(self.processed.get(server_id, []))
        self.processed[server_id] = [name for name in self.processed.get(server_id, []) if name not in stale]
        return len(stale)

    def list_processed_files(self, server_id: str) -> list[str]:
        return sort_death_log_files(self.processed.get(server_id, []))

    def get_last_processed_timestamp(self, server_id: str) -> Optional[datetime]:
        return self.watermarks.get(server_id)

    def commit_death_file(self, server_id: str, filename: str, newest_timestamp: Optional[datetime]) -> None:
        self.mark_processed(server_id, filename)
        if newest_timestamp is not None:
            current = self.watermarks.get(server_id)
            self.watermarks[server_id] = max(current, newest_timestamp) if current else newest_timestamp


class FakeReader:
    def __init__(self, lines: Optional[list[str]] = None, files: Optional[dict[str, str]] = None) -> None:
        self.lines = list(lines or [])
        self.files = dict(files or {})
        self.read_files: list[str] = []
        self.delay = 0.0

    async def read_lines_since(self, server: ServerSource, offset: int) -> tuple[list[str], int]:
        if self.delay:
            await asyncio.sleep(self.delay)
        content = "".join(f"{line}\n" for line in self.lines)
        return lines_since(content, offset)

    async def list_death_log_files(self, server: ServerSource) -> list[str]:
        return sorted(self.files)

    async def read_file_content(self, server: ServerSource, filename: str) -> str:
        self.read_files.append(filename)
        return self.files[filename]


class RecordingNotifier:
    def __init__(self, store: FakeCursorStore) -> None:
        self.sent: list[Notification] = []
        self.offsets_seen: list[int] = []
        self._store = store

    async def send(self, notification: Notification) -> None:
        self.offsets_seen.append(self._store.get_offset(SERVER.server_id))
        self.sent.append(notification)


class FakeStats:
    def __init__(self) -> None:
        self.kills: list[str] = []
        self.deaths: list[str] = []

    def increment_kills(self, player_id: str, name: str) -> None:
        self.kills.append(player_id)

    def increment_deaths(self, player_id: str, name: str) -> None:
        self.deaths.append(player_id)

    def grant_currency(self, player_id: str, amount: int) -> None:
        pass


class ExplodingDispatcher:
    async def dispatch(self, server, events) -> DispatchReport:
        raise RuntimeError("dispatch failed")


def _pipeline(reader: FakeReader):
    store = FakeCursorStore()
    notifier = RecordingNotifier(store)
    stats = FakeStats()
    dispatcher = EventDispatcher(notifier, stats)
    return store, notifier, stats, dispatcher


def test_server_log_commits_after_dispatch() -> None:
    reader = FakeReader([KILL, AIRDROP])
    store, notifier, stats, dispatcher = _pipeline(reader)
    processor = ServerLogProcessor(reader, store, dispatcher)

    report = asyncio.run(processor.process(SERVER))

    assert report.events == 2
    assert store.get_offset("main") == 2
    assert notifier.offsets_seen == [0, 0]
    assert stats.kills == ["PlayerB"]


def test_server_log_lines_are_not_counted_twice() -> None:
    reader = FakeReader([KILL])
    store, notifier, stats, dispatcher = _pipeline(reader)
    processor = ServerLogProcessor(reader, store, dispatcher)

    asyncio.run(processor.process(SERVER))
    asyncio.run(processor.process(SERVER))
    reader.lines.append(AIRDROP)
    report = asyncio.run(processor.process(SERVER))

    assert stats.kills == ["PlayerB"]
    assert report.events == 1
    assert store.get_offset("main") == 2


def test_truncated_log_resets_offset_and_rereads_on_next_tick() -> None:
    reader = FakeReader([AIRDROP] * 80)
    store, notifier, stats, dispatcher = _pipeline(reader)
    store.commit_offset("main", 500)
    processor = ServerLogProcessor(reader, store, dispatcher)

    report = asyncio.run(processor.process(SERVER))

    assert report.events == 0
    assert store.get_offset("main") == 0

    report = asyncio.run(processor.process(SERVER))

    assert report.events == 80
    assert store.get_offset("main") == 80


def test_dispatch_failure_leaves_offset_untouched() -> None:
    reader = FakeReader([KILL])
    store = FakeCursorStore()
    processor = ServerLogProcessor(reader, store, ExplodingDispatcher())

    with pytest.raises(RuntimeError):
        asyncio.run(processor.process(SERVER))

    assert store.get_offset("main") == 0


def test_read_timeout_commits_nothing() -> None:
    reader = FakeReader([KILL])
    reader.delay = 0.5
    store, notifier, stats, dispatcher = _pipeline(reader)
    processor = ServerLogProcessor(reader, store, dispatcher, read_timeout=0.01)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(processor.process(SERVER))

    assert store.get_offset("main") == 0
    assert notifier.sent == []


def test_death_log_skips_processed_files() -> None:
    reader = FakeReader(
        files={
            "2025.04.10-00.00.00.csv": "2025.04.10-00.00.00;PlayerA;123;PlayerB;456;AK74;150;\n",
            "2025.04.10-00.05.00.csv": "2025.04.10-00.05.00;PlayerC;789;PlayerC;789;falling;0;\n",
        }
    )
    store, notifier, stats, dispatcher = _pipeline(reader)
    store.mark_processed("main", "2025.04.10-00.00.00.csv")
    processor = DeathLogProcessor(reader, store, dispatcher)

    report = asyncio.run(processor.process(SERVER))

    assert reader.read_files == ["2025.04.10-00.05.00.csv"]
    assert report.events == 1
    assert stats.kills == [] and stats.deaths == []
    assert store.is_processed("main", "2025.04.10-00.05.00.csv")
    assert store.get_last_processed_timestamp("main") == datetime(2025, 4, 10, 0, 5, tzinfo=timezone.utc)


def test_death_log_filters_lines_before_watermark() -> None:
    content = (
        "2025.04.10-00.00.00;PlayerA;123;PlayerB;456;AK74;150;\n"
        "2025.04.10-00.10.00;PlayerD;111;PlayerE;222;SVD;300;\n"
    )
    reader = FakeReader(files={"late.csv": content})
    store, notifier, stats, dispatcher = _pipeline(reader)
    store.watermarks["main"] = datetime(2025, 4, 10, 0, 5, tzinfo=timezone.utc)
    processor = DeathLogProcessor(reader, store, dispatcher)

    report = asyncio.run(processor.process(SERVER))

    assert report.events == 1
    assert stats.kills == ["222"]
    assert store.get_last_processed_timestamp("main") == datetime(2025, 4, 10, 0, 10, tzinfo=timezone.utc)
    assert asyncio.run(processor.process(SERVER)).events == 0
    assert stats.kills == ["222"]


def test_death_log_file_without_new_lines_is_still_registered() -> None:
    reader = FakeReader(files={"empty.csv": "broken line\n"})
    store, notifier, stats, dispatcher = _pipeline(reader)
    processor = DeathLogProcessor(reader, store, dispatcher)

    report = asyncio.run(processor.process(SERVER))

    assert report.events == 0
    assert store.is_processed("main", "empty.csv")
    assert store.get_last_processed_timestamp("main") is None


def test_renamed_server_keeps_its_cursor() -> None:
    reader = FakeReader([KILL])
    store, notifier, stats, dispatcher = _pipeline(reader)
    processor = ServerLogProcessor(reader, store, dispatcher)

    asyncio.run(processor.process(SERVER))
    renamed = ServerSource(server_id="main", name="Main (renamed)", killfeed_channel=SERVER.killfeed_channel)
    report = asyncio.run(processor.process(renamed))

    assert report.events == 0
    assert stats.kills == ["PlayerB"]


class BrokenFileReader(FakeReader):
    def __init__(self, files: dict[str, str], broken: str) -> None:
        super().__init__(files=files)
        self.broken = broken

    async def read_file_content(self, server: ServerSource, filename: str) -> str:
        if filename == self.broken:
            self.read_files.append(filename)
            raise RemoteConnectionError("sftp session dropped")
        return await super().read_file_content(server, filename)


def test_failure_mid_tick_keeps_earlier_death_log_commits() -> None:
    reader = BrokenFileReader(
        files={
            "2025.04.10-00.00.00.csv": "2025.04.10-00.00.00;PlayerA;123;PlayerB;456;AK74;150;\n",
            "2025.04.10-00.05.00.csv": "2025.04.10-00.05.00;PlayerD;111;PlayerE;222;SVD;300;\n",
            "2025.04.10-00.10.00.csv": "2025.04.10-00.10.00;PlayerF;333;PlayerG;444;SVD;90;\n",
        },
        broken="2025.04.10-00.05.00.csv",
    )
    store, notifier, stats, dispatcher = _pipeline(reader)
    processor = DeathLogProcessor(reader, store, dispatcher)

    with pytest.raises(RemoteConnectionError):
        asyncio.run(processor.process(SERVER))

    assert store.is_processed("main", "2025.04.10-00.00.00.csv")
    assert not store.is_processed("main", "2025.04.10-00.05.00.csv")
    assert not store.is_processed("main", "2025.04.10-00.10.00.csv")
    assert stats.kills == ["456"]
    assert store.get_last_processed_timestamp("main") == datetime(2025, 4, 10, 0, 0, tzinfo=timezone.utc)


def test_pruned_death_logs_are_not_downloaded_again() -> None:
    names = [f"2025.04.10-{i:03d}.csv" for i in range(102)]
    reader = FakeReader(files={name: "" for name in names})
    store, notifier, stats, dispatcher = _pipeline(reader)
    for name in names[:101]:
        store.mark_processed("main", name)
    assert len(store.list_processed_files("main")) == 50
    processor = DeathLogProcessor(reader, store, dispatcher)

    asyncio.run(processor.process(SERVER))

    assert reader.read_files == [names[101]]
    assert store.is_processed("main", names[101])

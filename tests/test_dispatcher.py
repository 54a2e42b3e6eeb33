from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

from core.classifier import classify_lines
from core.config import DispatchConfig
from core.dispatcher import EventDispatcher, is_announced
from core.errors import ChannelUnavailable
from core.models import (
    AirdropStatus,
    ClassifiedEvent,
    GameplayEvent,
    HeliCrash,
    MissionFail,
    MissionRespawn,
    MissionStatus,
    Notification,
    PlayerDeath,
    PlayerJoin,
    PlayerKill,
    PlayerLeave,
    ServerSource,
)

SERVER = ServerSource(
    server_id="main",
    name="Main",
    log_channel="https://example.invalid/log",
    killfeed_channel="https://example.invalid/killfeed",
)


class FakeNotifier:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.sent: list[Notification] = []
        self._error = error

    async def send(self, notification: Notification) -> None:
        if self._error is not None:
            raise self._error
        self.sent.append(notification)


class FakeStats:
    def __init__(self, fail: bool = False) -> None:
        self.kills: list[tuple[str, str]] = []
        self.deaths: list[tuple[str, str]] = []
        self.currency: list[tuple[str, int]] = []
        self._fail = fail

    def increment_kills(self, player_id: str, name: str) -> None:
        if self._fail:
            raise RuntimeError("stats offline")
        self.kills.append((player_id, name))

    def increment_deaths(self, player_id: str, name: str) -> None:
        if self._fail:
            raise RuntimeError("stats offline")
        self.deaths.append((player_id, name))

    def grant_currency(self, player_id: str, amount: int) -> None:
        if self._fail:
            raise RuntimeError("stats offline")
        self.currency.append((player_id, amount))


def _items(*events) -> list[ClassifiedEvent]:
    stamp = datetime(2025, 4, 10, tzinfo=timezone.utc)
    return [ClassifiedEvent(event=event, occurred_at=stamp, raw_line="") for event in events]


def _dispatch(dispatcher: EventDispatcher, *events, server: ServerSource = SERVER):
    return asyncio.run(dispatcher.dispatch(server, _items(*events)))


def test_kill_goes_to_killfeed_and_scores_both_players() -> None:
    notifier = FakeNotifier()
    stats = FakeStats()
    dispatcher = EventDispatcher(notifier, stats)
    kill = PlayerKill(killer="PlayerB", victim="PlayerA", weapon="AK74", distance=150, killer_id="456", victim_id="123")

    report = _dispatch(dispatcher, kill)

    assert [n.channel_ref for n in notifier.sent] == [SERVER.killfeed_channel]
    assert notifier.sent[0].title == "Player Kill"
    assert stats.kills == [("456", "PlayerB")]
    assert stats.deaths == [("123", "PlayerA")]
    assert stats.currency == [("456", 10)]
    assert report.kills_scored == 1
    assert report.deaths_scored == 1


def test_kill_without_ids_is_keyed_by_name_and_uses_configured_reward() -> None:
    stats = FakeStats()
    dispatcher = EventDispatcher(FakeNotifier(), stats, DispatchConfig(kill_reward=25))

    _dispatch(dispatcher, PlayerKill(killer="PlayerB", victim="PlayerA", weapon="AK74", distance=1))

    assert stats.kills == [("PlayerB", "PlayerB")]
    assert stats.currency == [("PlayerB", 25)]


def test_suicide_is_announced_without_stat_changes() -> None:
    notifier = FakeNotifier()
    stats = FakeStats()
    dispatcher = EventDispatcher(notifier, stats)

    _dispatch(dispatcher, PlayerDeath(player="PlayerC", cause="falling", is_suicide=True, player_id="789"))

    assert len(notifier.sent) == 1
    assert notifier.sent[0].channel_ref == SERVER.killfeed_channel
    assert "fall damage" in notifier.sent[0].description
    assert stats.kills == [] and stats.deaths == [] and stats.currency == []


def test_non_suicide_death_counts_a_death() -> None:
    stats = FakeStats()
    dispatcher = EventDispatcher(FakeNotifier(), stats)

    _dispatch(dispatcher, PlayerDeath(player="PlayerC", cause="wolf", is_suicide=False))

    assert stats.deaths == [("PlayerC", "PlayerC")]
    assert stats.kills == []


def test_airdrop_and_mission_filters() -> None:
    notifier = FakeNotifier()
    dispatcher = EventDispatcher(notifier, FakeStats())

    report = _dispatch(
        dispatcher,
        AirdropStatus(status="Waiting"),
        AirdropStatus(status="Closed"),
        MissionStatus(name="GA_Mis1", status="READY"),
        MissionStatus(name="GA_Mis1", status="WAITING"),
        MissionRespawn(name="GA_Mis1", seconds=1200),
        MissionFail(name="GA_Mis1"),
        GameplayEvent(name="BunkerEvent_C_3", state="Active"),
    )

    assert [n.title for n in notifier.sent] == ["Airdrop Event", "Mission Available"]
    assert all(n.channel_ref == SERVER.log_channel for n in notifier.sent)
    assert report.events == 7


def test_tagged_heli_crash_only_announced_when_active() -> None:
    assert is_announced(HeliCrash(position="HelicrashManager_C_1", state="ACTIVE"))
    assert not is_announced(HeliCrash(position="HelicrashManager_C_1", state="INACTIVE"))
    assert is_announced(HeliCrash(position="X=1 Y=2"))


def test_few_joins_are_announced_individually() -> None:
    notifier = FakeNotifier()
    dispatcher = EventDispatcher(notifier, FakeStats())

    _dispatch(dispatcher, PlayerJoin(name="A"), PlayerJoin(name="B"), PlayerJoin(name="C"))

    assert [n.title for n in notifier.sent] == ["Player Connected"] * 3


def test_many_joins_collapse_into_one_summary() -> None:
    notifier = FakeNotifier()
    dispatcher = EventDispatcher(notifier, FakeStats())
    joins = [PlayerJoin(name=f"Player{i}") for i in range(12)]

    _dispatch(dispatcher, *joins, PlayerLeave(name="Gone"))

    titles = [n.title for n in notifier.sent]
    assert titles == ["Multiple Players Connected", "Player Disconnected"]
    summary = notifier.sent[0].description.splitlines()
    assert summary[0] == "• Player0"
    assert len(summary) == 11
    assert summary[-1] == "• And 2 more players..."


def test_notifier_failure_does_not_block_stats() -> None:
    stats = FakeStats()
    dispatcher = EventDispatcher(FakeNotifier(error=RuntimeError("discord down")), stats)

    report = _dispatch(dispatcher, PlayerKill(killer="B", victim="A", weapon="AK74", distance=5))

    assert stats.kills == [("B", "B")]
    assert report.notifications_dropped == 1
    assert report.notifications_sent == 0


def test_unavailable_channel_is_dropped() -> None:
    dispatcher = EventDispatcher(FakeNotifier(error=ChannelUnavailable("gone")), FakeStats())

    report = _dispatch(dispatcher, AirdropStatus(status="Dropped"))

    assert report.notifications_dropped == 1


def test_missing_channel_suppresses_notification_but_scores() -> None:
    server = ServerSource(server_id="quiet", name="Quiet")
    notifier = FakeNotifier()
    stats = FakeStats()
    dispatcher = EventDispatcher(notifier, stats)

    report = _dispatch(dispatcher, PlayerKill(killer="B", victim="A", weapon="AK74", distance=5), server=server)

    assert notifier.sent == []
    assert report.notifications_suppressed == 1
    assert stats.kills == [("B", "B")]


def test_stat_failure_does_not_block_notification() -> None:
    notifier = FakeNotifier()
    dispatcher = EventDispatcher(notifier, FakeStats(fail=True))

    report = _dispatch(dispatcher, PlayerKill(killer="B", victim="A", weapon="AK74", distance=5))

    assert len(notifier.sent) == 1
    assert report.kills_scored == 0


def test_server_log_suicides_leave_counters_untouched() -> None:
    notifier = FakeNotifier()
    stats = FakeStats()
    dispatcher = EventDispatcher(notifier, stats)
    items = classify_lines(
        [
            "LogSFPS: [Kill] PlayerC killed PlayerC with AK74 at distance 0",
            "LogSFPS: [Kill] PlayerD killed PlayerE with falling at distance 0",
        ]
    )

    report = asyncio.run(dispatcher.dispatch(SERVER, items))

    assert stats.kills == [] and stats.deaths == [] and stats.currency == []
    assert report.kills_scored == 0 and report.deaths_scored == 0
    assert [n.title for n in notifier.sent] == ["Player Death", "Player Death"]

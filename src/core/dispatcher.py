"""Event dispatch (core domain).

Routes each classified event to at most one notification and at most one
stat mutation. Delivery problems are logged and dropped here so they can
never hold back stat updates or the cursor commit that follows a batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from core.config import DispatchConfig
from core.errors import ChannelUnavailable
from core.formatting import format_event, format_player_summary
from core.models import (
    AirdropStatus,
    ClassifiedEvent,
    Event,
    HeliCrash,
    MissionStatus,
    Notification,
    PlayerDeath,
    PlayerJoin,
    PlayerKill,
    PlayerLeave,
    ServerSource,
    TraderSpawn,
    VehicleEvent,
)
from core.ports import NotifierPort, StatSinkPort

LOGGER = logging.getLogger(__name__)

ANNOUNCED_AIRDROP_STATUSES = frozenset({"waiting", "dropped", "active"})
ANNOUNCED_MISSION_STATUSES = frozenset({"ready", "active"})
# Manager-tagged heli/trader events switch through several states per
# occurrence; only the activation is announced.
ANNOUNCED_GAMEPLAY_STATES = frozenset({"active"})


@dataclass
class DispatchReport:
    """Counters for one dispatched batch."""

    events: int = 0
    notifications_sent: int = 0
    notifications_dropped: int = 0
    notifications_suppressed: int = 0
    kills_scored: int = 0
    deaths_scored: int = 0

    def merge(self, other: "DispatchReport") -> None:
        self.events += other.events
        self.notifications_sent += other.notifications_sent
        self.notifications_dropped += other.notifications_dropped
        self.notifications_suppressed += other.notifications_suppressed
        self.kills_scored += other.kills_scored
        self.deaths_scored += other.deaths_scored


def is_killfeed_event(event: Event) -> bool:
    return isinstance(event, (PlayerKill, PlayerDeath))


def is_announced(event: Event) -> bool:
    """Return True when the event produces a notification."""

    if isinstance(event, (PlayerKill, PlayerDeath, PlayerJoin, PlayerLeave, VehicleEvent)):
        return True
    if isinstance(event, AirdropStatus):
        return event.status.lower() in ANNOUNCED_AIRDROP_STATUSES
    if isinstance(event, MissionStatus):
        return event.status.lower() in ANNOUNCED_MISSION_STATUSES
    if isinstance(event, (HeliCrash, TraderSpawn)):
        return event.state is None or event.state.lower() in ANNOUNCED_GAMEPLAY_STATES
    return False


class EventDispatcher:
    """Turns classified events into notifications and stat mutations."""

    def __init__(
        self,
        notifier: NotifierPort,
        stats: StatSinkPort,
        config: Optional[DispatchConfig] = None,
    ) -> None:
        self._notifier = notifier
        self._stats = stats
        self._config = config or DispatchConfig()

    async def dispatch(self, server: ServerSource, events: Iterable[ClassifiedEvent]) -> DispatchReport:
        """Dispatch one sweep's worth of events for a single server."""

        report = DispatchReport()
        joins: List[ClassifiedEvent] = []
        leaves: List[ClassifiedEvent] = []

        for item in events:
            report.events += 1
            event = item.event
            # Presence notifications are held until the end of the batch so a
            # burst can be collapsed into one summary.
            if isinstance(event, PlayerJoin):
                joins.append(item)
                continue
            if isinstance(event, PlayerLeave):
                leaves.append(item)
                continue

            self._apply_stats(event, report)
            if is_announced(event):
                await self._announce(server, event, item.occurred_at, report)
            else:
                LOGGER.debug("Recorded %s for %s without announcement", event, server.server_id)

        await self._flush_presence(server, joins, True, report)
        await self._flush_presence(server, leaves, False, report)
        return report

    def _apply_stats(self, event: Event, report: DispatchReport) -> None:
        if isinstance(event, PlayerKill):
            killer_id = event.killer_id or event.killer
            victim_id = event.victim_id or event.victim
            try:
                self._stats.increment_kills(killer_id, event.killer)
                if self._config.kill_reward:
                    self._stats.grant_currency(killer_id, self._config.kill_reward)
                report.kills_scored += 1
            except Exception:
                LOGGER.exception("Failed to update killer stats for %s", event.killer)
            try:
                self._stats.increment_deaths(victim_id, event.victim)
                report.deaths_scored += 1
            except Exception:
                LOGGER.exception("Failed to update victim stats for %s", event.victim)
            return

        # Suicides are announced but never scored.
        if isinstance(event, PlayerDeath) and not event.is_suicide:
            try:
                self._stats.increment_deaths(event.player_id or event.player, event.player)
                report.deaths_scored += 1
            except Exception:
                LOGGER.exception("Failed to update death stats for %s", event.player)

    def _channel_for(self, server: ServerSource, event: Event) -> Optional[str]:
        if is_killfeed_event(event):
            return server.killfeed_channel
        return server.log_channel

    async def _announce(
        self,
        server: ServerSource,
        event: Event,
        occurred_at: Optional[datetime],
        report: DispatchReport,
    ) -> None:
        channel_ref = self._channel_for(server, event)
        if not channel_ref:
            report.notifications_suppressed += 1
            LOGGER.debug("No channel configured on %s for %s", server.server_id, type(event).__name__)
            return
        notification = format_event(event, server, channel_ref, occurred_at)
        if notification is not None:
            await self._deliver(server, notification, report)

    async def _flush_presence(
        self,
        server: ServerSource,
        items: List[ClassifiedEvent],
        joining: bool,
        report: DispatchReport,
    ) -> None:
        if not items:
            return
        names = list(dict.fromkeys(item.event.name for item in items))
        if len(names) <= self._config.batch_threshold:
            for item in items:
                await self._announce(server, item.event, item.occurred_at, report)
            return

        channel_ref = server.log_channel
        if not channel_ref:
            report.notifications_suppressed += 1
            return
        summary = format_player_summary(
            server, channel_ref, names, joining, name_limit=self._config.batch_name_limit
        )
        await self._deliver(server, summary, report)

    async def _deliver(self, server: ServerSource, notification: Notification, report: DispatchReport) -> None:
        try:
            await self._notifier.send(notification)
        except ChannelUnavailable as exc:
            report.notifications_dropped += 1
            LOGGER.warning("Dropped %r for %s: %s", notification.title, server.server_id, exc)
            return
        except Exception:
            report.notifications_dropped += 1
            LOGGER.exception("Failed to deliver %r for %s", notification.title, server.server_id)
            return
        report.notifications_sent += 1

"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any transport- or Discord-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class ServerSource:
    """A registered game server and where its notifications go.

    ``server_id`` is the stable key for all cursor state; ``name`` is only
    used for display and may change without orphaning history.
    """

    server_id: str
    name: str
    endpoint: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)
    log_channel: Optional[str] = None
    killfeed_channel: Optional[str] = None
    enabled: bool = True


@dataclass(frozen=True)
class CursorState:
    """Snapshot of the persisted cursor state for one server."""

    server_id: str
    line_offset: int
    last_processed_timestamp: Optional[datetime]
    processed_files: Tuple[str, ...]


@dataclass(frozen=True)
class PlayerJoin:
    name: str


@dataclass(frozen=True)
class PlayerLeave:
    name: str


@dataclass(frozen=True)
class PlayerKill:
    killer: str
    victim: str
    weapon: str
    distance: int
    killer_id: Optional[str] = None
    victim_id: Optional[str] = None


@dataclass(frozen=True)
class PlayerDeath:
    player: str
    cause: str
    is_suicide: bool
    player_id: Optional[str] = None


@dataclass(frozen=True)
class AirdropStatus:
    status: str


@dataclass(frozen=True)
class MissionStatus:
    name: str
    status: str


@dataclass(frozen=True)
class MissionRespawn:
    name: str
    seconds: int


@dataclass(frozen=True)
class MissionFail:
    name: str


@dataclass(frozen=True)
class HeliCrash:
    # Manager-tagged gameplay events carry the event identifier instead of
    # coordinates, together with the state they switched to.
    position: str
    state: Optional[str] = None


@dataclass(frozen=True)
class TraderSpawn:
    position: str
    state: Optional[str] = None


@dataclass(frozen=True)
class GameplayEvent:
    """Gameplay event switch that no specific rule claimed."""

    name: str
    state: str


VEHICLE_SPAWN = "spawn"
VEHICLE_ADD = "add"
VEHICLE_REMOVE = "remove"


@dataclass(frozen=True)
class VehicleEvent:
    vehicle_id: str
    kind: str
    total_after: Optional[int] = None


Event = Union[
    PlayerJoin,
    PlayerLeave,
    PlayerKill,
    PlayerDeath,
    AirdropStatus,
    MissionStatus,
    MissionRespawn,
    MissionFail,
    HeliCrash,
    TraderSpawn,
    GameplayEvent,
    VehicleEvent,
]


@dataclass(frozen=True)
class ClassifiedEvent:
    """An event together with the timestamp and raw line it came from."""

    event: Event
    occurred_at: Optional[datetime]
    raw_line: str


@dataclass(frozen=True)
class NotificationField:
    name: str
    value: str
    inline: bool = True


@dataclass(frozen=True)
class Notification:
    """Fully-formed message handed to the notifier adapter."""

    channel_ref: str
    title: str
    description: str
    color: int
    fields: Tuple[NotificationField, ...] = ()
    footer: str = ""
    timestamp: Optional[datetime] = None

"""Shared notification formatting helpers.

Keeping formatting here prevents drift between notifier adapters and keeps
messages consistent regardless of delivery channel.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from core.models import (
    AirdropStatus,
    Event,
    HeliCrash,
    MissionStatus,
    Notification,
    NotificationField,
    PlayerDeath,
    PlayerJoin,
    PlayerKill,
    PlayerLeave,
    ServerSource,
    TraderSpawn,
    VehicleEvent,
)

COLOR_KILL = 0xFF0000
COLOR_DEATH = 0x808080
COLOR_JOIN = 0x00FF00
COLOR_LEAVE = 0xFF0000
COLOR_AIRDROP = 0x0000FF
COLOR_HELI = 0x964B00
COLOR_TRADER = 0x008000
COLOR_MISSION = 0x9400D3
COLOR_VEHICLE = 0x1ABC9C

FOOTER_TIME_FORMAT = "%Y.%m.%d-%H.%M.%S"


def format_footer(server: ServerSource, occurred_at: Optional[datetime]) -> str:
    if occurred_at is None:
        return server.name
    return f"{occurred_at.strftime(FOOTER_TIME_FORMAT)} • {server.name}"


def format_cause(cause: str) -> str:
    """Return a readable death cause ("suicide_by_relocation" -> "suicide by relocation")."""

    readable = cause.replace("_", " ").strip()
    if readable.lower() == "falling":
        return "fall damage"
    return readable


def _details(text: str) -> tuple[NotificationField, ...]:
    return (NotificationField(name="Details", value=text, inline=False),)


def format_event(
    event: Event,
    server: ServerSource,
    channel_ref: str,
    occurred_at: Optional[datetime] = None,
) -> Optional[Notification]:
    """Return the notification for an announceable event, or None.

    Whether an event is announced at all is decided by the dispatcher; this
    only covers the message shape.
    """

    footer = format_footer(server, occurred_at)

    def build(title: str, description: str, color: int, fields: tuple = ()) -> Notification:
        return Notification(
            channel_ref=channel_ref,
            title=title,
            description=description,
            color=color,
            fields=fields,
            footer=footer,
            timestamp=occurred_at,
        )

    if isinstance(event, PlayerKill):
        return build(
            "Player Kill",
            f"{event.killer} killed {event.victim}",
            COLOR_KILL,
            (
                NotificationField("Weapon", event.weapon),
                NotificationField("Distance", f"{event.distance}m"),
            ),
        )
    if isinstance(event, PlayerDeath):
        return build("Player Death", f"{event.player} died from {format_cause(event.cause)}", COLOR_DEATH)
    if isinstance(event, PlayerJoin):
        return build("Player Connected", f"{event.name} has joined the server", COLOR_JOIN)
    if isinstance(event, PlayerLeave):
        return build("Player Disconnected", f"{event.name} has left the server", COLOR_LEAVE)
    if isinstance(event, AirdropStatus):
        if event.status.lower() == "waiting":
            description = "An airdrop is inbound!"
        else:
            description = "An airdrop has been deployed!"
        return build("Airdrop Event", description, COLOR_AIRDROP, _details(f"Status: {event.status}"))
    if isinstance(event, MissionStatus):
        return build(
            "Mission Available",
            "A new mission is active!",
            COLOR_MISSION,
            _details(f"Mission: {event.name}\nStatus: {event.status}"),
        )
    if isinstance(event, HeliCrash):
        return build(
            "Helicopter Crash",
            "A helicopter has crashed nearby!",
            COLOR_HELI,
            _details(f"Location: {event.position}"),
        )
    if isinstance(event, TraderSpawn):
        return build(
            "Trader Event",
            "A special trader has appeared!",
            COLOR_TRADER,
            _details(f"Location: {event.position}"),
        )
    if isinstance(event, VehicleEvent):
        verb = {"spawn": "spawned", "add": "added", "remove": "removed"}.get(event.kind, event.kind)
        fields = [NotificationField("Vehicle", event.vehicle_id)]
        if event.total_after is not None:
            fields.append(NotificationField("Total", str(event.total_after)))
        return build("Vehicle Event", f"Vehicle {verb}", COLOR_VEHICLE, tuple(fields))
    return None


def format_player_summary(
    server: ServerSource,
    channel_ref: str,
    names: Sequence[str],
    joining: bool,
    name_limit: int = 10,
) -> Notification:
    """Summarize many joins or leaves from one sweep into a single message."""

    lines = [f"• {name}" for name in names[:name_limit]]
    if len(names) > name_limit:
        lines.append(f"• And {len(names) - name_limit} more players...")
    return Notification(
        channel_ref=channel_ref,
        title="Multiple Players Connected" if joining else "Multiple Players Disconnected",
        description="\n".join(lines),
        color=COLOR_JOIN if joining else COLOR_LEAVE,
        footer=server.name,
    )

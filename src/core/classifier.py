"""Server log classification (core domain).

Each rule is a (name, pattern, builder) triple. Rules are evaluated in the
order they appear in ``SERVER_LOG_RULES`` and the first match wins, so the
precedence between overlapping patterns is the order of this table:

- manager-tagged helicopter crash and roaming trader events come before the
  generic ``GameplayEvent ... switched to`` rule
- mission respawn, mission fail and mission status switch are separate rules
- ``[Kill]`` lines need the ``killed ... with ... at distance N`` shape, other
  ``[Death]`` lines become death-by-cause events
- a ``[Kill]`` line where killer and victim match, or whose weapon is an
  environmental cause, becomes a suicide death
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Sequence

from core.models import (
    VEHICLE_ADD,
    VEHICLE_REMOVE,
    VEHICLE_SPAWN,
    AirdropStatus,
    ClassifiedEvent,
    Event,
    GameplayEvent,
    HeliCrash,
    MissionFail,
    MissionRespawn,
    MissionStatus,
    PlayerDeath,
    PlayerJoin,
    PlayerKill,
    PlayerLeave,
    TraderSpawn,
    VehicleEvent,
)

LOGGER = logging.getLogger(__name__)

SUICIDE_CAUSES = frozenset(
    {"falling", "drowning", "bleeding", "starvation", "suicide_by_relocation"}
)

# [2025.04.10-00.00.00:123][ 42]LogSFPS: ...
TIMESTAMP_PREFIX = re.compile(
    r"^\[(?P<stamp>\d{4}\.\d{2}\.\d{2}-\d{2}\.\d{2}\.\d{2}):(?P<millis>\d{3})\]\[\s*\d+\]"
)
LOG_TIMESTAMP_FORMAT = "%Y.%m.%d-%H.%M.%S"


@dataclass(frozen=True)
class ClassifierRule:
    """One entry of the ordered classification table."""

    name: str
    pattern: re.Pattern
    build: Callable[[re.Match], Event]


def is_suicide_cause(cause: str) -> bool:
    return cause.strip().lower() in SUICIDE_CAUSES


def is_suicide(victim: str, killer: str, weapon: str) -> bool:
    """Self-kills and environmental causes are suicides; anything else is a kill."""

    return victim == killer or is_suicide_cause(weapon)


def parse_count(raw: str, field_name: str) -> int:
    """Parse a non-negative integer field, raising ValueError with context."""

    value = int(raw)
    if value < 0:
        raise ValueError(f"{field_name} must be >= 0, got {raw!r}")
    return value


def _player_kill(match: re.Match) -> Event:
    killer = match["killer"].strip()
    victim = match["victim"].strip()
    weapon = match["weapon"].strip()
    distance = parse_count(match["distance"], "distance")
    if is_suicide(victim, killer, weapon):
        return PlayerDeath(player=victim, cause=weapon, is_suicide=True)
    return PlayerKill(killer=killer, victim=victim, weapon=weapon, distance=distance)


def _player_death(match: re.Match) -> Event:
    cause = match["cause"].strip()
    return PlayerDeath(
        player=match["player"].strip(),
        cause=cause,
        is_suicide=is_suicide_cause(cause),
    )


def _vehicle(kind: str) -> Callable[[re.Match], Event]:
    def build(match: re.Match) -> Event:
        total = match.groupdict().get("total")
        return VehicleEvent(
            vehicle_id=match["vehicle"].strip(),
            kind=kind,
            total_after=parse_count(total, "vehicle total") if total is not None else None,
        )

    return build


def _rule(name: str, pattern: str, build: Callable[[re.Match], Event]) -> ClassifierRule:
    return ClassifierRule(name=name, pattern=re.compile(pattern), build=build)


SERVER_LOG_RULES: tuple[ClassifierRule, ...] = (
    _rule(
        "player_join",
        r"LogSFPS: \[Login\] Player (?P<name>.+?) connected",
        lambda m: PlayerJoin(name=m["name"].strip()),
    ),
    _rule(
        "player_leave",
        r"LogSFPS: \[Logout\] Player (?P<name>.+?) disconnected",
        lambda m: PlayerLeave(name=m["name"].strip()),
    ),
    _rule(
        "player_kill",
        r"LogSFPS: \[Kill\] (?P<killer>.+?) killed (?P<victim>.+?) with (?P<weapon>.+?)"
        r" at distance (?P<distance>\S+)",
        _player_kill,
    ),
    _rule(
        "player_death",
        r"LogSFPS: \[Death\] (?P<player>.+?) died from (?P<cause>.+?)\s*$",
        _player_death,
    ),
    _rule(
        "heli_crash_event",
        r"LogSFPS: GameplayEvent (?P<event>HelicrashManager.+?)HelicrashEvent.+? switched to (?P<state>\w+)",
        lambda m: HeliCrash(position=m["event"].strip(" ._"), state=m["state"]),
    ),
    _rule(
        "roaming_trader_event",
        r"LogSFPS: GameplayEvent (?P<event>RoamingTraderManager.+?)RoamingTraderEvent.+?"
        r" switched to (?P<state>\w+)",
        lambda m: TraderSpawn(position=m["event"].strip(" ._"), state=m["state"]),
    ),
    _rule(
        "heli_crash",
        r"LogSFPS: Helicopter crash(?:ed| spawned) at (?:position )?(?P<position>.+?)\s*$",
        lambda m: HeliCrash(position=m["position"]),
    ),
    _rule(
        "trader_spawn",
        r"LogSFPS: Trader event started at (?P<position>.+?)\s*$",
        lambda m: TraderSpawn(position=m["position"]),
    ),
    _rule(
        "gameplay_event",
        r"LogSFPS: GameplayEvent (?P<name>.+?) switched to (?P<state>\w+)",
        lambda m: GameplayEvent(name=m["name"].strip(), state=m["state"]),
    ),
    _rule(
        "airdrop",
        r"LogSFPS: AirDrop switched to (?P<status>\w+)",
        lambda m: AirdropStatus(status=m["status"]),
    ),
    _rule(
        "mission_respawn",
        r"LogSFPS: Mission (?P<name>.+?) will respawn in (?P<seconds>\S+)",
        lambda m: MissionRespawn(
            name=m["name"].strip(),
            seconds=parse_count(m["seconds"], "respawn seconds"),
        ),
    ),
    _rule(
        "mission_fail",
        r"LogSFPS: \[USFPSACMission::Fail\] (?P<name>.+?)\s*$",
        lambda m: MissionFail(name=m["name"]),
    ),
    _rule(
        "mission_status",
        r"LogSFPS: Mission (?P<name>.+?) switched to (?P<status>\w+)",
        lambda m: MissionStatus(name=m["name"].strip(), status=m["status"]),
    ),
    _rule(
        "vehicle_spawn",
        r"LogSFPS: \[ASFPSVehicleSpawnPoint\] Spawned vehicle (?P<vehicle>\S+) at (?P<where>.+)",
        _vehicle(VEHICLE_SPAWN),
    ),
    _rule(
        "vehicle_add",
        r"LogSFPS: \[ASFPSGameMode::NewVehicle_Add\] Add vehicle (?P<vehicle>\S+) Total (?P<total>\S+)",
        _vehicle(VEHICLE_ADD),
    ),
    _rule(
        "vehicle_remove",
        r"LogSFPS: \[ASFPSGameMode::NewVehicle_Del\] Del vehicle (?P<vehicle>\S+) Total (?P<total>\S+)",
        _vehicle(VEHICLE_REMOVE),
    ),
)


def parse_line_timestamp(line: str) -> Optional[datetime]:
    """Return the UTC timestamp from a server log line prefix, if present."""

    match = TIMESTAMP_PREFIX.match(line)
    if not match:
        return None
    try:
        stamp = datetime.strptime(match["stamp"], LOG_TIMESTAMP_FORMAT)
    except ValueError:
        return None
    return stamp.replace(microsecond=int(match["millis"]) * 1000, tzinfo=timezone.utc)


def match_rule(line: str, rules: Sequence[ClassifierRule] = SERVER_LOG_RULES) -> Optional[ClassifierRule]:
    """Return the first rule whose pattern matches the line."""

    for rule in rules:
        if rule.pattern.search(line):
            return rule
    return None


def classify_line(line: str, rules: Sequence[ClassifierRule] = SERVER_LOG_RULES) -> Optional[Event]:
    """Turn one raw server log line into an event, or None.

    A line whose first matching rule cannot build its event (a numeric field
    that does not parse) is skipped with a warning; later rules are not
    consulted for it.
    """

    for rule in rules:
        match = rule.pattern.search(line)
        if not match:
            continue
        try:
            return rule.build(match)
        except ValueError as exc:
            LOGGER.warning("Skipping malformed %s line (%s): %s", rule.name, exc, line.strip())
            return None
    return None


def classify_lines(
    lines: Iterable[str], rules: Sequence[ClassifierRule] = SERVER_LOG_RULES
) -> List[ClassifiedEvent]:
    """Classify a batch of lines, keeping input order and dropping non-events."""

    classified: List[ClassifiedEvent] = []
    for line in lines:
        if not line.strip():
            continue
        event = classify_line(line, rules)
        if event is None:
            continue
        classified.append(
            ClassifiedEvent(event=event, occurred_at=parse_line_timestamp(line), raw_line=line)
        )
    return classified

"""CSV death log parsing (core domain).

Format: ``timestamp;victim;victimId;killer;killerId;weapon;distance;``

A line is only parsed field by field after it passed the structural check,
so a truncated or garbled line never yields a half-filled event.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from core.classifier import is_suicide, parse_count
from core.models import ClassifiedEvent, Event, PlayerDeath, PlayerKill

LOGGER = logging.getLogger(__name__)

DEATH_LOG_TIMESTAMP_FORMAT = "%Y.%m.%d-%H.%M.%S"

# Exactly seven fields, each closed by a ';'.
DEATH_LOG_LINE = re.compile(
    r"^(?P<timestamp>\d{4}\.\d{2}\.\d{2}-\d{2}\.\d{2}\.\d{2})"
    r";(?P<victim>[^;]*);(?P<victim_id>[^;]*)"
    r";(?P<killer>[^;]*);(?P<killer_id>[^;]*)"
    r";(?P<weapon>[^;]*);(?P<distance>[^;]*);$"
)


@dataclass(frozen=True)
class DeathLogEntry:
    timestamp: datetime
    victim: str
    victim_id: str
    killer: str
    killer_id: str
    weapon: str
    distance: int


def parse_death_log_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, DEATH_LOG_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def parse_death_log_line(line: str) -> Optional[DeathLogEntry]:
    """Validate and parse one CSV line, returning None when it is rejected."""

    stripped = line.strip()
    match = DEATH_LOG_LINE.match(stripped)
    if not match:
        LOGGER.warning("Rejected death log line with unexpected structure: %s", stripped)
        return None
    try:
        timestamp = parse_death_log_timestamp(match["timestamp"])
    except ValueError:
        LOGGER.warning("Rejected death log line with invalid timestamp: %s", stripped)
        return None
    try:
        distance = parse_count(match["distance"].strip(), "distance")
    except ValueError:
        LOGGER.warning("Skipping death log line with invalid distance: %s", stripped)
        return None

    return DeathLogEntry(
        timestamp=timestamp,
        victim=match["victim"].strip(),
        victim_id=match["victim_id"].strip(),
        killer=match["killer"].strip(),
        killer_id=match["killer_id"].strip(),
        weapon=match["weapon"].strip(),
        distance=distance,
    )


def entry_to_event(entry: DeathLogEntry) -> Event:
    if is_suicide(entry.victim, entry.killer, entry.weapon):
        return PlayerDeath(
            player=entry.victim,
            cause=entry.weapon,
            is_suicide=True,
            player_id=entry.victim_id or None,
        )
    return PlayerKill(
        killer=entry.killer,
        victim=entry.victim,
        weapon=entry.weapon,
        distance=entry.distance,
        killer_id=entry.killer_id or None,
        victim_id=entry.victim_id or None,
    )


def classify_death_log_line(line: str) -> Optional[ClassifiedEvent]:
    entry = parse_death_log_line(line)
    if entry is None:
        return None
    return ClassifiedEvent(event=entry_to_event(entry), occurred_at=entry.timestamp, raw_line=line)


def classify_death_log(content: str) -> List[ClassifiedEvent]:
    """Classify every non-blank line of a death log file, in file order."""

    return classify_death_log_lines(content.splitlines())


def classify_death_log_lines(lines: Iterable[str]) -> List[ClassifiedEvent]:
    classified: List[ClassifiedEvent] = []
    for line in lines:
        if not line.strip():
            continue
        item = classify_death_log_line(line)
        if item is not None:
            classified.append(item)
    return classified

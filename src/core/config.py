"""Core configuration dataclasses.

We keep config file loading outside the core, but these dataclasses define
the shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional

from core.models import ServerSource


@dataclass(frozen=True)
class SchedulerConfig:
    """Sweep timing and isolation settings."""

    server_log_interval: float = 60.0
    death_log_interval: float = 60.0
    read_timeout: float = 30.0
    max_concurrency: int = 4


@dataclass(frozen=True)
class DispatchConfig:
    """Stat rewards and join/leave batching consumed by the dispatcher."""

    kill_reward: int = 10
    batch_threshold: int = 3
    batch_name_limit: int = 10


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_servers(raw_servers: Iterable[dict]) -> List[ServerSource]:
    """Build server registrations from the ``servers`` config section.

    Entries without a ``server_id`` are skipped; the id is the key for all
    cursor state, so a registration cannot exist without one.
    """

    servers: List[ServerSource] = []
    seen: set[str] = set()
    for entry in raw_servers:
        server_id = _optional_str(entry.get("server_id"))
        if not server_id:
            continue
        if server_id in seen:
            raise ValueError(f"Duplicate server_id in config: {server_id}")
        seen.add(server_id)
        channels = entry.get("channels", {}) or {}
        servers.append(
            ServerSource(
                server_id=server_id,
                name=_optional_str(entry.get("name")) or server_id,
                endpoint=dict(entry.get("endpoint", {}) or {}),
                log_channel=_optional_str(channels.get("log")),
                killfeed_channel=_optional_str(channels.get("killfeed")),
                enabled=bool(entry.get("enabled", True)),
            )
        )
    return servers


def parse_scheduler_config(raw: dict) -> SchedulerConfig:
    defaults = SchedulerConfig()
    return SchedulerConfig(
        server_log_interval=float(raw.get("server_log_interval", defaults.server_log_interval)),
        death_log_interval=float(raw.get("death_log_interval", defaults.death_log_interval)),
        read_timeout=float(raw.get("read_timeout", defaults.read_timeout)),
        max_concurrency=max(1, int(raw.get("max_concurrency", defaults.max_concurrency))),
    )


def parse_dispatch_config(raw: dict) -> DispatchConfig:
    defaults = DispatchConfig()
    return DispatchConfig(
        kill_reward=int(raw.get("kill_reward", defaults.kill_reward)),
        batch_threshold=int(raw.get("batch_threshold", defaults.batch_threshold)),
        batch_name_limit=int(raw.get("batch_name_limit", defaults.batch_name_limit)),
    )

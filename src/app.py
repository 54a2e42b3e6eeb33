"""Application entry point for the deadwatch log sweeper."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import Iterable, Iterator, Optional

from art import tprint

from adapters.discord_webhook_notifier import DiscordWebhookNotifier, resolve_webhook_url
from adapters.local_reader import LocalLogReader
from adapters.reader_router import ReaderRouter
from adapters.sftp_reader import SftpLogReader
from adapters.sqlite_storage import SQLiteStorage
from core.classifier import classify_lines
from core.deathlog import classify_death_log
from core.dispatcher import EventDispatcher
from core.errors import ChannelUnavailable
from core.models import ServerSource
from core.processor import DeathLogProcessor, ServerLogProcessor
from core.scheduler import SweepJob, SweepScheduler

# settings reads config.json on import, so commands import it lazily and
# `classify` keeps working without one.

NAME = "DEADWATCH"
FONT = "tarty-1"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MASK = "[redacted]"

# Third-party loggers that echo webhook URLs or SSH chatter at INFO.
QUIET_LOGGERS = ("httpx", "httpcore", "paramiko")


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _SecretMaskingFormatter(logging.Formatter):
    """Formatter that masks webhook URLs and SFTP passwords in every record."""

    def __init__(self, secrets: Iterable[str]) -> None:
        super().__init__(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        # Longest first, so a URL is masked whole before any token inside it.
        self._secrets = sorted({secret for secret in secrets if secret}, key=len, reverse=True)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, MASK)
        return message


def _server_secrets(servers: Iterable[ServerSource]) -> Iterator[str]:
    for server in servers:
        for channel_ref in (server.log_channel, server.killfeed_channel):
            if not channel_ref:
                continue
            try:
                yield resolve_webhook_url(channel_ref)
            except ChannelUnavailable:
                continue
        password_env = server.endpoint.get("password_env")
        yield os.getenv(password_env, "") if password_env else server.endpoint.get("password", "")


def _secret_values(config: dict, servers: Iterable[ServerSource]) -> list[str]:
    """Values to mask: every server's webhook URLs and SFTP password, plus extra env vars."""

    redact_cfg = (config or {}).get("redact", {})
    if not redact_cfg.get("enabled", True):
        return []
    extra = (os.getenv(name, "") for name in redact_cfg.get("extra_env", []))
    return [value for value in (*_server_secrets(servers), *extra) if value]


def _rotating_file_handler(file_cfg: dict, root: str) -> RotatingFileHandler:
    path = file_cfg.get("path", "logs/deadwatch.log")
    if not os.path.isabs(path):
        path = os.path.join(root, path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=int(file_cfg.get("max_bytes", 5 * 1024 * 1024)),
        backupCount=int(file_cfg.get("backup_count", 5)),
        encoding="utf-8",
    )


def _configure_logging() -> None:
    import settings

    config = settings.LOGGING or {}
    if not config.get("enabled", True):
        return

    level = getattr(logging, str(config.get("level", "INFO")).upper(), logging.INFO)
    handlers: list[logging.Handler] = []
    if config.get("console", True):
        handlers.append(logging.StreamHandler())
    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        handlers.append(_rotating_file_handler(file_cfg, settings.PROJECT_ROOT))
    if not handlers:
        return

    formatter = _SecretMaskingFormatter(_secret_values(config, settings.SERVERS))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
    logging.basicConfig(level=level, handlers=handlers)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def _open_storage() -> SQLiteStorage:
    import settings

    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


async def _run_scheduler(once: bool) -> None:
    import settings

    logger = logging.getLogger(__name__)
    storage = _open_storage()
    notifier = DiscordWebhookNotifier()
    reader = ReaderRouter({"local": LocalLogReader(), "sftp": SftpLogReader()})
    dispatcher = EventDispatcher(notifier=notifier, stats=storage, config=settings.DISPATCH)

    config = settings.SCHEDULER
    jobs = [
        SweepJob(
            processor=ServerLogProcessor(reader, storage, dispatcher, read_timeout=config.read_timeout),
            interval=config.server_log_interval,
        ),
        SweepJob(
            processor=DeathLogProcessor(reader, storage, dispatcher, read_timeout=config.read_timeout),
            interval=config.death_log_interval,
        ),
    ]
    scheduler = SweepScheduler(
        servers=lambda: settings.SERVERS,
        jobs=jobs,
        max_concurrency=config.max_concurrency,
    )
    logger.info("%s servers are registered", len(settings.SERVERS))

    try:
        if once:
            await scheduler.run_once()
            return

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.stop)
            except NotImplementedError:
                # Windows event loops do not support signal handlers.
                pass
        await scheduler.run_forever()
    finally:
        await notifier.aclose()
        logger.info("Scheduler stopped")


def _run(once: bool) -> None:
    _print_banner()
    _configure_logging()
    logging.getLogger(__name__).info("Starting deadwatch")
    asyncio.run(_run_scheduler(once))


def _status() -> None:
    import settings

    storage = _open_storage()
    states = {state.server_id: state for state in storage.list_states()}
    for server in settings.SERVERS:
        state = states.pop(server.server_id, None) or storage.get_state(server.server_id)
        watermark = state.last_processed_timestamp.isoformat() if state.last_processed_timestamp else "-"
        latest = state.processed_files[-1] if state.processed_files else "-"
        flag = "" if server.enabled else " (disabled)"
        print(
            f"{server.server_id} | {server.name}{flag} | offset={state.line_offset}"
            f" | deathlog watermark={watermark}"
            f" | files={len(state.processed_files)} (latest {latest})"
        )

    # State left behind by servers removed from config.json.
    for server_id in states:
        print(f"{server_id} | not registered | cursor state kept")


def _classify(path: str, death_log: bool) -> None:
    """Print the events found in a local file without touching any state."""

    with open(path, "r", encoding="utf-8", errors="replace") as handle:
        content = handle.read()

    events = classify_death_log(content) if death_log else classify_lines(content.splitlines())
    for item in events:
        stamp = item.occurred_at.isoformat() if item.occurred_at else "-"
        print(f"{stamp} | {type(item.event).__name__} | {item.event}")
    print(f"{len(events)} events")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="deadwatch")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Start the log sweeps")
    run_parser.add_argument("--once", action="store_true", help="Run a single tick of each sweep and exit")
    subparsers.add_parser("status", help="Show per-server cursor state")
    classify_parser = subparsers.add_parser("classify", help="Classify a local log file and print the events")
    classify_parser.add_argument("path")
    classify_parser.add_argument(
        "--death-log",
        action="store_true",
        help="Treat the file as a CSV death log instead of a server log",
    )

    args = parser.parse_args(argv)
    if args.command == "status":
        _status()
        return
    if args.command == "classify":
        _classify(args.path, args.death_log)
        return
    _run(getattr(args, "once", False))


if __name__ == "__main__":
    main()

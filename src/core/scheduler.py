"""Fixed-interval sweeps over all registered servers.

Each source type (server log, death log) gets its own timer. A timer spawns
one tick task per interval without waiting for the previous tick, and every
(source, server) pair is guarded so a server still busy from an earlier tick
is skipped instead of queued.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Protocol, Set, Tuple

from core.dispatcher import DispatchReport
from core.errors import RemoteReadError
from core.models import ServerSource

LOGGER = logging.getLogger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"
FAILED = "failed"


class SourceProcessor(Protocol):
    source: str

    async def process(self, server: ServerSource) -> DispatchReport:
        ...


@dataclass(frozen=True)
class SweepJob:
    """One source type swept on its own interval."""

    processor: SourceProcessor
    interval: float

    @property
    def name(self) -> str:
        return self.processor.source


@dataclass
class TickReport:
    source: str
    processed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    dispatch: DispatchReport = field(default_factory=DispatchReport)


class SweepScheduler:
    """Runs sweep jobs on fixed intervals with per-server single-flight."""

    def __init__(
        self,
        servers: Callable[[], Iterable[ServerSource]],
        jobs: Iterable[SweepJob],
        max_concurrency: int = 4,
    ) -> None:
        self._servers = servers
        self._jobs = list(jobs)
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency))
        self._in_flight: Set[Tuple[str, str]] = set()
        self._ticks: Set[asyncio.Task] = set()
        self._stopped: Optional[asyncio.Event] = None

    async def run_forever(self) -> None:
        """Start one timer per job and run until ``stop`` is called."""

        self._stopped = asyncio.Event()
        timers = [asyncio.create_task(self._timer(job)) for job in self._jobs]
        try:
            await self._stopped.wait()
        finally:
            for timer in timers:
                timer.cancel()
            await asyncio.gather(*timers, return_exceptions=True)
            if self._ticks:
                await asyncio.gather(*self._ticks, return_exceptions=True)

    def stop(self) -> None:
        if self._stopped is not None:
            self._stopped.set()

    async def run_once(self) -> List[TickReport]:
        """Run a single tick of every job, concurrently."""

        return list(await asyncio.gather(*(self.sweep(job) for job in self._jobs)))

    async def _timer(self, job: SweepJob) -> None:
        LOGGER.info("Starting %s sweep (interval: %s seconds)", job.name, job.interval)
        while True:
            task = asyncio.create_task(self.sweep(job))
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
            await asyncio.sleep(job.interval)

    async def sweep(self, job: SweepJob) -> TickReport:
        """Process every enabled server once for the given job."""

        report = TickReport(source=job.name)
        try:
            servers = [server for server in self._servers() if server.enabled]
        except Exception:
            LOGGER.exception("Could not list servers for %s sweep", job.name)
            return report

        outcomes = await asyncio.gather(*(self._run_server(job, server) for server in servers))
        for server, (outcome, dispatch) in zip(servers, outcomes):
            getattr(report, outcome).append(server.server_id)
            if dispatch is not None:
                report.dispatch.merge(dispatch)

        LOGGER.info(
            "Completed %s sweep: processed=%s, skipped=%s, failed=%s, events=%s",
            job.name,
            len(report.processed),
            len(report.skipped),
            len(report.failed),
            report.dispatch.events,
        )
        return report

    async def _run_server(self, job: SweepJob, server: ServerSource) -> Tuple[str, Optional[DispatchReport]]:
        key = (job.name, server.server_id)
        if key in self._in_flight:
            LOGGER.info("Skipping %s for %s, previous tick still running", job.name, server.server_id)
            return SKIPPED, None

        self._in_flight.add(key)
        try:
            async with self._semaphore:
                dispatch = await job.processor.process(server)
            return PROCESSED, dispatch
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out reading %s for %s, retrying next tick", job.name, server.server_id)
        except RemoteReadError as exc:
            LOGGER.warning("Could not read %s for %s: %s", job.name, server.server_id, exc)
        except Exception:
            LOGGER.exception("Error processing %s for server %s", job.name, server.server_id)
        finally:
            self._in_flight.discard(key)
        return FAILED, None

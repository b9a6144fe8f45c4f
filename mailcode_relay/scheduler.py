"""Fixed-period driver for pipeline cycles."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import structlog

from .models import CycleReport

logger = structlog.get_logger()


class PollScheduler:
    """Runs *cycle* every ``interval_seconds`` without ever overlapping.

    Ticks sit on a fixed grid measured from :meth:`run`'s start.  A cycle
    that overruns one or more ticks makes the scheduler skip them and wait
    for the next grid point instead of queueing them up.  Manual triggers
    go through :meth:`run_once`, which shares the same lock.
    """

    def __init__(
        self,
        cycle: Callable[[], Awaitable[CycleReport]],
        interval_seconds: float,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._cycle = cycle
        self._interval = interval_seconds
        self._lock = asyncio.Lock()
        self.cycles_run: int = 0
        self.last_cycle_started_at: datetime | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> CycleReport:
        """Run exactly one cycle, waiting for any in-flight cycle first."""
        async with self._lock:
            self.last_cycle_started_at = datetime.now(UTC)
            try:
                return await self._cycle()
            finally:
                self.cycles_run += 1

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Loop until *shutdown_event* is set.

        Exceptions raised by a cycle are logged and the loop carries on.
        """
        loop = asyncio.get_running_loop()
        origin = loop.time()
        tick = 0
        logger.info("poll_scheduler_started", interval_seconds=self._interval)

        while not shutdown_event.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("poll_cycle_crashed")

            elapsed_ticks = math.floor((loop.time() - origin) / self._interval)
            next_tick = max(tick + 1, elapsed_ticks + 1)
            if next_tick > tick + 1:
                logger.warning("poll_cycle_overran", skipped_ticks=next_tick - tick - 1)
            tick = next_tick

            delay = origin + tick * self._interval - loop.time()
            if delay <= 0:
                continue
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=delay)
            except TimeoutError:
                pass

        logger.info("poll_scheduler_stopped", cycles_run=self.cycles_run)

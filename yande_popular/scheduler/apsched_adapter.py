"""APScheduler wrapper driving the polling loop."""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config.models import POLL_INTERVAL
from ..logging_conf import get_logger
from ..orchestrator import CycleReport, Orchestrator

JOB_ID = "popular::cycle"


class PollScheduler:
    """Run orchestrator cycles on a fixed interval until the stop event is set.

    Stopping prevents new cycles; a cycle already running is awaited so its
    dispatched groups can finish.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        stop_event: asyncio.Event,
        interval: timedelta = POLL_INTERVAL,
    ) -> None:
        self.orchestrator = orchestrator
        self.stop_event = stop_event
        self.interval = interval
        self.scheduler: AsyncIOScheduler | None = None
        self.logger = get_logger("scheduler")
        self.started = False
        self.last_report: CycleReport | None = None
        self._running: asyncio.Task | None = None

    def start(self) -> None:
        if self.started:
            return
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler()
        self.scheduler.add_job(
            self._tick,
            trigger=self._build_trigger(),
            id=JOB_ID,
            next_run_time=datetime.now(),
            max_instances=1,
            coalesce=True,
            misfire_grace_time=None,
            replace_existing=True,
        )
        self.scheduler.start()
        self.started = True
        self.logger.info("apscheduler_started", interval_seconds=self.interval.total_seconds())

    def shutdown(self) -> None:
        if self.started:
            self.scheduler.shutdown(wait=False)
            self.started = False
            self.logger.info("apscheduler_stopped")

    async def run_until_stopped(self) -> None:
        self.start()
        try:
            await self.stop_event.wait()
        finally:
            self.shutdown()
            running = self._running
            if running is not None and not running.done():
                self.logger.info("waiting_for_cycle")
                await asyncio.gather(running, return_exceptions=True)

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def _fallback(signum: int, _frame: object) -> None:
            loop.call_soon_threadsafe(self._request_stop, signum)

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._request_stop, sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, _fallback)

    def _request_stop(self, signum: int) -> None:
        if not self.stop_event.is_set():
            self.logger.info("stop_requested", signal=signal.Signals(signum).name)
            self.stop_event.set()

    async def _tick(self) -> None:
        if self.stop_event.is_set():
            return
        # Shielded: scheduler shutdown cancels job futures, not the cycle itself
        cycle = asyncio.create_task(self._run_cycle())
        self._running = cycle
        await asyncio.shield(cycle)

    async def _run_cycle(self) -> None:
        self.last_report = await self.orchestrator.run_cycle()

    def _build_trigger(self) -> IntervalTrigger:
        seconds = self.interval.total_seconds()
        if seconds <= 0:
            raise ValueError("Poll interval must be positive")
        return IntervalTrigger(seconds=seconds)


__all__ = ["JOB_ID", "PollScheduler"]

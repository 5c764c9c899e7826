from __future__ import annotations

import asyncio
import signal
from datetime import timedelta

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from yande_popular.orchestrator import CycleReport
from yande_popular.scheduler import JOB_ID, PollScheduler


class StubOrchestrator:
    def __init__(self, stop_event: asyncio.Event | None = None) -> None:
        self.stop_event = stop_event
        self.calls = 0
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None
        self.finished = False

    async def run_cycle(self) -> CycleReport:
        self.calls += 1
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.stop_event is not None:
            self.stop_event.set()
        self.finished = True
        return CycleReport(candidates=3)


def test_build_trigger_uses_hourly_interval() -> None:
    adapter = PollScheduler(StubOrchestrator(), asyncio.Event())
    trigger = adapter._build_trigger()
    assert isinstance(trigger, IntervalTrigger)
    assert trigger.interval.total_seconds() == 3600


def test_non_positive_interval_rejected() -> None:
    adapter = PollScheduler(StubOrchestrator(), asyncio.Event(), interval=timedelta(0))
    with pytest.raises(ValueError):
        adapter._build_trigger()


@pytest.mark.asyncio
async def test_first_cycle_runs_immediately() -> None:
    stop_event = asyncio.Event()
    orchestrator = StubOrchestrator(stop_event)
    adapter = PollScheduler(orchestrator, stop_event)

    await asyncio.wait_for(adapter.run_until_stopped(), timeout=5)

    assert orchestrator.calls == 1
    assert adapter.last_report is not None
    assert adapter.last_report.candidates == 3
    assert not adapter.started


@pytest.mark.asyncio
async def test_stop_waits_for_running_cycle() -> None:
    stop_event = asyncio.Event()
    orchestrator = StubOrchestrator()
    orchestrator.release = asyncio.Event()
    adapter = PollScheduler(orchestrator, stop_event)

    runner = asyncio.create_task(adapter.run_until_stopped())
    await asyncio.wait_for(orchestrator.started.wait(), timeout=5)
    assert adapter.scheduler.get_job(JOB_ID) is not None

    stop_event.set()
    for _ in range(5):
        await asyncio.sleep(0)
    assert not runner.done()
    assert not orchestrator.finished

    orchestrator.release.set()
    await asyncio.wait_for(runner, timeout=5)
    assert orchestrator.finished
    assert adapter.last_report is not None


@pytest.mark.asyncio
async def test_tick_is_noop_after_stop() -> None:
    stop_event = asyncio.Event()
    stop_event.set()
    orchestrator = StubOrchestrator()
    adapter = PollScheduler(orchestrator, stop_event)
    await adapter._tick()
    assert orchestrator.calls == 0


def test_request_stop_sets_event() -> None:
    stop_event = asyncio.Event()
    adapter = PollScheduler(StubOrchestrator(), stop_event)
    adapter._request_stop(signal.SIGTERM)
    assert stop_event.is_set()

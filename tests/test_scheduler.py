"""Tests for the periodic scheduler."""

import asyncio

import pytest
from structlog.testing import capture_logs

from infrawatch.scheduler import MonitoringScheduler, PeriodicTask


class Counter:
    def __init__(self, fail_first: int = 0, delay: float = 0.0):
        self.calls = 0
        self.fail_first = fail_first
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self) -> None:
        self.calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.calls <= self.fail_first:
                raise RuntimeError("tick failed")
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_run_once_counts_runs():
    """Test a single manual tick."""
    action = Counter()
    task = PeriodicTask("test", 60, action)

    assert await task.run_once() is True
    assert task.runs == 1
    assert task.last_run is not None


@pytest.mark.asyncio
async def test_failing_tick_is_logged_not_raised():
    """Test that a failing tick is logged."""
    task = PeriodicTask("test", 60, Counter(fail_first=1))

    with capture_logs() as logs:
        assert await task.run_once() is False

    assert task.failures == 1
    failure = [entry for entry in logs if entry["event"] == "Periodic task tick failed"]
    assert failure and failure[0]["task"] == "test"


@pytest.mark.asyncio
async def test_loop_keeps_running_after_failure():
    """Test that the loop survives a failing tick."""
    action = Counter(fail_first=1)
    task = PeriodicTask("test", 0.01, action, initial_delay=0)

    task.start()
    await asyncio.sleep(0.1)
    await task.stop()

    assert task.failures == 1
    assert task.runs >= 2
    assert not task.is_running


@pytest.mark.asyncio
async def test_initial_delay_is_honoured():
    """Test the initial delay before the first tick."""
    action = Counter()
    task = PeriodicTask("test", 0.01, action, initial_delay=10)

    task.start()
    await asyncio.sleep(0.05)
    assert action.calls == 0

    await task.stop(grace_period=1)
    assert action.calls == 0


@pytest.mark.asyncio
async def test_manual_tick_never_overlaps_scheduled_tick():
    """Test that manual and scheduled ticks never overlap."""
    action = Counter(delay=0.03)
    task = PeriodicTask("test", 0.01, action, initial_delay=0)

    task.start()
    await asyncio.sleep(0.005)
    await asyncio.gather(task.run_once(), task.run_once())
    await task.stop()

    assert action.max_in_flight == 1


@pytest.mark.asyncio
async def test_stop_cancels_tick_past_grace_period():
    """Test cancellation after the grace period."""
    task = PeriodicTask("test", 60, Counter(delay=10), initial_delay=0)

    task.start()
    await asyncio.sleep(0.01)
    with capture_logs() as logs:
        await task.stop(grace_period=0.05)

    assert not task.is_running
    assert any(entry["event"] == "Periodic task did not finish in time, cancelling" for entry in logs)


@pytest.mark.asyncio
async def test_scheduler_runs_both_loops():
    """Test that both loops run."""
    collect, evaluate = Counter(), Counter()
    scheduler = MonitoringScheduler(
        collect,
        evaluate,
        collection_interval=0.01,
        evaluation_interval=0.01,
        initial_collection_delay=0,
    )

    scheduler.start()
    assert scheduler.is_running
    await asyncio.sleep(0.1)
    await scheduler.stop()

    assert collect.calls >= 1
    assert evaluate.calls >= 1
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_initial_delays():
    """Test default initial delays."""
    collect, evaluate = Counter(), Counter()
    scheduler = MonitoringScheduler(collect, evaluate, collection_interval=60, initial_collection_delay=5)

    assert scheduler.collection.initial_delay == 5
    assert scheduler.evaluation.initial_delay == 30


@pytest.mark.asyncio
async def test_trigger_evaluation():
    """Test a manual evaluation trigger."""
    evaluate = Counter()
    scheduler = MonitoringScheduler(Counter(), evaluate)

    assert await scheduler.trigger_evaluation() is True
    assert evaluate.calls == 1


@pytest.mark.asyncio
async def test_no_tick_after_shutdown():
    """Test that triggers after shutdown are ignored."""
    collect, evaluate = Counter(), Counter()
    scheduler = MonitoringScheduler(collect, evaluate, initial_collection_delay=60)

    scheduler.start()
    await scheduler.stop()

    assert await scheduler.trigger_evaluation() is False
    assert await scheduler.trigger_collection() is False
    assert evaluate.calls == 0
    assert collect.calls == 0


@pytest.mark.asyncio
async def test_trigger_queued_behind_tick_is_skipped_on_stop():
    """Test that a manual trigger waiting on an in-flight tick does not run after stop."""
    collect, evaluate = Counter(), Counter(delay=0.1)
    scheduler = MonitoringScheduler(
        collect,
        evaluate,
        evaluation_interval=0.01,
        initial_collection_delay=60,
    )

    scheduler.start()
    await asyncio.sleep(0.03)
    assert evaluate.in_flight == 1

    trigger = asyncio.create_task(scheduler.trigger_evaluation())
    await asyncio.sleep(0)
    await scheduler.stop()

    assert trigger.done()
    assert await trigger is False
    assert evaluate.calls == 1


@pytest.mark.asyncio
async def test_stop_waits_for_running_manual_tick():
    """Test that stop returns only after a manual tick already running has finished."""
    evaluate = Counter(delay=0.05)
    scheduler = MonitoringScheduler(Counter(), evaluate)

    trigger = asyncio.create_task(scheduler.trigger_evaluation())
    await asyncio.sleep(0.01)
    assert evaluate.in_flight == 1

    await scheduler.stop()

    assert evaluate.in_flight == 0
    assert trigger.done()
    assert await trigger is True

"""Periodic metrics collection and alert evaluation."""

import asyncio
from contextlib import suppress
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from .models import utcnow

logger = structlog.get_logger(__name__)

Action = Callable[[], Awaitable[None]]


class PeriodicTask:
    """Runs ``action`` every ``interval`` seconds on the event loop.

    A failing tick is logged and the loop carries on. Ticks of the same task
    never overlap, including ticks started through ``run_once``.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        action: Action,
        initial_delay: Optional[float] = None,
    ):
        self.name = name
        self.interval = interval
        self.action = action
        self.initial_delay = interval if initial_delay is None else initial_delay
        self.runs = 0
        self.failures = 0
        self.last_run: Optional[datetime] = None
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name=f"periodic:{self.name}")
        logger.info("Periodic task started", task=self.name, interval=self.interval)

    async def run_once(self) -> bool:
        """Run a single tick; returns False if the action raised or the task is stopping."""
        async with self._tick_lock:
            if self._stop_event.is_set():
                logger.info("Tick skipped, task is stopping", task=self.name)
                return False
            self.last_run = utcnow()
            try:
                await self.action()
                self.runs += 1
                return True
            except Exception as e:
                self.failures += 1
                logger.error("Periodic task tick failed", task=self.name, error=str(e), exc_info=True)
                return False

    async def _run(self) -> None:
        if await self._wait(self.initial_delay):
            return
        while not self._stop_event.is_set():
            await self.run_once()
            if await self._wait(self.interval):
                return

    async def _wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True when a stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return self._stop_event.is_set()

    async def stop(self, grace_period: float = 10.0) -> None:
        """Stop scheduling; a tick in flight may finish within ``grace_period``.

        Manual ticks already running are waited for as well. Ticks still
        queued on the lock are skipped.
        """
        self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=grace_period)
            except asyncio.TimeoutError:
                logger.warning("Periodic task did not finish in time, cancelling", task=self.name)
                self._task.cancel()
                with suppress(asyncio.CancelledError):
                    await self._task
            self._task = None

        try:
            await asyncio.wait_for(self._tick_lock.acquire(), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning("Manual tick still running after grace period", task=self.name)
        else:
            self._tick_lock.release()
        logger.info("Periodic task stopped", task=self.name, runs=self.runs, failures=self.failures)


class MonitoringScheduler:
    """Owns the collection and evaluation loops and their lifecycle."""

    def __init__(
        self,
        collect: Action,
        evaluate: Action,
        collection_interval: float = 60.0,
        evaluation_interval: float = 30.0,
        initial_collection_delay: float = 5.0,
        shutdown_grace_period: float = 10.0,
    ):
        self.collection = PeriodicTask(
            "metrics-collection",
            collection_interval,
            collect,
            initial_delay=initial_collection_delay,
        )
        self.evaluation = PeriodicTask("alert-evaluation", evaluation_interval, evaluate)
        self.shutdown_grace_period = shutdown_grace_period
        self._shutdown = False

    @property
    def is_running(self) -> bool:
        return self.collection.is_running or self.evaluation.is_running

    def start(self) -> None:
        self._shutdown = False
        self.collection.start()
        self.evaluation.start()
        logger.info(
            "Monitoring scheduler started",
            collection_interval=self.collection.interval,
            evaluation_interval=self.evaluation.interval,
        )

    async def stop(self) -> None:
        self._shutdown = True
        await asyncio.gather(
            self.collection.stop(self.shutdown_grace_period),
            self.evaluation.stop(self.shutdown_grace_period),
        )
        logger.info("Monitoring scheduler stopped")

    async def trigger_evaluation(self) -> bool:
        """Evaluate alerts now through the same path as the periodic loop."""
        if self._shutdown:
            logger.warning("Alert evaluation requested after shutdown, ignoring")
            return False
        logger.info("Manually triggering alert evaluation")
        return await self.evaluation.run_once()

    async def trigger_collection(self) -> bool:
        if self._shutdown:
            logger.warning("Metrics collection requested after shutdown, ignoring")
            return False
        return await self.collection.run_once()

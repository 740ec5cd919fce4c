"""Scheduler — cooperative loops for queue dispatch and housekeeping."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from commitcaster.core.config import Settings
from commitcaster.engines.work_queue.queue import WorkQueue
from commitcaster.oauth.state_store import PendingAuthStore

logger = structlog.get_logger("commitcaster.scheduler")

PENDING_AUTH_SWEEP_INTERVAL = 60.0


class EngineLoop:
    """Single scheduling loop with trigger/timeout wake mechanism."""

    def __init__(
        self,
        name: str,
        run_fn: Callable[[], Awaitable[int]],
        interval: float,
        trigger: asyncio.Event | None = None,
        *,
        quiet: bool = False,
    ) -> None:
        self.name = name
        self.run_fn = run_fn
        self.interval = interval
        self.trigger = trigger or asyncio.Event()
        self.quiet = quiet

    async def run_once(self) -> int:
        processed = await self.run_fn()
        if processed or not self.quiet:
            logger.info("engine.cycle", engine=self.name, processed=processed)
        return processed

    async def loop(self) -> None:
        """Run forever, waking on trigger or timeout."""
        while True:
            try:
                await asyncio.wait_for(self.trigger.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self.trigger.clear()

            try:
                await self.run_once()
            except Exception:
                logger.exception("engine.error", engine=self.name)


class Scheduler:
    """Manages lifecycle of all EngineLoop tasks."""

    def __init__(self, loops: list[EngineLoop]) -> None:
        self._loops = loops
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        """Start all loops as asyncio tasks."""
        self._tasks = [
            asyncio.create_task(loop.loop(), name=f"engine-{loop.name}") for loop in self._loops
        ]
        # first loop runs right away
        if self._loops:
            self._loops[0].trigger.set()
        logger.info("scheduler.started", engines=[loop.name for loop in self._loops])

    async def stop(self) -> None:
        """Cancel all loops and wait for them to exit."""
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("scheduler.stopped")


def create_scheduler(
    settings: Settings,
    queue: WorkQueue,
    pending_auth: PendingAuthStore,
) -> Scheduler:
    """Queue dispatch first, then the two sweeps.

    The dispatch loop shares ``queue.wakeup`` so an enqueue runs it
    immediately instead of waiting for the next tick.
    """

    async def _dispatch() -> int:
        return await queue.process_tick()

    async def _cleanup() -> int:
        return await queue.cleanup(settings.queue_retention_hours)

    async def _sweep_pending() -> int:
        return pending_auth.sweep()

    loops = [
        EngineLoop(
            "work_queue",
            _dispatch,
            settings.queue_processing_interval_ms / 1000,
            trigger=queue.wakeup,
            quiet=True,
        ),
        EngineLoop("queue_cleanup", _cleanup, float(settings.queue_cleanup_interval_s), quiet=True),
        EngineLoop("pending_auth_sweep", _sweep_pending, PENDING_AUTH_SWEEP_INTERVAL, quiet=True),
    ]
    return Scheduler(loops)

"""WorkQueue — priority queue with an RPM ceiling, per-tenant quota and durable retries.

One logical worker: :meth:`WorkQueue.process_tick` pops and awaits items one
at a time until the queue is empty or the 60 s dispatch window of
rate-limited task types is full. Every state transition is written to
``queue_items`` so pending work survives a restart (:meth:`restore`).
"""

from __future__ import annotations

import asyncio
import random
import time
from collections import OrderedDict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import IntEnum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commitcaster.core.database import utcnow
from commitcaster.dao.queue_item_dao import QueueItemDAO
from commitcaster.engines.work_queue.backoff import compute_retry_delay, is_rate_limit_error
from commitcaster.services import QuotaExceededError, TerminalError

log = structlog.get_logger("commitcaster.queue")

TaskHandler = Callable[[dict[str, Any]], Awaitable[Any]]

RPM_WINDOW_S = 60.0
QUOTA_WINDOW_S = 3600.0
COMPLETED_CACHE_SIZE = 1000


class Priority(IntEnum):
    HIGH = 1
    NORMAL = 2
    LOW = 3


@dataclass
class QueueConfig:
    max_requests_per_minute: int = 15
    max_retries: int = 3
    base_retry_delay_ms: int = 2000
    max_retry_delay_ms: int = 60000
    user_quota_limit: int = 100


@dataclass
class TaskSpec:
    handler: TaskHandler
    rate_limited: bool


@dataclass
class QueueEntry:
    queue_id: str
    task_type: str
    user_id: str
    payload: dict[str, Any]
    priority: int
    future: asyncio.Future[Any]
    status: str = "pending"
    retry_count: int = 0
    error_message: str | None = None
    restored: bool = False
    enqueued_at: float = field(default_factory=time.monotonic)


def _consume_exception(fut: asyncio.Future[Any]) -> None:
    # chained and restored items have no awaiting caller
    if not fut.cancelled():
        fut.exception()


class WorkQueue:
    """In-process scheduler state; owned by a single event loop."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: QueueConfig | None = None,
        *,
        queue_item_dao: QueueItemDAO | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.config = config or QueueConfig()
        self._dao = queue_item_dao or QueueItemDAO()
        self._clock = clock
        self._rng = rng or random.Random()

        self._registry: dict[str, TaskSpec] = {}
        self._queue: list[QueueEntry] = []
        self._processing: dict[str, QueueEntry] = {}
        self._waiting_retry: dict[str, tuple[QueueEntry, asyncio.TimerHandle]] = {}
        self._completed: OrderedDict[str, Any] = OrderedDict()
        self._dispatch_times: deque[float] = deque()
        self._quota_times: dict[str, deque[float]] = {}
        self._background: set[asyncio.Task[None]] = set()

        self.wakeup = asyncio.Event()
        self._stats = {
            "total_processed": 0,
            "total_failed": 0,
            "total_retries": 0,
            "avg_processing_ms": 0.0,
            "restored_from_db": 0,
        }

    # ── registry ──────────────────────────────────────────────────────────

    def register(self, task_type: str, handler: TaskHandler, *, rate_limited: bool = True) -> None:
        """Bind *task_type* to *handler*. Rate-limited types count against the RPM window."""
        self._registry[task_type] = TaskSpec(handler=handler, rate_limited=rate_limited)
        log.debug("queue.task_registered", task_type=task_type, rate_limited=rate_limited)

    # ── admission ─────────────────────────────────────────────────────────

    async def enqueue(
        self,
        queue_id: str,
        task_type: str,
        user_id: str,
        payload: dict[str, Any],
        *,
        priority: int = Priority.NORMAL,
        quota_limit: int | None = None,
    ) -> asyncio.Future[Any]:
        """Admit an item and return a future that settles when it terminates.

        An id that is already queued, running or waiting to retry returns the
        existing future. Raises :class:`QuotaExceededError` when *user_id*
        has used its hourly allowance of rate-limited tasks.
        """
        spec = self._registry.get(task_type)
        if spec is None:
            raise ValueError(f"unknown task type: {task_type}")

        existing = self._find(queue_id)
        if existing is not None:
            log.info("queue.duplicate_ignored", queue_id=queue_id)
            return existing.future

        if spec.rate_limited:
            limit = quota_limit if quota_limit is not None else self.config.user_quota_limit
            if self._quota_used(user_id) >= limit:
                log.warning("queue.quota_exceeded", user_id=user_id, limit=limit)
                raise QuotaExceededError(user_id, limit)

        loop = asyncio.get_running_loop()
        entry = QueueEntry(
            queue_id=queue_id,
            task_type=task_type,
            user_id=user_id,
            payload=payload,
            priority=int(priority),
            future=loop.create_future(),
            enqueued_at=self._clock(),
        )
        entry.future.add_done_callback(_consume_exception)
        await self._persist_new(entry)
        self._insert(entry)
        if spec.rate_limited:
            self._quota_times.setdefault(user_id, deque()).append(self._clock())

        log.info(
            "queue.enqueued",
            queue_id=queue_id,
            task_type=task_type,
            priority=entry.priority,
            queue_size=len(self._queue),
        )
        self.wakeup.set()
        return entry.future

    def _find(self, queue_id: str) -> QueueEntry | None:
        if queue_id in self._processing:
            return self._processing[queue_id]
        if queue_id in self._waiting_retry:
            return self._waiting_retry[queue_id][0]
        for entry in self._queue:
            if entry.queue_id == queue_id:
                return entry
        return None

    def _insert(self, entry: QueueEntry) -> None:
        """Insert behind every item of equal or higher priority (FIFO on ties)."""
        index = len(self._queue)
        for i, queued in enumerate(self._queue):
            if queued.priority > entry.priority:
                index = i
                break
        self._queue.insert(index, entry)

    # ── quota ─────────────────────────────────────────────────────────────

    def _quota_used(self, user_id: str) -> int:
        times = self._quota_times.get(user_id)
        if not times:
            return 0
        cutoff = self._clock() - QUOTA_WINDOW_S
        while times and times[0] <= cutoff:
            times.popleft()
        return len(times)

    def quota_remaining(self, user_id: str, limit: int | None = None) -> int:
        limit = limit if limit is not None else self.config.user_quota_limit
        return max(0, limit - self._quota_used(user_id))

    # ── dispatch ──────────────────────────────────────────────────────────

    def _prune_window(self) -> None:
        cutoff = self._clock() - RPM_WINDOW_S
        while self._dispatch_times and self._dispatch_times[0] <= cutoff:
            self._dispatch_times.popleft()

    def rpm_remaining(self) -> int:
        self._prune_window()
        return max(0, self.config.max_requests_per_minute - len(self._dispatch_times))

    async def process_tick(self) -> int:
        """Dispatch queued items until empty or the RPM window is full.

        Returns the number of items dispatched.
        """
        dispatched = 0
        while self._queue:
            self._prune_window()
            head = self._queue[0]
            spec = self._registry.get(head.task_type)
            rate_limited = spec.rate_limited if spec else False
            if rate_limited and len(self._dispatch_times) >= self.config.max_requests_per_minute:
                log.debug("queue.rpm_saturated", queued=len(self._queue))
                break
            self._queue.pop(0)
            if rate_limited:
                self._dispatch_times.append(self._clock())
            await self._dispatch(head)
            dispatched += 1
        return dispatched

    async def _dispatch(self, entry: QueueEntry) -> None:
        spec = self._registry.get(entry.task_type)
        entry.status = "processing"
        self._processing[entry.queue_id] = entry
        await self._persist_status(entry)

        started = time.monotonic()
        try:
            if spec is None:
                raise TerminalError(f"unknown task type: {entry.task_type}")
            result = await spec.handler(entry.payload)
        except Exception as exc:
            self._processing.pop(entry.queue_id, None)
            await self._handle_failure(entry, exc)
            return

        elapsed_ms = (time.monotonic() - started) * 1000
        self._processing.pop(entry.queue_id, None)
        entry.status = "completed"
        self._record_completed(entry.queue_id, result, elapsed_ms)
        await self._persist_status(entry)
        log.info("queue.completed", queue_id=entry.queue_id, elapsed_ms=round(elapsed_ms, 1))
        if not entry.future.done():
            entry.future.set_result(result)

    def _record_completed(self, queue_id: str, result: Any, elapsed_ms: float) -> None:
        self._completed[queue_id] = result
        self._completed.move_to_end(queue_id)
        while len(self._completed) > COMPLETED_CACHE_SIZE:
            self._completed.popitem(last=False)

        self._stats["total_processed"] += 1
        n = self._stats["total_processed"]
        avg = self._stats["avg_processing_ms"]
        self._stats["avg_processing_ms"] = avg + (elapsed_ms - avg) / n

    def completed_result(self, queue_id: str) -> Any:
        return self._completed.get(queue_id)

    def retries_left(self, queue_id: str) -> int:
        """Retries still available to a running item; 0 when it is on its last attempt."""
        entry = self._processing.get(queue_id)
        if entry is None:
            return 0
        return max(0, self.config.max_retries - entry.retry_count)

    # ── failure / retry ───────────────────────────────────────────────────

    async def _handle_failure(self, entry: QueueEntry, exc: Exception) -> None:
        entry.error_message = str(exc) or type(exc).__name__
        terminal = isinstance(exc, TerminalError)

        if terminal or entry.retry_count >= self.config.max_retries:
            entry.status = "failed"
            self._stats["total_failed"] += 1
            await self._persist_status(entry)
            log.warning(
                "queue.failed",
                queue_id=entry.queue_id,
                task_type=entry.task_type,
                retries=entry.retry_count,
                terminal=terminal,
                error=entry.error_message,
            )
            if not entry.future.done():
                entry.future.set_exception(exc)
            return

        entry.retry_count += 1
        entry.status = "retrying"
        self._stats["total_retries"] += 1
        await self._persist_status(entry)

        delay_ms = compute_retry_delay(
            entry.retry_count,
            self.config.base_retry_delay_ms,
            self.config.max_retry_delay_ms,
            rate_limited=is_rate_limit_error(exc),
            rng=self._rng,
        )
        log.info(
            "queue.retry_scheduled",
            queue_id=entry.queue_id,
            attempt=entry.retry_count,
            max_retries=self.config.max_retries,
            delay_ms=round(delay_ms),
            error=entry.error_message,
        )
        handle = asyncio.get_running_loop().call_later(delay_ms / 1000, self._requeue, entry.queue_id)
        self._waiting_retry[entry.queue_id] = (entry, handle)

    def _requeue(self, queue_id: str) -> None:
        waiting = self._waiting_retry.pop(queue_id, None)
        if waiting is None:
            return
        entry = waiting[0]
        entry.status = "pending"
        self._queue.insert(0, entry)
        self._spawn(self._persist_status(entry))
        self.wakeup.set()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── cancellation / housekeeping ───────────────────────────────────────

    async def cancel(self, queue_id: str) -> bool:
        """Drop a queued or retry-waiting item and delete its row.

        An item already running is left to finish. Returns False when
        nothing was removed from memory or the store.
        """
        removed = False
        for i, entry in enumerate(self._queue):
            if entry.queue_id == queue_id:
                self._queue.pop(i)
                entry.future.cancel()
                removed = True
                break
        waiting = self._waiting_retry.pop(queue_id, None)
        if waiting is not None:
            waiting[1].cancel()
            waiting[0].future.cancel()
            removed = True

        if queue_id in self._processing:
            log.info("queue.cancel_in_flight", queue_id=queue_id)
            return False

        async with self._session_factory() as session:
            async with session.begin():
                row = await self._dao.get_by_queue_id(session, queue_id)
                if row is not None:
                    await session.delete(row)
                    removed = True
        if removed:
            log.info("queue.cancelled", queue_id=queue_id)
        return removed

    async def cleanup(self, retention_hours: int = 24) -> int:
        """Delete completed/failed rows older than *retention_hours*."""
        cutoff = utcnow() - timedelta(hours=retention_hours)
        async with self._session_factory() as session:
            async with session.begin():
                deleted = await self._dao.delete_finished_before(session, cutoff)
        if deleted:
            log.info("queue.cleanup", deleted=deleted, retention_hours=retention_hours)
        return deleted

    async def restore(self) -> int:
        """Reload unfinished work after a restart.

        Rows left ``processing`` go back to ``pending``; ``pending`` and
        ``retrying`` rows are queued by (priority, created_at). Rows of an
        unregistered task type are marked failed.
        """
        restored = 0
        loop = asyncio.get_running_loop()
        async with self._session_factory() as session:
            async with session.begin():
                reset = await self._dao.reset_processing(session)
                rows = await self._dao.list_restorable(session)
                for row in rows:
                    if row.task_type not in self._registry:
                        await self._dao.set_status(
                            session,
                            row.queue_id,
                            "failed",
                            error_message="Unknown task type after restart",
                        )
                        log.warning("queue.restore_unknown_type", queue_id=row.queue_id, task_type=row.task_type)
                        continue
                    if self._find(row.queue_id) is not None:
                        continue
                    future = loop.create_future()
                    future.add_done_callback(_consume_exception)
                    entry = QueueEntry(
                        queue_id=row.queue_id,
                        task_type=row.task_type,
                        user_id=row.user_id,
                        payload=dict(row.data_json or {}),
                        priority=row.priority,
                        future=future,
                        retry_count=row.retry_count,
                        error_message=row.error_message,
                        restored=True,
                        enqueued_at=self._clock(),
                    )
                    self._insert(entry)
                    restored += 1

        self._stats["restored_from_db"] = restored
        log.info("queue.restored", restored=restored, reset_processing=reset)
        if restored:
            self.wakeup.set()
        return restored

    async def close(self) -> None:
        """Cancel retry timers and wait for in-flight status writes.

        Items stay persisted and are picked up again by :meth:`restore`.
        """
        for _entry, handle in self._waiting_retry.values():
            handle.cancel()
        self._waiting_retry.clear()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        pending = len(self._queue) + len(self._processing)
        if pending:
            log.info("queue.stopped_with_pending", pending=pending)

    # ── persistence ───────────────────────────────────────────────────────

    async def _persist_new(self, entry: QueueEntry) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._dao.save(
                        session,
                        queue_id=entry.queue_id,
                        task_type=entry.task_type,
                        user_id=entry.user_id,
                        data=entry.payload,
                        priority=entry.priority,
                        status=entry.status,
                        retry_count=entry.retry_count,
                    )
        except Exception:
            log.exception("queue.persist_failed", queue_id=entry.queue_id, status=entry.status)

    async def _persist_status(self, entry: QueueEntry) -> None:
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._dao.set_status(
                        session,
                        entry.queue_id,
                        entry.status,
                        retry_count=entry.retry_count,
                        error_message=entry.error_message,
                    )
        except Exception:
            log.exception("queue.persist_failed", queue_id=entry.queue_id, status=entry.status)

    # ── inspection ────────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._queue)

    def position(self, queue_id: str) -> int:
        """1-based position in the queue, 0 while running, -1 when unknown."""
        for i, entry in enumerate(self._queue):
            if entry.queue_id == queue_id:
                return i + 1
        return 0 if queue_id in self._processing else -1

    def stats(self) -> dict[str, Any]:
        pending = sum(1 for e in self._queue if e.status == "pending")
        return {
            "pending": pending,
            "processing": len(self._processing),
            "retrying": len(self._waiting_retry),
            "failed": self._stats["total_failed"],
            "rpm_remaining": self.rpm_remaining(),
            "avg_processing_ms": round(self._stats["avg_processing_ms"], 1),
            "total_processed": self._stats["total_processed"],
            "total_failed": self._stats["total_failed"],
            "total_retries": self._stats["total_retries"],
            "restored_from_db": self._stats["restored_from_db"],
            "current_queue_length": len(self._queue),
            "max_requests_per_minute": self.config.max_requests_per_minute,
        }

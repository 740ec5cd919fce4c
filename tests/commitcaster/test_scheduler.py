"""Unit tests for EngineLoop, Scheduler and the production loop wiring."""

from __future__ import annotations

import asyncio

import pytest

from commitcaster.oauth.state_store import PendingAuthStore
from commitcaster.scheduler import EngineLoop, Scheduler, create_scheduler
from commitcaster.services.credential_vault import Provider, SocialNetToken


async def _wait_until(predicate, interval: float = 0.005) -> None:
    while not predicate():
        await asyncio.sleep(interval)


@pytest.fixture
def make_loop():
    """Factory for EngineLoop instances with a controllable run_fn."""

    def _make(
        *,
        name: str = "test",
        return_value: int = 0,
        interval: float = 100,
        side_effect: Exception | None = None,
    ) -> tuple[EngineLoop, list[int]]:
        calls: list[int] = []

        async def run_fn() -> int:
            calls.append(1)
            if side_effect is not None:
                raise side_effect
            return return_value

        return EngineLoop(name, run_fn, interval), calls

    return _make


@pytest.mark.asyncio
async def test_loop_runs_on_timeout(make_loop):
    loop, calls = make_loop(interval=0.05)

    task = asyncio.create_task(loop.loop())
    try:
        await asyncio.wait_for(_wait_until(lambda: len(calls) >= 1), timeout=1.0)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_loop_runs_on_trigger(make_loop):
    loop, calls = make_loop(interval=100)

    task = asyncio.create_task(loop.loop())
    try:
        await asyncio.sleep(0.01)
        assert calls == []
        loop.trigger.set()
        await asyncio.wait_for(_wait_until(lambda: len(calls) >= 1), timeout=1.0)
        assert not loop.trigger.is_set()
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_exception_does_not_crash(make_loop):
    loop, calls = make_loop(interval=0.05, side_effect=RuntimeError("boom"))

    task = asyncio.create_task(loop.loop())
    try:
        await asyncio.wait_for(_wait_until(lambda: len(calls) >= 2), timeout=2.0)
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


@pytest.mark.asyncio
async def test_run_once_returns_processed(make_loop):
    loop, _ = make_loop(return_value=3)
    assert await loop.run_once() == 3


@pytest.mark.asyncio
async def test_scheduler_start_stop(make_loop):
    loop1, calls1 = make_loop(name="a", interval=0.05)
    loop2, calls2 = make_loop(name="b", interval=0.05)

    scheduler = Scheduler([loop1, loop2])
    await scheduler.start()
    assert scheduler.running

    await asyncio.wait_for(_wait_until(lambda: calls1 and calls2), timeout=2.0)
    await scheduler.stop()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_first_loop_runs_immediately(make_loop):
    first, calls = make_loop(name="first", interval=100)
    scheduler = Scheduler([first])
    await scheduler.start()
    try:
        await asyncio.wait_for(_wait_until(lambda: len(calls) >= 1), timeout=1.0)
    finally:
        await scheduler.stop()


# ── production wiring ─────────────────────────────────────────────────────


class TestCreateScheduler:
    @pytest.mark.asyncio
    async def test_loops(self, make_runtime):
        runtime = make_runtime()
        scheduler = create_scheduler(runtime.settings, runtime.queue, runtime.pending_auth)

        names = [loop.name for loop in scheduler._loops]
        assert names == ["work_queue", "queue_cleanup", "pending_auth_sweep"]
        dispatch = scheduler._loops[0]
        assert dispatch.trigger is runtime.queue.wakeup
        assert dispatch.interval == runtime.settings.queue_processing_interval_ms / 1000

    @pytest.mark.asyncio
    async def test_enqueue_wakes_dispatch(self, make_runtime, socialnet, make_push, encode_push):
        runtime = make_runtime()
        async with runtime.session_factory() as session:
            async with session.begin():
                await runtime.tenant_service.ensure_tenant(session, "codehost:42")
                await runtime.tenant_service.enroll_repo(session, "codehost:42", "octo/widgets")
        await runtime.vault.put(Provider.SOCIALNET, "codehost:42", SocialNetToken(access_token="live"))

        scheduler = create_scheduler(runtime.settings, runtime.queue, runtime.pending_auth)
        await scheduler.start()
        try:
            body, signature = encode_push(make_push())
            await runtime.webhook_service.handle_push(body, event="push", signature=signature)
            await asyncio.wait_for(_wait_until(lambda: len(socialnet.requests) == 1), timeout=5.0)
        finally:
            await scheduler.stop()

    @pytest.mark.asyncio
    async def test_sweep_loop_drops_expired_state(self, make_runtime):
        now = [0.0]
        pending = PendingAuthStore(ttl_seconds=600, clock=lambda: now[0])
        pending.put("old", "socialnet", code_verifier="v", tenant_id="t")
        now[0] = 601.0
        pending.put("fresh", "socialnet", code_verifier="v", tenant_id="t")

        runtime = make_runtime()
        scheduler = create_scheduler(runtime.settings, runtime.queue, pending)
        assert await scheduler._loops[2].run_once() == 1
        assert len(pending) == 1

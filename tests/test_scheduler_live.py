"""End-to-end scheduler runs on real asyncio timers with a FeatureHost."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from idleload.config import Settings
from idleload.runtime.events import EventLog
from idleload.runtime.host import FeatureHost, IdleClock
from idleload.runtime.scheduler import DeferredScheduler
from idleload.runtime.state import SchedulerState


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        IDLELOAD_FIRST_IDLE_SECONDS=0.05,
        IDLELOAD_IDLE_INTERVAL_SECONDS=0.01,
        IDLELOAD_LOAD_IMMEDIATELY=False,
    )


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_loads_features_in_order(fast_settings):
    host = FeatureHost()
    order: list[str] = []

    @host.feature("alpha")
    async def alpha():
        order.append("alpha")

    @host.feature("beta")
    def beta():
        order.append("beta")

    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["alpha", "beta"])
    scheduler.start()

    assert await scheduler.wait_finished(timeout=2) is SchedulerState.DRAINED
    assert order == ["alpha", "beta"]
    assert host.loaded == {"alpha", "beta"}


@pytest.mark.asyncio
async def test_input_interrupts_and_retry_completes(fast_settings):
    host = FeatureHost(clock=IdleClock())
    attempts: list[int] = []
    release = asyncio.Event()

    @host.feature("slow")
    async def slow():
        attempts.append(len(attempts) + 1)
        if len(attempts) == 1:
            await asyncio.Event().wait()
        await release.wait()

    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["slow"])
    scheduler.start()

    await _wait_for(lambda: host.clock.watch.active == 1)
    assert host.record_input() == 1
    await _wait_for(lambda: ("interrupted", "slow") in scheduler.events.types())
    assert list(scheduler.queue) == ["slow"]

    release.set()
    assert await scheduler.wait_finished(timeout=2) is SchedulerState.DRAINED
    assert attempts == [1, 2]
    assert scheduler.events.types()[-3:] == [
        ("attempt", "slow"),
        ("loaded", "slow"),
        ("drained", None),
    ]


@pytest.mark.asyncio
async def test_sync_feature_checks_token(fast_settings):
    host = FeatureHost()
    seen = []

    @host.feature("cooperative")
    def cooperative(token):
        seen.append(token.is_set())

    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["cooperative"])
    scheduler.start()
    assert await scheduler.wait_finished(timeout=2) is SchedulerState.DRAINED
    assert seen == [False]


@pytest.mark.asyncio
async def test_failing_feature_aborts(fast_settings):
    messages: list[str] = []
    host = FeatureHost(on_message=messages.append)

    @host.feature("broken")
    def broken():
        raise RuntimeError("no database")

    @host.feature("never")
    def never():
        raise AssertionError("must not run")

    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["broken", "never"])
    scheduler.start()

    assert await scheduler.wait_finished(timeout=2) is SchedulerState.ABORTED
    assert messages == ["Error: failed to incrementally load 'broken' because: no database"]
    assert not host.is_loaded("never")


@pytest.mark.asyncio
async def test_stop_cancels_pending_work(fast_settings):
    host = FeatureHost()
    host.register("x", lambda: None)
    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["x"])
    scheduler.start()
    scheduler.stop()

    await asyncio.sleep(0.1)
    assert scheduler.state is SchedulerState.IDLE
    assert not host.is_loaded("x")
    assert list(scheduler.queue) == ["x"]


@pytest.mark.asyncio
async def test_interrupted_sync_feature_is_not_started_twice(fast_settings):
    host = FeatureHost()
    lock = threading.Lock()
    calls = []
    running = []
    overlap = []

    @host.feature("index")
    def build_index():
        with lock:
            calls.append(1)
            running.append(1)
            overlap.append(len(running))
        time.sleep(0.3)
        with lock:
            running.pop()

    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["index"])
    scheduler.start()

    await _wait_for(lambda: calls and host.clock.watch.active == 1)
    assert host.record_input() == 1
    await _wait_for(lambda: ("interrupted", "index") in scheduler.events.types())

    assert await scheduler.wait_finished(timeout=3) is SchedulerState.DRAINED
    assert len(calls) == 1
    assert max(overlap) == 1
    assert host.is_loaded("index")


@pytest.mark.asyncio
async def test_sync_feature_stopped_by_token_is_retried(fast_settings):
    host = FeatureHost()
    calls = []

    @host.feature("spellcheck")
    def spellcheck(token):
        calls.append(1)
        if len(calls) == 1:
            for _ in range(400):
                token.check()
                time.sleep(0.005)

    scheduler = DeferredScheduler(host, fast_settings, EventLog())
    scheduler.enqueue(["spellcheck"])
    scheduler.start()

    await _wait_for(lambda: calls and host.clock.watch.active == 1)
    host.record_input()

    assert await scheduler.wait_finished(timeout=3) is SchedulerState.DRAINED
    assert len(calls) == 2
    assert scheduler.events.types() == [
        ("attempt", "spellcheck"),
        ("interrupted", "spellcheck"),
        ("attempt", "spellcheck"),
        ("loaded", "spellcheck"),
        ("drained", None),
    ]

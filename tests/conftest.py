"""Shared fixtures for loader tests."""

from __future__ import annotations

import pytest

from idleload.config import Settings
from idleload.runtime.events import EventLog
from idleload.runtime.scheduler import DeferredScheduler
from idleload.utils.interrupt import InputWatch, LoadInterrupted, while_no_input
from idleload.utils.metrics import metrics


class FakeTimer:
    """Recorded timer. Never fires on its own; tests call ``fire()``."""

    def __init__(self, delay: float, callback, idle: bool) -> None:
        self.delay = delay
        self.callback = callback
        self.idle = idle
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class FakeHost:
    """Scripted host: tests decide what is loaded, how idle we are and what fails."""

    def __init__(self, loaded=(), idle: float | None = 10.0) -> None:
        self.loaded: set[str] = set(loaded)
        self.idle = idle
        self.failures: dict[str, Exception] = {}
        self.interrupts: dict[str, int] = {}
        self.load_calls: list[str] = []
        self.timers: list[FakeTimer] = []
        self.messages: list[str] = []
        self.watch = InputWatch()

    def is_loaded(self, unit: str) -> bool:
        return unit in self.loaded

    async def load(self, unit: str, token=None):
        self.load_calls.append(unit)
        if self.interrupts.get(unit, 0) > 0:
            self.interrupts[unit] -= 1
            raise LoadInterrupted()
        if unit in self.failures:
            raise self.failures[unit]
        self.loaded.add(unit)

    def idle_time(self) -> float | None:
        return self.idle

    def call_when_idle(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback, idle=True)
        self.timers.append(timer)
        return timer

    def call_later(self, delay, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback, idle=False)
        self.timers.append(timer)
        return timer

    async def while_no_input(self, awaitable, token=None) -> bool:
        return await while_no_input(awaitable, self.watch, token)

    def message(self, text: str) -> None:
        self.messages.append(text)

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def loader_settings() -> Settings:
    return Settings(
        IDLELOAD_FIRST_IDLE_SECONDS=2.0,
        IDLELOAD_IDLE_INTERVAL_SECONDS=0.5,
        IDLELOAD_BUSY_POLICY="abort",
        IDLELOAD_LOAD_IMMEDIATELY=False,
    )


@pytest.fixture
def host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def scheduler(host, loader_settings) -> DeferredScheduler:
    return DeferredScheduler(host, loader_settings, EventLog(100))


async def drive(scheduler: DeferredScheduler, max_steps: int = 50) -> None:
    """Run scheduler steps back to back until it reaches a terminal state."""
    for _ in range(max_steps):
        if scheduler.state.terminal:
            return
        await scheduler.process_queue()
    raise AssertionError("scheduler did not finish")

"""Deferred work scheduler: loads queued units one at a time while idle.

Lifecycle:
  1. Configuration code enqueues units (``enqueue(units)``); nothing runs yet.
  2. ``start()`` arms a single idle timer for ``IDLELOAD_FIRST_IDLE_SECONDS``.
  3. Each timer fire runs :meth:`DeferredScheduler.process_queue`, which
     handles exactly one unit (plus any already-loaded units in front of it)
     and re-arms a one-shot timer while work remains.
  4. User input aborts the unit currently loading; it goes back to the front
     of the queue.  A load error discards the rest of the queue for the
     session.

There is never more than one pending timer: arming always cancels the
previous handle first.  All queue mutation happens on the event-loop thread.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Iterable

from idleload.config import Settings, settings as default_settings
from idleload.runtime.events import EventLog
from idleload.runtime.host import Host, TimerHandle
from idleload.runtime.state import Outcome, SchedulerState, transition
from idleload.utils.interrupt import InterruptToken
from idleload.utils.logger import unit_context
from idleload.utils.metrics import (
    record_enqueued,
    record_load_duration,
    record_session_finished,
    record_unit_outcome,
)
from idleload.utils.tracing import get_tracer

logger = logging.getLogger("idleload.scheduler")
tracer = get_tracer("idleload.scheduler")


class DeferredScheduler:
    """Owns the work queue and the one outstanding timer for a process."""

    def __init__(
        self,
        host: Host,
        settings: Settings | None = None,
        events: EventLog | None = None,
    ) -> None:
        self.host = host
        self.settings = settings or default_settings
        self.events = events or EventLog(self.settings.IDLELOAD_EVENT_LOG_SIZE)
        self.queue: deque[str] = deque()
        self.state = SchedulerState.IDLE
        self.current_unit: str | None = None
        self.counts: dict[str, int] = {o.value: 0 for o in Outcome}
        self._timer: TimerHandle | None = None
        self._started = False
        self._step_task: asyncio.Task[Any] | None = None
        self._finished = asyncio.Event()

    # ── Configuration ───────────────────────────────────────────

    @property
    def first_delay(self) -> float:
        return self.settings.IDLELOAD_FIRST_IDLE_SECONDS

    @property
    def idle_delay(self) -> float:
        return self.settings.IDLELOAD_IDLE_INTERVAL_SECONDS

    @property
    def timer_pending(self) -> bool:
        return self._timer is not None

    # ── Public API ──────────────────────────────────────────────

    def enqueue(self, units: Iterable[str], now: bool = False) -> int:
        """Append *units* to the queue.  Returns the number added.

        With ``now=True`` processing begins immediately, still gated on
        idleness and still interruptible.  In immediate mode, units added
        after start join the pending immediate pass.
        """
        units = [u for u in units if u]
        if not units:
            return 0

        self.queue.extend(units)
        record_enqueued(len(units))
        self.events.emit("enqueue", remaining=len(self.queue), units=",".join(units))

        if self.state is SchedulerState.ABORTED:
            logger.warning(
                "Incremental loading was aborted for this session; %d unit(s) queued but not scheduled",
                len(units),
            )
            return len(units)

        if self.state is SchedulerState.RUNNING:
            # the running step re-arms the timer itself
            return len(units)
        if self.state is SchedulerState.DRAINED:
            self._finished.clear()
        if now:
            self._started = True
        if not self._started:
            return len(units)

        if self.settings.load_immediately:
            # a pending immediate pass picks up everything queued before it fires
            if self._timer is None:
                self._arm_immediate()
        elif now:
            self._arm(0.0)
        elif self._timer is None:
            self._arm(self.first_delay, idle=True)
        return len(units)

    def start(self) -> None:
        """Kick off incremental loading after startup."""
        self._started = True
        if not self.queue:
            logger.debug("start(): queue empty, nothing to load incrementally")
            return
        if self.settings.load_immediately:
            logger.info("Loading %d unit(s) immediately", len(self.queue))
            self._arm_immediate()
            return
        self._arm(self.first_delay, idle=True)
        logger.info(
            "Incremental loader armed: %d unit(s), first idle timer %.2fs",
            len(self.queue), self.first_delay,
        )

    def stop(self) -> None:
        """Cancel any pending timer or step; the queue is left untouched."""
        self._cancel_timer()
        if self._step_task is not None and not self._step_task.done():
            self._step_task.cancel()
        if not self.state.terminal:
            self.state = SchedulerState.IDLE
        logger.info("Scheduler stopped (%d unit(s) left)", len(self.queue))

    async def wait_finished(self, timeout: float | None = None) -> SchedulerState:
        """Wait for DRAINED or ABORTED and return the terminal state."""
        await asyncio.wait_for(self._finished.wait(), timeout)
        return self.state

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "queue": list(self.queue),
            "current_unit": self.current_unit,
            "timer_pending": self.timer_pending,
            "counts": dict(self.counts),
        }

    # ── Timers ──────────────────────────────────────────────────

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _arm(self, delay: float, idle: bool = False) -> None:
        self._cancel_timer()
        if idle:
            self._timer = self.host.call_when_idle(delay, self._fire)
        else:
            self._timer = self.host.call_later(delay, self._fire)
        self.state = SchedulerState.SCHEDULED
        logger.debug("Timer armed (%s, %.2fs)", "idle" if idle else "plain", delay)

    def _arm_immediate(self) -> None:
        self._cancel_timer()
        self._timer = self.host.call_later(0.0, self._fire_immediate)
        self.state = SchedulerState.SCHEDULED

    def _fire(self) -> None:
        self._spawn(self.process_queue)

    def _fire_immediate(self) -> None:
        self._spawn(self.load_all_now)

    def _spawn(self, step) -> None:
        self._timer = None
        if self._step_task is not None and not self._step_task.done():
            logger.debug("Timer fired while a step is running: ignored")
            return
        self._step_task = asyncio.ensure_future(step())
        self._step_task.add_done_callback(self._step_done)

    def _step_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Scheduler step crashed", exc_info=exc)

    # ── Step function ───────────────────────────────────────────

    async def process_queue(self) -> SchedulerState:
        """Handle the next unit (skipping loaded ones) and decide what comes next."""
        self._cancel_timer()
        if self.state.terminal:
            return self.state

        while True:
            if not self.queue:
                self._finish(SchedulerState.DRAINED)
                return self.state

            unit = self.queue.popleft()
            self.state = SchedulerState.RUNNING
            self.current_unit = unit
            try:
                outcome, idle = await self._handle(unit)
            except asyncio.CancelledError:
                self.queue.appendleft(unit)
                self.current_unit = None
                raise

            self.counts[outcome.value] += 1
            record_unit_outcome(outcome.value)
            self.current_unit = None

            step = transition(
                self.queue,
                unit,
                outcome,
                idle_observed=idle is not None,
                first_delay=self.first_delay,
                idle_delay=self.idle_delay,
                busy_policy=self.settings.IDLELOAD_BUSY_POLICY,
            )
            waiting = len(self.queue)
            self.queue = deque(step.queue)
            if step.action.kind == "continue":
                continue
            if step.action.kind == "schedule":
                self._arm(step.action.delay or 0.0, idle=step.action.idle)
            else:
                self._finish(step.state, unit, discarded=waiting)
            return self.state

    async def _handle(self, unit: str) -> tuple[Outcome, float | None]:
        """Skip, refuse or attempt *unit*; returns the outcome and observed idle time."""
        try:
            if self.host.is_loaded(unit):
                self.events.emit("skip", unit, remaining=len(self.queue), reason="already loaded")
                return Outcome.SKIPPED, None
            idle = self.host.idle_time()
        except Exception as exc:
            return self._fail(unit, exc), None

        if idle is None or idle < self.first_delay:
            self.events.emit(
                "busy", unit, remaining=len(self.queue),
                idle="none" if idle is None else f"{idle:.2f}",
                policy=self.settings.IDLELOAD_BUSY_POLICY,
            )
            return Outcome.BUSY, idle
        return await self._attempt(unit), idle

    async def _attempt(self, unit: str) -> Outcome:
        self.events.emit("attempt", unit, remaining=len(self.queue))
        token = InterruptToken()
        started = time.perf_counter()
        with unit_context(unit), tracer.start_as_current_span("idleload.load") as span:
            span.set_attribute("idleload.unit", unit)
            try:
                finished = await self.host.while_no_input(self.host.load(unit, token), token)
            except Exception as exc:
                record_load_duration(time.perf_counter() - started, "failed")
                span.record_exception(exc)
                return self._fail(unit, exc)

        elapsed = time.perf_counter() - started
        if finished:
            record_load_duration(elapsed, "loaded")
            self.events.emit("loaded", unit, remaining=len(self.queue), seconds=f"{elapsed:.3f}")
            return Outcome.LOADED

        record_load_duration(elapsed, "interrupted")
        self.events.emit("interrupted", unit, remaining=len(self.queue))
        return Outcome.INTERRUPTED

    def _fail(self, unit: str, exc: Exception, verb: str = "incrementally load") -> Outcome:
        logger.error("Failed to %s %s", verb, unit, exc_info=exc)
        self.events.emit(
            "error", unit, remaining=len(self.queue),
            error=f"{type(exc).__name__}: {exc}",
        )
        self.host.message(f"Error: failed to {verb} {unit!r} because: {exc}")
        return Outcome.FAILED

    def _finish(
        self,
        state: SchedulerState,
        unit: str | None = None,
        discarded: int | None = None,
    ) -> None:
        self._cancel_timer()
        self.state = state
        if state is SchedulerState.ABORTED:
            if discarded is None:
                discarded = len(self.queue)
            self.queue.clear()
            self.events.emit("aborted", unit, remaining=0, discarded=discarded)
        else:
            self.events.emit("drained", remaining=0)
        record_session_finished(state.value)
        self._finished.set()

    # ── Immediate mode ──────────────────────────────────────────

    async def load_all_now(self) -> SchedulerState:
        """Load every queued unit in order without idle gating or interruption."""
        self._cancel_timer()
        if self.state.terminal:
            return self.state

        while self.queue:
            unit = self.queue.popleft()
            self.state = SchedulerState.RUNNING
            self.current_unit = unit
            try:
                outcome = await self._load_now(unit)
            except asyncio.CancelledError:
                self.queue.appendleft(unit)
                self.current_unit = None
                raise
            self.current_unit = None
            self.counts[outcome.value] += 1
            record_unit_outcome(outcome.value)
            if outcome is Outcome.FAILED:
                self._finish(SchedulerState.ABORTED, unit)
                return self.state

        self._finish(SchedulerState.DRAINED)
        return self.state

    async def _load_now(self, unit: str) -> Outcome:
        try:
            if self.host.is_loaded(unit):
                self.events.emit("skip", unit, remaining=len(self.queue), reason="already loaded")
                return Outcome.SKIPPED
        except Exception as exc:
            return self._fail(unit, exc, verb="load")

        self.events.emit("attempt", unit, remaining=len(self.queue), mode="immediate")
        started = time.perf_counter()
        with unit_context(unit), tracer.start_as_current_span("idleload.load") as span:
            span.set_attribute("idleload.unit", unit)
            try:
                await self.host.load(unit, InterruptToken())
            except Exception as exc:
                record_load_duration(time.perf_counter() - started, "failed")
                span.record_exception(exc)
                return self._fail(unit, exc, verb="load")

        record_load_duration(time.perf_counter() - started, "loaded")
        self.events.emit("loaded", unit, remaining=len(self.queue))
        return Outcome.LOADED

"""Scheduler state machine: pure transition function.

The scheduler performs the side effects of a step (asking the host, loading
the unit) and then asks :func:`transition` what happens next.  Nothing here
touches the host, timers or the event loop, so every policy decision can be
tested in isolation.

    IDLE ──start/enqueue──► SCHEDULED ──timer──► RUNNING(unit)
                               ▲                    │
                               │   loaded / interrupted (requeued at front)
                               ├────────────────────┤
                               │                    ├── skipped ──► RUNNING(next)
                               │                    ├── failed  ──► ABORTED
                               │                    └── empty   ──► DRAINED
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, Sequence


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    DRAINED = "drained"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (SchedulerState.DRAINED, SchedulerState.ABORTED)


class Outcome(str, Enum):
    LOADED = "loaded"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"
    BUSY = "busy"
    FAILED = "failed"


BusyPolicy = Literal["abort", "requeue"]


@dataclass(frozen=True)
class Action:
    """What the scheduler does after a unit has been handled."""

    kind: Literal["continue", "schedule", "stop"]
    delay: float | None = None
    # wait for an idle period of `delay` rather than plain wall time
    idle: bool = False

    @classmethod
    def go_on(cls) -> "Action":
        return cls("continue")

    @classmethod
    def schedule(cls, delay: float, idle: bool = False) -> "Action":
        return cls("schedule", delay, idle)

    @classmethod
    def stop(cls) -> "Action":
        return cls("stop")


@dataclass(frozen=True)
class Transition:
    queue: tuple[str, ...]
    action: Action
    state: SchedulerState


def transition(
    queue: Sequence[str],
    unit: str,
    outcome: Outcome,
    *,
    idle_observed: bool,
    first_delay: float,
    idle_delay: float,
    busy_policy: BusyPolicy = "abort",
) -> Transition:
    """Compute the next queue, action and state after *unit* was handled.

    *queue* is the remainder **after** *unit* was popped from the front.
    """
    rest = tuple(queue)
    delay = idle_delay if idle_observed else first_delay

    if outcome is Outcome.FAILED:
        return Transition((), Action.stop(), SchedulerState.ABORTED)

    if outcome is Outcome.BUSY:
        if busy_policy == "requeue":
            return Transition((unit,) + rest, Action.schedule(first_delay, idle=True), SchedulerState.SCHEDULED)
        return Transition((), Action.stop(), SchedulerState.ABORTED)

    if outcome is Outcome.INTERRUPTED:
        # the user is active again: resume on the next idle period
        return Transition((unit,) + rest, Action.schedule(first_delay, idle=True), SchedulerState.SCHEDULED)

    if not rest:
        return Transition((), Action.stop(), SchedulerState.DRAINED)

    if outcome is Outcome.SKIPPED:
        return Transition(rest, Action.go_on(), SchedulerState.RUNNING)

    return Transition(rest, Action.schedule(delay), SchedulerState.SCHEDULED)

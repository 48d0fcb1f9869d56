"""Append-only scheduler event log.

Every scheduler decision (enqueue, skip, attempt, completion, interruption,
error, terminal state) is recorded once here and written as one log line on
the ``idleload.events`` logger.  The most recent events are kept in a
bounded ring so the diagnostics API can show what happened during startup.
"""

from __future__ import annotations

import itertools
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any

from idleload.schemas.events import EventType, SchedulerEvent

logger = logging.getLogger("idleload.events")

_WARNING_EVENTS = {"error", "aborted"}


class EventLog:
    def __init__(self, maxlen: int = 1000) -> None:
        self._events: deque[SchedulerEvent] = deque(maxlen=maxlen)
        self._seq = itertools.count(1)

    def emit(
        self,
        event_type: EventType,
        unit: str | None = None,
        *,
        remaining: int = 0,
        **detail: Any,
    ) -> SchedulerEvent:
        event = SchedulerEvent(
            seq=next(self._seq),
            ts=datetime.now(timezone.utc),
            event_type=event_type,
            unit=unit,
            remaining=remaining,
            detail=detail,
        )
        self._events.append(event)
        level = logging.WARNING if event_type in _WARNING_EVENTS else logging.INFO
        logger.log(level, "iloader: %s", event.describe())
        return event

    def since(self, seq: int = 0) -> list[SchedulerEvent]:
        """Return retained events with a sequence number greater than *seq*."""
        return [e for e in self._events if e.seq > seq]

    def types(self, *, include_enqueue: bool = False) -> list[tuple[str, str | None]]:
        """``(event_type, unit)`` pairs in order: handy for assertions and dumps."""
        return [
            (e.event_type, e.unit)
            for e in self._events
            if include_enqueue or e.event_type != "enqueue"
        ]

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

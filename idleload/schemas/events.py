"""Pydantic models for scheduler events."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

EventType = Literal[
    "enqueue",
    "skip",
    "attempt",
    "loaded",
    "interrupted",
    "busy",
    "error",
    "aborted",
    "drained",
]


class SchedulerEvent(BaseModel):
    seq: int
    ts: datetime
    event_type: EventType
    unit: str | None = None
    # Units still waiting in the queue when the event was recorded
    remaining: int = 0
    detail: dict[str, Any] = Field(default_factory=dict)

    def describe(self) -> str:
        """One human-readable line, as written to the log stream."""
        parts = [self.event_type]
        if self.unit:
            parts.append(self.unit)
        parts.append(f"({self.remaining} left)")
        if self.detail:
            parts.append(" ".join(f"{k}={v}" for k, v in sorted(self.detail.items())))
        return " ".join(parts)

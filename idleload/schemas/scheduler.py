"""Pydantic models for the scheduler diagnostics API."""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class SchedulerSnapshot(BaseModel):
    state: str
    queue: list[str]
    current_unit: str | None = None
    timer_pending: bool
    counts: dict[str, int]
    idle_seconds: float | None = None


class EnqueueRequest(BaseModel):
    units: list[str] = Field(min_length=1)
    now: bool = False

    @model_validator(mode="after")
    def _strip_units(self) -> "EnqueueRequest":
        self.units = [u.strip() for u in self.units if u.strip()]
        if not self.units:
            raise ValueError("units must contain at least one non-empty name")
        return self


class EnqueueResponse(BaseModel):
    queued: int
    state: str
    queue_length: int


class InputResponse(BaseModel):
    interrupted: int

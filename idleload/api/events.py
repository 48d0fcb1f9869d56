"""Events API router: the scheduler's diagnostics log."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from idleload.api.scheduler import get_session
from idleload.runtime.session import IncrementalSession
from idleload.schemas.events import SchedulerEvent

router = APIRouter()


@router.get("/events", response_model=list[SchedulerEvent])
async def list_events(
    since: int = Query(0, ge=0, description="Only events with a larger sequence number"),
    session: IncrementalSession = Depends(get_session),
):
    return session.scheduler.events.since(since)

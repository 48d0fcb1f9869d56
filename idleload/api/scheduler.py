"""Scheduler API router: snapshot, enqueue, simulated input."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from idleload.runtime.session import IncrementalSession
from idleload.runtime.state import SchedulerState
from idleload.schemas.scheduler import (
    EnqueueRequest,
    EnqueueResponse,
    InputResponse,
    SchedulerSnapshot,
)

router = APIRouter()


def get_session(request: Request) -> IncrementalSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="Loader session not started")
    return session


@router.get("/scheduler", response_model=SchedulerSnapshot)
async def scheduler_snapshot(session: IncrementalSession = Depends(get_session)):
    snap = session.scheduler.snapshot()
    snap["idle_seconds"] = session.host.idle_time()
    return snap


@router.post("/scheduler/enqueue", response_model=EnqueueResponse)
async def enqueue_units(body: EnqueueRequest, session: IncrementalSession = Depends(get_session)):
    scheduler = session.scheduler
    if scheduler.state is SchedulerState.ABORTED:
        raise HTTPException(
            status_code=409,
            detail="Incremental loading was aborted for this session",
        )
    queued = scheduler.enqueue(body.units, now=body.now)
    return EnqueueResponse(queued=queued, state=scheduler.state.value, queue_length=len(scheduler.queue))


@router.post("/input", response_model=InputResponse)
async def record_input(session: IncrementalSession = Depends(get_session)):
    """Tell the loader the user just did something; interrupts the running load."""
    record = getattr(session.host, "record_input", None)
    if record is None:
        raise HTTPException(status_code=501, detail="Host does not accept input notifications")
    return InputResponse(interrupted=record())

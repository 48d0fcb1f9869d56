"""FastAPI diagnostics server for the incremental loader.

    uvicorn idleload.main:app --port 8765

The lifespan boots a :class:`~idleload.runtime.host.ModuleHost` session from
the configured declarations file; ``POST /api/input`` stands in for user
input, so a front-end (or curl) can watch loads being interrupted and
retried.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from idleload.config import settings
from idleload.api.events import router as events_router
from idleload.api.scheduler import router as scheduler_router
from idleload.registry.declarations import load_declarations, registry as default_registry
from idleload.runtime.host import ModuleHost
from idleload.runtime.session import IncrementalSession
from idleload.utils.logger import setup_logger
from idleload.utils.tracing import setup_telemetry

setup_logger(log_format=settings.LOG_FORMAT, log_level=settings.effective_log_level)
logger = logging.getLogger("idleload.main")


def _default_session() -> IncrementalSession:
    registry = default_registry
    if settings.IDLELOAD_DECLARATIONS_FILE:
        registry = load_declarations(settings.IDLELOAD_DECLARATIONS_FILE, registry)
    return IncrementalSession(ModuleHost(), settings, registry)


@asynccontextmanager
async def lifespan(app: FastAPI):
    session: IncrementalSession | None = getattr(app.state, "session", None)
    if session is None:
        session = _default_session()
        app.state.session = session
    if not session.booted:
        await session.boot()

    _finish_task: asyncio.Task | None = None
    if session.scheduler.queue or session.scheduler.timer_pending:
        _finish_task = asyncio.create_task(session.run_until_finished())
    logger.info("Diagnostics server ready (session %s)", session.session_id)
    try:
        yield
    finally:
        session.shutdown()
        if _finish_task is not None:
            _finish_task.cancel()
            with suppress(asyncio.CancelledError):
                await _finish_task


def create_app(session: IncrementalSession | None = None) -> FastAPI:
    app = FastAPI(
        title="idleload",
        description="Idle-time incremental loader diagnostics",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.session = session

    app.include_router(scheduler_router, prefix="/api", tags=["scheduler"])
    app.include_router(events_router, prefix="/api", tags=["events"])

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/metrics", response_class=PlainTextResponse, tags=["observability"])
    async def prometheus_metrics():
        """Prometheus text exposition of the loader's in-process metrics."""
        from idleload.utils.metrics import to_prometheus_text
        return to_prometheus_text()

    return app


setup_telemetry(settings.OTLP_ENDPOINT)

app = create_app()

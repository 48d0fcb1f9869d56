"""One incremental-loading session per process.

Wires the declaration registry, the scheduler and the hook lists together:

    boot()                → declarations flushed into the queue,
                            ``startup`` hooks run (the scheduler is started
                            by a built-in startup hook)
    run_until_finished()  → waits for DRAINED / ABORTED, then runs the
                            ``drained`` or ``aborted`` hooks
    shutdown()            → stops the scheduler
"""

from __future__ import annotations

import logging
import uuid

from idleload.config import Settings, settings as default_settings
from idleload.registry.declarations import DeclarationRegistry, registry as default_registry
from idleload.runtime.hooks import HookError, HookRegistry
from idleload.runtime.host import Host
from idleload.runtime.scheduler import DeferredScheduler
from idleload.runtime.state import SchedulerState
from idleload.utils.logger import ctx_session_id

logger = logging.getLogger("idleload.session")

STARTUP_HOOK = "startup"
DRAINED_HOOK = "drained"
ABORTED_HOOK = "aborted"


class IncrementalSession:
    def __init__(
        self,
        host: Host,
        settings: Settings | None = None,
        registry: DeclarationRegistry | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex[:12]
        self.settings = settings or default_settings
        self.host = host
        self.registry = registry if registry is not None else default_registry
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.scheduler = DeferredScheduler(host, self.settings)
        self.hook_errors: list[HookError] = []
        self.booted = False
        self.hooks.add(STARTUP_HOOK, self._start_scheduler)

    def _start_scheduler(self) -> None:
        self.scheduler.start()

    async def boot(self) -> int:
        """Queue declared units and run startup hooks.  Returns units queued."""
        ctx_session_id.set(self.session_id)
        queued = self.registry.flush_into(self.scheduler)
        self.booted = True
        logger.info("Session %s booted with %d queued unit(s)", self.session_id, queued)
        self.hook_errors.extend(await self.hooks.run(STARTUP_HOOK))
        return queued

    async def run_until_finished(self, timeout: float | None = None) -> SchedulerState:
        """Wait for the scheduler to finish and run the matching hooks."""
        state = await self.scheduler.wait_finished(timeout)
        name = DRAINED_HOOK if state is SchedulerState.DRAINED else ABORTED_HOOK
        self.hook_errors.extend(await self.hooks.run(name, self.scheduler))
        logger.info("Session %s finished: %s", self.session_id, state.value)
        return state

    def shutdown(self) -> None:
        self.scheduler.stop()

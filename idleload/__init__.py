"""idleload: load deferred work one unit at a time while the process is idle."""

from idleload.registry.declarations import DeclarationRegistry, defer_incrementally
from idleload.runtime.hooks import HookError, HookRegistry
from idleload.runtime.host import AsyncioHost, FeatureHost, Host, IdleClock, ModuleHost
from idleload.runtime.scheduler import DeferredScheduler
from idleload.runtime.session import IncrementalSession
from idleload.runtime.state import Outcome, SchedulerState
from idleload.utils.interrupt import InterruptToken, LoadInterrupted

__all__ = [
    "AsyncioHost",
    "DeclarationRegistry",
    "DeferredScheduler",
    "FeatureHost",
    "HookError",
    "HookRegistry",
    "Host",
    "IdleClock",
    "IncrementalSession",
    "InterruptToken",
    "LoadInterrupted",
    "ModuleHost",
    "Outcome",
    "SchedulerState",
    "defer_incrementally",
]

__version__ = "0.1.0"

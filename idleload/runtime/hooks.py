"""Named hook lists with per-hook error isolation.

A failing hook never stops the hooks after it: the exception is logged,
wrapped in :class:`HookError` and returned to the caller.  Transient hooks
remove themselves after their first run.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger("idleload.hooks")


class HookError(Exception):
    """A single hook failed while its hook list was running."""

    def __init__(self, hook_name: str, fn: Callable[..., Any], cause: BaseException) -> None:
        self.hook_name = hook_name
        self.fn = fn
        self.cause = cause
        super().__init__(f"{hook_name}: {_describe(fn)} raised {type(cause).__name__}: {cause}")


@dataclass
class _Entry:
    fn: Callable[..., Any]
    transient: bool = False


@dataclass
class HookRegistry:
    _hooks: dict[str, list[_Entry]] = field(default_factory=dict)

    def add(self, name: str, fn: Callable[..., Any], transient: bool = False) -> None:
        entries = self._hooks.setdefault(name, [])
        if any(e.fn is fn for e in entries):
            return
        entries.append(_Entry(fn, transient))

    def remove(self, name: str, fn: Callable[..., Any]) -> bool:
        entries = self._hooks.get(name, [])
        for entry in entries:
            if entry.fn is fn:
                entries.remove(entry)
                return True
        return False

    def hooks(self, name: str) -> list[Callable[..., Any]]:
        return [e.fn for e in self._hooks.get(name, [])]

    async def run(self, name: str, *args: Any) -> list[HookError]:
        """Run every hook registered under *name*, in order."""
        errors: list[HookError] = []
        for entry in list(self._hooks.get(name, [])):
            if entry.transient:
                self.remove(name, entry.fn)
            try:
                result = entry.fn(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                error = HookError(name, entry.fn, exc)
                logger.error("Error in %s hook %s", name, _describe(entry.fn), exc_info=exc)
                errors.append(error)
        return errors


def _describe(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)

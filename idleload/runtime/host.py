"""Host collaborators: everything the scheduler needs from its process.

The scheduler never touches the event loop, ``sys.modules`` or the user
directly.  It asks a :class:`Host` to:

1. tell whether a unit is already loaded,
2. load a unit now (raising on failure),
3. report the current idle duration,
4. run a callback once after N seconds of idleness (or after N seconds),
5. run a load such that user input aborts it early,
6. show a message to the user.

:class:`AsyncioHost` implements timers, idleness and interruption on top of
the running asyncio loop.  :class:`ModuleHost` treats units as importable
modules; :class:`FeatureHost` treats them as registered initializer
functions.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
import sys
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

from idleload.utils.interrupt import InputWatch, InterruptToken, LoadInterrupted, while_no_input

logger = logging.getLogger("idleload.host")
message_logger = logging.getLogger("idleload.messages")


class TimerHandle(Protocol):
    def cancel(self) -> Any: ...


@runtime_checkable
class Host(Protocol):
    def is_loaded(self, unit: str) -> bool: ...

    async def load(self, unit: str, token: InterruptToken | None = None) -> Any: ...

    def idle_time(self) -> float | None: ...

    def call_when_idle(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    async def while_no_input(self, awaitable: Awaitable[Any], token: InterruptToken | None = None) -> bool: ...

    def message(self, text: str) -> None: ...


class UnknownUnitError(LookupError):
    """Raised when a host is asked to load a unit it knows nothing about."""


class IdleClock:
    """Tracks user input to answer "how long have we been idle?".

    ``idle_time()`` is ``None`` while input is being handled (inside
    :meth:`busy`), otherwise the seconds since the last recorded input.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._last_input = clock()
        self._busy = 0
        self.watch = InputWatch()

    def record_input(self) -> int:
        """Note user input; interrupts running loads and returns how many."""
        self._last_input = self._clock()
        return self.watch.notify()

    @contextmanager
    def busy(self):
        """Mark the process as handling input for the duration of the block."""
        self._busy += 1
        self.record_input()
        try:
            yield
        finally:
            self._busy -= 1
            self._last_input = self._clock()

    def idle_time(self) -> float | None:
        if self._busy:
            return None
        return max(0.0, self._clock() - self._last_input)


class AsyncioHost:
    """Timer, idleness and interruption primitives on the running event loop."""

    def __init__(
        self,
        clock: IdleClock | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        self.clock = clock or IdleClock()
        self._on_message = on_message

    # ── Idleness ────────────────────────────────────────────────

    def idle_time(self) -> float | None:
        return self.clock.idle_time()

    def record_input(self) -> int:
        return self.clock.record_input()

    # ── Timers ──────────────────────────────────────────────────

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def call_when_idle(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().create_task(
            self._when_idle(delay, callback), name=f"idle-timer-{delay:g}s"
        )

    async def _when_idle(self, delay: float, callback: Callable[[], None]) -> None:
        while True:
            idle = self.clock.idle_time()
            if idle is not None and idle >= delay:
                break
            # Input resets the clock, so re-measure after every nap
            await asyncio.sleep(delay - (idle or 0.0))
        callback()

    # ── Interruption / messages ─────────────────────────────────

    async def while_no_input(
        self, awaitable: Awaitable[Any], token: InterruptToken | None = None
    ) -> bool:
        return await while_no_input(awaitable, self.clock.watch, token)

    def message(self, text: str) -> None:
        message_logger.warning(text)
        if self._on_message is not None:
            self._on_message(text)

    # ── Units (subclass responsibility) ─────────────────────────

    def is_loaded(self, unit: str) -> bool:
        raise NotImplementedError

    async def load(self, unit: str, token: InterruptToken | None = None) -> Any:
        raise NotImplementedError


class ModuleHost(AsyncioHost):
    """Units are dotted module paths, loaded with ``importlib`` in a worker thread.

    Imports cannot be cancelled.  An interrupted import keeps running in its
    thread; the in-flight future is shielded and reused, so the retry waits
    for it instead of importing twice.
    """

    def __init__(
        self,
        clock: IdleClock | None = None,
        on_message: Callable[[str], None] | None = None,
        ignore_missing: bool = True,
    ) -> None:
        super().__init__(clock, on_message)
        self.ignore_missing = ignore_missing
        self._inflight: dict[str, asyncio.Future] = {}

    def is_loaded(self, unit: str) -> bool:
        # sys.modules holds half-initialised modules while an import runs
        return unit in sys.modules and unit not in self._inflight

    async def load(self, unit: str, token: InterruptToken | None = None) -> Any:
        fut = self._inflight.get(unit)
        if fut is None:
            fut = asyncio.ensure_future(asyncio.to_thread(importlib.import_module, unit))
            self._inflight[unit] = fut
            fut.add_done_callback(lambda f, u=unit: self._import_done(u, f))
        try:
            return await asyncio.shield(fut)
        except ModuleNotFoundError as exc:
            if self.ignore_missing and exc.name == unit:
                logger.info("Module %s not found: nothing to load", unit)
                return None
            raise

    def _import_done(self, unit: str, fut: asyncio.Future) -> None:
        self._inflight.pop(unit, None)
        if not fut.cancelled() and fut.exception() is not None:
            logger.debug("Import of %s finished with %r", unit, fut.exception())



class FeatureHost(AsyncioHost):
    """Units are names of registered initializer callables.

    Coroutine functions are awaited (and cancelled on input).  Plain
    functions run in a worker thread; if they accept an argument they are
    handed the attempt's :class:`InterruptToken` and may call
    ``token.check()`` to stop early.  A thread left running by an
    interrupted attempt is awaited by the retry, never started twice.
    """

    def __init__(
        self,
        clock: IdleClock | None = None,
        on_message: Callable[[str], None] | None = None,
    ) -> None:
        super().__init__(clock, on_message)
        self._features: dict[str, Callable[..., Any]] = {}
        self._loaded: set[str] = set()
        self._inflight: dict[str, asyncio.Future] = {}

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        if name in self._features:
            logger.debug("Replacing feature %s", name)
        self._features[name] = fn

    def feature(self, name: str | None = None):
        """Decorator form of :meth:`register`."""
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register(name or fn.__name__, fn)
            return fn
        return decorator

    def mark_loaded(self, name: str) -> None:
        self._loaded.add(name)

    def is_loaded(self, unit: str) -> bool:
        return unit in self._loaded

    @property
    def loaded(self) -> frozenset[str]:
        return frozenset(self._loaded)

    async def load(self, unit: str, token: InterruptToken | None = None) -> Any:
        fn = self._features.get(unit)
        if fn is None:
            raise UnknownUnitError(f"No feature registered under {unit!r}")
        token = token or InterruptToken()
        args = (token,) if _takes_argument(fn) else ()

        if inspect.iscoroutinefunction(fn):
            result = await fn(*args)
            self._loaded.add(unit)
            return result

        previous = self._inflight.get(unit)
        if previous is not None:
            logger.debug("Feature %s still running from an earlier attempt; waiting for it", unit)
            try:
                return await asyncio.shield(previous)
            except LoadInterrupted:
                # the earlier run honoured its own token; start a fresh one
                pass

        fut = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        self._inflight[unit] = fut
        fut.add_done_callback(lambda f, u=unit: self._feature_done(u, f))
        return await asyncio.shield(fut)

    def _feature_done(self, unit: str, fut: asyncio.Future) -> None:
        if self._inflight.get(unit) is fut:
            del self._inflight[unit]
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is None:
            self._loaded.add(unit)
        elif not isinstance(exc, LoadInterrupted):
            logger.debug("Feature %s finished with %r", unit, exc)


def _takes_argument(fn: Callable[..., Any]) -> bool:
    try:
        params = inspect.signature(fn).parameters.values()
    except (TypeError, ValueError):
        return False
    return any(
        p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD, p.VAR_POSITIONAL)
        for p in params
    )

"""Load interruption: input-aware cooperative cancellation.

A load attempt must give way to the user: as soon as input arrives, the unit
currently loading is abandoned and retried on the next idle period.

Two layers:

1. **Task race** (``while_no_input``):
   - The load runs as an asyncio task racing the attempt's token.
   - Input sets every registered token; the losing load task is cancelled.
   - Works for any coroutine that reaches an ``await``.

2. **Cooperative token** (``InterruptToken.check``):
   - Plain functions executed in a worker thread cannot be cancelled.
     They receive the token and call ``token.check()`` between chunks of
     work, which raises :class:`LoadInterrupted` once input has been seen.

Usage:
    watch = InputWatch()

    # On every keystroke / request / line of input:
    watch.notify()

    # Inside the scheduler step:
    finished = await while_no_input(host.load(unit, token), watch, token)
    if not finished:
        ...requeue unit...
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable

logger = logging.getLogger("idleload.interrupt")


class LoadInterrupted(Exception):
    """Raised by ``InterruptToken.check`` once input has arrived."""


class InterruptToken:
    """One-shot interruption flag for a single load attempt."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._flag = False

    def set(self) -> None:
        self._flag = True
        self._event.set()

    def is_set(self) -> bool:
        # Plain attribute read: safe to poll from a worker thread.
        return self._flag

    def check(self) -> None:
        if self._flag:
            raise LoadInterrupted()

    async def wait(self) -> None:
        await self._event.wait()


class InputWatch:
    """Registry of tokens belonging to attempts that are currently running."""

    def __init__(self) -> None:
        self._tokens: set[InterruptToken] = set()

    def register(self, token: InterruptToken | None = None) -> InterruptToken:
        token = token or InterruptToken()
        self._tokens.add(token)
        return token

    def deregister(self, token: InterruptToken) -> None:
        self._tokens.discard(token)

    def notify(self) -> int:
        """Signal input to every running attempt.  Returns how many were interrupted."""
        count = 0
        for token in list(self._tokens):
            if not token.is_set():
                token.set()
                count += 1
        if count:
            logger.debug("Input observed: interrupting %d load attempt(s)", count)
        return count

    @property
    def active(self) -> int:
        return len(self._tokens)


async def while_no_input(
    awaitable: Awaitable[Any],
    watch: InputWatch,
    token: InterruptToken | None = None,
) -> bool:
    """Run *awaitable* until it finishes or input arrives.

    Returns True when it completed and False when input interrupted it.
    Exceptions raised by the awaitable (other than ``LoadInterrupted``)
    propagate to the caller.
    """
    token = watch.register(token)
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        if task in done:
            try:
                task.result()
            except LoadInterrupted:
                return False
            return True

        task.cancel()
        try:
            await task
        except (asyncio.CancelledError, LoadInterrupted):
            pass
        return False
    finally:
        waiter.cancel()
        if not task.done():
            task.cancel()
        watch.deregister(token)

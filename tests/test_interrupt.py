"""Tests for interruption tokens and while_no_input."""

from __future__ import annotations

import asyncio

import pytest

from idleload.utils.interrupt import InputWatch, InterruptToken, LoadInterrupted, while_no_input


class TestInterruptToken:
    def test_check_raises_once_set(self):
        token = InterruptToken()
        token.check()
        token.set()
        assert token.is_set()
        with pytest.raises(LoadInterrupted):
            token.check()

    @pytest.mark.asyncio
    async def test_wait_returns_after_set(self):
        token = InterruptToken()
        asyncio.get_running_loop().call_soon(token.set)
        await asyncio.wait_for(token.wait(), timeout=1)


class TestInputWatch:
    def test_notify_sets_registered_tokens(self):
        watch = InputWatch()
        first = watch.register()
        second = watch.register()
        assert watch.active == 2
        assert watch.notify() == 2
        assert first.is_set() and second.is_set()
        assert watch.notify() == 0

    def test_deregistered_tokens_are_left_alone(self):
        watch = InputWatch()
        token = watch.register()
        watch.deregister(token)
        assert watch.notify() == 0
        assert not token.is_set()


class TestWhileNoInput:
    @pytest.mark.asyncio
    async def test_completed_returns_true(self):
        watch = InputWatch()

        async def work():
            await asyncio.sleep(0)

        assert await while_no_input(work(), watch) is True
        assert watch.active == 0

    @pytest.mark.asyncio
    async def test_input_cancels_and_returns_false(self):
        watch = InputWatch()
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        async def poke():
            while not watch.active:
                await asyncio.sleep(0)
            watch.notify()

        poker = asyncio.ensure_future(poke())
        assert await while_no_input(work(), watch) is False
        await poker
        assert cancelled.is_set()
        assert watch.active == 0

    @pytest.mark.asyncio
    async def test_load_interrupted_counts_as_interruption(self):
        watch = InputWatch()

        async def work():
            raise LoadInterrupted()

        assert await while_no_input(work(), watch) is False

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        watch = InputWatch()

        async def work():
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await while_no_input(work(), watch)
        assert watch.active == 0

    @pytest.mark.asyncio
    async def test_uses_given_token(self):
        watch = InputWatch()
        token = InterruptToken()
        seen = []

        async def work():
            seen.append(watch.active)

        await while_no_input(work(), watch, token)
        assert seen == [1]
        assert not token.is_set()

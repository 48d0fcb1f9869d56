"""Tests for HookRegistry."""

from __future__ import annotations

import pytest

from idleload.runtime.hooks import HookError, HookRegistry


@pytest.mark.asyncio
async def test_hooks_run_in_order_with_args():
    hooks = HookRegistry()
    seen = []

    async def first(value):
        seen.append(("first", value))

    hooks.add("drained", first)
    hooks.add("drained", lambda value: seen.append(("second", value)))

    assert await hooks.run("drained", 7) == []
    assert seen == [("first", 7), ("second", 7)]


@pytest.mark.asyncio
async def test_failing_hook_does_not_stop_the_rest():
    hooks = HookRegistry()
    seen = []

    def broken():
        raise ValueError("nope")

    hooks.add("startup", broken)
    hooks.add("startup", lambda: seen.append("ran"))

    errors = await hooks.run("startup")
    assert seen == ["ran"]
    assert len(errors) == 1
    assert isinstance(errors[0], HookError)
    assert errors[0].fn is broken
    assert isinstance(errors[0].cause, ValueError)
    assert "startup" in str(errors[0])


@pytest.mark.asyncio
async def test_transient_hook_runs_once():
    hooks = HookRegistry()
    calls = []

    def once():
        calls.append(1)

    hooks.add("startup", once, transient=True)
    await hooks.run("startup")
    await hooks.run("startup")
    assert calls == [1]
    assert hooks.hooks("startup") == []


def test_add_is_idempotent_and_remove_reports():
    hooks = HookRegistry()

    def hook():
        pass

    hooks.add("aborted", hook)
    hooks.add("aborted", hook)
    assert hooks.hooks("aborted") == [hook]
    assert hooks.remove("aborted", hook) is True
    assert hooks.remove("aborted", hook) is False


@pytest.mark.asyncio
async def test_unknown_hook_list_is_empty():
    assert await HookRegistry().run("nothing") == []

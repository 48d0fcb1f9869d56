"""Standalone runner entrypoint.

    python -m idleload --declarations units.yaml
    python -m idleload --unit json --unit decimal --first-idle 1.0

The runner will:
1. Load settings (honours .env) and apply command-line overrides
2. Collect declarations from the YAML file and any ``--unit`` flags
3. Boot a ModuleHost session and load units while the terminal is idle
4. Treat every line typed on stdin as user input (interrupts the load)
5. Handle SIGINT/SIGTERM gracefully

Exit status: 0 when the queue drained, 1 when loading was aborted, 2 for
bad declarations.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from idleload.config import Settings, settings as default_settings
from idleload.registry.declarations import DeclarationError, DeclarationRegistry, load_declarations
from idleload.runtime.host import ModuleHost
from idleload.runtime.session import IncrementalSession
from idleload.runtime.state import SchedulerState
from idleload.utils.logger import setup_logger

logger = logging.getLogger("idleload.worker")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idleload",
        description="Import modules one at a time while the terminal is idle.",
    )
    parser.add_argument("--declarations", help="YAML file mapping names to lists of modules")
    parser.add_argument(
        "--unit", action="append", default=[], metavar="MODULE",
        help="module to load incrementally (repeatable)",
    )
    parser.add_argument("--first-idle", type=float, help="seconds of idleness before the first load")
    parser.add_argument("--idle-interval", type=float, help="seconds between subsequent loads")
    parser.add_argument(
        "--busy-policy", choices=["abort", "requeue"],
        help="what to do when a step finds the terminal busy",
    )
    parser.add_argument("--now", action="store_true", help="load everything immediately")
    parser.add_argument("--no-stdin", action="store_true", help="do not treat stdin lines as input")
    return parser


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Return *base* settings with command-line overrides applied."""
    base = base or default_settings
    overrides: dict[str, object] = {}
    if args.first_idle is not None:
        overrides["IDLELOAD_FIRST_IDLE_SECONDS"] = args.first_idle
    if args.idle_interval is not None:
        overrides["IDLELOAD_IDLE_INTERVAL_SECONDS"] = args.idle_interval
    if args.busy_policy is not None:
        overrides["IDLELOAD_BUSY_POLICY"] = args.busy_policy
    if args.now:
        overrides["IDLELOAD_LOAD_IMMEDIATELY"] = True
    if args.declarations:
        overrides["IDLELOAD_DECLARATIONS_FILE"] = args.declarations
    if not overrides:
        return base
    return Settings(**{**base.model_dump(), **overrides})


def build_registry(args: argparse.Namespace, settings: Settings) -> DeclarationRegistry:
    registry = DeclarationRegistry()
    if settings.IDLELOAD_DECLARATIONS_FILE:
        load_declarations(settings.IDLELOAD_DECLARATIONS_FILE, registry)
    if args.unit:
        registry.declare("command-line", args.unit)
    return registry


def _watch_stdin(loop: asyncio.AbstractEventLoop, host: ModuleHost) -> bool:
    """Count every stdin line as user input.  False if stdin can't be watched."""

    def _on_readable() -> None:
        line = sys.stdin.readline()
        if not line:
            loop.remove_reader(sys.stdin)
            return
        interrupted = host.record_input()
        logger.debug("Input on stdin (%d load(s) interrupted)", interrupted)

    try:
        loop.add_reader(sys.stdin, _on_readable)
    except (NotImplementedError, ValueError, OSError):
        # Windows proactor loops and redirected/closed stdin
        return False
    return True


async def main(argv: list[str] | None = None) -> int:
    """Runner entrypoint; returns the process exit status."""
    args = build_parser().parse_args(argv)
    settings = settings_from_args(args)
    setup_logger(log_format=settings.LOG_FORMAT, log_level=settings.effective_log_level)

    try:
        registry = build_registry(args, settings)
    except DeclarationError as exc:
        logger.error("%s", exc)
        return 2

    host = ModuleHost()
    session = IncrementalSession(host, settings, registry)
    queued = await session.boot()
    if not queued:
        logger.info("Nothing declared, nothing to load")
        return 0

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_stop(*_):
        logger.info("Received shutdown signal: stopping loader")
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_stop)
        except (NotImplementedError, AttributeError, RuntimeError):
            # Windows doesn't support add_signal_handler
            pass

    watching = not args.no_stdin and _watch_stdin(loop, host)

    finish_task = asyncio.create_task(session.run_until_finished())
    stop_task = asyncio.create_task(stop_event.wait())
    try:
        await asyncio.wait({finish_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop_task.cancel()
        if watching:
            loop.remove_reader(sys.stdin)

    if not finish_task.done():
        session.shutdown()
        finish_task.cancel()
        try:
            await finish_task
        except asyncio.CancelledError:
            pass
        logger.info("Loader stopped with %d unit(s) left", len(session.scheduler.queue))
        return 1

    state = finish_task.result()
    return 0 if state is SchedulerState.DRAINED else 1


def run() -> None:
    sys.exit(asyncio.run(main()))

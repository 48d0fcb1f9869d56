"""Declaration registry: maps human-chosen names to units loaded incrementally.

Configuration code declares, next to each feature it sets up, which units
that feature will eventually need::

    defer_incrementally("git", "dataclasses", "difflib", "subprocess")
    defer_incrementally("notebook", "json", "html.parser")

The registry only collects; ``flush_into`` hands everything to the scheduler
once configuration has finished loading.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

import yaml

if TYPE_CHECKING:
    from idleload.runtime.scheduler import DeferredScheduler

logger = logging.getLogger("idleload.registry.declarations")


class DeclarationError(ValueError):
    """Raised for a malformed declarations file."""


class DeclarationRegistry:
    def __init__(self) -> None:
        self._declarations: dict[str, list[str]] = {}

    def declare(self, name: str, units: Iterable[str]) -> None:
        """Record *units* under *name*; declaring a name again extends it."""
        units = [u.strip() for u in units if u and u.strip()]
        self._declarations.setdefault(name, []).extend(units)
        logger.debug("Declared %d unit(s) for %s", len(units), name)

    def names(self) -> list[str]:
        return list(self._declarations)

    def units_for(self, name: str) -> list[str]:
        return list(self._declarations.get(name, []))

    def units(self) -> list[str]:
        """All declared units in declaration order, first occurrence wins."""
        seen: set[str] = set()
        ordered: list[str] = []
        for units in self._declarations.values():
            for unit in units:
                if unit not in seen:
                    seen.add(unit)
                    ordered.append(unit)
        return ordered

    def flush_into(self, scheduler: "DeferredScheduler", now: bool = False) -> int:
        """Enqueue every declared unit on *scheduler*.  Returns the count."""
        units = self.units()
        if units:
            logger.info(
                "Queueing %d unit(s) from %d declaration(s)", len(units), len(self._declarations)
            )
        return scheduler.enqueue(units, now=now)

    def clear(self) -> None:
        self._declarations.clear()


def parse_declarations(data: object, source: str = "<data>") -> dict[str, list[str]]:
    """Validate a ``{name: [unit, ...]}`` mapping (a bare string counts as one unit)."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DeclarationError(f"{source}: expected a mapping of name -> units, got {type(data).__name__}")

    parsed: dict[str, list[str]] = {}
    for name, units in data.items():
        if isinstance(units, str):
            units = [units]
        if not isinstance(units, list) or not all(isinstance(u, str) for u in units):
            raise DeclarationError(f"{source}: units for {name!r} must be a list of strings")
        parsed[str(name)] = units
    return parsed


def load_declarations(path: str | Path, registry: DeclarationRegistry | None = None) -> DeclarationRegistry:
    """Read a YAML declarations file into *registry* (a new one by default)."""
    path = Path(path)
    registry = registry if registry is not None else DeclarationRegistry()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise DeclarationError(f"{path}: invalid YAML: {exc}") from exc
    except OSError as exc:
        raise DeclarationError(f"{path}: cannot read declarations: {exc}") from exc

    for name, units in parse_declarations(data, str(path)).items():
        registry.declare(name, units)
    logger.info("Loaded %d declaration(s) from %s", len(registry.names()), path)
    return registry


# ── Process-wide default ─────────────────────────────────────────

registry = DeclarationRegistry()


def defer_incrementally(name: str, *units: str) -> None:
    """Declare *units* on the default registry."""
    registry.declare(name, units)

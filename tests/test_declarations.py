"""Tests for declaration registry and YAML loading."""

from __future__ import annotations

import pytest

from idleload.registry import declarations
from idleload.registry.declarations import (
    DeclarationError,
    DeclarationRegistry,
    defer_incrementally,
    load_declarations,
    parse_declarations,
)


class TestDeclarationRegistry:
    def test_units_keep_declaration_order_and_dedupe(self):
        reg = DeclarationRegistry()
        reg.declare("editor", ["json", "csv"])
        reg.declare("mail", ["csv", "email.parser"])
        assert reg.names() == ["editor", "mail"]
        assert reg.units() == ["json", "csv", "email.parser"]

    def test_declare_again_extends(self):
        reg = DeclarationRegistry()
        reg.declare("editor", ["a"])
        reg.declare("editor", ["b", "  ", ""])
        assert reg.units_for("editor") == ["a", "b"]

    def test_flush_into_scheduler(self, scheduler):
        reg = DeclarationRegistry()
        reg.declare("x", ["a", "b"])
        assert reg.flush_into(scheduler) == 2
        assert list(scheduler.queue) == ["a", "b"]

    def test_flush_empty_registry(self, scheduler):
        assert DeclarationRegistry().flush_into(scheduler) == 0

    def test_defer_incrementally_uses_default_registry(self, monkeypatch):
        reg = DeclarationRegistry()
        monkeypatch.setattr(declarations, "registry", reg)
        defer_incrementally("calendar", "calendar", "zoneinfo")
        assert reg.units_for("calendar") == ["calendar", "zoneinfo"]


class TestParseDeclarations:
    def test_none_is_empty(self):
        assert parse_declarations(None) == {}

    def test_string_becomes_single_unit(self):
        assert parse_declarations({"calc": "decimal"}) == {"calc": ["decimal"]}

    def test_rejects_non_mapping(self):
        with pytest.raises(DeclarationError):
            parse_declarations(["a", "b"])

    def test_rejects_non_string_units(self):
        with pytest.raises(DeclarationError, match="calc"):
            parse_declarations({"calc": [1, 2]})


class TestLoadDeclarations:
    def test_loads_yaml_file(self, tmp_path):
        path = tmp_path / "deferred.yaml"
        path.write_text("editor:\n  - json\n  - csv\nmail: email.parser\n", encoding="utf-8")
        reg = load_declarations(path)
        assert reg.units() == ["json", "csv", "email.parser"]

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("editor: [json\n", encoding="utf-8")
        with pytest.raises(DeclarationError, match="invalid YAML"):
            load_declarations(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeclarationError, match="cannot read"):
            load_declarations(tmp_path / "missing.yaml")

    def test_loads_into_given_registry(self, tmp_path):
        path = tmp_path / "deferred.yaml"
        path.write_text("a: [x]\n", encoding="utf-8")
        reg = DeclarationRegistry()
        reg.declare("pre", ["w"])
        assert load_declarations(path, reg) is reg
        assert reg.units() == ["w", "x"]


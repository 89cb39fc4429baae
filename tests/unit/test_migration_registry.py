"""Tests for migration definitions and the explicit registry."""

from __future__ import annotations

import sys
import types

import pytest
from pydantic import BaseModel

from deployforge.core.migration_registry import (
    Migration,
    MigrationRegistry,
    migration,
    resolve_registry,
)
from deployforge.errors import ConfigurationError


def _noop_enact(dm, gov_dm, vars):
    return None


class FeedVars(BaseModel):
    feed: str
    decimals: int


class AddFeed(Migration):
    name = "add-feed"
    vars_model = FeedVars

    def enact(self, dm, gov_dm, vars):
        return None


class TestMigration:
    def test_function_migration_defaults(self):
        m = migration("m1", enact=_noop_enact)
        assert m.name == "m1"
        assert m.prepare(None) is None
        assert m.enacted(None) is False
        assert m.verify(None) is None

    def test_blank_name_rejected(self):
        with pytest.raises(ConfigurationError):
            migration("  ", enact=_noop_enact)

    def test_subclass_without_name_rejected(self):
        class Nameless(Migration):
            pass

        with pytest.raises(ConfigurationError, match="no migration name"):
            Nameless()

    def test_enact_required(self):
        class NoEnact(Migration):
            name = "no-enact"

        with pytest.raises(NotImplementedError):
            NoEnact().enact(None, None, None)

    def test_typed_vars_roundtrip(self):
        m = AddFeed()
        dumped = m.dump_vars({"feed": "0xfeed", "decimals": "8"})
        assert dumped == {"feed": "0xfeed", "decimals": 8}
        assert m.load_vars(dumped) == FeedVars(feed="0xfeed", decimals=8)

    def test_vars_not_matching_model(self):
        with pytest.raises(ValueError, match="FeedVars"):
            AddFeed().dump_vars({"feed": "0xfeed"})

    def test_untyped_vars_pass_through(self):
        m = migration("m1", enact=_noop_enact)
        assert m.dump_vars({"a": [1]}) == {"a": [1]}
        assert m.dump_vars(FeedVars(feed="f", decimals=6)) == {"feed": "f", "decimals": 6}


class TestRegistry:
    def test_load_preserves_order(self):
        registry = MigrationRegistry()
        registry.load([migration("b", enact=_noop_enact), migration("a", enact=_noop_enact)])
        assert registry.names() == ["b", "a"]
        assert len(registry) == 2
        assert "a" in registry
        assert [m.name for m in registry] == ["b", "a"]

    def test_duplicate_in_batch_registers_nothing(self):
        registry = MigrationRegistry()
        with pytest.raises(ConfigurationError, match="Duplicate migration name 'x'"):
            registry.load([
                migration("ok", enact=_noop_enact),
                migration("x", enact=_noop_enact),
                migration("x", enact=_noop_enact),
            ])
        assert len(registry) == 0

    def test_duplicate_against_existing(self):
        registry = MigrationRegistry()
        registry.register(migration("x", enact=_noop_enact))
        with pytest.raises(ConfigurationError):
            registry.load([migration("y", enact=_noop_enact), migration("x", enact=_noop_enact)])
        assert registry.names() == ["x"]

    def test_non_migration_rejected(self):
        with pytest.raises(ConfigurationError, match="Expected a Migration"):
            MigrationRegistry().load([object()])

    def test_immutable_after_registration(self):
        m = migration("x", enact=_noop_enact)
        MigrationRegistry().register(m)
        with pytest.raises(AttributeError, match="immutable"):
            m.name = "renamed"

    def test_mutable_before_registration(self):
        m = AddFeed()
        m.vars_model = None
        assert m.vars_model is None

    def test_unknown_name(self):
        with pytest.raises(ConfigurationError, match="Unknown migration 'nope'"):
            MigrationRegistry().get("nope")


class TestResolveRegistry:
    @pytest.fixture
    def fake_module(self, monkeypatch):
        module = types.ModuleType("fake_migrations")
        registry = MigrationRegistry()
        registry.register(migration("m1", enact=_noop_enact))
        module.registry = registry
        module.build = lambda: registry
        module.not_a_registry = 42
        monkeypatch.setitem(sys.modules, "fake_migrations", module)
        return registry

    def test_attribute(self, fake_module):
        assert resolve_registry("fake_migrations:registry") is fake_module

    def test_factory(self, fake_module):
        assert resolve_registry("fake_migrations:build") is fake_module

    @pytest.mark.parametrize(
        "ref, message",
        [
            ("no-colon", "module:attribute"),
            ("missing_module_xyz:registry", "Cannot import"),
            ("fake_migrations:absent", "has no attribute"),
            ("fake_migrations:not_a_registry", "not a MigrationRegistry"),
        ],
    )
    def test_bad_references(self, fake_module, ref, message):
        with pytest.raises(ConfigurationError, match=message):
            resolve_registry(ref)

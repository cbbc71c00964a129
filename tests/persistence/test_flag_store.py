"""
Tests for flag stores.
"""

import json

import pytest

from archetype_manager.persistence import FlagWrite, InMemoryFlagStore, JsonFlagStore


class FailingFlagStore(InMemoryFlagStore):
    """Store whose durable write always fails."""

    def _persist(self, data):
        raise OSError("disk full")


class TestInMemoryFlagStore:
    """Basic flag operations."""

    def test_set_and_get(self):
        store = InMemoryFlagStore()
        store.set("Actor.a", "ns.key", {"value": 1})
        assert store.get("Actor.a", "ns.key") == {"value": 1}

    def test_missing_key(self):
        assert InMemoryFlagStore().get("Actor.a", "ns.key") is None

    def test_values_are_copies(self):
        """Mutating a returned value never changes what is stored."""
        store = InMemoryFlagStore()
        value = {"slugs": ["a"]}
        store.set("Actor.a", "ns.key", value)
        value["slugs"].append("b")
        fetched = store.get("Actor.a", "ns.key")
        fetched["slugs"].append("c")

        assert store.get("Actor.a", "ns.key") == {"slugs": ["a"]}

    def test_unset_removes_empty_scope(self):
        store = InMemoryFlagStore()
        store.set("Actor.a", "ns.key", 1)
        store.unset("Actor.a", "ns.key")

        assert store.scopes() == []

    def test_commit_applies_all_writes(self):
        store = InMemoryFlagStore({"Class.a": {"old": 1}})
        store.commit([
            FlagWrite("Class.a", "new", 2),
            FlagWrite("Class.a", "old", unset=True),
            FlagWrite("Actor.a", "tracking", {"fighter": ["x"]}),
        ])

        assert store.snapshot() == {
            "Class.a": {"new": 2},
            "Actor.a": {"tracking": {"fighter": ["x"]}},
        }

    def test_failed_commit_changes_nothing(self):
        store = FailingFlagStore({"Class.a": {"old": 1}})

        with pytest.raises(OSError):
            store.commit([
                FlagWrite("Class.a", "new", 2),
                FlagWrite("Class.a", "old", unset=True),
            ])

        assert store.snapshot() == {"Class.a": {"old": 1}}

    def test_empty_commit_is_noop(self):
        store = FailingFlagStore()
        store.commit([])
        assert store.snapshot() == {}


class TestJsonFlagStore:
    """Flag store persisted to a JSON file."""

    def test_commit_writes_file(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFlagStore(path)
        store.set("Class.a", "ns.version", 3)

        with open(path, encoding="utf-8") as f:
            assert json.load(f) == {"Class.a": {"ns.version": 3}}

    def test_reload_from_file(self, tmp_path):
        path = tmp_path / "nested" / "state.json"
        JsonFlagStore(path).set("Class.a", "ns.version", 3)

        reloaded = JsonFlagStore(str(path))
        assert reloaded.get("Class.a", "ns.version") == 3

    def test_no_temp_files_left(self, tmp_path):
        store = JsonFlagStore(tmp_path / "state.json")
        store.set("Class.a", "ns.version", 1)
        store.set("Class.a", "ns.version", 2)

        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

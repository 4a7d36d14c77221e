"""Tests for the in-process graph store."""
from __future__ import annotations

import datetime as dt

from genealogy_engine.graph import GraphStore
from genealogy_engine.models import Event, Member


def _member(member_id: str, **kwargs) -> Member:
    return Member(id=member_id, name=kwargs.pop("name", member_id), scope="s", **kwargs)


def _event(event_id: str, date: str, content: str = "something") -> Event:
    return Event(id=event_id, content=content, date=dt.date.fromisoformat(date), scope="s")


class TestMembers:
    """Tests for member mutation primitives."""

    def test_upsert_appends_then_replaces(self):
        store = GraphStore("s")

        assert store.upsert_member(_member("a")) is False
        assert store.upsert_member(_member("a", name="Renamed")) is True
        assert len(store.members) == 1
        assert store.get_member("a").name == "Renamed"

    def test_upsert_keeps_position(self):
        store = GraphStore("s")
        store.load([_member("a"), _member("b"), _member("c")], [])

        store.upsert_member(_member("b", name="B2"))

        assert [m.id for m in store.members] == ["a", "b", "c"]

    def test_replace_unknown_is_noop(self):
        store = GraphStore("s")
        version = store.members_version

        assert store.replace_member(_member("ghost")) is False
        assert store.members == ()
        assert store.members_version == version

    def test_remove_is_idempotent(self):
        store = GraphStore("s")
        store.load([_member("a")], [])

        assert store.remove_member("a").id == "a"
        assert store.remove_member("a") is None

    def test_insert_member_at_restores_position(self):
        store = GraphStore("s")
        store.load([_member("a"), _member("b"), _member("c")], [])
        removed = store.remove_member("b")

        store.insert_member_at(1, removed)

        assert [m.id for m in store.members] == ["a", "b", "c"]

    def test_version_changes_only_on_real_change(self):
        store = GraphStore("s")
        store.upsert_member(_member("a"))
        version = store.members_version

        store.upsert_member(_member("a"))
        assert store.members_version == version

        store.upsert_member(_member("a", name="Other"))
        assert store.members_version > version

    def test_root(self):
        store = GraphStore("s")
        store.load([_member("c", generation=2, father_id="r"), _member("r")], [])

        assert store.root().id == "r"

    def test_get_none(self):
        assert GraphStore("s").get_member(None) is None


class TestEvents:
    """Tests for event ordering."""

    def test_load_sorts_newest_first(self):
        store = GraphStore("s")
        store.load([], [_event("old", "1990-01-01"), _event("new", "2020-01-01")])

        assert [e.id for e in store.events] == ["new", "old"]

    def test_upsert_resorts(self):
        store = GraphStore("s")
        store.load([], [_event("a", "2000-01-01")])

        store.upsert_event(_event("b", "2010-01-01"))
        store.upsert_event(_event("c", "1990-01-01"))

        assert [e.id for e in store.events] == ["b", "a", "c"]

    def test_same_date_keeps_arrival_order(self):
        store = GraphStore("s")
        store.upsert_event(_event("first", "2000-01-01"))
        store.upsert_event(_event("second", "2000-01-01"))

        assert [e.id for e in store.events] == ["first", "second"]

    def test_remove_event(self):
        store = GraphStore("s")
        store.load([], [_event("a", "2000-01-01")])

        assert store.remove_event("a").id == "a"
        assert store.remove_event("a") is None


class TestAncestry:
    """Tests for cycle detection."""

    def test_detects_cycle(self):
        store = GraphStore("s")
        store.load([
            _member("g"),
            _member("p", generation=2, father_id="g"),
            _member("c", generation=3, father_id="p"),
        ], [])

        assert store.would_create_cycle("g", "c") is True
        assert store.would_create_cycle("c", "g") is False
        assert store.would_create_cycle("c", None) is False

    def test_terminates_on_existing_cycle(self):
        store = GraphStore("s")
        store.load([
            _member("a", generation=2, father_id="b"),
            _member("b", generation=2, father_id="a"),
        ], [])

        assert store.would_create_cycle("x", "a") is False

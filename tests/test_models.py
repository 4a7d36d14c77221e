"""Tests for member, event and change-feed models."""
from __future__ import annotations

import datetime as dt

import pytest
from pydantic import ValidationError

from genealogy_engine.models import (
    ChangeEvent,
    ChangeKind,
    Event,
    Gender,
    Member,
    Table,
    new_id,
    parse_gender,
    parse_record,
)


class TestMember:
    """Tests for the Member model."""

    def test_defaults(self):
        member = Member(name="Ancestor")

        assert member.gender == Gender.MALE
        assert member.generation == 1
        assert member.is_root
        assert member.parent_ids == ()
        assert member.id

    def test_gender_aliases(self):
        assert Member(name="A", gender="F").gender == Gender.FEMALE
        assert Member(name="B", gender="女").gender == Gender.FEMALE
        assert Member(name="C", gender="男").gender == Gender.MALE

    def test_blank_references_become_none(self):
        member = Member(name="A", generation=2, father_id="", mother_id="  ", is_spouse_of="")

        assert member.father_id is None
        assert member.mother_id is None
        assert member.is_spouse_of is None
        assert not member.is_spouse

    def test_parent_ids_father_first(self):
        member = Member(name="A", generation=2, father_id="f", mother_id="m")

        assert member.parent_ids == ("f", "m")
        assert not member.is_root

    def test_generation_must_be_positive(self):
        with pytest.raises(ValidationError):
            Member(name="A", generation=0)

    def test_frozen(self):
        member = Member(name="A")
        with pytest.raises(ValidationError):
            member.name = "B"

    def test_unknown_fields_ignored(self):
        member = Member.model_validate({"id": "m1", "name": "A", "created_at": "2024-01-01"})

        assert member.id == "m1"

    def test_to_record_is_json_ready(self):
        record = Member(id="m1", name="A", gender=Gender.FEMALE, scope="s").to_record()

        assert record["gender"] == "female"
        assert record["scope"] == "s"


class TestEvent:
    """Tests for the Event model."""

    def test_comma_separated_member_ids(self):
        event = Event(content="Wedding", date="2020-05-01", related_member_ids="a, b,,c")

        assert event.related_member_ids == ["a", "b", "c"]
        assert event.date == dt.date(2020, 5, 1)

    def test_null_member_ids(self):
        event = Event(content="Move", date=dt.date(2001, 1, 1), related_member_ids=None)

        assert event.related_member_ids == []

    def test_record_round_trip(self):
        event = Event(id="e1", content="Birth", date=dt.date(1990, 3, 4), related_member_ids=["m1"])

        assert Event.model_validate(event.to_record()) == event


class TestHelpers:
    """Tests for ids, gender parsing and record dispatch."""

    def test_new_id_unique(self):
        assert new_id() != new_id()

    def test_parse_gender(self):
        assert parse_gender("Female") == Gender.FEMALE
        assert parse_gender(Gender.MALE) == Gender.MALE
        with pytest.raises(ValueError):
            parse_gender("unknown")

    def test_parse_record_dispatch(self):
        member = parse_record(Table.MEMBERS, {"id": "m1", "name": "A"})
        event = parse_record(Table.EVENTS, {"id": "e1", "content": "x", "date": "2000-01-01"})

        assert isinstance(member, Member)
        assert isinstance(event, Event)

    def test_change_event_entity_id(self):
        change = ChangeEvent(table=Table.MEMBERS, kind=ChangeKind.DELETE, record={"id": "m1"})
        empty = ChangeEvent(table=Table.MEMBERS, kind=ChangeKind.DELETE, record={})

        assert change.entity_id == "m1"
        assert empty.entity_id is None

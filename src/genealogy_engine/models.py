"""Record models for members, events and the change feed.

Members and events are immutable pydantic models; edits produce new
instances via ``model_copy`` and the store swaps them in by id.
"""
from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from uuid_utils import uuid7 as _uuid7


def new_id() -> str:
    """Generate a time-ordered id for a locally created record."""
    return str(UUID(str(_uuid7())))


class Gender(str, Enum):
    """Binary gender used to pick gendered kinship terms."""

    MALE = "male"
    FEMALE = "female"


_GENDER_ALIASES = {
    "male": Gender.MALE,
    "m": Gender.MALE,
    "男": Gender.MALE,
    "female": Gender.FEMALE,
    "f": Gender.FEMALE,
    "女": Gender.FEMALE,
}


def parse_gender(value: str | Gender) -> Gender:
    """Parse a gender name or alias ('m', 'female', '女', ...).

    Raises:
        ValueError: Unrecognised value.
    """
    if isinstance(value, Gender):
        return value
    alias = _GENDER_ALIASES.get(value.strip().lower())
    if alias is None:
        raise ValueError(f"Unknown gender {value!r}; use male or female")
    return alias


class Table(str, Enum):
    """Tables exposed by the persistence collaborator."""

    MEMBERS = "members"
    EVENTS = "events"


class ChangeKind(str, Enum):
    """Kind of a change-feed notification or local mutation."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Member(BaseModel):
    """A person in one genealogy scope."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=new_id)
    name: str
    gender: Gender = Gender.MALE
    birth: str | None = None
    avatar: str | None = None
    generation: int = Field(default=1, ge=1)
    father_id: str | None = None
    mother_id: str | None = None
    is_spouse_of: str | None = None
    scope: str = ""

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, value: Any) -> Any:
        if isinstance(value, str):
            alias = _GENDER_ALIASES.get(value.strip().lower())
            if alias is not None:
                return alias
        return value

    @field_validator("birth", "avatar", "father_id", "mother_id", "is_spouse_of", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def is_female(self) -> bool:
        return self.gender == Gender.FEMALE

    @property
    def is_spouse(self) -> bool:
        return self.is_spouse_of is not None

    @property
    def parent_ids(self) -> tuple[str, ...]:
        """Resolved-or-not parent references, father first."""
        return tuple(p for p in (self.father_id, self.mother_id) if p)

    @property
    def is_root(self) -> bool:
        return self.generation == 1 and not self.parent_ids and not self.is_spouse

    def to_record(self) -> dict[str, Any]:
        """Serialize to the wire form used by the persistence collaborator."""
        return self.model_dump(mode="json")


class Event(BaseModel):
    """A dated free-text entry weakly linked to members."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(default_factory=new_id)
    content: str
    date: dt.date
    related_member_ids: list[str] = Field(default_factory=list)
    scope: str = ""

    @field_validator("related_member_ids", mode="before")
    @classmethod
    def _split_member_ids(cls, value: Any) -> Any:
        # Stored as a comma-separated string by older backends.
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ChangeEvent(BaseModel):
    """A notification from the external change feed.

    For deletes only ``record["id"]`` is guaranteed to be present.
    """

    table: Table
    kind: ChangeKind
    record: dict[str, Any]

    @property
    def entity_id(self) -> str | None:
        value = self.record.get("id")
        return str(value) if value is not None else None


class Mutation(BaseModel):
    """A local mutation intent handed to the reconciler.

    ``record`` is the full record for inserts, the patch for updates and
    empty for deletes.
    """

    table: Table
    kind: ChangeKind
    entity_id: str
    record: dict[str, Any] = Field(default_factory=dict)


class Snapshot(BaseModel):
    """Everything a scope currently holds, as returned by ``fetch_all``."""

    members: list[Member] = Field(default_factory=list)
    events: list[Event] = Field(default_factory=list)


def parse_record(table: Table, record: dict[str, Any]) -> Member | Event:
    """Validate a wire record into the model for its table."""
    if table == Table.MEMBERS:
        return Member.model_validate(record)
    return Event.model_validate(record)

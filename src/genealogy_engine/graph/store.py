"""In-process graph store for one genealogy scope.

Holds the current members (in arrival order) and events (newest first).
Only the reconciler writes to it; everything else reads.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from ..models import Event, Member, Snapshot

if TYPE_CHECKING:
    from collections.abc import Iterable


def _event_sort_key(event: Event):
    return event.date


class GraphStore:
    """Members and events for a single scope.

    Mutation primitives are idempotent: upserting the same record twice, or
    removing an id that is already gone, leaves the store unchanged.
    ``members_version`` increases on every member change so readers can
    cache derived data such as the layout.
    """

    def __init__(self, scope: str) -> None:
        self.scope = scope
        self._members: list[Member] = []
        self._events: list[Event] = []
        self.members_version = 0

    # ------------------------------------------------------------------ reads

    @property
    def members(self) -> tuple[Member, ...]:
        return tuple(self._members)

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    def get_member(self, member_id: str | None) -> Member | None:
        if member_id is None:
            return None
        for member in self._members:
            if member.id == member_id:
                return member
        return None

    def get_event(self, event_id: str | None) -> Event | None:
        if event_id is None:
            return None
        for event in self._events:
            if event.id == event_id:
                return event
        return None

    def root(self) -> Member | None:
        """The scope's root member, if one exists."""
        return next((m for m in self._members if m.is_root), None)

    def snapshot(self) -> Snapshot:
        return Snapshot(members=list(self._members), events=list(self._events))

    # -------------------------------------------------------------- mutations

    def load(self, members: Iterable[Member], events: Iterable[Event]) -> None:
        """Replace the whole contents, e.g. after an initial fetch."""
        self._members = list(members)
        self._events = sorted(events, key=_event_sort_key, reverse=True)
        self.members_version += 1

    def upsert_member(self, member: Member) -> bool:
        """Replace in place when the id exists, otherwise append.

        Returns True if the member was already present.
        """
        for index, existing in enumerate(self._members):
            if existing.id == member.id:
                if existing != member:
                    self._members[index] = member
                    self.members_version += 1
                return True
        self._members.append(member)
        self.members_version += 1
        return False

    def replace_member(self, member: Member) -> bool:
        """Replace by id; no-op when the id is unknown."""
        for index, existing in enumerate(self._members):
            if existing.id == member.id:
                if existing != member:
                    self._members[index] = member
                    self.members_version += 1
                return True
        return False

    def remove_member(self, member_id: str) -> Member | None:
        for index, existing in enumerate(self._members):
            if existing.id == member_id:
                del self._members[index]
                self.members_version += 1
                return existing
        return None

    def insert_member_at(self, index: int, member: Member) -> None:
        """Restore a member at its former position (rollback of a delete)."""
        if self.get_member(member.id) is not None:
            self.replace_member(member)
            return
        self._members.insert(min(index, len(self._members)), member)
        self.members_version += 1

    def member_index(self, member_id: str) -> int | None:
        for index, existing in enumerate(self._members):
            if existing.id == member_id:
                return index
        return None

    def upsert_event(self, event: Event) -> bool:
        """Replace or add an event, keeping date-descending order."""
        present = self.replace_event(event)
        if not present:
            self._events.append(event)
            self._resort_events()
        return present

    def replace_event(self, event: Event) -> bool:
        for index, existing in enumerate(self._events):
            if existing.id == event.id:
                self._events[index] = event
                self._resort_events()
                return True
        return False

    def remove_event(self, event_id: str) -> Event | None:
        for index, existing in enumerate(self._events):
            if existing.id == event_id:
                del self._events[index]
                return existing
        return None

    def _resort_events(self) -> None:
        # Stable: events sharing a date keep their relative order.
        self._events.sort(key=_event_sort_key, reverse=True)

    # ------------------------------------------------------------- ancestry

    def would_create_cycle(self, member_id: str, parent_id: str | None) -> bool:
        """True if making ``parent_id`` a parent of ``member_id`` closes a loop.

        Walks the candidate parent's ancestry with a visited set, so it
        terminates even if the stored data already contains a cycle.
        """
        if parent_id is None:
            return False
        stack = [parent_id]
        visited: set[str] = set()
        while stack:
            current = stack.pop()
            if current == member_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            member = self.get_member(current)
            if member is not None:
                stack.extend(member.parent_ids)
        return False

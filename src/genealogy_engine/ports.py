"""Interfaces of the external collaborators the engine depends on.

Implementations live outside the engine (a hosted database, a realtime
channel, browser storage); ``genealogy_engine.backends`` ships local
reference implementations.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable

    from .models import ChangeEvent, Snapshot, Table


@runtime_checkable
class PersistenceBackend(Protocol):
    """Query and write access to one genealogy database."""

    async def fetch_all(self, scope: str) -> Snapshot:
        """Load all members and events of a scope.

        Raises:
            TransientIOError: The backend could not be reached.
        """
        ...

    async def insert(self, table: Table, record: dict[str, Any]) -> dict[str, Any]:
        """Store a new record and return it as stored.

        Raises:
            PermissionDeniedError: Writes to ``table`` are not allowed.
        """
        ...

    async def update(self, table: Table, entity_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Apply ``patch`` to a record and return the stored result.

        Raises:
            NotFoundError: No record with ``entity_id``.
            PermissionDeniedError: Writes to ``table`` are not allowed.
        """
        ...

    async def delete(self, table: Table, entity_id: str) -> None:
        """Remove a record.

        Raises:
            NotFoundError: No record with ``entity_id``.
            PermissionDeniedError: Writes to ``table`` are not allowed.
        """
        ...


@runtime_checkable
class ChangeFeed(Protocol):
    """At-least-once, unordered stream of committed changes for a scope."""

    def subscribe(self, scope: str, handler: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unsubscribes it."""
        ...


@runtime_checkable
class LocalStore(Protocol):
    """Small key/value store surviving across sessions on this device."""

    def get(self, key: str) -> str | None:
        ...

    def set(self, key: str, value: str | None) -> None:
        """Store ``value``; ``None`` removes the key."""
        ...


def self_id_key(scope: str) -> str:
    """Key under which the user's own member id is kept for ``scope``."""
    return f"my_id_{scope}"

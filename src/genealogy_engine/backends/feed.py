"""In-process change feed shared by the local backends."""
from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from ..models import ChangeEvent

logger = structlog.get_logger(__name__)


class LocalChangeFeed:
    """Fans committed changes out to subscribers of the same scope.

    With ``hold_changes`` set, notifications queue up until :meth:`flush`,
    which can deliver them in any order to mimic a reordering transport.
    """

    def __init__(self, *, hold_changes: bool = False) -> None:
        self.hold_changes = hold_changes
        self._handlers: dict[str, list[Callable[[ChangeEvent], None]]] = defaultdict(list)
        self._held: list[tuple[str, ChangeEvent]] = []

    def subscribe(self, scope: str, handler: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        self._handlers[scope].append(handler)
        logger.debug("feed.subscribed", scope=scope, subscribers=len(self._handlers[scope]))

        def unsubscribe() -> None:
            if handler in self._handlers[scope]:
                self._handlers[scope].remove(handler)

        return unsubscribe

    def publish(self, scope: str, change: ChangeEvent) -> None:
        if self.hold_changes:
            self._held.append((scope, change))
            return
        self._deliver(scope, change)

    @property
    def held(self) -> list[ChangeEvent]:
        return [change for _, change in self._held]

    def flush(self, *, reverse: bool = False, duplicate: bool = False) -> int:
        """Deliver held notifications; returns how many were delivered."""
        held, self._held = self._held, []
        if reverse:
            held.reverse()
        delivered = 0
        for scope, change in held:
            for _ in range(2 if duplicate else 1):
                self._deliver(scope, change)
                delivered += 1
        return delivered

    def _deliver(self, scope: str, change: ChangeEvent) -> None:
        for handler in list(self._handlers[scope]):
            handler(change)

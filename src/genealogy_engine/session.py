"""Session tying the graph store, reconciler and viewport to the collaborators.

A session is what a presentation layer (the CLI, a canvas UI) talks to. It
owns one scope: it loads it, keeps it current from the change feed, turns
user intents into mutations and keeps the last user-visible error.
"""
from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from .errors import (
    GenealogyError,
    InvalidInputError,
    InvariantViolationError,
    NotFoundError,
    PermissionDeniedError,
    TransientIOError,
)
from .graph import (
    DEFAULT_METRICS,
    GraphStore,
    LayoutMetrics,
    PositionedNode,
    Reconciler,
    Transform,
    ViewportController,
    compute_layout,
    connectors,
    resolve_kinship,
)
from .models import ChangeKind, Event, Gender, Member, Mutation, Table
from .ports import self_id_key

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .config import EngineConfig
    from .graph import Connector
    from .ports import ChangeFeed, LocalStore, PersistenceBackend

logger = structlog.get_logger(__name__)

# Fields whose change can break generation consistency or ancestry.
_LINEAGE_FIELDS = ("generation", "father_id", "mother_id", "is_spouse_of")


class GenealogySession:
    """One user's view of one genealogy scope.

    Intent methods never raise :class:`GenealogyError`: the error is logged,
    kept in :attr:`error` and the method returns ``None``.

    Example:
        >>> session = GenealogySession(backend, scope="family")
        >>> await session.start()
        >>> root = await session.add_root("Ancestor")
        >>> child = await session.add_child(root.id, "Child", Gender.FEMALE)
        >>> session.set_self(child.id)
        >>> session.kinship(root.id)
        'father'
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        *,
        scope: str,
        feed: ChangeFeed | None = None,
        local_store: LocalStore | None = None,
        strict_generations: bool = False,
        fetch_attempts: int = 3,
        viewport_width: float = 0.0,
        metrics: LayoutMetrics = DEFAULT_METRICS,
    ) -> None:
        """Initialize the session.

        Args:
            backend: Persistence collaborator
            scope: Scope id all reads and writes are confined to
            feed: Change feed to follow; the backend itself when it is one
            local_store: Where the self id is remembered (optional)
            strict_generations: Validate generations and ancestry on writes
            fetch_attempts: Attempts for the initial fetch before giving up
            viewport_width: Width of the drawing surface, for the default view
            metrics: Card geometry used by layout and hit-testing
        """
        self.backend = backend
        self.scope = scope
        self.feed = feed if feed is not None else _as_feed(backend)
        self.local_store = local_store
        self.strict_generations = strict_generations
        self.fetch_attempts = fetch_attempts
        self.metrics = metrics

        self.store = GraphStore(scope)
        self.reconciler = Reconciler(self.store, backend)
        self.viewport = ViewportController(viewport_width, metrics)
        self.viewport_width = viewport_width

        self.error: str | None = None
        self.loaded = False
        self._unsubscribe: Callable[[], None] | None = None
        self._nodes: dict[str, PositionedNode] = {}
        self._nodes_version = -1
        self._self_id: str | None = None

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs: Any) -> GenealogySession:
        """Build a session with the backend and local store named by ``config``."""
        from .backends import JsonFileLocalStore, backend_from_config

        backend = backend_from_config(config)
        return cls(
            backend,
            scope=config.scope,
            local_store=JsonFileLocalStore(config.state_path),
            strict_generations=config.strict_generations,
            fetch_attempts=config.fetch_attempts,
            **kwargs,
        )

    # ------------------------------------------------------------ lifecycle

    async def start(self) -> bool:
        """Load the scope and follow its change feed.

        Returns:
            True once loaded; False if loading failed (see :attr:`error`).
        """
        if not await self.load():
            return False
        if self.feed is not None and self._unsubscribe is None:
            self._unsubscribe = self.feed.subscribe(self.scope, self.reconciler.apply_remote)
        return True

    async def load(self) -> bool:
        """Fetch the whole scope, retrying transient failures."""

        @retry(
            reraise=True,
            stop=stop_after_attempt(self.fetch_attempts),
            wait=wait_exponential_jitter(initial=0.1, max=1.0),
            retry=retry_if_exception_type(TransientIOError),
        )
        async def _do():
            return await self.backend.fetch_all(self.scope)

        try:
            snapshot = await _do()
        except GenealogyError as exc:
            self._record_error("load", exc)
            return False

        self.store.load(snapshot.members, snapshot.events)
        self.viewport.reset(self.viewport_width)
        self.loaded = True
        logger.info(
            "session.loaded",
            scope=self.scope,
            members=len(snapshot.members),
            events=len(snapshot.events),
        )
        return True

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ---------------------------------------------------------------- views

    @property
    def nodes(self) -> dict[str, PositionedNode]:
        """Positioned members; recomputed only when the members change."""
        if self._nodes_version != self.store.members_version:
            self._nodes = compute_layout(self.store.members, self.metrics)
            self._nodes_version = self.store.members_version
        return self._nodes

    def connectors(self) -> list[Connector]:
        return connectors(self.nodes, self.metrics)

    @property
    def members(self) -> tuple[Member, ...]:
        return self.store.members

    @property
    def events(self) -> tuple[Event, ...]:
        return self.store.events

    @property
    def busy(self) -> bool:
        return self.reconciler.busy

    def dismiss_error(self) -> None:
        self.error = None

    # -------------------------------------------------------------- self id

    @property
    def self_id(self) -> str | None:
        if self.local_store is None:
            return self._self_id
        return self.local_store.get(self_id_key(self.scope))

    @property
    def me(self) -> Member | None:
        return self.store.get_member(self.self_id)

    def set_self(self, member_id: str | None) -> bool:
        """Remember which member the user is; ``None`` forgets it."""
        if member_id is not None and self.store.get_member(member_id) is None:
            self._record_error(
                "set_self",
                NotFoundError(f"No member {member_id} in scope {self.scope!r}", entity_id=member_id),
            )
            return False
        if self.local_store is None:
            self._self_id = member_id
        else:
            self.local_store.set(self_id_key(self.scope), member_id)
        logger.info("session.self_set", scope=self.scope, member_id=member_id)
        return True

    def kinship(self, target_id: str) -> str | None:
        """Kinship term of ``target_id`` relative to the self id."""
        return resolve_kinship(self.nodes, self.self_id, target_id)

    # -------------------------------------------------------------- viewport

    def locate(self, member_id: str, viewport_width: float, viewport_height: float) -> Transform | None:
        """Centre the view on a member; None if it is not laid out."""
        node = self.nodes.get(member_id)
        if node is None:
            return None
        return self.viewport.locate(node, viewport_width, viewport_height)

    def tap(self, sx: float, sy: float) -> PositionedNode | None:
        """Node under a screen point, if any."""
        return self.viewport.hit_test(sx, sy, self.nodes)

    # --------------------------------------------------------------- intents

    async def add_root(
        self,
        name: str,
        gender: Gender = Gender.MALE,
        *,
        birth: str | None = None,
        avatar: str | None = None,
    ) -> Member | None:
        """Create the generation-1 ancestor of an empty scope."""

        async def _do() -> Member:
            existing = next((m for m in self.store.members if m.generation == 1), None)
            if existing is not None:
                raise InvariantViolationError(
                    f"Scope {self.scope!r} already has a first-generation member ({existing.name})",
                    table=Table.MEMBERS.value,
                    entity_id=existing.id,
                )
            member = Member(name=name, gender=gender, birth=birth, avatar=avatar, generation=1, scope=self.scope)
            return await self._insert_member(member)

        return await self._run("add_root", _do)

    async def add_child(
        self,
        parent_id: str,
        name: str,
        gender: Gender = Gender.MALE,
        *,
        mother_id: str | None = None,
        birth: str | None = None,
        avatar: str | None = None,
    ) -> Member | None:
        """Add a child one generation below ``parent_id``, linked as its father."""

        async def _do() -> Member:
            parent = self._require_member(parent_id)
            member = Member(
                name=name,
                gender=gender,
                birth=birth,
                avatar=avatar,
                generation=parent.generation + 1,
                father_id=parent.id,
                mother_id=mother_id,
                scope=self.scope,
            )
            if self.strict_generations:
                self._validate_lineage(member)
            return await self._insert_member(member)

        return await self._run("add_child", _do)

    async def add_spouse(
        self,
        partner_id: str,
        name: str,
        gender: Gender | None = None,
        *,
        birth: str | None = None,
        avatar: str | None = None,
    ) -> Member | None:
        """Add a spouse of ``partner_id`` in the partner's generation.

        Without an explicit gender the spouse takes the opposite of the partner's.
        """

        async def _do() -> Member:
            partner = self._require_member(partner_id)
            if gender is None:
                spouse_gender = Gender.MALE if partner.is_female else Gender.FEMALE
            else:
                spouse_gender = gender
            member = Member(
                name=name,
                gender=spouse_gender,
                birth=birth,
                avatar=avatar,
                generation=partner.generation,
                is_spouse_of=partner.id,
                scope=self.scope,
            )
            return await self._insert_member(member)

        return await self._run("add_spouse", _do)

    async def edit_member(self, member_id: str, **changes: Any) -> Member | None:
        """Update fields of a member (name, gender, birth, avatar, lineage)."""

        async def _do() -> Member:
            current = self._require_member(member_id)
            patch = {k: v for k, v in changes.items() if k not in ("id", "scope")}
            if self.strict_generations and any(k in patch for k in _LINEAGE_FIELDS):
                self._validate_lineage(Member.model_validate({**current.to_record(), **patch}))
            await self.reconciler.apply_local(
                Mutation(table=Table.MEMBERS, kind=ChangeKind.UPDATE, entity_id=member_id, record=patch)
            )
            return self._require_member(member_id)

        return await self._run("edit_member", _do)

    async def delete_member(self, member_id: str) -> bool:
        """Delete one member; relatives keep their (now dangling) references."""

        async def _do() -> bool:
            await self.reconciler.apply_local(
                Mutation(table=Table.MEMBERS, kind=ChangeKind.DELETE, entity_id=member_id)
            )
            return True

        return bool(await self._run("delete_member", _do))

    async def add_event(
        self,
        content: str,
        date: dt.date | str,
        related_member_ids: list[str] | None = None,
    ) -> Event | None:
        async def _do() -> Event:
            event = Event(
                content=content,
                date=date,
                related_member_ids=related_member_ids or [],
                scope=self.scope,
            )
            pending = await self.reconciler.apply_local(
                Mutation(table=Table.EVENTS, kind=ChangeKind.INSERT, entity_id=event.id, record=event.to_record())
            )
            if isinstance(pending.stored, Event):
                return pending.stored
            return self.store.get_event(event.id) or event

        return await self._run("add_event", _do, Table.EVENTS)

    async def delete_event(self, event_id: str) -> bool:
        async def _do() -> bool:
            await self.reconciler.apply_local(
                Mutation(table=Table.EVENTS, kind=ChangeKind.DELETE, entity_id=event_id)
            )
            return True

        return bool(await self._run("delete_event", _do, Table.EVENTS))

    # ---------------------------------------------------------------- search

    def search_members(self, query: str) -> list[Member]:
        """Members whose name contains ``query``, case-insensitively."""
        needle = query.strip().casefold()
        return [m for m in self.store.members if needle in m.name.casefold()]

    def search_events(self, query: str) -> list[Event]:
        """Events whose content contains ``query``, newest first."""
        needle = query.strip().casefold()
        return [e for e in self.store.events if needle in e.content.casefold()]

    def events_for(self, member_id: str) -> list[Event]:
        return [e for e in self.store.events if member_id in e.related_member_ids]

    # --------------------------------------------------------------- helpers

    async def _run(
        self,
        intent: str,
        action: Callable[[], Awaitable[Any]],
        table: Table = Table.MEMBERS,
    ) -> Any:
        try:
            result = await action()
        except ValidationError as exc:
            # Models built from user input in the intent itself.
            self._record_error(intent, InvalidInputError.from_validation(exc, table=table.value))
            return None
        except GenealogyError as exc:
            self._record_error(intent, exc)
            return None
        self.error = None
        return result

    def _record_error(self, intent: str, exc: GenealogyError) -> None:
        if isinstance(exc, PermissionDeniedError):
            self.error = exc.user_message()
        else:
            self.error = str(exc)
        logger.warning(
            "session.intent_failed",
            intent=intent,
            scope=self.scope,
            error_type=type(exc).__name__,
            table=exc.table,
            entity_id=exc.entity_id,
            error=str(exc),
        )

    def _require_member(self, member_id: str) -> Member:
        member = self.store.get_member(member_id)
        if member is None:
            raise NotFoundError(
                f"No member {member_id} in scope {self.scope!r}",
                table=Table.MEMBERS.value,
                entity_id=member_id,
            )
        return member

    async def _insert_member(self, member: Member) -> Member:
        pending = await self.reconciler.apply_local(
            Mutation(table=Table.MEMBERS, kind=ChangeKind.INSERT, entity_id=member.id, record=member.to_record())
        )
        if isinstance(pending.stored, Member):
            return self.store.get_member(pending.stored.id) or pending.stored
        return self.store.get_member(member.id) or member

    def _validate_lineage(self, member: Member) -> None:
        """Check generation consistency and ancestry for ``member``.

        Raises:
            InvariantViolationError: Generation mismatch or ancestry cycle.
        """
        for parent_id in member.parent_ids:
            parent = self.store.get_member(parent_id)
            if parent is not None and member.generation != parent.generation + 1:
                raise InvariantViolationError(
                    f"{member.name} must be generation {parent.generation + 1} as a child of {parent.name}",
                    table=Table.MEMBERS.value,
                    entity_id=member.id,
                )
            if self.store.would_create_cycle(member.id, parent_id):
                raise InvariantViolationError(
                    f"Making {parent_id} a parent of {member.name} would create an ancestry cycle",
                    table=Table.MEMBERS.value,
                    entity_id=member.id,
                )
        partner = self.store.get_member(member.is_spouse_of)
        if partner is not None and partner.generation != member.generation:
            raise InvariantViolationError(
                f"{member.name} must share generation {partner.generation} with spouse {partner.name}",
                table=Table.MEMBERS.value,
                entity_id=member.id,
            )
        if member.is_spouse_of == member.id:
            raise InvariantViolationError(
                f"{member.name} cannot be their own spouse",
                table=Table.MEMBERS.value,
                entity_id=member.id,
            )


def _as_feed(backend: Any) -> ChangeFeed | None:
    return backend if callable(getattr(backend, "subscribe", None)) else None

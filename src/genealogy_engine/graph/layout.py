"""Generation-tiered layout for the family tree.

Members are placed tier by tier (one tier per generation). Each tier is
ordered by the horizontal position of its members' parents, centred on
x = 0, and spouses sit immediately to the right of their partner. The
whole map is recomputed on every change; positions are not stable across
insertions.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..models import Member

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutMetrics:
    """Card geometry and spacing, in world units."""

    card_width: float = 180.0
    card_height: float = 100.0
    tier_height: float = 260.0
    sibling_gap: float = 60.0
    spouse_gap: float = 15.0

    @property
    def couple_width(self) -> float:
        return self.card_width * 2 + self.spouse_gap


DEFAULT_METRICS = LayoutMetrics()


@dataclass(frozen=True)
class PositionedNode:
    """A member annotated with the top-left corner of its card."""

    member: Member
    x: float
    y: float

    @property
    def id(self) -> str:
        return self.member.id

    @property
    def name(self) -> str:
        return self.member.name

    @property
    def generation(self) -> int:
        return self.member.generation

    @property
    def father_id(self) -> str | None:
        return self.member.father_id

    @property
    def mother_id(self) -> str | None:
        return self.member.mother_id

    @property
    def is_spouse_of(self) -> str | None:
        return self.member.is_spouse_of

    @property
    def is_female(self) -> bool:
        return self.member.is_female

    def contains(self, wx: float, wy: float, metrics: LayoutMetrics = DEFAULT_METRICS) -> bool:
        """Whether a world-space point falls inside this node's card (edges included)."""
        return (
            self.x <= wx <= self.x + metrics.card_width
            and self.y <= wy <= self.y + metrics.card_height
        )

    def center(self, metrics: LayoutMetrics = DEFAULT_METRICS) -> tuple[float, float]:
        return self.x + metrics.card_width / 2, self.y + metrics.card_height / 2


class ConnectorKind(str, Enum):
    PARENT = "parent"
    SPOUSE = "spouse"


@dataclass(frozen=True)
class Connector:
    """A straight line segment between two cards."""

    kind: ConnectorKind
    source_id: str
    target_id: str
    x1: float
    y1: float
    x2: float
    y2: float


def _parent_x(member: Member, nodes: dict[str, PositionedNode]) -> float:
    for parent_id in member.parent_ids:
        parent = nodes.get(parent_id)
        if parent is not None:
            return parent.x
    return 0.0


def _split_tier(tier: list[Member]) -> tuple[list[Member], dict[str, Member]]:
    """Split a tier into primaries and a partner-id -> spouse pairing.

    The first spouse claiming a primary in this tier is paired with it; a
    spouse whose partner is missing, is itself a spouse, or has already been
    claimed is laid out as a lone primary.
    """
    primary_ids = {m.id for m in tier if not m.is_spouse}
    pairs: dict[str, Member] = {}
    primaries: list[Member] = []
    for member in tier:
        partner_id = member.is_spouse_of
        if partner_id is None:
            primaries.append(member)
        elif partner_id in primary_ids and partner_id not in pairs:
            pairs[partner_id] = member
        else:
            logger.debug("Spouse %s has no free partner in tier; placing alone", member.id)
            primaries.append(member)
    return primaries, pairs


def compute_layout(
    members: Iterable[Member],
    metrics: LayoutMetrics = DEFAULT_METRICS,
) -> dict[str, PositionedNode]:
    """Position every member.

    Args:
        members: The scope's members. Input order breaks ties, so a fixed
            input yields a fixed layout.
        metrics: Card geometry and spacing.

    Returns:
        Mapping of member id to positioned node. Empty input gives ``{}``.
    """
    tiers: dict[int, list[Member]] = defaultdict(list)
    for member in members:
        tiers[member.generation].append(member)

    nodes: dict[str, PositionedNode] = {}
    for generation in sorted(tiers):
        primaries, pairs = _split_tier(tiers[generation])
        # sorted() is stable, so siblings under one parent keep input order
        primaries = sorted(primaries, key=lambda m: _parent_x(m, nodes))

        widths = [
            metrics.couple_width if m.id in pairs else metrics.card_width
            for m in primaries
        ]
        total_width = sum(widths) + metrics.sibling_gap * (len(primaries) - 1)
        y = (generation - 1) * metrics.tier_height
        cursor = -total_width / 2

        for member, width in zip(primaries, widths):
            nodes[member.id] = PositionedNode(member=member, x=cursor, y=y)
            spouse = pairs.get(member.id)
            if spouse is not None:
                nodes[spouse.id] = PositionedNode(
                    member=spouse,
                    x=cursor + metrics.card_width + metrics.spouse_gap,
                    y=y,
                )
            cursor += width + metrics.sibling_gap

    return nodes


def connectors(
    nodes: dict[str, PositionedNode],
    metrics: LayoutMetrics = DEFAULT_METRICS,
) -> list[Connector]:
    """Line segments linking parents to children and spouses to partners.

    Parent lines run from the bottom centre of the parent card to the top
    centre of the child card; spouse lines join the partner's right edge to
    the spouse's left edge at mid height. Unresolved references are skipped.
    """
    half_w = metrics.card_width / 2
    half_h = metrics.card_height / 2
    lines: list[Connector] = []
    for node in nodes.values():
        for parent_id in node.member.parent_ids:
            parent = nodes.get(parent_id)
            if parent is None:
                continue
            lines.append(Connector(
                kind=ConnectorKind.PARENT,
                source_id=parent.id,
                target_id=node.id,
                x1=parent.x + half_w,
                y1=parent.y + metrics.card_height,
                x2=node.x + half_w,
                y2=node.y,
            ))
        partner = nodes.get(node.is_spouse_of) if node.is_spouse_of else None
        if partner is not None:
            lines.append(Connector(
                kind=ConnectorKind.SPOUSE,
                source_id=partner.id,
                target_id=node.id,
                x1=partner.x + metrics.card_width,
                y1=partner.y + half_h,
                x2=node.x,
                y2=node.y + half_h,
            ))
    return lines

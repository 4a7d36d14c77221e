"""Kinship labels between a reference member and any other member.

Resolution reads only the positioned-node map: generation numbers, the
father/mother/spouse links and, for the uncle case, the layout's x
coordinate. Lookups never go further up than the paternal grandfather, so
resolution is bounded even on cyclic data.
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .layout import PositionedNode


class KinshipTerm(str, Enum):
    """Relationship labels, named from the reference member's point of view."""

    SELF = "self"
    HUSBAND = "husband"
    WIFE = "wife"
    SON = "son"
    DAUGHTER = "daughter"
    SON_IN_LAW = "son-in-law"
    DAUGHTER_IN_LAW = "daughter-in-law"
    NEPHEW = "nephew"
    NIECE = "niece"
    BROTHER = "brother"
    SISTER = "sister"
    MALE_COUSIN = "male cousin"
    FEMALE_COUSIN = "female cousin"
    PEER = "peer"
    FATHER = "father"
    MOTHER = "mother"
    AUNT = "aunt"
    # Elder/younger is read off the layout (left of the father = elder),
    # a stand-in for birth order which members do not record.
    ELDER_UNCLE = "elder uncle"
    YOUNGER_UNCLE = "younger uncle"
    ELDER = "elder"
    GRANDFATHER = "grandfather"
    GRANDMOTHER = "grandmother"
    GRANDSON = "grandson"
    GRANDDAUGHTER = "granddaughter"


def generation_label(generation: int) -> str:
    """Fallback label naming the target's generation."""
    return f"generation {generation}"


def _gendered(target: PositionedNode, male: KinshipTerm, female: KinshipTerm) -> str:
    return (female if target.is_female else male).value


def _couple_ids(me: PositionedNode) -> set[str]:
    """Ids whose children count as mine: myself and the partner I married into."""
    ids = {me.id}
    if me.is_spouse_of:
        ids.add(me.is_spouse_of)
    return ids


def _grandfather_id(node: PositionedNode | None, nodes: dict[str, PositionedNode]) -> str | None:
    if node is None or not node.father_id:
        return None
    father = nodes.get(node.father_id)
    return father.father_id if father is not None else None


def _child_kinship(me: PositionedNode, target: PositionedNode, nodes: dict[str, PositionedNode]) -> str:
    couple = _couple_ids(me)
    if couple.intersection(target.member.parent_ids):
        return _gendered(target, KinshipTerm.SON, KinshipTerm.DAUGHTER)
    if target.is_spouse_of:
        partner = nodes.get(target.is_spouse_of)
        if partner is not None and couple.intersection(partner.member.parent_ids):
            return _gendered(target, KinshipTerm.SON_IN_LAW, KinshipTerm.DAUGHTER_IN_LAW)
    return _gendered(target, KinshipTerm.NEPHEW, KinshipTerm.NIECE)


def _peer_kinship(me: PositionedNode, target: PositionedNode, nodes: dict[str, PositionedNode]) -> str:
    if target.father_id and target.father_id == me.father_id:
        return _gendered(target, KinshipTerm.BROTHER, KinshipTerm.SISTER)
    my_grandfather = _grandfather_id(me, nodes)
    if my_grandfather and my_grandfather == _grandfather_id(target, nodes):
        return _gendered(target, KinshipTerm.MALE_COUSIN, KinshipTerm.FEMALE_COUSIN)
    return KinshipTerm.PEER.value


def _elder_kinship(me: PositionedNode, target: PositionedNode, nodes: dict[str, PositionedNode]) -> str:
    my_parents = set(me.member.parent_ids)
    if target.id in my_parents or (target.is_spouse_of and target.is_spouse_of in my_parents):
        return _gendered(target, KinshipTerm.FATHER, KinshipTerm.MOTHER)
    father = nodes.get(me.father_id) if me.father_id else None
    if father is not None and father.father_id and target.father_id == father.father_id:
        if target.is_female:
            return KinshipTerm.AUNT.value
        return (KinshipTerm.ELDER_UNCLE if target.x < father.x else KinshipTerm.YOUNGER_UNCLE).value
    return KinshipTerm.ELDER.value


def resolve_kinship(
    nodes: dict[str, PositionedNode],
    me_id: str | None,
    target_id: str | None,
) -> str | None:
    """Label how ``target_id`` relates to ``me_id``.

    Args:
        nodes: Output of :func:`compute_layout`.
        me_id: The reference member ("me").
        target_id: The member to label.

    Returns:
        A kinship term, a ``"generation N"`` fallback, or ``None`` when either
        id is missing from ``nodes`` (treat as unknown, e.g. mid-load).
    """
    if not me_id or not target_id:
        return None
    me = nodes.get(me_id)
    target = nodes.get(target_id)
    if me is None or target is None:
        return None

    if me.id == target.id:
        return KinshipTerm.SELF.value
    if target.is_spouse_of == me.id or me.is_spouse_of == target.id:
        return _gendered(target, KinshipTerm.HUSBAND, KinshipTerm.WIFE)

    diff = target.generation - me.generation
    if diff == 1:
        return _child_kinship(me, target, nodes)
    if diff == 0:
        return _peer_kinship(me, target, nodes)
    if diff == -1:
        return _elder_kinship(me, target, nodes)
    if diff == -2:
        return _gendered(target, KinshipTerm.GRANDFATHER, KinshipTerm.GRANDMOTHER)
    if diff == 2:
        return _gendered(target, KinshipTerm.GRANDSON, KinshipTerm.GRANDDAUGHTER)
    return generation_label(target.generation)

"""Tests for the generation-tiered layout."""
from __future__ import annotations

from genealogy_engine.graph import (
    DEFAULT_METRICS,
    ConnectorKind,
    LayoutMetrics,
    compute_layout,
    connectors,
)
from genealogy_engine.models import Gender, Member


def _member(member_id: str, generation: int = 1, **kwargs) -> Member:
    return Member(id=member_id, name=member_id.title(), generation=generation, **kwargs)


def _tier_extent(nodes, generation: int, metrics=DEFAULT_METRICS) -> tuple[float, float]:
    tier = [n for n in nodes.values() if n.generation == generation]
    left = min(n.x for n in tier)
    right = max(n.x for n in tier) + metrics.card_width
    return left, right


class TestScenarios:
    """Concrete placements."""

    def test_empty(self):
        assert compute_layout([]) == {}

    def test_root_alone(self):
        nodes = compute_layout([_member("root")])

        assert nodes["root"].x == -90
        assert nodes["root"].y == 0

    def test_root_with_spouse(self):
        nodes = compute_layout([
            _member("root"),
            _member("wife", gender=Gender.FEMALE, is_spouse_of="root"),
        ])

        assert nodes["root"].x == -187.5
        assert nodes["wife"].x == 7.5
        assert nodes["wife"].y == nodes["root"].y == 0

    def test_two_children(self):
        nodes = compute_layout([
            _member("root"),
            _member("a", 2, father_id="root"),
            _member("b", 2, father_id="root"),
        ])

        assert (nodes["a"].x, nodes["b"].x) == (-210, 30)
        assert nodes["a"].y == nodes["b"].y == 260

    def test_generation_sets_tier(self):
        nodes = compute_layout([_member("deep", 4)])

        assert nodes["deep"].y == 3 * 260


class TestProperties:
    """Layout invariants."""

    def _family(self) -> list[Member]:
        return [
            _member("root"),
            _member("grandma", gender=Gender.FEMALE, is_spouse_of="root"),
            _member("left", 2, father_id="root"),
            _member("left_wife", 2, gender=Gender.FEMALE, is_spouse_of="left"),
            _member("right", 2, father_id="root"),
            _member("r_kid", 3, father_id="right"),
            _member("l_kid", 3, father_id="left"),
        ]

    def test_deterministic(self):
        members = self._family()

        assert compute_layout(members) == compute_layout(list(members))

    def test_tiers_centred(self):
        nodes = compute_layout(self._family())

        for generation in (1, 2, 3):
            left, right = _tier_extent(nodes, generation)
            assert left == -right

    def test_spouse_adjacent_to_partner(self):
        nodes = compute_layout(self._family())

        for node in nodes.values():
            if node.is_spouse_of:
                partner = nodes[node.is_spouse_of]
                assert node.x == partner.x + 180 + 15
                assert node.y == partner.y

    def test_couple_and_single_tier(self):
        nodes = compute_layout(self._family())

        assert nodes["left"].x == -307.5
        assert nodes["left_wife"].x == -112.5
        assert nodes["right"].x == 127.5

    def test_children_follow_parent_order(self):
        nodes = compute_layout(self._family())

        # r_kid comes first in the input but its father sits to the right.
        assert nodes["l_kid"].x < nodes["r_kid"].x

    def test_siblings_keep_input_order(self):
        nodes = compute_layout([
            _member("root"),
            _member("second", 2, father_id="root"),
            _member("first", 2, father_id="root"),
        ])

        assert nodes["second"].x < nodes["first"].x

    def test_every_member_positioned_once(self):
        members = self._family()
        nodes = compute_layout(members)

        assert set(nodes) == {m.id for m in members}

    def test_custom_metrics(self):
        metrics = LayoutMetrics(card_width=100, tier_height=200)
        nodes = compute_layout([_member("root"), _member("kid", 2, father_id="root")], metrics)

        assert nodes["root"].x == -50
        assert nodes["kid"].y == 200


class TestSpouseEdgeCases:
    """Spouses without a free partner."""

    def test_missing_partner_laid_out_alone(self):
        nodes = compute_layout([_member("orphan_spouse", is_spouse_of="nobody")])

        assert nodes["orphan_spouse"].x == -90

    def test_partner_in_other_tier_laid_out_alone(self):
        nodes = compute_layout([
            _member("root"),
            _member("odd", 2, is_spouse_of="root"),
        ])

        assert nodes["odd"].x == -90
        assert nodes["odd"].y == 260

    def test_second_spouse_claiming_same_partner(self):
        nodes = compute_layout([
            _member("a"),
            _member("s1", is_spouse_of="a"),
            _member("s2", is_spouse_of="a"),
        ])

        assert nodes["a"].x == -307.5
        assert nodes["s1"].x == -112.5
        assert nodes["s2"].x == 127.5


class TestConnectors:
    """Line segments between cards."""

    def test_parent_and_spouse_lines(self):
        nodes = compute_layout([
            _member("root"),
            _member("wife", gender=Gender.FEMALE, is_spouse_of="root"),
            _member("kid", 2, father_id="root", mother_id="wife"),
        ])

        lines = connectors(nodes)
        parent_lines = {(c.source_id, c.target_id): c for c in lines if c.kind == ConnectorKind.PARENT}
        spouse_lines = [c for c in lines if c.kind == ConnectorKind.SPOUSE]

        father_line = parent_lines[("root", "kid")]
        assert (father_line.x1, father_line.y1) == (-97.5, 100)
        assert (father_line.x2, father_line.y2) == (0, 260)
        assert ("wife", "kid") in parent_lines

        assert len(spouse_lines) == 1
        spouse = spouse_lines[0]
        assert (spouse.x1, spouse.y1, spouse.x2, spouse.y2) == (-7.5, 50, 7.5, 50)

    def test_unresolved_references_skipped(self):
        nodes = compute_layout([_member("kid", 2, father_id="gone", is_spouse_of="also_gone")])

        assert connectors(nodes) == []

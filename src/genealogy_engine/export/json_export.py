"""JSON export of a laid-out family tree.

The output carries everything a renderer needs to draw the tree without
re-running the layout:
- one entry per positioned member card
- the parent and spouse connector segments
- the scope's events, newest first
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from .. import __version__
from ..graph import DEFAULT_METRICS, LayoutMetrics, connectors

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ..graph import PositionedNode
    from ..models import Event


@dataclass
class NodeExport:
    """Exported member card."""

    id: str
    name: str
    gender: str
    generation: int
    x: float
    y: float
    birth: str | None = None
    father_id: str | None = None
    mother_id: str | None = None
    is_spouse_of: str | None = None


@dataclass
class ConnectorExport:
    """Exported line segment between two cards."""

    kind: str  # parent, spouse
    source_id: str
    target_id: str
    points: list[float] = field(default_factory=list)


def _node_export(node: PositionedNode) -> NodeExport:
    member = node.member
    return NodeExport(
        id=member.id,
        name=member.name,
        gender=member.gender.value,
        generation=member.generation,
        x=node.x,
        y=node.y,
        birth=member.birth,
        father_id=member.father_id,
        mother_id=member.mother_id,
        is_spouse_of=member.is_spouse_of,
    )


def export_json(
    nodes: dict[str, PositionedNode],
    out_file: Path,
    events: Iterable[Event] = (),
    metrics: LayoutMetrics = DEFAULT_METRICS,
    scope: str | None = None,
    pretty: bool = True,
) -> Path:
    """Export a layout, its connectors and events to JSON.

    Args:
        nodes: Output of ``compute_layout``
        out_file: Output file path for the JSON file
        events: Events to include (kept in the given order)
        metrics: Card geometry the layout was computed with
        scope: Scope id recorded in the metadata
        pretty: Pretty-print the JSON (default: True)

    Returns:
        Path to the created JSON file
    """
    lines = connectors(nodes, metrics)
    event_list = [event.to_record() for event in events]
    export_dict: dict[str, Any] = {
        "metadata": {
            "generator": "genealogy-graph-engine",
            "version": __version__,
            "export_date": datetime.now(UTC).isoformat(),
            "scope": scope,
            "total_members": len(nodes),
            "total_connectors": len(lines),
            "total_events": len(event_list),
            "card": {"width": metrics.card_width, "height": metrics.card_height},
        },
        "nodes": [asdict(_node_export(node)) for node in nodes.values()],
        "connectors": [
            asdict(ConnectorExport(
                kind=line.kind.value,
                source_id=line.source_id,
                target_id=line.target_id,
                points=[line.x1, line.y1, line.x2, line.y2],
            ))
            for line in lines
        ],
        "events": event_list,
    }

    out_file = Path(out_file)
    out_file.parent.mkdir(parents=True, exist_ok=True)

    with open(out_file, "w", encoding="utf-8") as f:
        if pretty:
            json.dump(export_dict, f, indent=2, ensure_ascii=False)
        else:
            json.dump(export_dict, f, ensure_ascii=False)

    return out_file

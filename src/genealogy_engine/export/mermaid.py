from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..graph import PositionedNode


def render_mermaid(nodes: dict[str, PositionedNode]) -> str:
    """Render a mermaid flowchart (TD) of parent and spouse links.

    Cards are emitted tier by tier, left to right, so the diagram reads in
    the same order as the layout.
    """
    ordered = sorted(nodes.values(), key=lambda n: (n.y, n.x))
    lines = ["flowchart TD"]
    for node in ordered:
        lines.append(f"  {_node_id(node.id)}[\"{_label(node.name)}\"]")

    for node in ordered:
        for parent_id in node.member.parent_ids:
            if parent_id in nodes:
                lines.append(f"  {_node_id(parent_id)} --> {_node_id(node.id)}")
        if node.is_spouse_of and node.is_spouse_of in nodes:
            lines.append(f"  {_node_id(node.is_spouse_of)} --- {_node_id(node.id)}")
    return "\n".join(lines)


def export_mermaid(nodes: dict[str, PositionedNode], out_file: Path) -> Path:
    """Write :func:`render_mermaid` output to ``out_file``."""
    out_file = Path(out_file)
    out_file.parent.mkdir(parents=True, exist_ok=True)
    out_file.write_text(render_mermaid(nodes), encoding="utf-8")
    return out_file


def _node_id(member_id: str) -> str:
    # Generate a mermaid-safe identifier
    return "N_" + "".join(ch if ch.isalnum() else "_" for ch in member_id)[:60]


def _label(name: str) -> str:
    return name.replace('"', "'")

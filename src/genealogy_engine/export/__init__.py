"""Export modules for a laid-out family tree.

Supported formats:
- JSON: Positioned cards, connectors and events for renderers
- Mermaid: Diagram markup for GitHub/GitLab
"""
from __future__ import annotations

from pathlib import Path

from .json_export import ConnectorExport, NodeExport, export_json
from .mermaid import export_mermaid, render_mermaid

__all__ = [
    # JSON export
    "export_json",
    "NodeExport",
    "ConnectorExport",
    # Mermaid export
    "export_mermaid",
    "render_mermaid",
    "export_by_format",
    "EXPORT_FORMATS",
]


# Format detection utility
EXPORT_FORMATS = {
    ".json": export_json,
    ".mmd": export_mermaid,
    ".mermaid": export_mermaid,
}


def export_by_format(nodes, out_file, **kwargs):
    """Export to format based on file extension.

    Args:
        nodes: Output of ``compute_layout``
        out_file: Output file path (extension determines format)
        **kwargs: Format-specific options (``events``, ``scope`` for JSON)

    Returns:
        Path to created file

    Raises:
        ValueError: If format not supported
    """
    out_path = Path(out_file)
    suffix = out_path.suffix.lower()

    if suffix not in EXPORT_FORMATS:
        supported = ", ".join(EXPORT_FORMATS.keys())
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")

    export_func = EXPORT_FORMATS[suffix]
    if export_func is export_mermaid:
        return export_mermaid(nodes, out_path)
    return export_func(nodes, out_path, **kwargs)

"""Genealogical graph engine.

Provides:
- An in-process store of members and events for one scope
- Generation-tiered layout with spousal pairing
- Kinship labels between a reference member and any other member
- Reconciliation of optimistic local writes with a remote change feed
- A pan/zoom viewport with hit-testing over the layout
"""
from .kinship import KinshipTerm, generation_label, resolve_kinship
from .layout import (
    DEFAULT_METRICS,
    Connector,
    ConnectorKind,
    LayoutMetrics,
    PositionedNode,
    compute_layout,
    connectors,
)
from .reconciler import (
    MutationStatus,
    PendingMutation,
    Reconciler,
    ReconcilerStats,
)
from .store import GraphStore
from .viewport import (
    MAX_SCALE,
    MIN_SCALE,
    TAP_MOVE_THRESHOLD,
    Transform,
    ViewportController,
)

__all__ = [
    # Store
    "GraphStore",
    # Layout
    "LayoutMetrics",
    "DEFAULT_METRICS",
    "PositionedNode",
    "Connector",
    "ConnectorKind",
    "compute_layout",
    "connectors",
    # Kinship
    "KinshipTerm",
    "resolve_kinship",
    "generation_label",
    # Reconciliation
    "Reconciler",
    "ReconcilerStats",
    "PendingMutation",
    "MutationStatus",
    # Viewport
    "ViewportController",
    "Transform",
    "MIN_SCALE",
    "MAX_SCALE",
    "TAP_MOVE_THRESHOLD",
]

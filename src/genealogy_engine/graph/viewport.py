"""Pan/zoom transform over the laid-out tree and screen-space hit-testing.

Screen coordinates are relative to the drawing surface's top-left corner.
A world point (wx, wy) is drawn at (x + wx * scale, y + wy * scale).
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .layout import DEFAULT_METRICS, LayoutMetrics

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .layout import PositionedNode

MIN_SCALE = 0.15
MAX_SCALE = 3.0
DEFAULT_SCALE = 0.7
DEFAULT_TOP = 150.0
LOCATE_SCALE = 0.8
# Fewer pointer-move samples than this between press and release is a tap.
TAP_MOVE_THRESHOLD = 5


@dataclass(frozen=True)
class Transform:
    x: float
    y: float
    scale: float


def clamp_scale(scale: float) -> float:
    return min(max(scale, MIN_SCALE), MAX_SCALE)


def _distance(p1: tuple[float, float], p2: tuple[float, float]) -> float:
    return math.hypot(p1[0] - p2[0], p1[1] - p2[1])


class ViewportController:
    """Owns the view transform and turns pointer input into changes of it."""

    def __init__(
        self,
        viewport_width: float = 0.0,
        metrics: LayoutMetrics = DEFAULT_METRICS,
    ) -> None:
        self.metrics = metrics
        self.transform = self.default_transform(viewport_width)
        self._drag_origin: tuple[float, float] | None = None
        self._move_samples = 0
        self._pinch_distance: float | None = None
        self._pinch_scale = self.transform.scale

    def default_transform(self, viewport_width: float) -> Transform:
        """Root card centred horizontally, first tier near the top."""
        return Transform(
            x=viewport_width / 2 - self.metrics.card_width / 2,
            y=DEFAULT_TOP,
            scale=DEFAULT_SCALE,
        )

    def reset(self, viewport_width: float) -> Transform:
        self.transform = self.default_transform(viewport_width)
        self._drag_origin = None
        self._move_samples = 0
        self._pinch_distance = None
        return self.transform

    # ------------------------------------------------------------ conversion

    def screen_to_world(self, sx: float, sy: float) -> tuple[float, float]:
        t = self.transform
        return (sx - t.x) / t.scale, (sy - t.y) / t.scale

    def world_to_screen(self, wx: float, wy: float) -> tuple[float, float]:
        t = self.transform
        return t.x + wx * t.scale, t.y + wy * t.scale

    def hit_test(
        self,
        sx: float,
        sy: float,
        nodes: Mapping[str, PositionedNode],
    ) -> PositionedNode | None:
        """Return the node whose card contains the screen point, if any."""
        wx, wy = self.screen_to_world(sx, sy)
        for node in nodes.values():
            if node.contains(wx, wy, self.metrics):
                return node
        return None

    # --------------------------------------------------------------- panning

    @property
    def dragging(self) -> bool:
        return self._drag_origin is not None

    def begin_drag(self, sx: float, sy: float) -> None:
        # Remember the grab point relative to the current offset.
        self._drag_origin = (sx - self.transform.x, sy - self.transform.y)
        self._move_samples = 0

    def drag_to(self, sx: float, sy: float) -> Transform:
        if self._drag_origin is None:
            return self.transform
        ox, oy = self._drag_origin
        self.transform = Transform(x=sx - ox, y=sy - oy, scale=self.transform.scale)
        self._move_samples += 1
        return self.transform

    def end_drag(
        self,
        sx: float,
        sy: float,
        nodes: Mapping[str, PositionedNode] | None = None,
    ) -> PositionedNode | None:
        """Finish a press. A short, nearly motionless press selects a node."""
        was_tap = self._drag_origin is not None and self._move_samples < TAP_MOVE_THRESHOLD
        self._drag_origin = None
        self._move_samples = 0
        if was_tap and nodes:
            return self.hit_test(sx, sy, nodes)
        return None

    # --------------------------------------------------------------- zooming

    def zoom_at(self, cx: float, cy: float, factor: float) -> Transform:
        """Rescale by ``factor`` keeping the world point under (cx, cy) fixed."""
        t = self.transform
        new_scale = clamp_scale(t.scale * factor)
        ratio = new_scale / t.scale
        self.transform = Transform(
            x=cx - (cx - t.x) * ratio,
            y=cy - (cy - t.y) * ratio,
            scale=new_scale,
        )
        return self.transform

    def wheel(self, cx: float, cy: float, delta_y: float) -> Transform:
        return self.zoom_at(cx, cy, 1.1 if delta_y > 0 else 0.9)

    def begin_pinch(self, p1: tuple[float, float], p2: tuple[float, float]) -> None:
        self._drag_origin = None
        self._pinch_distance = _distance(p1, p2) or None
        self._pinch_scale = self.transform.scale

    def pinch_to(self, p1: tuple[float, float], p2: tuple[float, float]) -> Transform:
        """Scale by current/initial finger distance, anchored between the fingers."""
        if not self._pinch_distance:
            return self.transform
        target = clamp_scale(self._pinch_scale * _distance(p1, p2) / self._pinch_distance)
        mid_x = (p1[0] + p2[0]) / 2
        mid_y = (p1[1] + p2[1]) / 2
        return self.zoom_at(mid_x, mid_y, target / self.transform.scale)

    def end_pinch(self) -> None:
        self._pinch_distance = None

    # ------------------------------------------------------------- locating

    def locate(
        self,
        node: PositionedNode,
        viewport_width: float,
        viewport_height: float,
        scale: float = LOCATE_SCALE,
    ) -> Transform:
        """Centre ``node`` in the viewport at ``scale``."""
        cx, cy = node.center(self.metrics)
        scale = clamp_scale(scale)
        self.transform = Transform(
            x=viewport_width / 2 - cx * scale,
            y=viewport_height / 2 - cy * scale,
            scale=scale,
        )
        return self.transform

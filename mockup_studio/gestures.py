"""
gestures.py - pointer, touch and wheel input mapped onto layer geometry.

  drag   one pointer: pixel delta / canvas size -> percent delta on x, y
  pinch  two pointers: distance ratio -> scale, angle delta -> rotation
  wheel  one notch = 0.1 scale step on the active layer, committed after a
         quiet period so a scroll burst becomes one history entry

Only one GestureSession exists at a time. A session is committed to history
on release, and only if it actually changed the layer.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from .layers import LayerEngine
from .models import MAX_SCALE, MIN_SCALE
from .utils import Debouncer, TimerFactory, clamp

logger = logging.getLogger(__name__)

WHEEL_STEP = 0.1
WHEEL_COMMIT_DELAY = 0.5


@dataclass(frozen=True)
class Point:
    x: float
    y: float


@dataclass(frozen=True)
class CanvasRect:
    """On-screen bounding box of the canvas, in the same pixel space as Point."""
    left: float
    top: float
    width: float
    height: float


def distance(a: Point, b: Point) -> float:
    return math.hypot(a.x - b.x, a.y - b.y)


def angle(a: Point, b: Point) -> float:
    """Angle of the line a -> b in degrees."""
    return math.degrees(math.atan2(b.y - a.y, b.x - a.x))


@dataclass
class GestureSession:
    layer_id: str
    kind: str  # "drag" | "pinch"
    start_x: float = 0.0
    start_y: float = 0.0
    start_scale: float = 1.0
    start_rotation: float = 0.0
    initial_layer_x: float = 50.0
    initial_layer_y: float = 50.0
    initial_distance: float = 0.0
    initial_angle: float = 0.0
    has_moved: bool = False


BoundsProvider = Union[CanvasRect, Callable[[], Optional[CanvasRect]]]


class GestureInterpreter:

    def __init__(
        self,
        engine: LayerEngine,
        bounds: BoundsProvider,
        timer_factory: Optional[TimerFactory] = None,
        wheel_commit_delay: float = WHEEL_COMMIT_DELAY,
    ) -> None:
        self.engine = engine
        self._bounds = bounds
        self.session: Optional[GestureSession] = None
        self.processing = False
        self._wheel_commit = Debouncer(wheel_commit_delay, self._commit_wheel, timer_factory)
        engine.register_flush(self._wheel_commit.flush)

    def _canvas(self) -> Optional[CanvasRect]:
        rect = self._bounds() if callable(self._bounds) else self._bounds
        if rect is None or rect.width <= 0 or rect.height <= 0:
            return None
        return rect

    # ── Pointer sessions ──────────────────────────────────────────────────────

    def pointer_down(self, layer_id: str, points: Sequence[Point]) -> bool:
        """Start a drag (one point) or pinch (two or more points) on a layer."""
        if self.processing or not points:
            return False
        if self.session is not None:
            self.pointer_up()

        self.engine.select(layer_id)
        layer = self.engine.get(layer_id)
        if layer is None or self._canvas() is None:
            return False

        if len(points) >= 2:
            self.session = GestureSession(
                layer_id=layer_id,
                kind="pinch",
                start_scale=layer.scale,
                start_rotation=layer.rotation,
                initial_layer_x=layer.x,
                initial_layer_y=layer.y,
                initial_distance=distance(points[0], points[1]),
                initial_angle=angle(points[0], points[1]),
            )
        else:
            self.session = GestureSession(
                layer_id=layer_id,
                kind="drag",
                start_x=points[0].x,
                start_y=points[0].y,
                start_scale=layer.scale,
                start_rotation=layer.rotation,
                initial_layer_x=layer.x,
                initial_layer_y=layer.y,
            )
        return True

    def pointer_move(self, points: Sequence[Point]) -> bool:
        session = self.session
        if session is None or self.processing or not points:
            return False
        rect = self._canvas()
        if rect is None:
            return False

        if session.kind == "pinch":
            if len(points) < 2:
                return False
            ratio = (
                distance(points[0], points[1]) / session.initial_distance
                if session.initial_distance > 0 else 1.0
            )
            changed = self.engine.update(
                session.layer_id,
                scale=clamp(session.start_scale * ratio, MIN_SCALE, MAX_SCALE),
                rotation=(session.start_rotation + angle(points[0], points[1]) - session.initial_angle) % 360,
            )
        else:
            dx = (points[0].x - session.start_x) / rect.width * 100
            dy = (points[0].y - session.start_y) / rect.height * 100
            changed = self.engine.update(
                session.layer_id,
                x=clamp(session.initial_layer_x + dx, 0.0, 100.0),
                y=clamp(session.initial_layer_y + dy, 0.0, 100.0),
            )

        session.has_moved = session.has_moved or changed
        return changed

    def pointer_up(self) -> bool:
        """End the session. Returns True when a history entry was committed."""
        session, self.session = self.session, None
        if session is None or not session.has_moved:
            return False
        self.engine.commit()
        return True

    def cancel(self) -> None:
        """Drop the session and put the layer back where the session found it."""
        session, self.session = self.session, None
        if session is None or not session.has_moved:
            return
        self.engine.update(
            session.layer_id,
            x=session.initial_layer_x,
            y=session.initial_layer_y,
            scale=session.start_scale,
            rotation=session.start_rotation,
        )

    # ── Wheel ─────────────────────────────────────────────────────────────────

    def wheel(self, delta_y: float) -> bool:
        if self.processing or delta_y == 0:
            return False
        layer = self.engine.active_layer
        if layer is None:
            return False

        step = -WHEEL_STEP if delta_y > 0 else WHEEL_STEP
        changed = self.engine.update(
            layer.uid, scale=clamp(round(layer.scale + step, 6), MIN_SCALE, MAX_SCALE)
        )
        if changed:
            self._wheel_commit.trigger()
        return changed

    def _commit_wheel(self) -> None:
        self.engine.commit()

    @property
    def wheel_commit_pending(self) -> bool:
        return self._wheel_commit.pending

    def flush(self) -> None:
        """Commit a pending wheel change now."""
        self._wheel_commit.flush()

    # ── Processing gate ───────────────────────────────────────────────────────

    def set_processing(self, processing: bool) -> None:
        """
        Gate all input while an AI request runs. Turning it on ends the
        current session (committing it if the layer already moved) and
        flushes a pending wheel commit.
        """
        if processing and not self.processing:
            if self.session is not None:
                self.pointer_up()
            self._wheel_commit.flush()
        self.processing = processing

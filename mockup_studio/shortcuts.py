"""
shortcuts.py - keyboard shortcuts for the studio canvas.

  Delete / Backspace        remove the active layer
  Ctrl/Cmd+Z                undo
  Ctrl/Cmd+Shift+Z, +Y      redo
  Escape                    deselect
  Arrow keys                nudge the active layer 0.5% (5% with Shift)

Nudges are applied to the live list immediately and committed to history
once the keys go quiet.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple

from .layers import LayerEngine
from .utils import Debouncer, TimerFactory, clamp

NUDGE_STEP       = 0.5
NUDGE_STEP_SHIFT = 5.0
NUDGE_COMMIT_DELAY = 0.5

ARROWS: Dict[str, Tuple[int, int]] = {
    "ArrowUp":    (0, -1),
    "ArrowDown":  (0, 1),
    "ArrowLeft":  (-1, 0),
    "ArrowRight": (1, 0),
}


class ShortcutHandler:

    def __init__(
        self,
        engine: LayerEngine,
        timer_factory: Optional[TimerFactory] = None,
        nudge_commit_delay: float = NUDGE_COMMIT_DELAY,
        undo: Optional[Callable[[], bool]] = None,
        redo: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.engine = engine
        self.enabled = True
        self._undo = undo or engine.undo
        self._redo = redo or engine.redo
        self._nudge_commit = Debouncer(nudge_commit_delay, engine.commit, timer_factory)
        engine.register_flush(self._nudge_commit.flush)

    def set_processing(self, processing: bool) -> None:
        if processing:
            self._nudge_commit.flush()
        self.enabled = not processing

    def flush(self) -> None:
        self._nudge_commit.flush()

    def handle(
        self,
        key: str,
        ctrl: bool = False,
        meta: bool = False,
        shift: bool = False,
        in_text_field: bool = False,
    ) -> bool:
        """Apply one key press. Returns True when the key was consumed."""
        if not self.enabled or in_text_field:
            return False

        engine = self.engine
        cmd = ctrl or meta
        lowered = key.lower()

        if key in ("Delete", "Backspace"):
            active = engine.active_layer_id
            if active is None:
                return False
            self._nudge_commit.flush()
            return engine.remove(active)

        if cmd and lowered == "z":
            return self._redo() if shift else self._undo()

        if cmd and lowered == "y":
            return self._redo()

        if key == "Escape":
            return engine.select(None)

        if key in ARROWS:
            layer = engine.active_layer
            if layer is None:
                return False
            step = NUDGE_STEP_SHIFT if shift else NUDGE_STEP
            dx, dy = ARROWS[key]
            changed = engine.update(
                layer.uid,
                x=clamp(layer.x + dx * step, 0.0, 100.0),
                y=clamp(layer.y + dy * step, 0.0, 100.0),
            )
            if changed:
                self._nudge_commit.trigger()
            return True

        return False

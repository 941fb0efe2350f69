"""
layers.py - the canvas layer list and its undo/redo history.

History holds complete layer-list snapshots. Because PlacedLayer is frozen,
a snapshot is just a tuple of layers; no deep copies are needed.

Live list vs history:
  update()      changes the live list only (drag frames, slider scrubbing)
  commit()      pushes a snapshot and makes it live
  undo()/redo() move the cursor and make that snapshot live
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .models import PlacedLayer
from .utils import generate_id

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20

Snapshot = Tuple[PlacedLayer, ...]
LayerListener = Callable[[List[PlacedLayer], Optional[str]], None]


class History:
    """Bounded snapshot stack with a cursor."""

    def __init__(self, initial: Iterable[PlacedLayer] = (), limit: int = HISTORY_LIMIT):
        self.limit = limit
        self._stack: List[Snapshot] = [tuple(initial)]
        self._index = 0

    def __len__(self):
        return len(self._stack)

    @property
    def index(self):
        return self._index

    @property
    def current(self) -> Snapshot:
        return self._stack[self._index]

    def push(self, snapshot: Iterable[PlacedLayer]) -> None:
        # Truncate the redo future before appending
        del self._stack[self._index + 1:]
        self._stack.append(tuple(snapshot))
        if len(self._stack) > self.limit:
            self._stack.pop(0)
        self._index = len(self._stack) - 1

    def can_undo(self):
        return self._index > 0

    def can_redo(self):
        return self._index < len(self._stack) - 1

    def undo(self) -> Optional[Snapshot]:
        if not self.can_undo():
            return None
        self._index -= 1
        return self.current

    def redo(self) -> Optional[Snapshot]:
        if not self.can_redo():
            return None
        self._index += 1
        return self.current

    def reset(self, initial: Iterable[PlacedLayer] = ()) -> None:
        self._stack = [tuple(initial)]
        self._index = 0


class LayerEngine:
    """
    Owns the live layers, the active selection and the history.

    Invalid layer ids are ignored rather than raising. Listeners receive
    (layers, active_layer_id) after every change.
    """

    def __init__(self, initial: Iterable[PlacedLayer] = (), history_limit: int = HISTORY_LIMIT):
        self._layers: List[PlacedLayer] = list(initial)
        self._active_id: Optional[str] = None
        self.history = History(self._layers, limit=history_limit)
        self._listeners: List[LayerListener] = []
        self._flushers: List[Callable[[], None]] = []
        self._lock = threading.RLock()

    # ── Read access ───────────────────────────────────────────────────────────

    @property
    def layers(self) -> List[PlacedLayer]:
        with self._lock:
            return list(self._layers)

    @property
    def active_layer_id(self) -> Optional[str]:
        return self._active_id

    @property
    def active_layer(self) -> Optional[PlacedLayer]:
        with self._lock:
            return self.get(self._active_id) if self._active_id else None

    def get(self, uid: Optional[str]) -> Optional[PlacedLayer]:
        with self._lock:
            return next((l for l in self._layers if l.uid == uid), None)

    def can_undo(self) -> bool:
        return self.history.can_undo()

    def can_redo(self) -> bool:
        return self.history.can_redo()

    # ── Listeners ─────────────────────────────────────────────────────────────

    def subscribe(self, listener: LayerListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def register_flush(self, flush: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback that commits a pending debounced edit. All of them
        run before undo/redo so a late timer can never commit over a restored
        snapshot.
        """
        self._flushers.append(flush)

        def unregister() -> None:
            if flush in self._flushers:
                self._flushers.remove(flush)

        return unregister

    def flush_pending(self) -> None:
        for flush in list(self._flushers):
            flush()

    def _notify(self) -> None:
        layers, active = self.layers, self._active_id
        for listener in list(self._listeners):
            try:
                listener(layers, active)
            except Exception:
                logger.exception("Layer listener failed")

    # ── Selection ─────────────────────────────────────────────────────────────

    def select(self, uid: Optional[str]) -> bool:
        """Select a layer (or deselect with None). Unknown ids leave the selection alone."""
        with self._lock:
            if uid is not None and self.get(uid) is None:
                return False
            if uid == self._active_id:
                return True
            self._active_id = uid
        self._notify()
        return True

    def _drop_dangling_selection(self) -> None:
        if self._active_id and self.get(self._active_id) is None:
            self._active_id = None

    # ── Editing ───────────────────────────────────────────────────────────────

    def add(self, asset_id: str) -> PlacedLayer:
        layer = PlacedLayer(uid=generate_id(), asset_id=asset_id)
        with self._lock:
            self._commit_locked(self._layers + [layer])
            self._active_id = layer.uid
        self._notify()
        return layer

    def _apply(self, uid: str, fields: dict) -> Optional[List[PlacedLayer]]:
        changed = False
        result = []
        for layer in self._layers:
            if layer.uid == uid:
                updated = layer.with_changes(**fields)
                changed = changed or updated != layer
                layer = updated
            result.append(layer)
        return result if changed else None

    def update(self, uid: str, **fields) -> bool:
        """Change the live list only. Never touches history."""
        with self._lock:
            result = self._apply(uid, fields)
            if result is None:
                return False
            self._layers = result
        self._notify()
        return True

    def commit_update(self, uid: str, **fields) -> bool:
        with self._lock:
            result = self._apply(uid, fields)
            if result is None:
                return False
            self._commit_locked(result)
        self._notify()
        return True

    def set_layers(self, layers: Sequence[PlacedLayer]) -> None:
        """Replace the live list without recording history."""
        with self._lock:
            self._layers = list(layers)
            self._drop_dangling_selection()
        self._notify()

    def _commit_locked(self, layers: Sequence[PlacedLayer]) -> None:
        self._layers = list(layers)
        self.history.push(self._layers)

    def commit(self, layers: Optional[Sequence[PlacedLayer]] = None) -> None:
        """Push `layers` (default: the live list) onto history and make it live."""
        with self._lock:
            self._commit_locked(self._layers if layers is None else layers)
            self._drop_dangling_selection()
        self._notify()

    def remove(self, uid: str) -> bool:
        with self._lock:
            remaining = [l for l in self._layers if l.uid != uid]
            if len(remaining) == len(self._layers):
                return False
            self._commit_locked(remaining)
            if self._active_id == uid:
                self._active_id = None
        self._notify()
        return True

    def reorder(self, uid: str, direction: str) -> bool:
        """Swap with the neighbour toward the top ('forward') or bottom ('backward')."""
        if direction not in ("forward", "backward"):
            raise ValueError(f"direction must be 'forward' or 'backward', got {direction!r}")
        with self._lock:
            index = next((i for i, l in enumerate(self._layers) if l.uid == uid), -1)
            if index == -1:
                return False
            other = index + 1 if direction == "forward" else index - 1
            if not 0 <= other < len(self._layers):
                return False
            layers = list(self._layers)
            layers[index], layers[other] = layers[other], layers[index]
            self._commit_locked(layers)
        self._notify()
        return True

    def clear(self) -> None:
        with self._lock:
            self._commit_locked([])
            self._active_id = None
        self._notify()

    # ── History ───────────────────────────────────────────────────────────────

    def _restore(self, snapshot: Optional[Snapshot]) -> bool:
        if snapshot is None:
            return False
        self._layers = list(snapshot)
        self._drop_dangling_selection()
        return True

    def undo(self) -> bool:
        self.flush_pending()
        with self._lock:
            moved = self._restore(self.history.undo())
        if moved:
            self._notify()
        return moved

    def redo(self) -> bool:
        self.flush_pending()
        with self._lock:
            moved = self._restore(self.history.redo())
        if moved:
            self._notify()
        return moved

    def load(self, layers: Iterable[PlacedLayer]) -> None:
        """Start over from `layers` with a fresh single-entry history (draft restore)."""
        with self._lock:
            self._layers = list(layers)
            self.history.reset(self._layers)
            self._active_id = None
        self._notify()

    # ── Orphans ───────────────────────────────────────────────────────────────

    def reconcile(self, valid_asset_ids: Iterable[str]) -> int:
        """Drop live layers whose asset no longer exists. Returns how many were dropped."""
        valid = set(valid_asset_ids)
        with self._lock:
            kept = [l for l in self._layers if l.asset_id in valid]
            dropped = len(self._layers) - len(kept)
            if not dropped:
                return 0
            self._layers = kept
            self._drop_dangling_selection()
        logger.info("Dropped %d layer(s) whose asset was deleted", dropped)
        self._notify()
        return dropped

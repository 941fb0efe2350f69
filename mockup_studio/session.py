"""
session.py - one studio session: the layer engine wired to its input
handlers, the asset library, draft persistence and the AI gateway.

Asset deletions flow in through AssetStore.subscribe(): layers pointing at a
deleted asset are dropped from the live list and a deleted product is
deselected. Any layer or product change schedules a draft save one second
later; close() writes it immediately.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple

from .assets import AssetStore
from .errors import StudioError
from .gateway import AIGateway, StudioCommand
from .gestures import BoundsProvider, CanvasRect, GestureInterpreter
from .layers import LayerEngine
from .models import Asset, ImageBlob, PlacedLayer
from .rasterizer import CompositeRasterizer, Frame, Size
from .shortcuts import ShortcutHandler
from .storage import KeyValueStore
from .utils import Debouncer, TimerFactory

logger = logging.getLogger(__name__)

DRAFT_KEY = "studio_draft"
AUTOSAVE_DELAY = 1.0
DEFAULT_INSTRUCTION = "Create a realistic product mockup."
DEFAULT_CAPTURE_TASK = "Make this look photorealistic. Fix lighting and shadows."


class StudioSession:

    def __init__(
        self,
        assets: AssetStore,
        gateway: Optional[AIGateway] = None,
        store: Optional[KeyValueStore] = None,
        rasterizer: Optional[CompositeRasterizer] = None,
        bounds: Optional[BoundsProvider] = None,
        timer_factory: Optional[TimerFactory] = None,
        autosave_delay: float = AUTOSAVE_DELAY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.assets = assets
        self.gateway = gateway
        self.store = store
        self.rasterizer = rasterizer or CompositeRasterizer()
        self.engine = LayerEngine()
        self.gestures = GestureInterpreter(
            self.engine, bounds or CanvasRect(0, 0, 1000, 1000), timer_factory
        )
        self.shortcuts = ShortcutHandler(self.engine, timer_factory, undo=self.undo, redo=self.redo)
        self.selected_product_id: Optional[str] = None
        self.processing = False
        self._clock = clock
        self._autosave = Debouncer(autosave_delay, self.save_draft, timer_factory)

        self._restore_draft()
        self._unsubscribers = [
            self.engine.subscribe(lambda _layers, _active: self._schedule_autosave()),
            assets.subscribe(self._on_assets_changed),
        ]
        self._on_assets_changed(assets.list())

    # ── Asset sync ────────────────────────────────────────────────────────────

    def _on_assets_changed(self, assets: List[Asset]) -> None:
        ids = {a.id for a in assets}
        self.engine.reconcile(ids)

        if self.selected_product_id and self.selected_product_id not in ids:
            logger.info("Selected product was deleted")
            self.selected_product_id = None
            self._schedule_autosave()

        if self.selected_product_id is None:
            first = next((a for a in assets if a.type == "product"), None)
            if first is not None:
                self.select_product(first.id)

    def select_product(self, asset_id: Optional[str]) -> bool:
        if asset_id is not None:
            asset = self.assets.get(asset_id)
            if asset is None or asset.type != "product":
                return False
        self.selected_product_id = asset_id
        self._schedule_autosave()
        return True

    @property
    def product(self) -> Optional[Asset]:
        return self.assets.get(self.selected_product_id) if self.selected_product_id else None

    def resolved_layers(self) -> List[Tuple[Asset, PlacedLayer]]:
        """Live layers paired with their assets, bottom to top, skipping orphans."""
        pairs = []
        for layer in self.engine.layers:
            asset = self.assets.get(layer.asset_id)
            if asset is not None:
                pairs.append((asset, layer))
        return pairs

    # ── Editing shortcuts ─────────────────────────────────────────────────────

    def add_layer(self, asset_id: str) -> Optional[PlacedLayer]:
        if self.processing or self.assets.get(asset_id) is None:
            return None
        return self.engine.add(asset_id)

    def undo(self) -> bool:
        """Undo, then drop any restored layer whose asset has since been deleted."""
        moved = self.engine.undo()
        self.engine.reconcile(self.assets.ids())
        return moved

    def redo(self) -> bool:
        moved = self.engine.redo()
        self.engine.reconcile(self.assets.ids())
        return moved

    # ── Processing gate ───────────────────────────────────────────────────────

    def set_processing(self, processing: bool) -> None:
        self.processing = processing
        self.gestures.set_processing(processing)
        self.shortcuts.set_processing(processing)

    def _require_gateway(self) -> AIGateway:
        if self.gateway is None:
            raise StudioError("No AI gateway configured")
        return self.gateway

    # ── AI operations ─────────────────────────────────────────────────────────

    def generate_mockup(self, instruction: str = DEFAULT_INSTRUCTION) -> ImageBlob:
        gateway = self._require_gateway()
        product = self.product
        if product is None:
            raise StudioError("Please select a product base")
        layers = self.resolved_layers()
        if not layers:
            raise StudioError("Add at least one valid logo/layer")

        self.engine.select(None)
        self.set_processing(True)
        try:
            return gateway.generate_mockup(product, layers, instruction)
        finally:
            self.set_processing(False)

    def capture_composite(
        self,
        frame: Frame,
        viewport: Size,
        task: str = DEFAULT_CAPTURE_TASK,
    ) -> ImageBlob:
        """Rasterize the visible camera frame plus layers and send it for a realism pass."""
        gateway = self._require_gateway()
        composite = self.rasterize_capture(frame, viewport)
        self.set_processing(True)
        try:
            return gateway.realtime_composite(composite, task)
        finally:
            self.set_processing(False)

    def rasterize_capture(self, frame: Frame, viewport: Size) -> ImageBlob:
        layers = self.engine.layers
        if not layers:
            raise StudioError("Add a layer before capturing")
        return self.rasterizer.capture(frame, viewport, layers, self.assets.list())

    def render_preview(self, size: int = 1024) -> ImageBlob:
        """Local still render of the product and layers, no AI involved."""
        product = self.product
        if product is None:
            raise StudioError("Please select a product base")
        image = self.rasterizer.render_still(product.blob, self.engine.layers, self.assets.list(), size)
        return self.rasterizer.encode(image)

    def apply_command(self, text: str) -> StudioCommand:
        gateway = self._require_gateway()
        self.set_processing(True)
        try:
            result = gateway.interpret_command(
                text, self.engine.layers, self.assets.list(), self.engine.active_layer_id
            )
        finally:
            self.set_processing(False)

        if result.action == "UPDATE" and result.layer_id and result.updates is not None:
            self.engine.commit_update(result.layer_id, **result.updates.as_changes())
        elif result.action == "DELETE" and result.layer_id:
            self.engine.remove(result.layer_id)
        elif result.action == "CLEAR":
            self.engine.clear()
        return result

    # ── Drafts ────────────────────────────────────────────────────────────────

    def _schedule_autosave(self) -> None:
        if self.store is None:
            return
        if self.selected_product_id or self.engine.layers:
            self._autosave.trigger()

    def save_draft(self) -> None:
        if self.store is None:
            return
        draft = {
            "product_id":    self.selected_product_id,
            "layers":        [l.to_dict() for l in self.engine.layers],
            "last_modified": self._clock(),
        }
        self.store.read_modify_write(DRAFT_KEY, lambda old: {**(old or {}), **draft})
        logger.debug("Draft saved (%d layers)", len(draft["layers"]))

    def clear_draft(self) -> None:
        self._autosave.cancel()
        if self.store is not None:
            self.store.remove_key(DRAFT_KEY)

    def _restore_draft(self) -> None:
        if self.store is None:
            return
        raw = self.store.get_object(DRAFT_KEY)
        if not isinstance(raw, dict):
            return
        layers: List[PlacedLayer] = []
        for item in raw.get("layers") or []:
            try:
                layers.append(PlacedLayer.from_dict(item))
            except (TypeError, ValueError, AttributeError) as exc:
                logger.warning("Dropping unreadable draft layer: %s", exc)
        self.engine.load(layers)
        product_id = raw.get("product_id")
        if product_id and self.assets.get(product_id) is not None:
            self.selected_product_id = product_id
        logger.info("Restored draft with %d layer(s)", len(layers))

    def layout(self) -> List[dict]:
        return [l.to_dict() for l in self.engine.layers]

    def load_layout(self, items: Sequence[dict]) -> int:
        """Replace the canvas with serialized layers and commit them as one step."""
        layers = [PlacedLayer.from_dict(item) for item in items]
        self.engine.commit(layers)
        return len(layers)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def close(self) -> None:
        self.gestures.flush()
        self.shortcuts.flush()
        self._autosave.flush()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

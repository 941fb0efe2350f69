"""
rasterizer.py - what-you-see-is-what-you-send compositing.

The camera view shows the frame with an object-cover fit, so part of the
frame is off screen. Layers are positioned in percent of the *viewport*, so
before drawing them we crop the frame to exactly the visible region:

  viewport wider than frame  (va > fa):  crop top/bottom
      crop_h = frame_w / va,  sy = (frame_h - crop_h) / 2
  otherwise:                             crop left/right
      crop_w = frame_h * va,  sx = (frame_w - crop_w) / 2

The crop is then scaled down (never up) so its longest side is at most
max_dimension, and layer percentages map straight onto that canvas.

Layer size: baseline_fraction (25%) of canvas width x layer scale, overlay
aspect preserved, rotated clockwise about the layer centre.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image, ImageChops

from .assets import load_image_source
from .models import Asset, BlendMode, ImageBlob, PlacedLayer

logger = logging.getLogger(__name__)

MAX_DIMENSION     = 1280
JPEG_QUALITY      = 85
BASELINE_FRACTION = 0.25
STILL_BACKDROP    = (24, 24, 27)

Frame = Union[Image.Image, np.ndarray, bytes, ImageBlob, str, Path]
Size = Tuple[int, int]


@dataclass(frozen=True)
class CropRect:
    x: float
    y: float
    width: float
    height: float

    @property
    def box(self) -> Tuple[int, int, int, int]:
        """Integer (left, top, right, bottom) for Image.crop."""
        return (
            int(round(self.x)),
            int(round(self.y)),
            int(round(self.x + self.width)),
            int(round(self.y + self.height)),
        )


def visible_region(source: Size, viewport: Size, fit: str = "cover") -> CropRect:
    """Source-pixel rectangle that is visible in a viewport of the given fit."""
    sw, sh = source
    vw, vh = viewport
    if sw <= 0 or sh <= 0 or vw <= 0 or vh <= 0:
        raise ValueError(f"sizes must be positive, got source={source} viewport={viewport}")
    if fit == "contain":
        return CropRect(0.0, 0.0, float(sw), float(sh))
    if fit != "cover":
        raise ValueError(f"fit must be 'cover' or 'contain', got {fit!r}")

    if vw * sh > sw * vh:  # viewport is wider than the source
        crop_h = sw * vh / vw
        return CropRect(0.0, (sh - crop_h) / 2, float(sw), crop_h)
    crop_w = sh * vw / vh
    return CropRect((sw - crop_w) / 2, 0.0, crop_w, float(sh))


def output_size(crop: CropRect, max_dimension: int = MAX_DIMENSION) -> Size:
    scale = min(1.0, max_dimension / max(crop.width, crop.height))
    return max(1, int(round(crop.width * scale))), max(1, int(round(crop.height * scale)))


def contain_box(source: Size, canvas: Size) -> Tuple[int, int, int, int]:
    """(left, top, width, height) of `source` fitted inside `canvas`, centred."""
    sw, sh = source
    cw, ch = canvas
    scale = min(cw / sw, ch / sh)
    w, h = max(1, int(round(sw * scale))), max(1, int(round(sh * scale)))
    return (cw - w) // 2, (ch - h) // 2, w, h


def to_image(frame: Frame) -> Image.Image:
    if isinstance(frame, Image.Image):
        return frame
    if isinstance(frame, np.ndarray):
        arr = frame
        if arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)
        return Image.fromarray(arr)
    blob = load_image_source(frame)
    img = Image.open(io.BytesIO(blob.data))
    img.load()
    return img


def _asset_index(assets: Union[Mapping[str, Asset], Iterable[Asset]]) -> Dict[str, Asset]:
    if isinstance(assets, Mapping):
        return dict(assets)
    return {a.id: a for a in assets}


class CompositeRasterizer:

    def __init__(
        self,
        max_dimension: int = MAX_DIMENSION,
        jpeg_quality: int = JPEG_QUALITY,
        baseline_fraction: float = BASELINE_FRACTION,
    ) -> None:
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality
        self.baseline_fraction = baseline_fraction

    # ── Camera path ───────────────────────────────────────────────────────────

    def render(
        self,
        frame: Frame,
        viewport: Size,
        layers: Sequence[PlacedLayer],
        assets: Union[Mapping[str, Asset], Iterable[Asset]],
        fit: str = "cover",
    ) -> Image.Image:
        source = to_image(frame).convert("RGBA")
        crop = visible_region(source.size, viewport, fit)
        size = output_size(crop, self.max_dimension)
        canvas = source.crop(crop.box).resize(size, Image.LANCZOS)
        self._draw_layers(canvas, layers, _asset_index(assets))
        return canvas

    def capture(
        self,
        frame: Frame,
        viewport: Size,
        layers: Sequence[PlacedLayer],
        assets: Union[Mapping[str, Asset], Iterable[Asset]],
        fit: str = "cover",
    ) -> ImageBlob:
        return self.encode(self.render(frame, viewport, layers, assets, fit))

    # ── Studio path ───────────────────────────────────────────────────────────

    def render_still(
        self,
        product: Frame,
        layers: Sequence[PlacedLayer],
        assets: Union[Mapping[str, Asset], Iterable[Asset]],
        size: int = 1024,
    ) -> Image.Image:
        """Square canvas, product contained on a dark backdrop, layers on top."""
        canvas = Image.new("RGBA", (size, size), STILL_BACKDROP + (255,))
        product_img = to_image(product).convert("RGBA")
        left, top, w, h = contain_box(product_img.size, canvas.size)
        canvas.alpha_composite(product_img.resize((w, h), Image.LANCZOS), (left, top))
        self._draw_layers(canvas, layers, _asset_index(assets))
        return canvas

    # ── Shared ────────────────────────────────────────────────────────────────

    def encode(self, image: Image.Image) -> ImageBlob:
        buf = io.BytesIO()
        image.convert("RGB").save(buf, "JPEG", quality=self.jpeg_quality)
        return ImageBlob("image/jpeg", buf.getvalue())

    def layer_box(self, canvas_size: Size, overlay_size: Size, layer: PlacedLayer) -> Tuple[float, float, int, int]:
        """(centre_x, centre_y, width, height) in canvas pixels, before rotation."""
        cw, ch = canvas_size
        ow, oh = overlay_size
        w = max(1, int(round(cw * self.baseline_fraction * layer.scale)))
        h = max(1, int(round(w * oh / ow)))
        return layer.x / 100 * cw, layer.y / 100 * ch, w, h

    def _draw_layers(self, canvas: Image.Image, layers: Sequence[PlacedLayer], assets: Dict[str, Asset]) -> None:
        decoded: Dict[str, Optional[Image.Image]] = {}
        for layer in layers:
            asset = assets.get(layer.asset_id)
            if asset is None:
                continue
            if asset.id not in decoded:
                try:
                    decoded[asset.id] = to_image(asset.blob).convert("RGBA")
                except (OSError, ValueError) as exc:
                    logger.warning("Skipping layer with undecodable asset %s: %s", asset.name, exc)
                    decoded[asset.id] = None
            overlay = decoded[asset.id]
            if overlay is not None:
                self._draw_layer(canvas, overlay, layer)

    def _draw_layer(self, canvas: Image.Image, overlay: Image.Image, layer: PlacedLayer) -> None:
        cx, cy, w, h = self.layer_box(canvas.size, overlay.size, layer)
        img = overlay.resize((w, h), Image.LANCZOS)
        if layer.rotation:
            # PIL rotates counter-clockwise; layer rotation is clockwise.
            img = img.rotate(-layer.rotation, resample=Image.BICUBIC, expand=True)

        sheet = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
        sheet.paste(img, (int(round(cx - img.width / 2)), int(round(cy - img.height / 2))))

        mode = BlendMode.coerce(layer.blend_mode)
        if mode is BlendMode.NORMAL:
            canvas.alpha_composite(sheet)
            return

        base = canvas.convert("RGB")
        top = sheet.convert("RGB")
        blended = ImageChops.multiply(base, top) if mode is BlendMode.MULTIPLY else ImageChops.screen(base, top)
        canvas.paste(blended.convert("RGBA"), (0, 0), sheet.getchannel("A"))

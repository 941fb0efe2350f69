"""
models.py - shared data types.

  Asset        product base or logo image owned by the asset store
  PlacedLayer  one overlay instance on the canvas (percent coordinates)
  ImageBlob    self-describing image payload (mime type + encoded bytes)
"""

from __future__ import annotations

import base64
import dataclasses
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Mapping

from .utils import clamp, generate_id

AssetType = Literal["product", "logo"]

MIN_SCALE = 0.1
MAX_SCALE = 5.0
EDITABLE_FIELDS = ("x", "y", "scale", "rotation", "blend_mode")


class BlendMode(str, Enum):
    NORMAL   = "normal"
    MULTIPLY = "multiply"
    SCREEN   = "screen"

    @classmethod
    def coerce(cls, value: Any) -> "BlendMode":
        if isinstance(value, BlendMode):
            return value
        try:
            return cls(str(value).lower()) if value else cls.NORMAL
        except ValueError:
            return cls.NORMAL


@dataclass(frozen=True)
class ImageBlob:
    mime_type: str
    data: bytes

    @classmethod
    def from_data_uri(cls, uri: str) -> "ImageBlob":
        header, _, payload = uri.partition(",")
        mime = header[len("data:"):].split(";")[0] or "image/png"
        return cls(mime_type=mime, data=base64.b64decode(payload))

    @classmethod
    def from_file(cls, path: Path) -> "ImageBlob":
        path = Path(path)
        mime = mimetypes.guess_type(path.name)[0] or "image/png"
        return cls(mime_type=mime, data=path.read_bytes())

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"

    @property
    def extension(self) -> str:
        known = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}
        return known.get(self.mime_type) or mimetypes.guess_extension(self.mime_type) or ".png"

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


@dataclass(frozen=True)
class Asset:
    id: str
    type: AssetType
    name: str
    image_data: bytes = field(repr=False)
    mime_type: str = "image/png"

    @classmethod
    def from_file(cls, path: Path, type: AssetType, name: str = "", asset_id: str = "") -> "Asset":
        blob = ImageBlob.from_file(path)
        return cls(
            id=asset_id or generate_id(),
            type=type,
            name=name or Path(path).stem.replace("_", " "),
            image_data=blob.data,
            mime_type=blob.mime_type,
        )

    @property
    def blob(self) -> ImageBlob:
        return ImageBlob(self.mime_type, self.image_data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "mime_type": self.mime_type,
            "image_data": base64.b64encode(self.image_data).decode("ascii"),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Asset":
        return cls(
            id=str(raw["id"]),
            type="logo" if raw.get("type") == "logo" else "product",
            name=str(raw.get("name", "")),
            image_data=base64.b64decode(raw.get("image_data", "")),
            mime_type=str(raw.get("mime_type") or "image/png"),
        )


@dataclass(frozen=True)
class PlacedLayer:
    """
    One overlay on the canvas. x/y are percentages of the canvas (0-100) and
    mark the overlay's centre; scale multiplies the baseline overlay size;
    rotation is clockwise degrees in [0, 360).
    """
    uid: str
    asset_id: str
    x: float = 50.0
    y: float = 50.0
    scale: float = 1.0
    rotation: float = 0.0
    blend_mode: BlendMode = BlendMode.NORMAL

    def __post_init__(self) -> None:
        object.__setattr__(self, "x", clamp(float(self.x), 0.0, 100.0))
        object.__setattr__(self, "y", clamp(float(self.y), 0.0, 100.0))
        object.__setattr__(self, "scale", clamp(float(self.scale), MIN_SCALE, MAX_SCALE))
        object.__setattr__(self, "rotation", float(self.rotation) % 360.0)
        object.__setattr__(self, "blend_mode", BlendMode.coerce(self.blend_mode))

    def with_changes(self, **changes: Any) -> "PlacedLayer":
        """Copy with editable fields replaced. Unknown and None values are ignored."""
        updates = {
            k: v for k, v in changes.items()
            if k in EDITABLE_FIELDS and v is not None
        }
        if not updates:
            return self
        return dataclasses.replace(self, **updates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "uid": self.uid,
            "asset_id": self.asset_id,
            "x": self.x,
            "y": self.y,
            "scale": self.scale,
            "rotation": self.rotation,
            "blend_mode": self.blend_mode.value,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "PlacedLayer":
        return cls(
            uid=str(raw.get("uid") or generate_id()),
            asset_id=str(raw.get("asset_id") or raw.get("assetId") or ""),
            x=raw.get("x", 50.0),
            y=raw.get("y", 50.0),
            scale=raw.get("scale", 1.0),
            rotation=raw.get("rotation", 0.0),
            blend_mode=raw.get("blend_mode") or raw.get("blendMode") or BlendMode.NORMAL,
        )

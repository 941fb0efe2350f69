"""
assets.py - the product/logo library and image source resolution.

AssetStore owns Asset objects. Layers only hold an asset id, so anything that
places layers subscribes here and drops layers whose asset disappears.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import requests

from .errors import AssetLoadError
from .models import Asset, ImageBlob
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

ASSETS_KEY = "assets"
FETCH_TIMEOUT = 15

AssetListener = Callable[[List[Asset]], None]
ImageSource = Union[ImageBlob, Asset, bytes, str, Path]


def sniff_mime(data: bytes, default: str = "image/png") -> str:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return default


def _is_file(text: str) -> bool:
    try:
        return Path(text).expanduser().is_file()
    except (OSError, ValueError):
        # name too long, embedded NUL
        return False


def load_image_source(src: ImageSource, timeout: float = FETCH_TIMEOUT) -> ImageBlob:
    """
    Resolve anything image-like to an ImageBlob.

    Accepts an ImageBlob or Asset (returned as-is), raw bytes, a data URI, an
    http(s) URL, a filesystem path, or bare base64. Raises AssetLoadError when
    nothing matches or a download fails.
    """
    if isinstance(src, ImageBlob):
        return src
    if isinstance(src, Asset):
        return src.blob
    if isinstance(src, (bytes, bytearray)):
        data = bytes(src)
        return ImageBlob(sniff_mime(data), data)
    if isinstance(src, Path):
        if not src.exists():
            raise AssetLoadError(f"Image file not found: {src}")
        return ImageBlob.from_file(src)

    text = str(src).strip()
    if text.startswith("data:"):
        try:
            return ImageBlob.from_data_uri(text)
        except (binascii.Error, ValueError) as exc:
            raise AssetLoadError(f"Invalid data URI: {exc}") from exc

    if text.startswith(("http://", "https://")):
        try:
            resp = requests.get(text, timeout=timeout, headers={"User-Agent": "Mozilla/5.0"})
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise AssetLoadError(f"Failed to fetch {text}: {exc}") from exc
        content = resp.content
        mime = (resp.headers.get("Content-Type") or "").split(";")[0].strip()
        if not mime.startswith("image/"):
            mime = sniff_mime(content)
        return ImageBlob(mime, content)

    if _is_file(text):
        return ImageBlob.from_file(Path(text).expanduser())

    try:
        data = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise AssetLoadError(f"Unrecognised image source: {text[:60]!r}") from exc
    if not data:
        raise AssetLoadError("Empty image source")
    return ImageBlob(sniff_mime(data), data)


class AssetStore:

    def __init__(self, store: Optional[KeyValueStore] = None) -> None:
        self.store = store
        self._assets: Dict[str, Asset] = {}
        self._listeners: List[AssetListener] = []
        self._lock = threading.RLock()
        self._load()

    def list(self) -> List[Asset]:
        with self._lock:
            return list(self._assets.values())

    def products(self) -> List[Asset]:
        return [a for a in self.list() if a.type == "product"]

    def logos(self) -> List[Asset]:
        return [a for a in self.list() if a.type == "logo"]

    def get(self, asset_id: str) -> Optional[Asset]:
        with self._lock:
            return self._assets.get(asset_id)

    def ids(self) -> set:
        with self._lock:
            return set(self._assets)

    def add(self, asset: Asset) -> Asset:
        with self._lock:
            self._assets[asset.id] = asset
            self._save()
        self._notify()
        return asset

    def remove(self, asset_id: str) -> bool:
        with self._lock:
            if self._assets.pop(asset_id, None) is None:
                return False
            self._save()
        self._notify()
        return True

    def subscribe(self, listener: AssetListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.list()
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(snapshot)

    # ── Persistence ───────────────────────────────────────────────────────────

    def _save(self) -> None:
        if self.store is None:
            return
        self.store.set_object(ASSETS_KEY, [a.to_dict() for a in self._assets.values()])

    def _load(self) -> None:
        if self.store is None:
            return
        raw = self.store.get_object(ASSETS_KEY)
        if not isinstance(raw, list):
            return
        for item in raw:
            try:
                asset = Asset.from_dict(item)
            except (KeyError, TypeError, ValueError, binascii.Error) as exc:
                logger.error("Skipping unreadable stored asset: %s", exc)
                continue
            self._assets[asset.id] = asset

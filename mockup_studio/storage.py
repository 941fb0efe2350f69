"""
storage.py - durable key-value store used for key-pool state, credits,
assets and drafts.

  MemoryStore    in-process dict (tests, throwaway sessions)
  JsonFileStore  one JSON document on disk, re-read on every access so a
                 second process sharing the file sees fresh values

read_modify_write() is atomic with respect to other callers of the same
store object. Across processes the file store is last-writer-wins.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

Updater = Callable[[Optional[Any]], Any]


class KeyValueStore(ABC):

    @abstractmethod
    def get_string(self, key: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def set_string(self, key: str, value: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def remove_key(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def read_modify_write(self, key: str, fn: Updater) -> Any:
        """Apply fn to the decoded value (or None) and store the result. Returns the new value."""
        raise NotImplementedError

    def get_object(self, key: str) -> Optional[Any]:
        raw = self.get_string(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.error("Stored value for %r is not valid JSON; ignoring it", key)
            return None

    def set_object(self, key: str, value: Any) -> None:
        self.set_string(key, json.dumps(value))


def _decode(raw: Optional[str], key: str) -> Optional[Any]:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Failed to parse existing value for %r during update", key)
        return None


class MemoryStore(KeyValueStore):

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.RLock()

    def get_string(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set_string(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove_key(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def read_modify_write(self, key: str, fn: Updater) -> Any:
        with self._lock:
            new_value = fn(_decode(self._data.get(key), key))
            self._data[key] = json.dumps(new_value)
            return new_value

    def keys(self):
        with self._lock:
            return list(self._data)


class JsonFileStore(KeyValueStore):

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Could not read store %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.error("Store %s does not hold a JSON object; starting empty", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get_string(self, key: str) -> Optional[str]:
        with self._lock:
            return self._read_all().get(key)

    def set_string(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = value
            self._write_all(data)

    def remove_key(self, key: str) -> None:
        with self._lock:
            data = self._read_all()
            if key in data:
                del data[key]
                self._write_all(data)

    def read_modify_write(self, key: str, fn: Updater) -> Any:
        with self._lock:
            data = self._read_all()
            new_value = fn(_decode(data.get(key), key))
            data[key] = json.dumps(new_value)
            self._write_all(data)
            return new_value

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class KeyValueStorage:
    """Synchronous string key/value storage scoped to one device.

    This is the only persistence the client-side managers use. Values are
    plain strings; records are stored as serialized JSON.
    """

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def remove(self, key: str) -> None:
        raise NotImplementedError

    def keys(self):
        raise NotImplementedError


class InMemoryStorage(KeyValueStorage):
    """Thread-safe in-RAM storage, used by tests and throwaway clients."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._lock = Lock()
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self):
        with self._lock:
            return list(self._data)


class JsonFileStorage(KeyValueStorage):
    """All keys kept in a single JSON object on disk.

    Every write rewrites the file through a temp file + rename, so one key
    update is atomic from the point of view of the next reader.
    """

    def __init__(self, path: str) -> None:
        self._lock = Lock()
        self._path = Path(path)
        self._data: Dict[str, str] = self._read()

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Local storage at %s unreadable, starting empty: %s", self._path, e)
            return {}
        if not isinstance(raw, dict):
            return {}
        return {str(k): str(v) for k, v in raw.items()}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(self._data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self._path)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()

    def keys(self):
        with self._lock:
            return list(self._data)


def read_json(storage: KeyValueStorage, key: str) -> Optional[Any]:
    """Decode the JSON stored under `key`.

    Missing keys and corrupted values both come back as None; a corrupted
    value is removed so the next write starts clean.
    """
    raw = storage.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        logger.error("Error parsing stored %s: %s", key, e)
        storage.remove(key)
        return None


def write_json(storage: KeyValueStorage, key: str, value: Any) -> None:
    storage.set(key, json.dumps(value, ensure_ascii=False))

"""Key/value stores backing the device-local history and the rate cache"""
import json
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the decoded JSON value stored under ``key``, or None."""
        ...

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serializable value under ``key``."""
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[Any]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so callers never share mutable state
        self._data[key] = json.dumps(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


class FileKeyValueStore(KeyValueStore):
    """One JSON file per key under ``base_dir``."""

    def __init__(self, base_dir: str) -> None:
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.base_dir / f"{_UNSAFE_CHARS.sub('_', key)}.json"

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        if not path.exists():
            return None
        logger.debug("Reading %s from %s", key, path)
        return json.loads(path.read_text(encoding="utf-8"))

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(value), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Saved %s to %s", key, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

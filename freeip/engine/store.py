"""Key-value stores backing the scan cache and the probe settings."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from .base import PersistenceError

logger = logging.getLogger(__name__)

CACHED_IPS_KEY = "cached-ips"
CACHE_TIME_KEY = "cache-time"


class Store(ABC):
    """Minimal get/set store; each key is written on its own."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        raise NotImplementedError


class MemoryStore(Store):
    """Store that lives only as long as the process."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore(Store):
    """Store persisted as a single JSON object on disk.

    Every ``set`` rewrites the whole document through a temporary file in the
    same directory followed by :func:`os.replace`, so readers (including the
    probe, which reads its settings from this file) never observe a
    half-written document. The file is read again before each write so keys
    set by another process in the meantime survive.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        try:
            data = dict(self._load())
        except PersistenceError:
            logger.warning("Overwriting unreadable store %s", self._path)
            data = {}
        data[key] = value
        self._write(data)

    def _load(self) -> Dict[str, Any]:
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise PersistenceError(f"Failed to read store {self._path}: {exc}") from exc

        try:
            data = json.loads(content) if content.strip() else {}
        except ValueError as exc:
            raise PersistenceError(f"Store {self._path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"Store {self._path} does not contain a JSON object")

        return data

    def _write(self, data: Dict[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2, sort_keys=True)
                    handle.write("\n")
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write store {self._path}: {exc}") from exc


def default_store_path() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    root = Path(base) if base else Path.home() / ".cache"
    return root / "freeip" / "cache.json"


__all__ = [
    "CACHED_IPS_KEY",
    "CACHE_TIME_KEY",
    "JsonFileStore",
    "MemoryStore",
    "Store",
    "default_store_path",
]

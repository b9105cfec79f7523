"""
Flat key/value storage backend.

The fallback of last resort: a single string-to-string map persisted as
one JSON object. Values must already be strings. Total size is capped by
a quota; a write that would exceed it is refused and leaves the store
unchanged.
"""

import asyncio
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from .errors import QuotaExceededError, StorageError

logger = logging.getLogger(__name__)

FLAT_FILENAME = "localstore.json"
DEFAULT_QUOTA_BYTES = 10 * 1024 * 1024


class FlatStore:
    """
    String map with an assumed size ceiling.

    Size is measured like the browser store it stands in for: the sum of
    ``len(key) + len(value)`` over all entries.
    """

    kind = "flat"

    def __init__(self, path: Optional[Path] = None, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        """
        Args:
            path: JSON file backing the map; None keeps it in memory only
            quota_bytes: Ceiling used for quota checks and refusals
        """
        self._path = Path(path) if path is not None else None
        self._quota = quota_bytes
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            # Keep the unreadable file for inspection and start empty
            logger.warning("Flat store %s unreadable, starting empty: %s", self._path, e)
            return
        if isinstance(raw, dict):
            self._data = {str(k): v for k, v in raw.items() if isinstance(v, str)}

    def _used(self) -> int:
        return sum(len(k) + len(v) for k, v in self._data.items())

    def usage(self) -> tuple[int, int, float]:
        """Return ``(used, available, percentage)`` against the quota."""
        with self._lock:
            used = self._used()
        percentage = (used / self._quota) * 100 if self._quota else 100.0
        return used, self._quota, percentage

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, ensure_ascii=False)
        os.replace(tmp, self._path)

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            previous = self._data.get(key)
            used = self._used()
            if previous is not None:
                used -= len(key) + len(previous)
            if used + len(key) + len(value) > self._quota:
                raise QuotaExceededError(
                    f"Writing {key!r} ({len(value)} chars) exceeds the {self._quota}-byte quota"
                )
            self._data[key] = value
            try:
                self._flush()
            except OSError as e:
                if previous is None:
                    del self._data[key]
                else:
                    self._data[key] = previous
                raise StorageError(f"Failed to write flat store {self._path}: {e}") from e

    def get_now(self, key: str) -> Optional[str]:
        """Synchronous read (the map is in memory)."""
        with self._lock:
            return self._data.get(key)

    async def get(self, key: str) -> Optional[str]:
        return self.get_now(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"FlatStore values must be str, got {type(value).__name__}")
        await asyncio.to_thread(self._set, key, value)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def close(self) -> None:
        pass

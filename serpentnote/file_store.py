"""
Native filesystem storage backend.

Each key is a JSON file under the data directory. A write replaces the
whole file; a read of an absent key returns None.
"""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .errors import BackendUnavailableError, StorageError

logger = logging.getLogger(__name__)


class FileStore:
    """
    One ``<key>.json`` file per document under ``data_path``.

    This is the "native" backend: no quota is tracked because the
    filesystem is the limit.
    """

    kind = "files"

    def __init__(self, data_path: Path):
        """
        Args:
            data_path: Directory holding the documents (created if absent)
        """
        self._data_path = Path(data_path)
        try:
            self._data_path.mkdir(parents=True, exist_ok=True)
            (self._data_path / "images").mkdir(exist_ok=True)
        except OSError as e:
            raise BackendUnavailableError(f"Cannot create data directory {self._data_path}: {e}") from e

    @property
    def data_path(self) -> Path:
        return self._data_path

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._data_path / f"{key}.json"

    def _read(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    def _write(self, key: str, value: str) -> None:
        path = self._path_for(key)
        # Write to a sibling temp file, then rename over the target
        fd, tmp = tempfile.mkstemp(dir=self._data_path, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, path)
        except OSError as e:
            try:
                os.unlink(tmp)
            except OSError:
                pass
            raise StorageError(f"Failed to write {path}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"FileStore values must be str, got {type(value).__name__}")
        await asyncio.to_thread(self._write, key, value)
        logger.debug("Wrote %s (%d chars)", key, len(value))

    def close(self) -> None:
        pass

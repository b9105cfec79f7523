"""
Storage backend selection.

Picks one StorageBackend at startup by capability probe and never mixes
them at runtime. Built-in kinds are ``files``, ``sqlite`` and ``flat``.
External backends register via the ``serpentnote.backends`` entry point
group.

External backend packages provide a factory function::

    def create_backend(config: AppConfig) -> StorageBackendProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."serpentnote.backends"]
    my-backend = "my_package.backend:create_backend"
"""

import logging
from typing import NamedTuple

from .config import AppConfig
from .errors import BackendUnavailableError
from .protocol import StorageBackendProtocol

logger = logging.getLogger(__name__)


class BackendSelection(NamedTuple):
    """The backend chosen at startup and how it was chosen."""
    backend: StorageBackendProtocol
    kind: str
    is_native: bool  # True for the filesystem-backed store (no quota checks)


def create_backend(config: AppConfig) -> BackendSelection:
    """
    Create the storage backend for ``config.backend``.

    ``auto`` probes the structured SQLite store and silently falls back to
    the flat store when it cannot be initialized. ``files``, ``sqlite`` and
    ``flat`` select a backend explicitly (an explicit choice that fails is an
    error). Any other value is looked up in the ``serpentnote.backends``
    entry point group.
    """
    name = config.backend
    if name == "auto":
        try:
            return _create_sqlite(config)
        except BackendUnavailableError as e:
            logger.warning("Structured store unavailable, using flat store: %s", e)
            return _create_flat(config)
    if name == "files":
        return _create_files(config)
    if name == "sqlite":
        return _create_sqlite(config)
    if name == "flat":
        return _create_flat(config)
    return _load_backend(name, config)


def _create_files(config: AppConfig) -> BackendSelection:
    from .file_store import FileStore
    return BackendSelection(FileStore(config.path), "files", True)


def _create_sqlite(config: AppConfig) -> BackendSelection:
    from .document_store import DB_FILENAME, ObjectStore
    return BackendSelection(ObjectStore(config.path / DB_FILENAME), "sqlite", False)


def _create_flat(config: AppConfig) -> BackendSelection:
    from .flat_store import FLAT_FILENAME, FlatStore
    store = FlatStore(config.path / FLAT_FILENAME, quota_bytes=config.flat_quota_bytes)
    return BackendSelection(store, "flat", False)


def _load_backend(name: str, config: AppConfig) -> BackendSelection:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="serpentnote.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            backend = factory(config)
            if not isinstance(backend, StorageBackendProtocol):
                raise TypeError(f"Backend {name!r} does not implement get/set/close")
            return BackendSelection(backend, getattr(backend, "kind", name), False)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(
            f"Unknown backend: {name!r}. Available: files, sqlite, flat, {', '.join(available)}"
        )
    raise ValueError(
        f"Unknown backend: {name!r}. Choose one of: auto, files, sqlite, flat."
    )

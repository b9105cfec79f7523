"""
Protocol definitions for the notebook and its collaborators.

Defines interface contracts at two levels:
- StorageBackendProtocol / TagSearchProtocol: internal components
  (files, SQLite or flat store; threaded or inline search)
- ViewListener: the presentation layer that re-renders after the core changes
"""

from concurrent.futures import Future
from typing import Optional, Protocol, runtime_checkable

from .types import Channel, DanbooruTag


# ---------------------------------------------------------------------------
# Storage backend protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StorageBackendProtocol(Protocol):
    """
    Uniform async get/set over one physical store.

    Implemented by:
    - FileStore (one JSON file per key)
    - ObjectStore (versioned SQLite collection)
    - FlatStore (single string map with a quota)

    Each call is independent; there is no cross-key transaction.
    """

    kind: str

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class QuotaReportingBackend(Protocol):
    """A backend that can report space usage against a fixed ceiling."""

    def usage(self) -> tuple[int, int, float]: ...


# ---------------------------------------------------------------------------
# Tag search protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class TagSearchProtocol(Protocol):
    """
    Ranked substring search over the autocomplete vocabulary.

    Implemented by TagSearchIndex, which dispatches to a worker thread
    or runs inline when the worker is unavailable.
    """

    def init(self, tags: list[DanbooruTag]) -> None: ...

    def update(self, tags: list[DanbooruTag]) -> None: ...

    def search(self, query: str, limit: int = 10) -> "Future[list[DanbooruTag]]": ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Presentation callbacks
# ---------------------------------------------------------------------------


class ViewListener:
    """
    Re-render hooks invoked by the notebook after it mutates state.

    The default implementation ignores everything; presentation layers
    subclass and override what they draw.
    """

    def channels_changed(self) -> None:
        pass

    def tags_changed(self) -> None:
        pass

    def gallery_changed(self, channel: Channel) -> None:
        pass

    def channel_selected(self, channel: Optional[Channel]) -> None:
        pass

    def save_status(self, status: str) -> None:
        pass

    def autocomplete_results(self, results: list[DanbooruTag]) -> None:
        pass

    def undo_available(self, size: int) -> None:
        pass

    def ingest_progress(self, processed: int, total: int) -> None:
        pass

    def notify(self, level: str, message: str) -> None:
        pass

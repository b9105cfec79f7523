"""
Ranked tag search off the calling thread.

A background worker owns its own copy of the tag corpus and answers
search requests from a task queue. Messages are typed:
Init / Update / Search outbound, Ready / Results inbound.

If the worker cannot be started, or fails while handling a request, the
same ranking function runs inline on the calling thread. Callers get a
``concurrent.futures.Future`` either way and cannot tell the paths apart.
"""

import itertools
import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Union

from .types import DanbooruTag

logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2
DEFAULT_LIMIT = 10


def rank_tags(corpus: Sequence[DanbooruTag], query: str, limit: int = DEFAULT_LIMIT) -> list[DanbooruTag]:
    """
    Rank ``corpus`` against ``query``.

    Every tag whose name starts with the query (case-insensitive) comes
    before every tag that merely contains it; each group keeps corpus order.
    Queries shorter than two characters match nothing.
    """
    if not query or len(query) < MIN_QUERY_LENGTH or limit <= 0:
        return []
    q = query.lower()
    starts: list[DanbooruTag] = []
    contains: list[DanbooruTag] = []
    for tag in corpus:
        name = tag.name.lower()
        if name.startswith(q):
            starts.append(tag)
            if len(starts) >= limit:
                # Enough prefix matches; no contains-match can outrank them
                break
        elif q in name:
            contains.append(tag)
    return (starts + contains)[:limit]


# ---------------------------------------------------------------------------
# Worker messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InitRequest:
    tags: tuple[DanbooruTag, ...]

    def to_message(self) -> dict[str, Any]:
        return {"type": "init", "data": {"tags": [t.to_dict() for t in self.tags]}}


@dataclass(frozen=True)
class UpdateRequest:
    tags: tuple[DanbooruTag, ...]

    def to_message(self) -> dict[str, Any]:
        return {"type": "update", "data": {"tags": [t.to_dict() for t in self.tags]}}


@dataclass(frozen=True)
class SearchRequest:
    request_id: int
    query: str
    limit: int

    def to_message(self) -> dict[str, Any]:
        return {"type": "search", "data": {"query": self.query, "limit": self.limit}}


@dataclass(frozen=True)
class StopRequest:
    pass


@dataclass(frozen=True)
class Ready:
    def to_message(self) -> dict[str, Any]:
        return {"type": "ready"}


@dataclass(frozen=True)
class Results:
    request_id: int
    data: tuple[DanbooruTag, ...]

    def to_message(self) -> dict[str, Any]:
        return {"type": "results", "data": [t.to_dict() for t in self.data]}


Request = Union[InitRequest, UpdateRequest, SearchRequest, StopRequest]
Response = Union[Ready, Results]


class _SearchWorker(threading.Thread):
    """Background thread serving ranked searches over its own corpus copy."""

    def __init__(self, owner: "TagSearchIndex"):
        super().__init__(name="serpentnote-tag-search", daemon=True)
        self._owner = owner
        self.inbox: "queue.Queue[Request]" = queue.Queue()
        self._corpus: tuple[DanbooruTag, ...] = ()

    def run(self) -> None:
        while True:
            request = self.inbox.get()
            if isinstance(request, StopRequest):
                return
            try:
                self._handle(request)
            except Exception as e:
                self._owner._worker_failed(e, self, request)
                return

    def drain(self) -> list[Request]:
        drained = []
        while True:
            try:
                drained.append(self.inbox.get_nowait())
            except queue.Empty:
                return drained

    def _handle(self, request: Request) -> None:
        if isinstance(request, InitRequest):
            self._corpus = request.tags
            self._owner._receive(Ready())
        elif isinstance(request, UpdateRequest):
            self._corpus = request.tags
        elif isinstance(request, SearchRequest):
            results = rank_tags(self._corpus, request.query, request.limit)
            self._owner._receive(Results(request.request_id, tuple(results)))
        else:
            raise TypeError(f"Unknown request: {request!r}")


class TagSearchIndex:
    """
    Autocomplete search over built-in plus custom tags.

    ``init`` builds the index, ``update`` replaces the corpus wholesale and
    ``search`` returns a future of up to ``limit`` ranked tags.
    """

    def __init__(self, use_worker: bool = True):
        self._lock = threading.Lock()
        self._corpus: tuple[DanbooruTag, ...] = ()
        self._pending: dict[int, Future] = {}
        self._ids = itertools.count(1)
        self._worker: Optional[_SearchWorker] = None
        self.ready = threading.Event()
        if use_worker:
            try:
                self._worker = self._start_worker()
            except RuntimeError as e:
                logger.info("Tag search worker unavailable, searching inline: %s", e)
                self._worker = None

    def _start_worker(self) -> _SearchWorker:
        worker = _SearchWorker(self)
        worker.start()
        return worker

    @property
    def uses_worker(self) -> bool:
        return self._worker is not None

    @property
    def corpus_size(self) -> int:
        return len(self._corpus)

    def init(self, tags: Sequence[DanbooruTag]) -> None:
        self._corpus = tuple(tags)
        worker = self._worker
        if worker is not None:
            worker.inbox.put(InitRequest(self._corpus))
        else:
            self.ready.set()

    def update(self, tags: Sequence[DanbooruTag]) -> None:
        self._corpus = tuple(tags)
        worker = self._worker
        if worker is not None:
            worker.inbox.put(UpdateRequest(self._corpus))

    def search(self, query: str, limit: int = DEFAULT_LIMIT) -> "Future[list[DanbooruTag]]":
        future: Future = Future()
        worker = self._worker
        if worker is None:
            future.set_result(rank_tags(self._corpus, query, limit))
            return future
        request_id = next(self._ids)
        with self._lock:
            if self._worker is None:
                future.set_result(rank_tags(self._corpus, query, limit))
                return future
            self._pending[request_id] = future
            worker.inbox.put(SearchRequest(request_id, query, limit))
        return future

    def _receive(self, response: Response) -> None:
        """Called on the worker thread with each response."""
        if isinstance(response, Ready):
            logger.debug("Tag search worker ready (%d tags)", len(self._corpus))
            self.ready.set()
        elif isinstance(response, Results):
            with self._lock:
                future = self._pending.pop(response.request_id, None)
            if future is not None and not future.cancelled():
                future.set_result(list(response.data))

    def _worker_failed(self, error: Exception, worker: _SearchWorker, request: Request) -> None:
        """Switch to inline search and answer everything still outstanding."""
        logger.warning("Tag search worker failed, searching inline: %s", error)
        with self._lock:
            self._worker = None
            pending, self._pending = self._pending, {}
            unanswered = [request, *worker.drain()]
        self.ready.set()
        outstanding = {r.request_id: r for r in unanswered if isinstance(r, SearchRequest)}
        for request_id, future in pending.items():
            if future.cancelled():
                continue
            req = outstanding.get(request_id)
            if req is not None:
                future.set_result(rank_tags(self._corpus, req.query, req.limit))
            else:
                future.set_result([])

    def close(self) -> None:
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.inbox.put(StopRequest())
            worker.join(timeout=2.0)

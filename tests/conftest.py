"""
Shared pytest fixtures for serpentnote tests.

Provides in-memory storage backends, a hand-driven clock and a recording
view listener so tests never depend on wall-clock time.
"""

from pathlib import Path
from typing import Any, Callable, Optional

import pytest
from PIL import Image

from serpentnote.config import AppConfig
from serpentnote.errors import QuotaExceededError, StorageError
from serpentnote.protocol import ViewListener


class MemoryBackend:
    """Dict-backed storage that records every write."""

    kind = "memory"

    def __init__(self, data: Optional[dict[str, str]] = None):
        self.data: dict[str, str] = dict(data or {})
        self.writes: list[tuple[str, str]] = []
        self.closed = False

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError("values must be str")
        self.writes.append((key, value))
        self.data[key] = value

    def writes_for(self, key: str) -> list[str]:
        return [v for k, v in self.writes if k == key]

    def close(self) -> None:
        self.closed = True


class FailingBackend(MemoryBackend):
    """Memory backend whose writes fail for one key (or all keys)."""

    def __init__(self, fail_key: Optional[str] = None, error: type[Exception] = StorageError, **kwargs):
        super().__init__(**kwargs)
        self.fail_key = fail_key
        self.error = error
        self.failing = True

    async def set(self, key: str, value: str) -> None:
        if self.failing and (self.fail_key is None or key == self.fail_key):
            raise self.error(f"simulated failure writing {key}")
        await super().set(key, value)


class QuotaBackend(FailingBackend):
    """Memory backend that refuses writes as over quota."""

    def __init__(self, **kwargs):
        super().__init__(error=QuotaExceededError, **kwargs)


class BrokenReadBackend(MemoryBackend):
    """Memory backend whose reads all fail."""

    async def get(self, key: str) -> Optional[str]:
        raise StorageError("simulated read failure")


class FakeTimer:
    def __init__(self, due: float, callback: Callable[[], Any]):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """
    Deterministic clock for throttle and debounce tests.

    Nothing fires until ``advance()`` moves time past a timer's due time.
    """

    def __init__(self):
        self.time = 0.0
        self.timers: list[FakeTimer] = []

    def now(self) -> float:
        return self.time

    def call_later(self, delay: float, callback: Callable[[], Any]) -> FakeTimer:
        timer = FakeTimer(self.time + delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due timers in order. Returns the number fired."""
        target = self.time + seconds
        fired = 0
        while True:
            due = [t for t in self.timers if not t.cancelled and t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.time = timer.due
            timer.callback()
            fired += 1
        self.time = target
        return fired


class RecordingListener(ViewListener):
    """Records every presentation callback as ``(event, args)``."""

    def __init__(self):
        self.events: list[tuple[str, tuple]] = []

    def _record(self, name: str, *args) -> None:
        self.events.append((name, args))

    def channels_changed(self) -> None:
        self._record("channels_changed")

    def tags_changed(self) -> None:
        self._record("tags_changed")

    def gallery_changed(self, channel) -> None:
        self._record("gallery_changed", channel)

    def channel_selected(self, channel) -> None:
        self._record("channel_selected", channel)

    def save_status(self, status: str) -> None:
        self._record("save_status", status)

    def autocomplete_results(self, results) -> None:
        self._record("autocomplete_results", results)

    def undo_available(self, size: int) -> None:
        self._record("undo_available", size)

    def ingest_progress(self, processed: int, total: int) -> None:
        self._record("ingest_progress", processed, total)

    def notify(self, level: str, message: str) -> None:
        self._record("notify", level, message)

    def count(self, name: str) -> int:
        return sum(1 for event, _ in self.events if event == name)

    def args(self, name: str) -> list[tuple]:
        return [args for event, args in self.events if event == name]

    def notifications(self, level: Optional[str] = None) -> list[str]:
        return [msg for lvl, msg in self.args("notify") if level is None or lvl == level]

    def statuses(self) -> list[str]:
        return [args[0] for args in self.args("save_status")]


@pytest.fixture
def memory_backend():
    return MemoryBackend()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def config(tmp_path):
    """Config over a temp directory, with inline tag search."""
    return AppConfig(path=tmp_path, use_worker=False)


@pytest.fixture
def make_notebook(config, scheduler, listener):
    """Factory for notebooks over an injected backend; closes them afterwards."""
    from serpentnote.api import Notebook

    created = []

    def factory(backend=None, **kwargs) -> Notebook:
        kwargs.setdefault("config", config)
        kwargs.setdefault("scheduler", scheduler)
        kwargs.setdefault("listener", listener)
        nb = Notebook(backend=backend if backend is not None else MemoryBackend(), **kwargs)
        created.append(nb)
        return nb

    yield factory
    for nb in created:
        nb.close()


@pytest.fixture
def image_factory(tmp_path):
    """Write real images with Pillow: ``image_factory("a.png", (w, h))``."""
    def make(name: str, size: tuple[int, int] = (64, 48), color=(200, 40, 40), mode: str = "RGB") -> Path:
        path = tmp_path / name
        fmt = {".png": "PNG", ".jpg": "JPEG", ".jpeg": "JPEG", ".gif": "GIF", ".webp": "WEBP"}[path.suffix.lower()]
        if mode == "RGBA":
            color = (*color, 128)
        Image.new(mode, size, color).save(path, format=fmt)
        return path

    return make

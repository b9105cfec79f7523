"""
Publishing the in-memory AppState to storage.

The working set is written as five independently keyed documents, in
sequence, with no transaction across them: a failure partway leaves the
earlier documents updated and the later ones stale. Loading isolates the
documents the same way, so a corrupt ``channels`` document does not take
the tag vocabulary with it.

Saves are either immediate or go through a trailing-edge throttle that
collapses bursts of edits into a single write of the latest state.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import AppConfig
from .errors import QuotaExceededError
from .protocol import QuotaReportingBackend, StorageBackendProtocol, ViewListener
from .scheduling import Scheduler, Throttle
from .types import AppState, Channel, DanbooruTag, new_channel_id

logger = logging.getLogger(__name__)

# Storage keys (unchanged from earlier releases so existing data loads)
CHANNELS_KEY = "serpentsBook_channels"
TAGS_KEY = "serpentsBook_tags"
THEME_KEY = "serpentsBook_theme"
LANGUAGE_KEY = "serpentsBook_language"
DANBOORU_TAGS_KEY = "serpentsBook_danbooruTags"

DOCUMENT_KEYS = (CHANNELS_KEY, TAGS_KEY, THEME_KEY, LANGUAGE_KEY, DANBOORU_TAGS_KEY)

STATUS_SAVING = "saving"
STATUS_SAVED = "saved"
STATUS_ERROR = "error"

QUOTA_EXCEEDED_MESSAGE = (
    "Storage quota exceeded! Your images could not be saved. "
    "Please export your data and clear some images to free up space."
)
SAVE_FAILED_MESSAGE = "Failed to save changes. They will be retried on your next edit."


def serialize_state(state: AppState) -> list[tuple[str, str]]:
    """Render the five persisted documents as ``(key, value)`` pairs, in write order."""
    return [
        (CHANNELS_KEY, json.dumps([c.to_dict() for c in state.channels], ensure_ascii=False)),
        (TAGS_KEY, json.dumps(list(state.tags), ensure_ascii=False)),
        (THEME_KEY, state.theme),
        (LANGUAGE_KEY, state.language),
        (DANBOORU_TAGS_KEY, json.dumps([t.to_dict() for t in state.custom_danbooru_tags], ensure_ascii=False)),
    ]


@dataclass
class LoadReport:
    """What happened while loading each document."""
    loaded: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    corrupt: list[str] = field(default_factory=list)
    failed: bool = False


class PersistenceManager:
    """
    Reads and writes the working set through one storage backend.

    ``status`` follows ``saving`` -> ``saved`` | ``error`` and each change is
    reported to the listener. Nothing is retried automatically; the next
    save request tries again with whatever state is current.
    """

    def __init__(
        self,
        state: AppState,
        backend: StorageBackendProtocol,
        scheduler: Scheduler,
        *,
        is_native: bool = False,
        listener: Optional[ViewListener] = None,
        config: Optional[AppConfig] = None,
    ):
        self._state = state
        self._backend = backend
        self._is_native = is_native
        self._listener = listener or ViewListener()
        self._quota_bytes = config.flat_quota_bytes if config else 10 * 1024 * 1024
        self._warn_percent = config.quota_warn_percent if config else 80.0
        self._block_percent = config.quota_block_percent if config else 95.0
        interval = (config.save_interval_ms if config else 1000) / 1000.0
        self._throttle = Throttle(scheduler, interval, self._spawn_save)
        self._inflight: set[asyncio.Task] = set()
        self.status: Optional[str] = None
        self.last_error: Optional[BaseException] = None

    @property
    def backend(self) -> StorageBackendProtocol:
        return self._backend

    @property
    def throttle(self) -> Throttle:
        return self._throttle

    def bind(self, state: AppState) -> None:
        """Point at a different AppState (after a wholesale replacement)."""
        self._state = state

    def _set_status(self, status: str) -> None:
        self.status = status
        self._listener.save_status(status)

    # -------------------------------------------------------------------------
    # Saving
    # -------------------------------------------------------------------------

    async def save(self) -> bool:
        """
        Write all five documents now.

        Returns:
            True when every document was written, False on any failure
        """
        self._set_status(STATUS_SAVING)
        # Serialize up front: every document reflects the same moment
        documents = serialize_state(self._state)
        try:
            for key, value in documents:
                await self._backend.set(key, value)
        except QuotaExceededError as e:
            self.last_error = e
            self._set_status(STATUS_ERROR)
            logger.error("Storage quota exceeded while saving: %s", e)
            self._listener.notify("error", QUOTA_EXCEEDED_MESSAGE)
            return False
        except Exception as e:
            self.last_error = e
            self._set_status(STATUS_ERROR)
            logger.error("Error saving to storage: %s", e, exc_info=True)
            self._listener.notify("error", SAVE_FAILED_MESSAGE)
            return False

        self.last_error = None
        self._set_status(STATUS_SAVED)
        logger.debug("Saved %d channels, %d tags", len(self._state.channels), len(self._state.tags))

        if not self._is_native:
            self.check_quota(documents)
        return True

    def usage(self, documents: Optional[list[tuple[str, str]]] = None) -> tuple[int, int, float]:
        """Space used against the flat-store quota: ``(used, available, percentage)``.

        Backends that track their own usage report it; for the others the
        size of the serialized documents is measured against the same ceiling.
        """
        if isinstance(self._backend, QuotaReportingBackend):
            return self._backend.usage()
        if documents is None:
            documents = serialize_state(self._state)
        used = sum(len(k) + len(v) for k, v in documents)
        return used, self._quota_bytes, (used / self._quota_bytes) * 100

    def check_quota(self, documents: Optional[list[tuple[str, str]]] = None) -> Optional[float]:
        """Warn when usage is between the warning and blocking thresholds.

        Returns the usage percentage when a warning was emitted.
        """
        _, _, percentage = self.usage(documents)
        if self._warn_percent < percentage < self._block_percent:
            logger.warning("Storage %.0f%% full", percentage)
            self._listener.notify(
                "warning",
                f"Storage {percentage:.0f}% full. Consider exporting and clearing old data.",
            )
            return percentage
        return None

    def _spawn_save(self) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(self.save())
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    def request_save(self, immediate: bool = False) -> None:
        """
        Ask for the current state to be persisted.

        Throttled requests within one save interval collapse into a single
        write when the interval ends. An immediate request writes now and
        supersedes any pending throttled write.
        """
        if immediate:
            self._throttle.cancel()
            self._spawn_save()
        else:
            self._throttle()

    @property
    def pending(self) -> bool:
        return self._throttle.pending or bool(self._inflight)

    async def flush(self) -> None:
        """Run any pending throttled save now and wait for in-flight writes."""
        self._throttle.flush()
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(self) -> LoadReport:
        """
        Populate the bound AppState from storage.

        Absent documents leave defaults in place. A corrupt document resets
        only its own collection and notifies the user.
        """
        report = LoadReport()
        state = self._state
        try:
            raw = {key: await self._backend.get(key) for key in DOCUMENT_KEYS}
        except Exception as e:
            report.failed = True
            logger.error("Critical error loading from storage: %s", e, exc_info=True)
            self._listener.notify("error", "Failed to load application data. Please restart.")
            return report

        for key, value in raw.items():
            if value is None or value == "":
                report.missing.append(key)

        if raw[CHANNELS_KEY]:
            try:
                state.channels = _parse_channels(raw[CHANNELS_KEY])
                report.loaded.append(CHANNELS_KEY)
            except (ValueError, TypeError) as e:
                logger.error("Failed to parse channels data: %s", e)
                self._listener.notify("error", "Failed to load channels. Data may be corrupted.")
                state.channels = []
                report.corrupt.append(CHANNELS_KEY)

        if raw[TAGS_KEY]:
            try:
                state.tags = _parse_tags(raw[TAGS_KEY])
                report.loaded.append(TAGS_KEY)
            except (ValueError, TypeError) as e:
                logger.error("Failed to parse tags data: %s", e)
                self._listener.notify("error", "Failed to load tags. Data may be corrupted.")
                state.tags = []
                report.corrupt.append(TAGS_KEY)

        if raw[THEME_KEY]:
            state.theme = raw[THEME_KEY]
            report.loaded.append(THEME_KEY)

        if raw[LANGUAGE_KEY]:
            state.language = raw[LANGUAGE_KEY]
            report.loaded.append(LANGUAGE_KEY)

        if raw[DANBOORU_TAGS_KEY]:
            try:
                state.custom_danbooru_tags = _parse_danbooru_tags(raw[DANBOORU_TAGS_KEY])
                report.loaded.append(DANBOORU_TAGS_KEY)
            except (ValueError, TypeError) as e:
                logger.error("Failed to parse custom autocomplete tags: %s", e)
                state.custom_danbooru_tags = []
                report.corrupt.append(DANBOORU_TAGS_KEY)

        logger.info(
            "Loaded %d channels, %d tags, %d custom autocomplete tags",
            len(state.channels), len(state.tags), len(state.custom_danbooru_tags),
        )
        return report


def _parse_channels(value: str) -> list[Channel]:
    data = json.loads(value)
    if not isinstance(data, list):
        raise ValueError("channels document is not a list")
    channels = [Channel.from_dict(item) for item in data]
    seen: set[str] = set()
    for channel in channels:
        if channel.id in seen:
            old = channel.id
            channel.id = new_channel_id()
            logger.warning("Duplicate channel id %s reassigned to %s", old, channel.id)
        seen.add(channel.id)
        channel.clamp_variant_indices()
    return channels


def _parse_tags(value: str) -> list[str]:
    data = json.loads(value)
    if not isinstance(data, list) or not all(isinstance(t, str) for t in data):
        raise ValueError("tags document is not a list of strings")
    # Vocabulary entries are unique; keep first occurrence
    return list(dict.fromkeys(data))


def _parse_danbooru_tags(value: str) -> list[DanbooruTag]:
    data = json.loads(value)
    if not isinstance(data, list):
        raise ValueError("autocomplete tags document is not a list")
    return [DanbooruTag.from_dict(item) for item in data]

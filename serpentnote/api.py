"""
Core API for the prompt notebook.

``Notebook`` owns the in-memory AppState and wires the collaborators that
read it: persistence, the derived channel list, undo history, tag search
and image ingest. Every mutation is synchronous; afterwards it asks for
the state to be persisted and tells the view listener what to redraw.

Mutations that schedule saves must run inside an asyncio event loop.
"""

import asyncio
import logging
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Iterable, NamedTuple, Optional, Sequence, Union

from .backend import BackendSelection, create_backend
from .config import AppConfig, get_data_dir, load_or_create_config
from .danbooru import current_word, full_corpus, normalize_tag_name, split_bulk_input, tag_exists
from .errors import IngestError
from .gallery import GalleryPaginator
from .ingest import ImageIngestPipeline, IngestResult
from .logging_config import configure_ops_log, remove_ops_log
from .persistence import LoadReport, PersistenceManager
from .protocol import StorageBackendProtocol, TagSearchProtocol, ViewListener
from .scheduling import AsyncioScheduler, Debouncer, Scheduler
from .tag_index import TagSearchIndex
from .transfer import (
    ImportedData,
    export_channel_payload,
    export_filename,
    export_payload,
    has_data,
    validate_import,
)
from .types import AppState, Channel, DanbooruTag, new_channel_id, validate_category
from .undo import (
    DeleteChannel,
    DeleteImage,
    DeleteTag,
    UndoAction,
    UndoStack,
    snapshot_tags,
)
from .view_cache import ViewCache, page_count, paginate

logger = logging.getLogger(__name__)


class ImageRef(NamedTuple):
    """One image in the global gallery."""
    channel_id: str
    channel_name: str
    index: int
    url: str


class Notebook:
    """
    A local-first collection of prompt channels.

    Example:
        async with Notebook("./serpentnote-data") as nb:
            channel = nb.create_channel("Portraits", prompt="1girl, solo")
            nb.add_tag_to_channel(channel.id, "people")
    """

    def __init__(
        self,
        data_path: Optional[Union[str, Path]] = None,
        *,
        config: Optional[AppConfig] = None,
        backend: Optional[StorageBackendProtocol] = None,
        is_native: bool = False,
        scheduler: Optional[Scheduler] = None,
        listener: Optional[ViewListener] = None,
        search_index: Optional[TagSearchProtocol] = None,
    ) -> None:
        """
        Set up a notebook over a data directory. Call ``open()`` to load it.

        Args:
            data_path: Data directory. Defaults to SERPENTNOTE_DATA_PATH or
                ./serpentnote-data.
            config: Pre-loaded AppConfig (skips config file discovery).
            backend: Injected storage backend (skips backend selection).
            is_native: Whether the injected backend is the filesystem store.
            scheduler: Clock for throttled saves and debounced search.
            listener: Presentation callbacks.
            search_index: Injected tag search (skips the worker thread).
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
        else:
            path = get_data_dir(Path(data_path) if data_path is not None else None)
            self._config = load_or_create_config(path)

        # --- Persistent operations log ---
        self._ops_log_handler = configure_ops_log(self._config.path)

        # --- Storage backend (injected or probed) ---
        if backend is not None:
            self._selection = BackendSelection(backend, getattr(backend, "kind", "custom"), is_native)
        else:
            self._selection = create_backend(self._config)
        logger.info("Using %s storage backend at %s", self._selection.kind, self._config.path)

        self.listener = listener or ViewListener()
        self._scheduler = scheduler or AsyncioScheduler()
        self._state = AppState()
        self._persistence = PersistenceManager(
            self._state,
            self._selection.backend,
            self._scheduler,
            is_native=self._selection.is_native,
            listener=self.listener,
            config=self._config,
        )
        self._undo = UndoStack(self._config.undo_capacity)
        self._view_cache = ViewCache()
        self._search_index = search_index or TagSearchIndex(use_worker=self._config.use_worker)
        self._debouncer = Debouncer(
            self._scheduler, self._config.search_debounce_ms / 1000.0, self._run_autocomplete
        )
        self._search_seq = 0
        self._ingest = ImageIngestPipeline(
            self._config.max_image_width,
            self._config.image_quality,
            listener=self.listener,
            request_save=self._save_now,
        )
        self._closed = False

    @classmethod
    async def create(cls, data_path: Optional[Union[str, Path]] = None, **kwargs: Any) -> "Notebook":
        """Construct and load a notebook."""
        notebook = cls(data_path, **kwargs)
        await notebook.open()
        return notebook

    async def open(self) -> LoadReport:
        """Load the persisted documents and build the tag search index."""
        report = await self._persistence.load()
        self._search_index.init(full_corpus(self._state.custom_danbooru_tags))
        self._view_cache.invalidate()
        self.listener.channels_changed()
        self.listener.tags_changed()
        return report

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def backend_kind(self) -> str:
        return self._selection.kind

    @property
    def persistence(self) -> PersistenceManager:
        return self._persistence

    @property
    def undo_size(self) -> int:
        return len(self._undo)

    @property
    def view_cache(self) -> ViewCache:
        return self._view_cache

    def get_channel(self, channel_id: str) -> Channel:
        """
        Raises:
            KeyError: no channel has this id
        """
        channel = self._state.find_channel(channel_id)
        if channel is None:
            raise KeyError(f"Channel not found: {channel_id}")
        return channel

    @property
    def active_channel(self) -> Optional[Channel]:
        return self._state.active_channel

    # -------------------------------------------------------------------------
    # Persistence plumbing
    # -------------------------------------------------------------------------

    def _save_now(self) -> None:
        self._persistence.request_save(immediate=True)

    def _save_later(self) -> None:
        self._persistence.request_save()

    def _push_undo(self, action: UndoAction) -> None:
        self._undo.push(action)
        self.listener.undo_available(len(self._undo))

    def _channels_changed(self) -> None:
        self._view_cache.invalidate()
        self.listener.channels_changed()

    async def flush(self) -> None:
        """Write any throttled save now and wait for in-flight writes."""
        await self._persistence.flush()

    # -------------------------------------------------------------------------
    # Channels
    # -------------------------------------------------------------------------

    def create_channel(
        self,
        name: str,
        prompt: str = "",
        negative_prompt: str = "",
        tags: Iterable[str] = (),
    ) -> Channel:
        """Create a channel at the front of the list and make it active."""
        name = name.strip()
        if not name:
            raise ValueError("Channel name cannot be empty")
        channel = Channel(
            id=new_channel_id(),
            name=name,
            prompt=prompt.strip(),
            negative_prompt=negative_prompt.strip(),
            tags=list(dict.fromkeys(t.strip() for t in tags if t.strip())),
        )
        self._ensure_vocabulary(channel.tags)
        self._state.channels.insert(0, channel)
        self._state.active_channel_id = channel.id
        logger.info("Created channel %s (%s)", channel.id, channel.name)
        self._save_now()
        self._channels_changed()
        self.listener.channel_selected(channel)
        return channel

    def update_channel(
        self,
        channel_id: str,
        *,
        name: Optional[str] = None,
        prompt: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> Channel:
        """Replace the given fields of a channel. Unspecified fields are kept."""
        channel = self.get_channel(channel_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValueError("Channel name cannot be empty")
            channel.name = name
        if prompt is not None:
            channel.prompt = prompt.strip()
        if negative_prompt is not None:
            channel.negative_prompt = negative_prompt.strip()
        if tags is not None:
            channel.tags = list(dict.fromkeys(t.strip() for t in tags if t.strip()))
            self._ensure_vocabulary(channel.tags)
        logger.info("Updated channel %s", channel.id)
        self._save_now()
        self._channels_changed()
        if channel.id == self._state.active_channel_id:
            self.listener.channel_selected(channel)
        return channel

    def delete_channel(self, channel_id: str) -> Channel:
        """Remove a channel, recording it for undo."""
        index = self._state.channel_index(channel_id)
        if index == -1:
            raise KeyError(f"Channel not found: {channel_id}")
        channel = self._state.channels[index]
        self._push_undo(DeleteChannel(channel.snapshot(), index))
        del self._state.channels[index]
        logger.info("Deleted channel %s (%s)", channel.id, channel.name)

        if self._state.active_channel_id == channel_id:
            self._state.active_channel_id = None
            if self._state.channels:
                self.select_channel(self._state.channels[0].id)
            else:
                self.listener.channel_selected(None)
        self._save_now()
        self._channels_changed()
        return channel

    def toggle_star(self, channel_id: str) -> bool:
        """Flip the starred flag. Returns the new value."""
        channel = self.get_channel(channel_id)
        channel.starred = not channel.starred
        self._save_later()
        self._channels_changed()
        return channel.starred

    def reorder_channel(self, dragged_id: str, target_id: str) -> None:
        """Move ``dragged_id`` to ``target_id``'s position and pin every channel's order."""
        if dragged_id == target_id:
            return
        channels = self._state.channels
        dragged_index = self._state.channel_index(dragged_id)
        target_index = self._state.channel_index(target_id)
        if dragged_index == -1 or target_index == -1:
            raise KeyError(f"Channel not found: {dragged_id if dragged_index == -1 else target_id}")
        dragged = channels.pop(dragged_index)
        channels.insert(target_index, dragged)
        for i, channel in enumerate(channels):
            channel.order = i
        self._save_later()
        self._channels_changed()

    def select_channel(self, channel_id: str) -> Channel:
        channel = self.get_channel(channel_id)
        self._state.active_channel_id = channel.id
        channel.clamp_variant_indices()
        self.listener.channel_selected(channel)
        return channel

    # -------------------------------------------------------------------------
    # Prompt variants
    # -------------------------------------------------------------------------

    @staticmethod
    def _variant_fields(negative: bool) -> tuple[str, str]:
        if negative:
            return "negative_prompt_variants", "active_negative_variant_index"
        return "prompt_variants", "active_variant_index"

    def _add_variant(self, channel_id: str, text: str, negative: bool) -> int:
        channel = self.get_channel(channel_id)
        text = text.strip()
        if not text:
            raise ValueError("Variant text cannot be empty")
        variants_attr, _ = self._variant_fields(negative)
        variants = getattr(channel, variants_attr)
        variants.append(text)
        self._save_later()
        return len(variants) - 1

    def _edit_variant(self, channel_id: str, index: int, text: str, negative: bool) -> None:
        channel = self.get_channel(channel_id)
        variants = getattr(channel, self._variant_fields(negative)[0])
        if not 0 <= index < len(variants):
            raise IndexError(f"Variant index out of range: {index}")
        text = text.strip()
        if not text:
            raise ValueError("Variant text cannot be empty")
        variants[index] = text
        self._save_later()
        if channel.id == self._state.active_channel_id:
            self.listener.channel_selected(channel)

    def _delete_variant(self, channel_id: str, index: int, negative: bool) -> None:
        channel = self.get_channel(channel_id)
        variants_attr, active_attr = self._variant_fields(negative)
        variants = getattr(channel, variants_attr)
        if not 0 <= index < len(variants):
            raise IndexError(f"Variant index out of range: {index}")
        del variants[index]
        # Active index counts the primary text as 0, so variant i is i + 1
        active = getattr(channel, active_attr)
        if active > index + 1:
            setattr(channel, active_attr, active - 1)
        elif active == index + 1:
            setattr(channel, active_attr, 0)
        self._save_later()
        if channel.id == self._state.active_channel_id:
            self.listener.channel_selected(channel)

    def _navigate_variant(self, direction: str, channel_id: Optional[str], negative: bool) -> int:
        if direction not in ("next", "prev"):
            raise ValueError(f"Direction must be 'next' or 'prev', got {direction!r}")
        channel = self.get_channel(channel_id) if channel_id else self.active_channel
        if channel is None:
            raise ValueError("No channel selected")
        variants_attr, active_attr = self._variant_fields(negative)
        total = len(getattr(channel, variants_attr)) + 1
        current = getattr(channel, active_attr)
        if direction == "next":
            new = (current + 1) % total
        else:
            new = total - 1 if current == 0 else current - 1
        setattr(channel, active_attr, new)
        self._save_later()
        self.listener.channel_selected(channel)
        return new

    def add_prompt_variant(self, channel_id: str, text: str) -> int:
        """Append a prompt variant. Returns its position among the variants."""
        return self._add_variant(channel_id, text, negative=False)

    def edit_prompt_variant(self, channel_id: str, index: int, text: str) -> None:
        self._edit_variant(channel_id, index, text, negative=False)

    def delete_prompt_variant(self, channel_id: str, index: int) -> None:
        self._delete_variant(channel_id, index, negative=False)

    def navigate_prompt_variant(self, direction: str, channel_id: Optional[str] = None) -> int:
        """Step the active prompt to the next or previous text, wrapping around."""
        return self._navigate_variant(direction, channel_id, negative=False)

    def add_negative_prompt_variant(self, channel_id: str, text: str) -> int:
        return self._add_variant(channel_id, text, negative=True)

    def edit_negative_prompt_variant(self, channel_id: str, index: int, text: str) -> None:
        self._edit_variant(channel_id, index, text, negative=True)

    def delete_negative_prompt_variant(self, channel_id: str, index: int) -> None:
        self._delete_variant(channel_id, index, negative=True)

    def navigate_negative_prompt_variant(self, direction: str, channel_id: Optional[str] = None) -> int:
        return self._navigate_variant(direction, channel_id, negative=True)

    @staticmethod
    def current_prompt(channel: Channel, negative: bool = False) -> str:
        """The text selected by the channel's active variant index."""
        if negative:
            texts = [channel.negative_prompt, *channel.negative_prompt_variants]
            index = channel.active_negative_variant_index
        else:
            texts = [channel.prompt, *channel.prompt_variants]
            index = channel.active_variant_index
        return texts[index] if 0 <= index < len(texts) else texts[0]

    # -------------------------------------------------------------------------
    # Channel list
    # -------------------------------------------------------------------------

    def list_channels(self) -> list[Channel]:
        """
        Filtered and sorted channels.

        The same list object comes back while nothing relevant has changed;
        do not mutate it.
        """
        return self._view_cache.get(
            self._state.channels, self._state.active_filters, self._state.search_query
        )

    def channel_page(self, page: Optional[int] = None) -> list[Channel]:
        if page is not None:
            self._state.channel_page = max(0, page)
        return paginate(self.list_channels(), self._state.channel_page, self._config.channels_per_page)

    @property
    def channel_page_count(self) -> int:
        return page_count(len(self.list_channels()), self._config.channels_per_page)

    def set_filters(self, tags: Iterable[str]) -> None:
        self._state.active_filters = list(dict.fromkeys(tags))
        self._state.channel_page = 0
        self.listener.channels_changed()

    def toggle_filter(self, tag: str) -> bool:
        """Add or remove one filter tag. Returns True if it is now active."""
        filters = self._state.active_filters
        if tag in filters:
            filters.remove(tag)
            active = False
        else:
            filters.append(tag)
            active = True
        self._state.channel_page = 0
        self.listener.channels_changed()
        return active

    def clear_filters(self) -> None:
        self.set_filters(())

    def set_search_query(self, query: str) -> None:
        self._state.search_query = query.strip()
        self._state.channel_page = 0
        self.listener.channels_changed()

    # -------------------------------------------------------------------------
    # Tag vocabulary
    # -------------------------------------------------------------------------

    def _ensure_vocabulary(self, tags: Iterable[str]) -> None:
        added = False
        for tag in tags:
            if tag not in self._state.tags:
                self._state.tags.append(tag)
                added = True
        if added:
            self.listener.tags_changed()

    def add_tag(self, name: str) -> str:
        name = name.strip()
        if not name:
            raise ValueError("Tag name cannot be empty")
        if name in self._state.tags:
            raise ValueError(f"A tag with this name already exists: {name}")
        self._state.tags.append(name)
        self._save_now()
        self.listener.tags_changed()
        return name

    def delete_tag(self, name: str) -> list[str]:
        """
        Remove a vocabulary entry and strip it from every channel.

        Returns the ids of the channels that carried it. One undo entry
        records all of them.
        """
        if name not in self._state.tags:
            raise KeyError(f"Tag not found: {name}")
        affected = snapshot_tags(self._state.channels, name)
        self._push_undo(DeleteTag(name, affected, self._state.tags.index(name)))
        self._state.tags.remove(name)
        for channel in self._state.channels:
            if name in channel.tags:
                channel.tags = [t for t in channel.tags if t != name]
        if name in self._state.active_filters:
            self._state.active_filters.remove(name)
        logger.info("Deleted tag %s from %d channels", name, len(affected))
        self._save_now()
        self.listener.tags_changed()
        self._channels_changed()
        return [a.id for a in affected]

    def rename_tag(self, old: str, new: str) -> int:
        """Rename a vocabulary entry everywhere. Returns the number of channels rewritten."""
        new = new.strip()
        if not new:
            raise ValueError("Tag name cannot be empty")
        if new == old:
            return 0
        if new in self._state.tags:
            raise ValueError(f"A tag with this name already exists: {new}")
        if old in self._state.tags:
            self._state.tags[self._state.tags.index(old)] = new
        elif not any(old in c.tags for c in self._state.channels):
            raise KeyError(f"Tag not found: {old}")
        updated = 0
        for channel in self._state.channels:
            if old in channel.tags:
                channel.tags[channel.tags.index(old)] = new
                updated += 1
        filters = self._state.active_filters
        if old in filters:
            filters[filters.index(old)] = new
        logger.info("Renamed tag %s -> %s (%d channels)", old, new, updated)
        self._save_now()
        self.listener.tags_changed()
        self._channels_changed()
        return updated

    def add_tag_to_channel(self, channel_id: str, name: str) -> bool:
        """Tag a channel, adding the tag to the vocabulary if it is new."""
        channel = self.get_channel(channel_id)
        name = name.strip()
        if not name:
            raise ValueError("Tag name cannot be empty")
        if name in channel.tags:
            return False
        channel.tags.append(name)
        self._ensure_vocabulary([name])
        self._save_now()
        self._channels_changed()
        return True

    def remove_tag_from_channel(self, channel_id: str, name: str) -> bool:
        channel = self.get_channel(channel_id)
        if name not in channel.tags:
            return False
        channel.tags.remove(name)
        self._save_now()
        self._channels_changed()
        return True

    # -------------------------------------------------------------------------
    # Autocomplete vocabulary
    # -------------------------------------------------------------------------

    def _refresh_search_index(self) -> None:
        self._search_index.update(full_corpus(self._state.custom_danbooru_tags))

    def add_danbooru_tag(self, name: str, category: str = "general") -> DanbooruTag:
        validate_category(category)
        name = normalize_tag_name(name)
        if not name:
            raise ValueError("Tag name cannot be empty")
        if tag_exists(name, self._state.custom_danbooru_tags):
            raise ValueError(f"Tag already exists: {name}")
        tag = DanbooruTag(name, category)
        self._state.custom_danbooru_tags.append(tag)
        self._refresh_search_index()
        self._save_later()
        return tag

    def delete_danbooru_tag(self, name: str) -> DanbooruTag:
        custom = self._state.custom_danbooru_tags
        for i, tag in enumerate(custom):
            if tag.name == name:
                del custom[i]
                self._refresh_search_index()
                self._save_later()
                return tag
        raise KeyError(f"Custom tag not found: {name}")

    def bulk_import_danbooru_tags(self, text: str, category: str = "general") -> tuple[int, int]:
        """
        Add comma-separated tag names. Names already known are skipped.

        Returns:
            (added, skipped)
        """
        validate_category(category)
        names = split_bulk_input(text)
        if not names:
            raise ValueError("No tag names given")
        added = 0
        for name in names:
            if tag_exists(name, self._state.custom_danbooru_tags):
                continue
            self._state.custom_danbooru_tags.append(DanbooruTag(name, category))
            added += 1
        if added:
            self._refresh_search_index()
            self._save_later()
        logger.info("Bulk import: %d added, %d skipped", added, len(names) - added)
        return added, len(names) - added

    def list_danbooru_tags(self) -> list[DanbooruTag]:
        """Custom autocomplete tags sorted by name."""
        return sorted(self._state.custom_danbooru_tags, key=lambda t: t.name.lower())

    def autocomplete(self, text: str, cursor: Optional[int] = None) -> None:
        """
        Search for the word being typed at ``cursor``, debounced.

        Results arrive on the event loop via ``listener.autocomplete_results``;
        results of superseded searches are dropped.
        """
        if cursor is None:
            cursor = len(text)
        self._debouncer(current_word(text, cursor))

    def _run_autocomplete(self, word: str) -> None:
        self._search_seq += 1
        seq = self._search_seq
        loop = asyncio.get_running_loop()
        future = self._search_index.search(word, self._config.search_limit)
        future.add_done_callback(
            lambda f: loop.call_soon_threadsafe(self._deliver_results, seq, f)
        )

    def _deliver_results(self, seq: int, future: Future) -> None:
        if seq != self._search_seq or future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning("Tag search failed: %s", error)
            self.listener.autocomplete_results([])
            return
        self.listener.autocomplete_results(future.result())

    async def search_tags(self, query: str, limit: Optional[int] = None) -> list[DanbooruTag]:
        """Ranked autocomplete matches for ``query``."""
        future = self._search_index.search(query, limit or self._config.search_limit)
        return await asyncio.wrap_future(future)

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def ingest_images(
        self, paths: Sequence[Union[str, Path]], channel_id: Optional[str] = None
    ) -> IngestResult:
        """Compress image files and append them to a channel (default: active)."""
        channel = self.get_channel(channel_id) if channel_id else self.active_channel
        if channel is None:
            raise IngestError("No channel selected. Please select a channel first.")
        return await self._ingest.ingest(channel, paths)

    def delete_image(self, channel_id: str, index: int) -> str:
        channel = self.get_channel(channel_id)
        if not 0 <= index < len(channel.images):
            raise IndexError(f"Image index out of range: {index}")
        url = channel.images.pop(index)
        self._push_undo(DeleteImage(channel.id, url, index))
        self._save_now()
        self.listener.gallery_changed(channel)
        self.listener.channels_changed()
        return url

    def reorder_image(self, channel_id: str, from_index: int, to_index: int) -> None:
        channel = self.get_channel(channel_id)
        images = channel.images
        if not 0 <= from_index < len(images) or not 0 <= to_index < len(images):
            raise IndexError("Image index out of range")
        if from_index == to_index:
            return
        images.insert(to_index, images.pop(from_index))
        self._save_later()
        self.listener.gallery_changed(channel)

    def gallery(self, channel_id: Optional[str] = None) -> GalleryPaginator:
        channel = self.get_channel(channel_id) if channel_id else self.active_channel
        if channel is None:
            raise ValueError("No channel selected")
        return GalleryPaginator(channel, self._config.gallery_initial, self._config.gallery_batch)

    def all_images(self) -> list[ImageRef]:
        """Every image across channels, in channel then image order."""
        return [
            ImageRef(c.id, c.name, i, url)
            for c in self._state.channels
            for i, url in enumerate(c.images)
        ]

    # -------------------------------------------------------------------------
    # Settings
    # -------------------------------------------------------------------------

    def set_theme(self, name: str) -> None:
        if not name:
            raise ValueError("Theme name cannot be empty")
        self._state.theme = name
        self._save_later()

    def set_language(self, code: str) -> None:
        if not code:
            raise ValueError("Language code cannot be empty")
        self._state.language = code
        self._save_later()

    # -------------------------------------------------------------------------
    # Undo
    # -------------------------------------------------------------------------

    def undo(self) -> Optional[UndoAction]:
        """
        Reverse the most recent deletion.

        Returns the applied action, or None when the stack is empty or
        the action had nothing left to restore (its channel id is taken
        again, or its image's channel is gone).
        """
        action = self._undo.pop()
        if action is None:
            return None
        applied = True
        if isinstance(action, DeleteChannel):
            restored = action.restore(self._state)
            applied = restored is not None
            if applied:
                self.select_channel(restored.id)
        elif isinstance(action, DeleteImage):
            channel = action.restore(self._state)
            applied = channel is not None
            if applied:
                self.listener.gallery_changed(channel)
        elif isinstance(action, DeleteTag):
            action.restore(self._state)
            self.listener.tags_changed()
        self.listener.undo_available(len(self._undo))
        if not applied:
            logger.info("Undo %s had nothing to restore", action.kind)
            self.listener.notify("warning", "Nothing to restore.")
            return None
        logger.info("Undo %s", action.kind)
        self._save_now()
        self._channels_changed()
        self.listener.notify("success", action.describe())
        return action

    # -------------------------------------------------------------------------
    # Data export / import
    # -------------------------------------------------------------------------

    def export_data(self) -> dict[str, Any]:
        """
        The full backup document.

        Raises:
            ValueError: nothing to export
        """
        return export_payload(self._state)

    def export_channel(self, channel_id: str) -> tuple[str, dict[str, Any]]:
        """A single channel's export document and its suggested filename."""
        channel = self.get_channel(channel_id)
        return export_filename(channel.name), export_channel_payload(channel)

    def import_data(self, payload: Union[dict[str, Any], ImportedData]) -> ImportedData:
        """
        Replace channels and tags (and custom autocomplete tags, when the
        backup has them) with the contents of a backup.

        Raises:
            ImportValidationError: the payload is not a valid backup
        """
        data = payload if isinstance(payload, ImportedData) else validate_import(payload)
        state = self._state
        state.channels = data.channels
        state.tags = data.tags
        if data.custom_danbooru_tags is not None:
            state.custom_danbooru_tags = data.custom_danbooru_tags
            self._refresh_search_index()
        state.active_channel_id = None
        state.active_filters = []
        state.channel_page = 0
        self._undo.clear()
        self.listener.undo_available(0)
        logger.info("Imported %d channels and %d tags", len(data.channels), len(data.tags))
        self._save_now()
        self._channels_changed()
        self.listener.tags_changed()
        self.listener.channel_selected(None)
        self.listener.notify(
            "success",
            f"Successfully imported {len(data.channels)} channels and {len(data.tags)} tags.",
        )
        return data

    def clear_all_data(self) -> bool:
        """Delete every channel, tag and custom tag. Returns False if there was nothing."""
        state = self._state
        if not has_data(state):
            return False
        state.channels = []
        state.tags = []
        state.custom_danbooru_tags = []
        state.active_channel_id = None
        state.active_filters = []
        state.channel_page = 0
        self._undo.clear()
        self.listener.undo_available(0)
        self._refresh_search_index()
        logger.info("Cleared all data")
        self._save_now()
        self._channels_changed()
        self.listener.tags_changed()
        self.listener.channel_selected(None)
        return True

    def statistics(self) -> dict[str, Any]:
        channels = self._state.channels
        used, available, percent = self._persistence.usage()
        return {
            "channels": len(channels),
            "starred": sum(1 for c in channels if c.starred),
            "tags": len(self._state.tags),
            "custom_tags": len(self._state.custom_danbooru_tags),
            "images": sum(len(c.images) for c in channels),
            "variants": sum(len(c.prompt_variants) + len(c.negative_prompt_variants) for c in channels),
            "backend": self._selection.kind,
            "storage_used": used,
            "storage_available": available,
            "storage_percent": round(percent, 1),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Release the search worker, the backend and the ops log.

        Pending throttled saves are dropped; await ``flush()`` first.
        """
        if self._closed:
            return
        self._closed = True
        self._debouncer.cancel()
        self._persistence.throttle.cancel()
        self._search_index.close()
        self._selection.backend.close()
        remove_ops_log(self._ops_log_handler)
        self._ops_log_handler = None

    async def __aenter__(self) -> "Notebook":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        try:
            await self.flush()
        finally:
            self.close()
        return False

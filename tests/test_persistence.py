"""
Tests for PersistenceManager: document layout, throttled saves, failure
reporting and per-document load isolation.
"""

import json

import pytest

from serpentnote.config import AppConfig
from serpentnote.persistence import (
    CHANNELS_KEY,
    DANBOORU_TAGS_KEY,
    DOCUMENT_KEYS,
    LANGUAGE_KEY,
    QUOTA_EXCEEDED_MESSAGE,
    SAVE_FAILED_MESSAGE,
    STATUS_ERROR,
    STATUS_SAVED,
    STATUS_SAVING,
    TAGS_KEY,
    THEME_KEY,
    PersistenceManager,
    serialize_state,
)
from serpentnote.types import AppState, Channel, DanbooruTag
from tests.conftest import (
    BrokenReadBackend,
    FailingBackend,
    MemoryBackend,
    QuotaBackend,
)


def make_state() -> AppState:
    return AppState(
        channels=[
            Channel(id="c1", name="Portrait", prompt="1girl, solo", tags=["portrait"], created_at=100),
            Channel(id="c2", name="Landscape", prompt="mountains", created_at=200, starred=True),
        ],
        tags=["portrait", "scenery"],
        custom_danbooru_tags=[DanbooruTag("my_style", "meta")],
        theme="dark",
        language="ja",
    )


def make_manager(state, backend, scheduler, listener, **kwargs):
    return PersistenceManager(state, backend, scheduler, listener=listener, **kwargs)


class TestSerializeState:
    """Document rendering."""

    def test_five_documents_in_order(self):
        docs = serialize_state(make_state())
        assert [key for key, _ in docs] == list(DOCUMENT_KEYS)

    def test_values_are_strings(self):
        docs = dict(serialize_state(make_state()))
        assert all(isinstance(v, str) for v in docs.values())
        assert docs[THEME_KEY] == "dark"
        assert docs[LANGUAGE_KEY] == "ja"
        assert json.loads(docs[TAGS_KEY]) == ["portrait", "scenery"]
        assert json.loads(docs[DANBOORU_TAGS_KEY]) == [{"name": "my_style", "category": "meta"}]

    def test_channels_use_stored_field_names(self):
        docs = dict(serialize_state(make_state()))
        stored = json.loads(docs[CHANNELS_KEY])
        assert stored[0]["negativePrompt"] == ""
        assert stored[0]["createdAt"] == 100
        assert "order" not in stored[0]


class TestSave:
    """Immediate saves and status transitions."""

    @pytest.mark.asyncio
    async def test_writes_all_documents(self, scheduler, listener):
        backend = MemoryBackend()
        pm = make_manager(make_state(), backend, scheduler, listener)
        assert await pm.save() is True
        assert [key for key, _ in backend.writes] == list(DOCUMENT_KEYS)
        assert pm.status == STATUS_SAVED

    @pytest.mark.asyncio
    async def test_status_saving_then_saved(self, scheduler, listener):
        pm = make_manager(make_state(), MemoryBackend(), scheduler, listener)
        await pm.save()
        assert listener.statuses() == [STATUS_SAVING, STATUS_SAVED]

    @pytest.mark.asyncio
    async def test_quota_failure_has_distinct_message(self, scheduler, listener):
        pm = make_manager(make_state(), QuotaBackend(), scheduler, listener)
        assert await pm.save() is False
        assert pm.status == STATUS_ERROR
        assert listener.notifications("error") == [QUOTA_EXCEEDED_MESSAGE]

    @pytest.mark.asyncio
    async def test_generic_failure_message(self, scheduler, listener):
        pm = make_manager(make_state(), FailingBackend(), scheduler, listener)
        assert await pm.save() is False
        assert listener.statuses() == [STATUS_SAVING, STATUS_ERROR]
        assert listener.notifications("error") == [SAVE_FAILED_MESSAGE]
        assert pm.last_error is not None

    @pytest.mark.asyncio
    async def test_partial_write_leaves_earlier_documents(self, scheduler, listener):
        backend = FailingBackend(fail_key=THEME_KEY)
        pm = make_manager(make_state(), backend, scheduler, listener)
        await pm.save()
        # channels and tags were written before the failure; later keys were not
        assert CHANNELS_KEY in backend.data
        assert TAGS_KEY in backend.data
        assert THEME_KEY not in backend.data
        assert LANGUAGE_KEY not in backend.data

    @pytest.mark.asyncio
    async def test_no_automatic_retry(self, scheduler, listener):
        backend = FailingBackend()
        pm = make_manager(make_state(), backend, scheduler, listener)
        await pm.save()
        assert scheduler.pending == []
        backend.failing = False
        assert await pm.save() is True
        assert pm.last_error is None

    @pytest.mark.asyncio
    async def test_quota_warning_between_thresholds(self, tmp_path, scheduler, listener):
        state = make_state()
        size = sum(len(k) + len(v) for k, v in serialize_state(state))
        # Ceiling chosen so usage lands at ~90%
        config = AppConfig(path=tmp_path, flat_quota_bytes=int(size / 0.9))
        pm = make_manager(state, MemoryBackend(), scheduler, listener, config=config)
        await pm.save()
        warnings = listener.notifications("warning")
        assert len(warnings) == 1
        assert "full" in warnings[0]

    @pytest.mark.asyncio
    async def test_no_quota_warning_when_native(self, tmp_path, scheduler, listener):
        state = make_state()
        size = sum(len(k) + len(v) for k, v in serialize_state(state))
        config = AppConfig(path=tmp_path, flat_quota_bytes=int(size / 0.9))
        pm = make_manager(state, MemoryBackend(), scheduler, listener, config=config, is_native=True)
        await pm.save()
        assert listener.notifications("warning") == []

    @pytest.mark.asyncio
    async def test_no_quota_warning_when_low(self, scheduler, listener):
        pm = make_manager(make_state(), MemoryBackend(), scheduler, listener)
        await pm.save()
        assert pm.check_quota() is None
        assert listener.notifications("warning") == []


class TestThrottledSaves:
    """Bursts of requests collapse into one write of the latest state."""

    @pytest.mark.asyncio
    async def test_burst_writes_once_with_last_state(self, scheduler, listener):
        state = make_state()
        backend = MemoryBackend()
        pm = make_manager(state, backend, scheduler, listener)

        for i in range(25):
            state.channels[0].name = f"Portrait {i}"
            pm.request_save()
        assert backend.writes == []
        assert pm.throttle.calls == 25

        scheduler.advance(1.0)
        await pm.flush()

        for key in DOCUMENT_KEYS:
            assert len(backend.writes_for(key)) == 1
        channels = json.loads(backend.data[CHANNELS_KEY])
        assert channels[0]["name"] == "Portrait 24"
        assert pm.throttle.runs == 1

    @pytest.mark.asyncio
    async def test_nothing_written_before_interval(self, scheduler, listener):
        backend = MemoryBackend()
        pm = make_manager(make_state(), backend, scheduler, listener)
        pm.request_save()
        scheduler.advance(0.5)
        assert pm.pending
        assert backend.writes == []

    @pytest.mark.asyncio
    async def test_immediate_supersedes_pending(self, scheduler, listener):
        backend = MemoryBackend()
        pm = make_manager(make_state(), backend, scheduler, listener)
        pm.request_save()
        pm.request_save(immediate=True)
        await pm.flush()
        scheduler.advance(5.0)
        await pm.flush()
        assert len(backend.writes_for(CHANNELS_KEY)) == 1

    @pytest.mark.asyncio
    async def test_flush_runs_pending_save(self, scheduler, listener):
        backend = MemoryBackend()
        pm = make_manager(make_state(), backend, scheduler, listener)
        pm.request_save()
        await pm.flush()
        assert not pm.pending
        assert len(backend.writes_for(TAGS_KEY)) == 1

    @pytest.mark.asyncio
    async def test_configured_interval(self, tmp_path, scheduler, listener):
        backend = MemoryBackend()
        config = AppConfig(path=tmp_path, save_interval_ms=250)
        pm = make_manager(make_state(), backend, scheduler, listener, config=config)
        pm.request_save()
        scheduler.advance(0.25)
        await pm.flush()
        assert len(backend.writes_for(CHANNELS_KEY)) == 1


class TestLoad:
    """Loading the working set back."""

    @pytest.mark.asyncio
    async def test_round_trip(self, scheduler, listener):
        backend = MemoryBackend()
        await make_manager(make_state(), backend, scheduler, listener).save()

        loaded = AppState()
        report = await make_manager(loaded, backend, scheduler, listener).load()
        assert [c.id for c in loaded.channels] == ["c1", "c2"]
        assert loaded.channels[1].starred is True
        assert loaded.tags == ["portrait", "scenery"]
        assert loaded.custom_danbooru_tags == [DanbooruTag("my_style", "meta")]
        assert loaded.theme == "dark"
        assert loaded.language == "ja"
        assert sorted(report.loaded) == sorted(DOCUMENT_KEYS)

    @pytest.mark.asyncio
    async def test_empty_store_keeps_defaults(self, scheduler, listener):
        state = AppState()
        report = await make_manager(state, MemoryBackend(), scheduler, listener).load()
        assert state.channels == []
        assert state.theme == "oled-black"
        assert state.language == "en"
        assert sorted(report.missing) == sorted(DOCUMENT_KEYS)

    @pytest.mark.asyncio
    async def test_corrupt_channels_keeps_tags(self, scheduler, listener):
        backend = MemoryBackend({
            CHANNELS_KEY: "{not valid json",
            TAGS_KEY: json.dumps(["a", "b"]),
        })
        state = AppState()
        report = await make_manager(state, backend, scheduler, listener).load()
        assert state.channels == []
        assert state.tags == ["a", "b"]
        assert report.corrupt == [CHANNELS_KEY]
        assert listener.notifications("error") == ["Failed to load channels. Data may be corrupted."]

    @pytest.mark.asyncio
    async def test_corrupt_tags_keeps_channels(self, scheduler, listener):
        backend = MemoryBackend({
            CHANNELS_KEY: json.dumps([{"id": "c1", "name": "One"}]),
            TAGS_KEY: json.dumps({"not": "a list"}),
        })
        state = AppState()
        await make_manager(state, backend, scheduler, listener).load()
        assert [c.name for c in state.channels] == ["One"]
        assert state.tags == []

    @pytest.mark.asyncio
    async def test_missing_optional_fields_default(self, scheduler, listener):
        backend = MemoryBackend({CHANNELS_KEY: json.dumps([{"id": "c1", "name": "Bare"}])})
        state = AppState()
        await make_manager(state, backend, scheduler, listener).load()
        channel = state.channels[0]
        assert channel.prompt_variants == []
        assert channel.images == []
        assert channel.starred is False
        assert channel.order is None

    @pytest.mark.asyncio
    async def test_out_of_range_variant_index_clamped(self, scheduler, listener):
        backend = MemoryBackend({CHANNELS_KEY: json.dumps([
            {"id": "c1", "name": "X", "promptVariants": ["a"], "activeVariantIndex": 7},
        ])})
        state = AppState()
        await make_manager(state, backend, scheduler, listener).load()
        assert state.channels[0].active_variant_index == 0

    @pytest.mark.asyncio
    async def test_duplicate_ids_reassigned(self, scheduler, listener):
        backend = MemoryBackend({CHANNELS_KEY: json.dumps([
            {"id": "same", "name": "First"},
            {"id": "same", "name": "Second"},
        ])})
        state = AppState()
        await make_manager(state, backend, scheduler, listener).load()
        assert state.channels[0].id == "same"
        assert state.channels[1].id != "same"

    @pytest.mark.asyncio
    async def test_duplicate_vocabulary_entries_dropped(self, scheduler, listener):
        backend = MemoryBackend({TAGS_KEY: json.dumps(["a", "b", "a"])})
        state = AppState()
        await make_manager(state, backend, scheduler, listener).load()
        assert state.tags == ["a", "b"]

    @pytest.mark.asyncio
    async def test_read_failure_is_reported(self, scheduler, listener):
        state = AppState()
        report = await make_manager(state, BrokenReadBackend(), scheduler, listener).load()
        assert report.failed is True
        assert listener.notifications("error") == ["Failed to load application data. Please restart."]

"""Tests for backup export documents and import validation."""

import json

import pytest

from serpentnote.errors import ImportValidationError
from serpentnote.transfer import (
    EXPORT_VERSION,
    dumps,
    export_channel_payload,
    export_filename,
    export_payload,
    parse_import,
    read_import_file,
    validate_import,
)
from serpentnote.types import AppState, Channel, DanbooruTag


def sample_state() -> AppState:
    return AppState(
        channels=[Channel(id="c1", name="One", prompt="p", prompt_variants=["v"], tags=["t"], created_at=5)],
        tags=["t", "unused"],
        custom_danbooru_tags=[DanbooruTag("zz custom", "artist")],
    )


class TestExport:
    """Export documents."""

    def test_full_export_fields(self):
        payload = export_payload(sample_state())
        assert payload["version"] == EXPORT_VERSION
        assert payload["tags"] == ["t", "unused"]
        assert payload["customDanbooruTags"] == [{"name": "zz custom", "category": "artist"}]
        assert payload["channels"][0]["promptVariants"] == ["v"]
        assert payload["exportedAt"].endswith("Z")

    def test_empty_state_refused(self):
        with pytest.raises(ValueError):
            export_payload(AppState())

    def test_tags_only_is_exportable(self):
        assert export_payload(AppState(tags=["lonely"]))["channels"] == []

    def test_channel_export(self):
        payload = export_channel_payload(sample_state().channels[0])
        assert payload["channel"]["name"] == "One"
        assert set(payload) == {"channel", "version", "exportedAt"}

    def test_filename(self):
        assert export_filename("Cats & Dogs") == "cats___dogs_channel.json"
        assert export_filename("ok123") == "ok123_channel.json"

    def test_dumps_is_indented_unicode(self):
        text = dumps({"name": "蛇"})
        assert text == '{\n  "name": "蛇"\n}'


class TestImport:
    """Validation of backup documents."""

    def test_round_trip(self):
        state = sample_state()
        data = parse_import(dumps(export_payload(state)))
        assert [c.to_dict() for c in data.channels] == [c.to_dict() for c in state.channels]
        assert data.tags == state.tags
        assert data.custom_danbooru_tags == state.custom_danbooru_tags

    def test_custom_tags_optional(self):
        data = validate_import({"channels": [], "tags": []})
        assert data.custom_danbooru_tags is None

    @pytest.mark.parametrize("payload, message", [
        ({"tags": []}, "missing or invalid channels data"),
        ({"channels": {}, "tags": []}, "missing or invalid channels data"),
        ({"channels": []}, "missing or invalid tags data"),
        ([], "check the file format"),
        ({"channels": [{"name": "no id"}], "tags": []}, "check the file format"),
        ({"channels": [], "tags": [1, 2]}, "check the file format"),
    ])
    def test_invalid_payloads(self, payload, message):
        with pytest.raises(ImportValidationError, match=message):
            validate_import(payload)

    def test_invalid_json(self):
        with pytest.raises(ImportValidationError):
            parse_import("{truncated")

    def test_variant_index_clamped(self):
        data = validate_import({
            "channels": [{"id": "c", "name": "C", "promptVariants": ["a"], "activeVariantIndex": 5}],
            "tags": [],
        })
        assert data.channels[0].active_variant_index == 0

    def test_duplicate_ids_and_tags_made_unique(self):
        data = validate_import({
            "channels": [
                {"id": "dup", "name": "A", "createdAt": 1},
                {"id": "dup", "name": "B", "createdAt": 1},
            ],
            "tags": ["x", "y", "x"],
        })
        ids = [c.id for c in data.channels]
        assert ids[0] == "dup"
        assert len(set(ids)) == 2
        assert [c.name for c in data.channels] == ["A", "B"]
        assert data.tags == ["x", "y"]

    def test_read_import_file(self, tmp_path):
        path = tmp_path / "backup.JSON"
        path.write_text(json.dumps({"channels": [], "tags": ["x"]}), encoding="utf-8")
        assert read_import_file(path).tags == ["x"]

    def test_read_import_file_requires_json_suffix(self, tmp_path):
        path = tmp_path / "backup.txt"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(ImportValidationError, match="valid JSON file"):
            read_import_file(path)

"""
Backup export and import.

A full export carries every channel, the tag vocabulary and the custom
autocomplete vocabulary; a channel export carries one channel. Import
validates a full export and yields the collections that replace the
current state wholesale.
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

from .errors import ImportValidationError
from .types import AppState, Channel, DanbooruTag, new_channel_id, utc_now_iso

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0.0"

NO_DATA_MESSAGE = "No data to export. Create some channels or tags first."


def has_data(state: AppState) -> bool:
    return bool(state.channels or state.tags or state.custom_danbooru_tags)


def export_payload(state: AppState) -> dict[str, Any]:
    """
    The full backup document.

    Raises:
        ValueError: the notebook has no channels, tags or custom tags
    """
    if not has_data(state):
        raise ValueError(NO_DATA_MESSAGE)
    return {
        "channels": [c.to_dict() for c in state.channels],
        "tags": list(state.tags),
        "customDanbooruTags": [t.to_dict() for t in state.custom_danbooru_tags],
        "version": EXPORT_VERSION,
        "exportedAt": utc_now_iso(),
    }


def export_channel_payload(channel: Channel) -> dict[str, Any]:
    return {
        "channel": channel.to_dict(),
        "version": EXPORT_VERSION,
        "exportedAt": utc_now_iso(),
    }


def export_filename(name: str) -> str:
    """Download name for a channel export: ``my_channel_channel.json``."""
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE).lower() + "_channel.json"


def dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


@dataclass
class ImportedData:
    """Validated collections from a backup, ready to replace the state."""
    channels: list[Channel]
    tags: list[str]
    custom_danbooru_tags: Optional[list[DanbooruTag]] = None


def validate_import(data: Any) -> ImportedData:
    """
    Check a parsed backup and build the collections it holds.

    ``channels`` and ``tags`` must both be present and lists.
    ``customDanbooruTags`` is taken only when present and a list.

    Raises:
        ImportValidationError: the payload is not a usable backup
    """
    if not isinstance(data, dict):
        raise ImportValidationError("Failed to import data. Please check the file format.")
    if not isinstance(data.get("channels"), list):
        raise ImportValidationError("Invalid backup file: missing or invalid channels data.")
    if not isinstance(data.get("tags"), list):
        raise ImportValidationError("Invalid backup file: missing or invalid tags data.")

    try:
        channels = [Channel.from_dict(item) for item in data["channels"]]
        if not all(isinstance(t, str) for t in data["tags"]):
            raise ValueError("tags must be strings")
        tags = list(dict.fromkeys(data["tags"]))
        custom = None
        if isinstance(data.get("customDanbooruTags"), list):
            custom = [DanbooruTag.from_dict(item) for item in data["customDanbooruTags"]]
    except (ValueError, TypeError) as e:
        logger.error("Failed to import data: %s", e)
        raise ImportValidationError("Failed to import data. Please check the file format.") from e

    seen: set[str] = set()
    for channel in channels:
        if channel.id in seen:
            old = channel.id
            channel.id = new_channel_id()
            logger.warning("Imported duplicate channel id %s reassigned to %s", old, channel.id)
        seen.add(channel.id)
        channel.clamp_variant_indices()
    return ImportedData(channels=channels, tags=tags, custom_danbooru_tags=custom)


def parse_import(text: str) -> ImportedData:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ImportValidationError("Failed to import data. Please check the file format.") from e
    return validate_import(data)


def read_import_file(path: Union[str, Path]) -> ImportedData:
    """
    Read and validate a backup file.

    Raises:
        ImportValidationError: not a ``.json`` file, or not a valid backup
        OSError: the file cannot be read
    """
    path = Path(path)
    if path.suffix.lower() != ".json":
        raise ImportValidationError("Please select a valid JSON file.")
    return parse_import(path.read_text(encoding="utf-8"))

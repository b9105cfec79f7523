"""
Data types for the notebook working set.

Channels, the tag vocabulary, autocomplete tags and the aggregate AppState
that UI handlers mutate in place. Persisted documents use the camelCase
field names of the stored JSON; attributes are snake_case.
"""

import copy
import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


DANBOORU_CATEGORIES = ("general", "artist", "character", "copyright", "meta")

DEFAULT_THEME = "oled-black"
DEFAULT_LANGUAGE = "en"

_ID_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def utc_now_iso() -> str:
    """Current UTC timestamp in ISO-8601 with millisecond precision and 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


_last_id_ms = 0


def new_channel_id() -> str:
    """Generate an opaque channel id: millisecond timestamp plus a random suffix.

    The timestamp part is forced to increase within a process so two channels
    created in the same millisecond still sort and compare distinctly.
    """
    global _last_id_ms
    ms = max(now_ms(), _last_id_ms + 1)
    _last_id_ms = ms
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{ms}{suffix}"


@dataclass
class Channel:
    """A named bundle of prompt text, variants, tags and images."""
    id: str
    name: str
    prompt: str = ""
    negative_prompt: str = ""
    prompt_variants: list[str] = field(default_factory=list)
    negative_prompt_variants: list[str] = field(default_factory=list)
    active_variant_index: int = 0
    active_negative_variant_index: int = 0
    tags: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    starred: bool = False
    order: Optional[int] = None
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "prompt": self.prompt,
            "negativePrompt": self.negative_prompt,
            "promptVariants": list(self.prompt_variants),
            "negativePromptVariants": list(self.negative_prompt_variants),
            "activeVariantIndex": self.active_variant_index,
            "activeNegativeVariantIndex": self.active_negative_variant_index,
            "tags": list(self.tags),
            "images": list(self.images),
            "starred": self.starred,
            "createdAt": self.created_at,
        }
        if self.order is not None:
            d["order"] = self.order
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Channel":
        """Build a channel from its stored form, defaulting absent optional fields.

        Raises:
            ValueError: if ``id`` is missing or ``data`` is not a mapping
        """
        if not isinstance(data, dict):
            raise ValueError(f"Channel must be an object, got {type(data).__name__}")
        if not data.get("id"):
            raise ValueError("Channel is missing an id")
        order = data.get("order")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            prompt=data.get("prompt") or "",
            negative_prompt=data.get("negativePrompt") or "",
            prompt_variants=list(data.get("promptVariants") or []),
            negative_prompt_variants=list(data.get("negativePromptVariants") or []),
            active_variant_index=int(data.get("activeVariantIndex") or 0),
            active_negative_variant_index=int(data.get("activeNegativeVariantIndex") or 0),
            tags=list(data.get("tags") or []),
            images=list(data.get("images") or []),
            starred=bool(data.get("starred", False)),
            order=int(order) if order is not None else None,
            created_at=int(data.get("createdAt") or 0),
        )

    def snapshot(self) -> "Channel":
        """Deep copy, independent of later in-place mutation."""
        return copy.deepcopy(self)

    def clamp_variant_indices(self) -> None:
        """Pull both active indices back into ``[0, len(variants)]``."""
        if not 0 <= self.active_variant_index <= len(self.prompt_variants):
            self.active_variant_index = 0
        if not 0 <= self.active_negative_variant_index <= len(self.negative_prompt_variants):
            self.active_negative_variant_index = 0


@dataclass(frozen=True)
class DanbooruTag:
    """An autocomplete vocabulary entry."""
    name: str
    category: str = "general"

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "category": self.category}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DanbooruTag":
        if not isinstance(data, dict) or not data.get("name"):
            raise ValueError(f"Invalid autocomplete tag: {data!r}")
        category = data.get("category") or "general"
        return cls(name=str(data["name"]), category=str(category))


def validate_category(category: str) -> str:
    """Return ``category`` if it is a known autocomplete category."""
    if category not in DANBOORU_CATEGORIES:
        raise ValueError(
            f"Unknown tag category {category!r} (expected one of {', '.join(DANBOORU_CATEGORIES)})"
        )
    return category


@dataclass
class AppState:
    """
    The in-memory working set.

    Owned by the Notebook and handed to every component that reads it.
    There is a single mutator at a time, so no locking.
    """
    channels: list[Channel] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    custom_danbooru_tags: list[DanbooruTag] = field(default_factory=list)
    active_channel_id: Optional[str] = None
    active_filters: list[str] = field(default_factory=list)
    search_query: str = ""
    channel_page: int = 0
    theme: str = DEFAULT_THEME
    language: str = DEFAULT_LANGUAGE

    def find_channel(self, channel_id: str) -> Optional[Channel]:
        for channel in self.channels:
            if channel.id == channel_id:
                return channel
        return None

    def channel_index(self, channel_id: str) -> int:
        for i, channel in enumerate(self.channels):
            if channel.id == channel_id:
                return i
        return -1

    @property
    def active_channel(self) -> Optional[Channel]:
        if self.active_channel_id is None:
            return None
        return self.find_channel(self.active_channel_id)

"""
Autocomplete vocabulary: the bundled built-in tag list plus helpers for
the user's custom tags.
"""

import importlib.resources
import json
import logging
from functools import lru_cache
from pathlib import Path

from .types import DanbooruTag

logger = logging.getLogger(__name__)


def _builtin_tags_path() -> Path:
    """
    Locate the bundled tag list, in both dev and installed environments.
    """
    try:
        with importlib.resources.as_file(
            importlib.resources.files("serpentnote.data").joinpath("danbooru_tags.json")
        ) as path:
            if path.exists():
                return path
    except (ModuleNotFoundError, TypeError):
        pass
    return Path(__file__).parent / "data" / "danbooru_tags.json"


@lru_cache(maxsize=1)
def builtin_tags() -> tuple[DanbooruTag, ...]:
    """The fixed built-in vocabulary, in corpus order, first occurrence of each name kept."""
    with open(_builtin_tags_path(), encoding="utf-8") as f:
        data = json.load(f)
    seen: set[str] = set()
    tags = []
    for item in data:
        tag = DanbooruTag.from_dict(item)
        if tag.name in seen:
            continue
        seen.add(tag.name)
        tags.append(tag)
    logger.debug("Loaded %d built-in autocomplete tags", len(tags))
    return tuple(tags)


def normalize_tag_name(name: str) -> str:
    return name.strip().lower()


def tag_exists(name: str, custom: list[DanbooruTag]) -> bool:
    """True if ``name`` is already in the custom or built-in vocabulary."""
    return any(t.name == name for t in custom) or any(t.name == name for t in builtin_tags())


def split_bulk_input(text: str) -> list[str]:
    """Comma-separated names, trimmed and lower-cased, empties dropped."""
    return [n for n in (normalize_tag_name(part) for part in text.split(",")) if n]


def current_word(text: str, cursor: int) -> str:
    """The comma-separated word being typed just before ``cursor``."""
    before = text[:cursor]
    return before[before.rfind(",") + 1:].strip()


def full_corpus(custom: list[DanbooruTag]) -> list[DanbooruTag]:
    """Built-in tags followed by custom tags: the corpus order used for ranking."""
    return [*builtin_tags(), *custom]

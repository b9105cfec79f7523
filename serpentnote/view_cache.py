"""
Memoized sorted/filtered channel list.

Renders are sequential, so a single most-recent slot is enough: the
cache key is a cheap fingerprint of the collection plus the active
filters and query, and a hit returns the previous list object itself.
"""

import logging
import math
from typing import Optional, Sequence

from .types import Channel

logger = logging.getLogger(__name__)

CacheKey = tuple[int, str, str, tuple[str, ...], str]


def channels_key(channels: Sequence[Channel], filters: Sequence[str], query: str) -> CacheKey:
    """Fingerprint: count, first id, last id, filters, query."""
    if channels:
        first, last = channels[0].id, channels[-1].id
    else:
        first = last = ""
    return (len(channels), first, last, tuple(filters), query or "")


def filter_channels(channels: Sequence[Channel], filters: Sequence[str], query: str) -> list[Channel]:
    """Channels carrying every filter tag and matching ``query`` (case-insensitive)."""
    result = list(channels)
    if filters:
        result = [c for c in result if all(tag in c.tags for tag in filters)]
    if query:
        q = query.lower()
        result = [
            c for c in result
            if q in c.name.lower()
            or q in c.prompt.lower()
            or any(q in tag.lower() for tag in c.tags)
        ]
    return result


def _sort_key(channel: Channel) -> tuple:
    # starred first; then channels with an explicit order, ascending;
    # then the rest, newest first
    if channel.order is not None:
        return (not channel.starred, 0, channel.order, 0)
    return (not channel.starred, 1, 0, -channel.created_at)


def sort_channels(channels: Sequence[Channel]) -> list[Channel]:
    return sorted(channels, key=_sort_key)


class ViewCache:
    """Single-slot cache of the derived channel list."""

    def __init__(self):
        self._key: Optional[CacheKey] = None
        self._result: list[Channel] = []
        self.hits = 0
        self.misses = 0

    def get(self, channels: Sequence[Channel], filters: Sequence[str], query: str) -> list[Channel]:
        """
        Return the filtered, sorted list for these inputs.

        The same list object is returned for as long as the key is
        unchanged; callers must not mutate it.
        """
        key = channels_key(channels, filters, query)
        if key == self._key:
            self.hits += 1
            return self._result
        self.misses += 1
        self._result = sort_channels(filter_channels(channels, filters, query))
        self._key = key
        logger.debug("Channel list recomputed: %d of %d", len(self._result), len(channels))
        return self._result

    def invalidate(self) -> None:
        """Drop the cached list.

        Needed after mutations the key cannot see, such as starring,
        manual reordering or editing a channel's text or tags.
        """
        self._key = None
        self._result = []


def page_count(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page)) if per_page > 0 else 1


def paginate(items: Sequence[Channel], page: int, per_page: int) -> list[Channel]:
    """Slice one page, clamping ``page`` into range."""
    if per_page <= 0:
        return list(items)
    pages = page_count(len(items), per_page)
    page = min(max(page, 0), pages - 1)
    start = page * per_page
    return list(items[start:start + per_page])

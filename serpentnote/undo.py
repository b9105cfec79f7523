"""
Reversible deletions.

Each undo action carries a full pre-deletion snapshot, so restoring never
consults the (already mutated) current state for the deleted data itself.
The stack is bounded: pushing past capacity silently drops the oldest entry.
"""

import copy
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Union

from .types import AppState, Channel, now_ms

logger = logging.getLogger(__name__)

DEFAULT_UNDO_CAPACITY = 10


@dataclass
class DeleteChannel:
    """A deleted channel and where it sat in the collection."""
    channel: Channel
    index: int = -1
    timestamp: int = field(default_factory=now_ms)

    kind = "delete-channel"

    def restore(self, state: AppState) -> Optional[Channel]:
        """Put the channel back. Returns it, or None if its id is already present."""
        if state.find_channel(self.channel.id) is not None:
            logger.warning("Undo skipped: channel %s already exists", self.channel.id)
            return None
        restored = self.channel.snapshot()
        if 0 <= self.index <= len(state.channels):
            state.channels.insert(self.index, restored)
        else:
            state.channels.append(restored)
        return restored

    def describe(self) -> str:
        return f'Channel "{self.channel.name}" restored'


@dataclass
class DeleteImage:
    """A removed image and its position within its channel."""
    channel_id: str
    image_url: str
    index: int
    timestamp: int = field(default_factory=now_ms)

    kind = "delete-image"

    def restore(self, state: AppState) -> Optional[Channel]:
        """Re-insert the image. Returns the channel, or None if it no longer exists."""
        channel = state.find_channel(self.channel_id)
        if channel is None:
            logger.warning("Undo skipped: channel %s no longer exists", self.channel_id)
            return None
        # list.insert clamps an index past the end to an append
        channel.images.insert(self.index, self.image_url)
        return channel

    def describe(self) -> str:
        return "Image restored"


@dataclass
class AffectedChannel:
    """A channel's tag list as it was before a tag was deleted."""
    id: str
    tags_before_deletion: list[str]


@dataclass
class DeleteTag:
    """A deleted vocabulary entry and every channel that carried it."""
    tag_name: str
    affected_channels: list[AffectedChannel]
    vocabulary_index: int = -1
    timestamp: int = field(default_factory=now_ms)

    kind = "delete-tag"

    def restore(self, state: AppState) -> list[str]:
        """Restore the vocabulary entry and the affected channels' tag lists.

        Returns the ids of channels that were restored; channels deleted
        since are skipped.
        """
        if self.tag_name not in state.tags:
            if 0 <= self.vocabulary_index <= len(state.tags):
                state.tags.insert(self.vocabulary_index, self.tag_name)
            else:
                state.tags.append(self.tag_name)
        restored = []
        for affected in self.affected_channels:
            channel = state.find_channel(affected.id)
            if channel is None:
                continue
            channel.tags = list(affected.tags_before_deletion)
            restored.append(channel.id)
        return restored

    def describe(self) -> str:
        return f'Tag "{self.tag_name}" restored'


UndoAction = Union[DeleteChannel, DeleteImage, DeleteTag]


class UndoStack:
    """Bounded LIFO of undo actions."""

    def __init__(self, capacity: int = DEFAULT_UNDO_CAPACITY):
        if capacity < 1:
            raise ValueError("Undo capacity must be at least 1")
        self._capacity = capacity
        self._items: deque[UndoAction] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def push(self, action: UndoAction) -> None:
        if len(self._items) == self._capacity:
            logger.debug("Undo history full, dropping oldest %s", self._items[0].kind)
        self._items.append(action)

    def pop(self) -> Optional[UndoAction]:
        """Remove and return the most recent action, or None when empty."""
        if not self._items:
            return None
        return self._items.pop()

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)


def snapshot_tags(channels: list[Channel], tag_name: str) -> list[AffectedChannel]:
    """Record the tag lists of every channel that carries ``tag_name``."""
    return [
        AffectedChannel(id=c.id, tags_before_deletion=copy.copy(c.tags))
        for c in channels
        if tag_name in c.tags
    ]

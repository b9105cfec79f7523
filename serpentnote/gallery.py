"""
Windowed materialization of a channel's images.

The first window is rendered eagerly; each time the trailing sentinel
becomes visible the next batch is produced, until every image has been
materialized and the sentinel is detached.
"""

import logging
from typing import NamedTuple

from .types import Channel

logger = logging.getLogger(__name__)

DEFAULT_INITIAL = 50
DEFAULT_BATCH = 20


class GalleryItem(NamedTuple):
    index: int
    url: str


class GalleryPaginator:
    """Tracks how much of ``channel.images`` has been rendered."""

    def __init__(self, channel: Channel, initial: int = DEFAULT_INITIAL, batch: int = DEFAULT_BATCH):
        if initial < 1 or batch < 1:
            raise ValueError("initial and batch sizes must be positive")
        self.channel = channel
        self.initial = initial
        self.batch = batch
        self.rendered = 0
        self.detached = True

    def _take(self, count: int) -> list[GalleryItem]:
        images = self.channel.images
        start = self.rendered
        items = [GalleryItem(start + i, url) for i, url in enumerate(images[start:start + count])]
        self.rendered += len(items)
        if self.rendered >= len(images):
            self.detached = True
        return items

    def initial_window(self) -> list[GalleryItem]:
        """Start over and return the eagerly rendered first window."""
        self.rendered = 0
        self.detached = False
        return self._take(self.initial)

    def on_sentinel_visible(self) -> list[GalleryItem]:
        """
        The next batch, or an empty list once everything is rendered.

        The image list may have shrunk since the last call; the batch is
        whatever lies past the rendered count now.
        """
        if self.detached:
            return []
        items = self._take(self.batch)
        if self.detached:
            logger.debug("Gallery for %s fully rendered (%d images)", self.channel.id, self.rendered)
        return items

    @property
    def has_sentinel(self) -> bool:
        return not self.detached

    @property
    def remaining(self) -> int:
        return max(0, len(self.channel.images) - self.rendered)

"""
Image ingest: files on disk to inline JPEG data URLs on a channel.

Each file is read, decoded, downscaled to the configured maximum width
(aspect ratio preserved) and re-encoded as JPEG. Files are processed
independently; a file that cannot be read or decoded is counted and
skipped. Only when every file has been processed is the channel
persisted and its gallery re-rendered, once.
"""

import asyncio
import base64
import io
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

from PIL import Image

from .errors import IngestError
from .protocol import ViewListener
from .types import Channel

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 1024
DEFAULT_QUALITY = 80
DATA_URL_PREFIX = "data:image/jpeg;base64,"

PathLike = Union[str, Path]


def is_image_file(path: PathLike) -> bool:
    """True when the file's type, judged by name, is ``image/*``."""
    mime, _ = mimetypes.guess_type(str(path))
    return bool(mime) and mime.startswith("image/")


def _plural(n: int) -> str:
    return "image" if n == 1 else "images"


def compress_image(data: bytes, max_width: int = DEFAULT_MAX_WIDTH, quality: int = DEFAULT_QUALITY) -> str:
    """
    Decode ``data``, shrink it to at most ``max_width`` pixels wide and
    return it as a JPEG data URL.

    Raises:
        OSError: the bytes are not a decodable image
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        width, height = img.size
        if width > max_width:
            height = max(1, round(height * max_width / width))
            width = max_width
            img = img.resize((width, height), Image.Resampling.LANCZOS)
        if img.mode != "RGB":
            img = img.convert("RGB")
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality)
    return DATA_URL_PREFIX + base64.b64encode(out.getvalue()).decode("ascii")


@dataclass
class IngestResult:
    """Outcome of one batch."""
    total: int
    images: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.images)

    @property
    def failed(self) -> int:
        return len(self.errors)

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


class ImageIngestPipeline:
    """
    Turns a batch of image files into inline payloads on a channel.

    ``request_save`` is called once per batch, after the last file, when at
    least one image was added; the listener's ``gallery_changed`` is called
    at the same point. ``ingest_progress`` is reported after every file.
    """

    def __init__(
        self,
        max_width: int = DEFAULT_MAX_WIDTH,
        quality: int = DEFAULT_QUALITY,
        *,
        listener: Optional[ViewListener] = None,
        request_save: Optional[Callable[[], None]] = None,
    ):
        if max_width < 1:
            raise ValueError("max_width must be positive")
        if not 1 <= quality <= 95:
            raise ValueError("quality must be between 1 and 95")
        self.max_width = max_width
        self.quality = quality
        self._listener = listener or ViewListener()
        self._request_save = request_save

    def validate(self, paths: Sequence[PathLike]) -> None:
        """Reject the whole batch if any file is not an image."""
        invalid = [str(p) for p in paths if not is_image_file(p)]
        if invalid:
            logger.info("Rejected upload batch: %s", ", ".join(invalid))
            raise IngestError(
                f"Please select only image files. {len(invalid)} invalid file(s) detected."
            )

    async def _process_one(self, path: Path) -> str:
        data = await asyncio.to_thread(path.read_bytes)
        compressed = await asyncio.to_thread(compress_image, data, self.max_width, self.quality)
        logger.debug(
            "Image compressed: %s %dKB -> %dKB",
            path.name, len(data) // 1024, (len(compressed) * 3 // 4) // 1024,
        )
        return compressed

    async def process(self, paths: Sequence[PathLike]) -> IngestResult:
        """Compress every file, in input order, without touching any channel."""
        self.validate(paths)
        files = [Path(p) for p in paths]
        result = IngestResult(total=len(files))
        outcomes: list[Optional[str]] = [None] * len(files)
        done = 0

        async def run(i: int, path: Path) -> None:
            nonlocal done
            try:
                outcomes[i] = await self._process_one(path)
            except (OSError, ValueError, Image.DecompressionBombError) as e:
                logger.error("Failed to process image %s: %s", path, e)
                result.errors.append(str(path))
            done += 1
            self._listener.ingest_progress(done, result.total)

        await asyncio.gather(*(run(i, p) for i, p in enumerate(files)))
        result.images = [url for url in outcomes if url is not None]
        return result

    async def ingest(self, channel: Optional[Channel], paths: Sequence[PathLike]) -> IngestResult:
        """
        Process ``paths`` and append the results to ``channel.images``.

        Raises:
            IngestError: no channel, or the batch contains non-image files
        """
        if channel is None:
            raise IngestError("No channel selected. Please select a channel first.")
        result = await self.process(paths)
        if result.total == 0:
            return result

        channel.images.extend(result.images)
        if result.succeeded:
            if self._request_save is not None:
                self._request_save()
            self._listener.gallery_changed(channel)
            self._listener.channels_changed()

        if result.failed == 0:
            self._listener.notify(
                "success", f"Successfully uploaded {result.total} {_plural(result.total)}."
            )
        elif result.succeeded:
            self._listener.notify(
                "error",
                f"Uploaded {result.succeeded}/{result.total} images. {result.failed} failed.",
            )
        else:
            self._listener.notify(
                "error",
                f"Failed to process {result.failed} {_plural(result.failed)}. Please try again.",
            )
        logger.info(
            "Ingested %d of %d images into channel %s", result.succeeded, result.total, channel.id
        )
        return result

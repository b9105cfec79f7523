"""
Serpentnote

A local-first notebook of prompt channels: named bundles of prompt text,
variants, tags and inline images, with tag autocomplete and undo.

Quick Start:
    import asyncio
    from serpentnote import Notebook

    async def main():
        async with Notebook() as nb:  # uses ./serpentnote-data
            channel = nb.create_channel("Portraits", prompt="1girl, solo")
            await nb.ingest_images(["portrait.png"], channel_id=channel.id)
            print(await nb.search_tags("sol"))

    asyncio.run(main())

CLI Usage:
    serpentnote new "Portraits" --prompt "1girl, solo" -t people
    serpentnote list --tag people
    serpentnote complete "1girl, sol"

Default Data Directory:
    ./serpentnote-data in the working directory (created automatically).
    Override with SERPENTNOTE_DATA_PATH or an explicit path argument.

Environment Variables:
    SERPENTNOTE_DATA_PATH  - Override default data location
    SERPENTNOTE_VERBOSE    - Set to 1 for debug logging in the CLI

Configuration is persisted in serpentnote.toml within the data directory.
"""

from .api import ImageRef, Notebook
from .protocol import ViewListener
from .types import AppState, Channel, DanbooruTag

__version__ = "1.0.0"
__all__ = [
    "Notebook",
    "ImageRef",
    "ViewListener",
    "AppState",
    "Channel",
    "DanbooruTag",
]

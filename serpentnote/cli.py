"""
CLI interface for the prompt notebook.

Usage:
    serpentnote new "Portraits" --prompt "1girl, solo" -t people
    serpentnote list --tag people
    serpentnote images <id> a.png b.jpg
    serpentnote export --output backup.json
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import typer
from typing_extensions import Annotated

from .api import Notebook
from .errors import SerpentnoteError
from .logging_config import configure_quiet_mode, enable_debug_mode
from .protocol import ViewListener
from .transfer import dumps, read_import_file
from .types import DANBOORU_CATEGORIES, Channel

T = TypeVar("T")


# Configure quiet mode by default (suppress verbose library output)
# Set SERPENTNOTE_VERBOSE=1 to enable debug mode via environment
if os.environ.get("SERPENTNOTE_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"serpentnote {version('serpentnote')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_data_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _data_callback(value: Optional[Path]):
    global _data_override
    if value is not None:
        _data_override = value


app = typer.Typer(
    name="serpentnote",
    help="Local-first notebook of prompt channels.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    data: Annotated[Optional[Path], typer.Option(
        "--data", "-d",
        envvar="SERPENTNOTE_DATA_PATH",
        help="Path to the data directory (default: ./serpentnote-data)",
        callback=_data_callback,
        is_eager=True,
    )] = None,
):
    """Local-first notebook of prompt channels."""


# -----------------------------------------------------------------------------
# Running commands
# -----------------------------------------------------------------------------

class _EchoListener(ViewListener):
    """Prints user notifications to stderr; stdout is reserved for results."""

    def notify(self, level: str, message: str) -> None:
        typer.echo(f"{level}: {message}" if level in ("error", "warning") else message, err=True)


def _run(work: Callable[[Notebook], Awaitable[T]]) -> T:
    """
    Open the notebook, run ``work`` and flush saves before returning.

    Expected failures (unknown ids, invalid input) exit with status 1 and
    a one-line message.
    """
    async def runner() -> T:
        async with Notebook(_data_override, listener=_EchoListener()) as nb:
            return await work(nb)

    try:
        return asyncio.run(runner())
    except KeyError as e:
        typer.echo(f"Error: {e.args[0] if e.args else e}", err=True)
        raise typer.Exit(1)
    except (ValueError, IndexError, SerpentnoteError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)


def _emit(data: Any, text: str) -> None:
    if _get_json_output():
        typer.echo(json.dumps(data, indent=2, ensure_ascii=False))
    else:
        typer.echo(text)


def _channel_summary(channel: Channel) -> dict:
    """Channel as JSON without inline image payloads."""
    d = channel.to_dict()
    d["imageCount"] = len(d.pop("images"))
    return d


def _format_channel_line(channel: Channel) -> str:
    star = "* " if channel.starred else ""
    tags = f"  [{', '.join(channel.tags)}]" if channel.tags else ""
    images = f"  ({len(channel.images)} images)" if channel.images else ""
    return f"{channel.id}  {star}{channel.name}{tags}{images}"


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

TagOption = Annotated[
    Optional[list[str]],
    typer.Option(
        "--tag", "-t",
        help="Tag (repeatable)"
    )
]

CategoryOption = Annotated[
    str,
    typer.Option(
        "--category", "-c",
        help=f"Tag category: {', '.join(DANBOORU_CATEGORIES)}"
    )
]


# -----------------------------------------------------------------------------
# Channels
# -----------------------------------------------------------------------------

@app.command("list")
def list_cmd(
    tag: TagOption = None,
    query: Annotated[Optional[str], typer.Option(
        "--query", "-q",
        help="Only channels whose name, prompt or tags contain this text",
    )] = None,
    page: Annotated[int, typer.Option(
        "--page", "-p",
        help="Page number (1-based)",
        min=1,
    )] = 1,
):
    """List channels: starred first, then manual order, then newest."""
    async def work(nb: Notebook):
        if tag:
            nb.set_filters(tag)
        if query:
            nb.set_search_query(query)
        return nb.channel_page(page - 1), nb.channel_page_count

    channels, pages = _run(work)
    lines = [_format_channel_line(c) for c in channels] or ["No channels."]
    if pages > 1:
        lines.append(f"(page {min(page, pages)}/{pages})")
    _emit([_channel_summary(c) for c in channels], "\n".join(lines))


@app.command()
def show(
    id: Annotated[str, typer.Argument(help="Channel ID")],
):
    """Show one channel's prompts, variants and tags."""
    async def work(nb: Notebook):
        return nb.get_channel(id)

    channel = _run(work)
    lines = [
        f"{channel.name}{' *' if channel.starred else ''}",
        f"id: {channel.id}",
        f"prompt: {Notebook.current_prompt(channel)}",
    ]
    negative = Notebook.current_prompt(channel, negative=True)
    if negative:
        lines.append(f"negative: {negative}")
    for i, variant in enumerate(channel.prompt_variants, start=1):
        lines.append(f"  variant {i}: {variant}")
    for i, variant in enumerate(channel.negative_prompt_variants, start=1):
        lines.append(f"  negative variant {i}: {variant}")
    if channel.tags:
        lines.append(f"tags: {', '.join(channel.tags)}")
    lines.append(f"images: {len(channel.images)}")
    _emit(_channel_summary(channel), "\n".join(lines))


@app.command()
def new(
    name: Annotated[str, typer.Argument(help="Channel name")],
    prompt: Annotated[str, typer.Option("--prompt", "-p", help="Prompt text")] = "",
    negative: Annotated[str, typer.Option("--negative", "-n", help="Negative prompt text")] = "",
    tag: TagOption = None,
):
    """Create a channel."""
    async def work(nb: Notebook):
        return nb.create_channel(name, prompt, negative, tag or ())

    channel = _run(work)
    _emit(_channel_summary(channel), channel.id)


@app.command()
def delete(
    id: Annotated[str, typer.Argument(help="Channel ID")],
):
    """Delete a channel."""
    async def work(nb: Notebook):
        return nb.delete_channel(id)

    channel = _run(work)
    _emit({"deleted": channel.id}, f"Deleted {channel.id} ({channel.name})")


@app.command()
def star(
    id: Annotated[str, typer.Argument(help="Channel ID")],
):
    """Toggle a channel's star."""
    async def work(nb: Notebook):
        return nb.toggle_star(id)

    starred = _run(work)
    _emit({"id": id, "starred": starred}, "Starred" if starred else "Unstarred")


# -----------------------------------------------------------------------------
# Tag vocabulary
# -----------------------------------------------------------------------------

@app.command()
def tags():
    """List the tag vocabulary."""
    async def work(nb: Notebook):
        return list(nb.state.tags)

    vocabulary = _run(work)
    _emit(vocabulary, "\n".join(vocabulary) if vocabulary else "No tags.")


@app.command("tag-add")
def tag_add(
    name: Annotated[str, typer.Argument(help="Tag name")],
):
    """Add a tag to the vocabulary."""
    async def work(nb: Notebook):
        return nb.add_tag(name)

    added = _run(work)
    _emit({"added": added}, f"Added tag {added}")


@app.command("tag-rm")
def tag_rm(
    name: Annotated[str, typer.Argument(help="Tag name")],
):
    """Delete a tag from the vocabulary and from every channel."""
    async def work(nb: Notebook):
        return nb.delete_tag(name)

    affected = _run(work)
    _emit({"deleted": name, "channels": affected},
          f"Deleted tag {name} ({len(affected)} channels updated)")


@app.command("tag-rename")
def tag_rename(
    old: Annotated[str, typer.Argument(help="Current tag name")],
    new: Annotated[str, typer.Argument(help="New tag name")],
):
    """Rename a tag everywhere it is used."""
    async def work(nb: Notebook):
        return nb.rename_tag(old, new)

    updated = _run(work)
    _emit({"old": old, "new": new.strip(), "channels": updated},
          f"Renamed {old} -> {new.strip()} ({updated} channels updated)")


# -----------------------------------------------------------------------------
# Autocomplete vocabulary
# -----------------------------------------------------------------------------

@app.command("vocab-add")
def vocab_add(
    name: Annotated[str, typer.Argument(help="Autocomplete tag name")],
    category: CategoryOption = "general",
):
    """Add a custom autocomplete tag."""
    async def work(nb: Notebook):
        return nb.add_danbooru_tag(name, category)

    tag = _run(work)
    _emit(tag.to_dict(), f"Added {tag.name} ({tag.category})")


@app.command("vocab-import")
def vocab_import(
    text: Annotated[str, typer.Argument(help="Comma-separated tag names")],
    category: CategoryOption = "general",
):
    """Add many custom autocomplete tags at once."""
    async def work(nb: Notebook):
        return nb.bulk_import_danbooru_tags(text, category)

    added, skipped = _run(work)
    _emit({"added": added, "skipped": skipped},
          f"Added {added} new tag(s). {skipped} tag(s) already existed.")


@app.command()
def complete(
    query: Annotated[str, typer.Argument(help="Text to complete")],
    limit: Annotated[Optional[int], typer.Option(
        "--limit", "-n",
        help="Maximum results to return",
    )] = None,
):
    """Rank autocomplete tags for the last comma-separated word of QUERY."""
    from .danbooru import current_word

    async def work(nb: Notebook):
        return await nb.search_tags(current_word(query, len(query)), limit)

    results = _run(work)
    _emit([t.to_dict() for t in results],
          "\n".join(f"{t.name}\t{t.category}" for t in results) if results else "No matches.")


# -----------------------------------------------------------------------------
# Images
# -----------------------------------------------------------------------------

@app.command()
def images(
    id: Annotated[str, typer.Argument(help="Channel ID")],
    files: Annotated[list[Path], typer.Argument(help="Image files to add")],
):
    """Compress image files and add them to a channel."""
    async def work(nb: Notebook):
        return await nb.ingest_images(files, channel_id=id)

    result = _run(work)
    _emit(
        {"total": result.total, "succeeded": result.succeeded,
         "failed": result.failed, "errors": result.errors},
        f"{result.succeeded}/{result.total} images added",
    )
    if result.failed:
        raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Data management
# -----------------------------------------------------------------------------

@app.command()
def export(
    channel: Annotated[Optional[str], typer.Option(
        "--channel", "-c",
        help="Export only this channel",
    )] = None,
    output: Annotated[Optional[Path], typer.Option(
        "--output", "-o",
        help="Write to this file (default: stdout)",
    )] = None,
):
    """Export all data, or one channel, as JSON."""
    async def work(nb: Notebook):
        if channel:
            return nb.export_channel(channel)[1]
        return nb.export_data()

    payload = _run(work)
    text = dumps(payload)
    if output is None:
        typer.echo(text)
    else:
        output.write_text(text, encoding="utf-8")
        typer.echo(f"Exported to {output}", err=True)


@app.command("import")
def import_cmd(
    path: Annotated[Path, typer.Argument(help="Backup file (.json)")],
):
    """Replace all channels and tags with the contents of a backup."""
    async def work(nb: Notebook):
        return nb.import_data(read_import_file(path))

    data = _run(work)
    _emit({"channels": len(data.channels), "tags": len(data.tags)},
          f"Imported {len(data.channels)} channels and {len(data.tags)} tags")


@app.command()
def clear(
    yes: Annotated[bool, typer.Option(
        "--yes",
        help="Confirm deleting every channel, tag and custom tag",
    )] = False,
):
    """Delete all data."""
    if not yes:
        typer.echo("Refusing to clear all data without --yes", err=True)
        raise typer.Exit(1)

    async def work(nb: Notebook):
        return nb.clear_all_data()

    cleared = _run(work)
    _emit({"cleared": cleared}, "All data has been cleared." if cleared else "Nothing to clear.")


@app.command()
def stats():
    """Show counts and storage usage."""
    async def work(nb: Notebook):
        return nb.statistics()

    data = _run(work)
    _emit(data, "\n".join(f"{key}: {value}" for key, value in data.items()))


# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="serpentnote CLI", data_path=_data_override)
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()

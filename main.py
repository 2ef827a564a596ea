"""Komi Shelf CLI entry point."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from shelf.config import DEFAULT_CONFIG_PATH, ShelfConfig, load_config, write_default_config
from shelf.library import Library, open_library
from shelf.logging_config import setup_logging
from shelf.models import CATALOG_CATEGORIES
from shelf.server import run_server
from shelf.utils import atomic_write_json, read_json


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Komi Shelf library CLI")
logger = logging.getLogger("komi")

STARTUP_BANNER = r"""
 _  __               _
| |/ /___  _ __ ___ (_)
| ' // _ \| '_ ` _ \| |
| . \ (_) | | | | | | |
|_|\_\___/|_| |_| |_|_|
"""


def _ensure_config() -> ShelfConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: komi init --library /path/to/comics")
        raise typer.Exit(code=1)


def _setup_logging(config: ShelfConfig) -> ShelfConfig:
    setup_logging(config.data_dir, config.logging.level, config.logging.filename)
    return config


def _open(log: bool = False) -> Library:
    config = _ensure_config()
    if log:
        _setup_logging(config)
    return open_library(config)


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your comics folder"),
    name: str = typer.Option("My Library", "--name", help="Library name"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = DEFAULT_CONFIG_PATH
    write_default_config(config_path, library, name)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def scan(
    path: Optional[Path] = typer.Option(None, "--path", help="Scan another folder"),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", min=0, help="Depth limit"),
) -> None:
    """Scan the library folder and list the items found (nothing is saved)."""
    library = _open(log=True)
    result = library.scan(path, max_depth=max_depth)
    for record in result.items:
        typer.echo(f"  {record.display_title} ({record.total_pages} pages)")
    for error in result.errors:
        typer.echo(f"[WARN] {error}")
    typer.echo(f"✓ Scan completed: {result.total} items, {len(result.errors)} errors.")


@app.command()
def refresh(
    path: Optional[Path] = typer.Option(None, "--path", help="Refresh another folder"),
    max_depth: Optional[int] = typer.Option(None, "--max-depth", min=0, help="Depth limit"),
) -> None:
    """Scan the library and merge the result with saved metadata."""
    library = _open(log=True)
    result = library.refresh(path, max_depth=max_depth)
    typer.echo(
        "✓ Refresh completed: "
        f"{len(result.items)} items, "
        f"{len(result.saved)} saved, "
        f"{len(result.failed)} failed, "
        f"{len(result.errors)} errors."
    )
    if result.failed:
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
    no_refresh: bool = typer.Option(False, "--no-refresh", help="Skip the startup refresh"),
) -> None:
    """Start the local HTTP bridge."""
    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.MAGENTA, bold=True))
    config = _setup_logging(_ensure_config())

    if not no_refresh:
        logger.info("Running initial library refresh...")
        result = open_library(config).refresh()
        logger.info(
            f"Refresh complete: {len(result.saved)} saved, {len(result.failed)} failed, "
            f"{len(result.errors)} errors."
        )

    try:
        run_server(config, host=host, port=port)
    except KeyboardInterrupt:
        pass


@app.command()
def stats() -> None:
    """Show library statistics."""
    library = _open()
    info = library.storage_info()
    items = library.list_items()
    total_pages = sum(record.total_pages for record in items)
    tagged = len([record for record in items if not record.tags.is_empty()])
    percent = (tagged / len(items) * 100) if items else 0

    typer.echo("Library Statistics:")
    typer.echo(f"  Total items: {info['totalItems']}")
    typer.echo(f"  Total pages: {total_pages}")
    typer.echo(f"  Tagged items: {tagged} / {len(items)} ({percent:.0f}%)")
    typer.echo(f"  Last scan: {info['lastScan'] or 'never'}")
    typer.echo(f"  Storage: {info['storagePath']}")


@app.command()
def tags() -> None:
    """List the tag catalog."""
    catalog = _open().get_taxonomy()
    for category in CATALOG_CATEGORIES:
        values = catalog.category(category)
        typer.echo(f"{category} ({len(values)}): {', '.join(values) or '-'}")


@app.command("tag-add")
def tag_add(
    category: str = typer.Argument(..., help="personality, verb or plot"),
    value: str = typer.Argument(..., help="Tag value"),
) -> None:
    """Add a value to the tag catalog."""
    if category not in CATALOG_CATEGORIES:
        typer.echo(f"[ERROR] Unknown category {category!r}. Use one of: {', '.join(CATALOG_CATEGORIES)}")
        raise typer.Exit(code=1)
    if not _open().add_tag(category, value):
        typer.echo(f"[ERROR] {value!r} is blank or already in {category}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Added {value!r} to {category}")


@app.command("tag-delete")
def tag_delete(
    category: str = typer.Argument(..., help="personality, verb or plot"),
    value: str = typer.Argument(..., help="Tag value"),
) -> None:
    """Delete a catalog value unless items still use it."""
    if category not in CATALOG_CATEGORIES:
        typer.echo(f"[ERROR] Unknown category {category!r}. Use one of: {', '.join(CATALOG_CATEGORIES)}")
        raise typer.Exit(code=1)

    result = _open().delete_tag(category, value)
    if result.status == "deleted":
        typer.echo(f"[OK] Deleted {value!r} from {category}")
        return
    if result.status == "in_use":
        typer.echo(f"[ERROR] {value!r} is used by {len(result.affected)} items:")
        for item in result.affected:
            typer.echo(f"  {item.title} ({item.folder_path})")
    elif result.status == "not_found":
        typer.echo(f"[ERROR] {value!r} is not in {category}")
    else:
        typer.echo("[ERROR] Could not save the tag catalog")
    raise typer.Exit(code=1)


@app.command()
def prune() -> None:
    """Remove records whose folder no longer exists."""
    removed = _open(log=True).prune_missing()
    typer.echo(f"[INFO] Removed {len(removed)} records with missing folders")


@app.command()
def repair() -> None:
    """Rebuild the library index from the item files."""
    added, removed = _open(log=True).rebuild_index()
    typer.echo(f"[INFO] Index repaired: {added} entries added, {removed} removed")


@app.command("export")
def export_library(
    output: Path = typer.Argument(..., help="Destination JSON file"),
) -> None:
    """Export items, taxonomy, settings and progress to one JSON file."""
    data = _open().export_data()
    atomic_write_json(output, data)
    typer.echo(f"[OK] Exported {len(data['items'])} items to {output}")


@app.command("import")
def import_library(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON file from export"),
) -> None:
    """Import a JSON file produced by `komi export`."""
    config = _setup_logging(_ensure_config())
    try:
        payload = read_json(source)
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"[ERROR] Cannot read {source}: {exc}")
        raise typer.Exit(code=1)

    try:
        result = open_library(config).import_data(payload)
    except ValueError as exc:
        typer.echo(f"[ERROR] Invalid import file: {exc}")
        raise typer.Exit(code=1)

    typer.echo(f"[OK] Imported {result.count} items, {len(result.failed)} failed")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Delete every item record and rebuild them from the library folder."""
    if not confirm:
        typer.echo("[ERROR] This will delete all saved metadata. Use --confirm.")
        raise typer.Exit(code=1)

    library = _open()
    library.clear()

    typer.echo("[INFO] Item records reset. Rescanning library...")
    result = library.refresh()
    typer.echo(f"✓ {len(result.saved)} items saved.")


if __name__ == "__main__":
    app()

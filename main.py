"""Lectern CLI entry point."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from lectern.config import DATA_DIR, DEFAULT_CONFIG_PATH, LecternConfig, load_config, write_default_config
from lectern.database import get_engine, init_db, reset_database
from lectern.errors import ExtractionError, ItemNotFoundError
from lectern.extractor import ContentExtractor
from lectern.imaging import RenderOptions
from lectern.logging_config import setup_logging
from lectern.migrations import get_status, run_migrations, stamp_if_needed
from lectern.repository import Repository
from lectern.scanner import scan_library
from lectern.scheduler import ScanScheduler
from lectern.utils import human_size


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Lectern media library CLI")
logger = logging.getLogger("lectern")


def _ensure_config() -> LecternConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: lectern init --library /path/to/books")
        raise typer.Exit(code=1)


def _bootstrap() -> LecternConfig:
    """Load config.ini and apply its logging settings."""
    config = _ensure_config()
    setup_logging(config.logging, DATA_DIR)
    return config


def _open_store() -> None:
    try:
        init_db()
    except OperationalError as exc:
        typer.echo(f"[ERROR] Cannot open catalog database: {exc}")
        raise typer.Exit(code=1)


def _write_output(data: bytes, out: Path) -> None:
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(data)
    typer.echo(f"[OK] Wrote {human_size(len(data))} to {out}")


@app.command()
def init(
    library: Path = typer.Option(..., "--library", help="Path to your books folder"),
    name: str = typer.Option("My Library", "--name", help="Library name"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = DEFAULT_CONFIG_PATH
    write_default_config(config_path, library, name)
    typer.echo(f"[OK] Config created at {config_path}")


@app.command()
def scan() -> None:
    """Run one scan cycle and update the catalog."""
    config = _bootstrap()
    _open_store()
    try:
        stats = scan_library(config)
    except FileNotFoundError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)

    typer.echo(
        "✓ Scan completed: "
        f"{stats['added']} added, "
        f"{stats['updated']} updated, "
        f"{stats['deleted']} deleted, "
        f"{stats['ambiguous']} ambiguous, "
        f"{stats['errors']} errors."
    )


@app.command()
def run(
    interval: Optional[int] = typer.Option(None, "--interval", help="Seconds between scans"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Extraction workers"),
) -> None:
    """Scan periodically and extract pending items in the background."""
    config = _bootstrap()
    if interval is not None:
        config.scanner.interval_seconds = max(1, interval)
    _open_store()

    # Migrations: stamp databases built by create_all, then upgrade to head.
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")

    extractor = ContentExtractor(config, workers=workers)
    scheduler = ScanScheduler(config, extractor=extractor)
    scheduler.start()
    logger.info(f"Watching {config.library_path} (Ctrl+C to stop)")

    try:
        while scheduler.running:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
        extractor.close()


@app.command()
def extract(
    limit: Optional[int] = typer.Option(None, "--limit", help="Maximum items to extract"),
) -> None:
    """Extract pending items (page counts and covers)."""
    config = _bootstrap()
    _open_store()
    extractor = ContentExtractor(config)
    try:
        stats = extractor.extract_pending(limit=limit)
    finally:
        extractor.close()

    typer.echo(f"✓ Extraction completed: {stats['extracted']} extracted, {stats['failed']} failed.")


@app.command()
def page(
    item_id: str = typer.Argument(..., help="Catalog item id"),
    index: int = typer.Argument(..., help="0-based page index"),
    out: Path = typer.Option(..., "--out", help="Output file"),
    max_width: Optional[int] = typer.Option(None, "--max-width", help="Resize to this width"),
    image_format: Optional[str] = typer.Option(None, "--format", help="jpeg, png or webp"),
) -> None:
    """Write one page of an item to a file."""
    config = _bootstrap()
    try:
        options = RenderOptions(max_width=max_width, image_format=image_format)
    except ValidationError as exc:
        typer.echo(f"[ERROR] Invalid render options: {exc}")
        raise typer.Exit(code=1)

    _open_store()
    extractor = ContentExtractor(config, workers=1)
    try:
        result = extractor.get_page(item_id, index, options)
    except ItemNotFoundError:
        typer.echo(f"[ERROR] No item with id {item_id}")
        raise typer.Exit(code=1)
    except ExtractionError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)
    finally:
        extractor.close()

    typer.echo(f"[INFO] {result.media_type}")
    _write_output(result.data, out)


@app.command()
def cover(
    item_id: str = typer.Argument(..., help="Catalog item id"),
    out: Path = typer.Option(..., "--out", help="Output file"),
) -> None:
    """Write the cover of an item to a file."""
    config = _bootstrap()
    _open_store()
    extractor = ContentExtractor(config, workers=1)
    try:
        data = extractor.get_cover(item_id)
    finally:
        extractor.close()

    if data is None:
        typer.echo(f"[ERROR] No cover for {item_id}")
        raise typer.Exit(code=1)
    _write_output(data, out)


@app.command()
def stats() -> None:
    """Show library statistics."""
    _ensure_config()
    _open_store()

    with Session(get_engine()) as session:
        repo = Repository(session)
        total = repo.count_items()
        pending = repo.count_pending()
        watermark = repo.get_watermark()

    last_scan = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(watermark)) if watermark else "never"
    extracted = total - pending
    percent = (extracted / total * 100) if total else 0

    typer.echo("Library Statistics:")
    typer.echo(f"  Total items: {total}")
    typer.echo(f"  Extracted: {extracted} / {total} ({percent:.0f}%)")
    typer.echo(f"  Last scan: {last_scan}")


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _bootstrap()
    _open_store()
    stamp_if_needed()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind: current {current}, head {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def reset(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm destructive reset"),
) -> None:
    """Delete the catalog and rescan the library from scratch."""
    if not confirm:
        typer.echo("[ERROR] This will delete your catalog and covers. Use --confirm.")
        raise typer.Exit(code=1)

    config = _bootstrap()

    reset_database()
    typer.echo("[INFO] Catalog reset. Rescanning library...")
    stats = scan_library(config)
    typer.echo(f"✓ Scan completed: {stats['added']} added.")


if __name__ == "__main__":
    app()

"""Cache maintenance CLI commands."""

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from embedkit.cli import app, console, load_config
from embedkit.embeddings import EmbeddingCache
from embedkit.exceptions import StorageError

DbPathOption = Annotated[
    Path | None,
    typer.Option("--db", help="Cache database (default: $EMBEDKIT_DB_PATH or <cache dir>/embeddings.db)"),
]


def _open_cache(db_path: Path | None) -> EmbeddingCache:
    config = load_config(db_path=db_path)
    try:
        return EmbeddingCache(config.db_path, config.cache_config)
    except StorageError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _format_bytes(n: int) -> str:
    for unit in ("B", "KB", "MB"):
        if n < 1024:
            return f"{n:.0f}{unit}" if unit == "B" else f"{n:.1f}{unit}"
        n /= 1024
    return f"{n:.1f}GB"


@app.command("cache-stats")
def cache_stats(db: DbPathOption = None) -> None:
    """Show entry count, size and age of the embedding cache."""
    with _open_cache(db) as cache:
        stats = cache.get_stats()
        db_path = cache.db_path

    table = Table(title="Embedding Cache", show_header=False)
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    table.add_row("Database", str(db_path))
    table.add_row("Entries", str(stats.size))
    table.add_row("Size", _format_bytes(stats.bytes_used))
    oldest_hours = stats.oldest_entry_age_ms / 3_600_000
    table.add_row("Oldest Entry", f"{oldest_hours:.1f}h" if stats.size else "[dim]empty[/dim]")

    console.print(table)


@app.command("cache-evict")
def cache_evict(db: DbPathOption = None) -> None:
    """Delete entries older than the TTL."""
    with _open_cache(db) as cache:
        removed = cache.evict_expired()
    console.print(f"[green]Evicted {removed} expired entries[/green]")


@app.command("cache-clear")
def cache_clear(
    db: DbPathOption = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete every cached embedding."""
    if not yes:
        typer.confirm("Delete all cached embeddings?", abort=True)
    with _open_cache(db) as cache:
        cache.clear()
    console.print("[green]Cache cleared[/green]")

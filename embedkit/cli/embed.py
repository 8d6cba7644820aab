"""Embed command: run one text through the cache and worker."""

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer

from embedkit.cli import app, console, load_config
from embedkit.config import EmbeddingProvider
from embedkit.exceptions import EmbeddingError
from embedkit.service import EmbeddingService, EmbedResult


@app.command("embed")
def embed(
    text: Annotated[str, typer.Argument(help="Text to embed")],
    db: Annotated[Path | None, typer.Option("--db", help="Cache database path")] = None,
    provider: Annotated[
        EmbeddingProvider | None,
        typer.Option("--provider", "-p", help="Embedding backend (default: transformers)"),
    ] = None,
    show_progress: Annotated[bool, typer.Option("--progress", help="Show model download progress")] = False,
    as_json: Annotated[bool, typer.Option("--json", help="Print the full vector as JSON")] = False,
) -> None:
    """Embed TEXT, reusing the cached vector when there is one.

    Examples:

        embedkit embed "hello world"

        embedkit embed "你好" --json

        embedkit embed "hello" --provider mock
    """
    config = load_config(db_path=db, provider=provider, show_progress=show_progress or None)

    async def run() -> EmbedResult:
        async with EmbeddingService(config) as service:
            return await service.embed(text)

    try:
        result = asyncio.run(run())
    except EmbeddingError as e:
        console.print(f"[red]Embedding failed: {type(e).__name__}: {e}[/red]")
        raise typer.Exit(1)

    if as_json:
        console.print_json(
            json.dumps(
                {
                    "dimensions": len(result.embedding),
                    "from_cache": result.from_cache,
                    "time_ms": round(result.time_ms, 3),
                    "embedding": result.embedding.tolist(),
                }
            )
        )
        return

    source = "cache" if result.from_cache else "worker"
    preview = ", ".join(f"{x:.4f}" for x in result.embedding[:5])
    console.print(f"Dimensions: {len(result.embedding)}")
    console.print(f"Source: [cyan]{source}[/cyan] ({result.time_ms:.1f}ms)")
    console.print(f"Vector: [{preview}, ...]")

"""embedkit CLI - inspect and maintain the embedding cache.

Commands are organized into submodules:
    embedkit/cli/embed.py  - embed command
    embedkit/cli/cache.py  - cache-stats, cache-evict, cache-clear commands
"""

import logging
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from rich.console import Console

from embedkit.config import EmbeddingProvider, ServiceConfig
from embedkit.logging_config import setup_logging

# Load environment variables
load_dotenv()

app = typer.Typer(
    name="embedkit",
    help="Offline text embeddings with a persistent cache.",
    no_args_is_help=True,
)
console = Console()

logger = logging.getLogger(__name__)


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")] = False,
    log_file: Annotated[Path | None, typer.Option("--log-file", help="Path to log file")] = None,
) -> None:
    """Offline text embeddings with a persistent cache."""
    setup_logging(verbose=verbose, log_file=log_file)


def load_config(
    db_path: Path | None = None,
    provider: EmbeddingProvider | None = None,
    show_progress: bool | None = None,
) -> ServiceConfig:
    """Service config from EMBEDKIT_* variables plus command-line overrides."""
    try:
        return ServiceConfig.from_env(db_path=db_path, provider=provider, show_progress=show_progress)
    except ValueError as e:
        console.print(f"[red]Invalid configuration: {e}[/red]")
        raise typer.Exit(2)


# These imports must come after app is defined to avoid circular imports
from embedkit.cli import cache, embed  # noqa: E402, F401

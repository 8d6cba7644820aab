"""Logging configuration for embedkit.

Provides centralized logging setup with:
- Console handler (INFO by default, DEBUG with --verbose)
- Optional file handler (with --log-file)
- Consistent formatting across all modules

The worker process calls setup_logging(stream=sys.stderr) because its
stdout is reserved for protocol messages.
"""

import logging
import sys
from pathlib import Path
from typing import TextIO


def setup_logging(
    verbose: bool = False,
    log_file: Path | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure logging for the entire application.

    Args:
        verbose: If True, set console to DEBUG level (default INFO)
        log_file: Optional path to log file (logs at DEBUG level)
        stream: Console stream (default: stdout)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture everything, handlers will filter

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(
        logging.Formatter(
            "%(levelname)s - %(name)s - %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    root_logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(levelname)s - %(name)s - %(funcName)s:%(lineno)d - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root_logger.addHandler(file_handler)

    # Suppress noisy third-party loggers
    logging.getLogger("sentence_transformers").setLevel(logging.WARNING)
    logging.getLogger("huggingface_hub").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("filelock").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


"""
Centralized logging configuration for quotebook.

Console output always; a file handler when a log file is given. Every record
carries the process ID so concurrent CLI invocations sharing one order store
can be told apart.
"""

import logging
import sys
from pathlib import Path
from typing import TextIO

LOG_FORMAT = "%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s"


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    stream: TextIO | None = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (e.g. "INFO", "DEBUG").
        log_file: Optional path for a persistent log file.
        stream: Console stream (default stdout; the CLI passes stderr).
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(stream or sys.stdout)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )

    # Reduce verbosity from the HTTP server
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

"""Centralized logging configuration.

Log output goes to stderr so that stdout stays machine readable (the
``token`` command prints credentials there).
"""

import logging
import os
import sys
from pathlib import Path


def setup_logging(
    name: str = "mcp_test_auth",
    level: str | None = None,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure logging with consistent format.

    Args:
        name: Logger name (typically __name__ from the calling module)
        level: Log level (defaults to LOG_LEVEL env var or INFO)
        log_file: Optional file path for logging output

    Returns:
        Configured logger instance

    Raises:
        ValueError: If the level name is unknown
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,  # Override any existing configuration
    )

    # Request lines from httpx include full URLs; keep them out of INFO output
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(name)

"""Logging setup for the ``rtsim`` namespace."""

from __future__ import annotations

import logging
from pathlib import Path

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"


def setup_logging(level: int = logging.INFO, log_file: str | Path | None = None) -> logging.Logger:
    """Configure the ``rtsim`` logger.

    The console handler uses a short format at ``level``; the optional file handler
    records everything down to DEBUG with timestamps.
    """
    app_logger = logging.getLogger("rtsim")
    app_logger.setLevel(min(level, logging.DEBUG) if log_file else level)
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    app_logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        app_logger.addHandler(file_handler)

    app_logger.propagate = False
    return app_logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the ``rtsim`` logger (module ``__name__`` is accepted)."""
    if name == "rtsim" or name.startswith("rtsim."):
        return logging.getLogger(name)
    return logging.getLogger("rtsim").getChild(name)

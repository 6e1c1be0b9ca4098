"""Helpers shared by the CLI commands."""

from __future__ import annotations

import logging

from rich.console import Console

from sysvault.core.log_sink import configure_logging

logger = logging.getLogger(__name__)

console = Console()

_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR"}


def start_logging(level: str | None) -> None:
    """Console logging before settings exist; refined once they are resolved."""
    requested = (level or "INFO").upper()
    configure_logging(requested if requested in _LEVELS else "INFO")


def warn_unknown(args: list[str]) -> None:
    for arg in args:
        logger.warning("Unknown option ignored: %s", arg)

"""Logging configuration helpers."""

from __future__ import annotations

import logging

from flowhooks.context import HOOK_LOGGER_PREFIX


def configure_logging(level: str = "INFO", hook_level: str | None = None) -> None:
    """Configure root logging; ``hook_level`` overrides the level of hook loggers."""
    normalized = level.upper()
    logging.basicConfig(
        level=getattr(logging, normalized, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    if hook_level:
        logging.getLogger(HOOK_LOGGER_PREFIX).setLevel(getattr(logging, hook_level.upper(), logging.INFO))

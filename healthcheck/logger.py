"""Logging helpers for healthcheck
"""
import logging
import os
from typing import Optional


def setup_logging(level_name: Optional[str] = None) -> None:
    level_name = (level_name or os.environ.get("LOG_LEVEL", "WARNING")).upper()
    level = getattr(logging, level_name, logging.WARNING)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(level)


__all__ = ["setup_logging"]

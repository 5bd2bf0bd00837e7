"""Logging setup for the marketplace package.

Modules log through ``logging.getLogger(__name__)``; all of them are
children of the ``freelance_dao`` logger configured here.
"""

from __future__ import annotations

import logging

logger = logging.getLogger("freelance_dao")


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach a stream handler to the package logger if none is present."""
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        logger.addHandler(handler)
    return logger

"""Logging setup for ptybridge.

Every module logs through a child of the ``ptybridge`` logger
(``ptybridge.bridge.session``, ``ptybridge.bridge.process`` and so on), so
handlers attached to that one logger see every session and shell event.
Uvicorn keeps its own loggers.
"""

from __future__ import annotations

import logging
import sys

from ptybridge.config.settings import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Attach handlers to the ``ptybridge`` logger.

    Output goes to stderr, and also to ``config.file`` when set. A later
    call replaces the handlers of an earlier one, so the CLI can
    reconfigure after loading a config file.

    Args:
        config: Level, format and optional log file. Defaults to INFO
            on stderr.
    """
    if config is None:
        config = LoggingConfig()

    app_logger = logging.getLogger("ptybridge")
    app_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))
    for handler in list(app_logger.handlers):
        app_logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(config.format)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    app_logger.addHandler(console_handler)

    # File handler (optional)
    if config.file:
        file_handler = logging.FileHandler(config.file)
        file_handler.setFormatter(formatter)
        app_logger.addHandler(file_handler)

    app_logger.info("Logging initialized at %s level", config.level)

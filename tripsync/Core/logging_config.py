# tripsync/Core/logging_config.py
"""
Process-wide logging setup.

Modules log through ``logging.getLogger(__name__)`` and prefix messages
with a bracketed component tag ([SYNC], [TRIP_DETECTOR], [REPO], ...).
This module installs one stream handler on the ``tripsync`` logger.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

_configured = False


def configure_logging(level: str = "INFO") -> None:
    """Attach a stderr handler to the package logger (idempotent)."""
    global _configured

    root = logging.getLogger("tripsync")
    root.setLevel(level.upper())

    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True

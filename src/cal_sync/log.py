"""Logging setup for cal-sync.

All modules log through ``logging.getLogger(__name__)``; this module only
configures the root logger once per process, using ISO 8601 timestamps and
pipe-separated fields.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Marks the handler installed by setup_logging so that repeated calls
# reconfigure it instead of stacking another one.
_HANDLER_ATTR = "_cal_sync_log_handler"

# Third-party loggers that are chatty at INFO.
_NOISY_LOGGERS = ("googleapiclient.discovery_cache", "google_auth_oauthlib", "urllib3")


def resolve_level(level: str, verbose: int = 0) -> int:
    """Return the numeric level for *level*, lowered once per ``-v`` flag.

    Raises:
        ValueError: If *level* is not a recognised logging level name.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Invalid log level: {level!r}")
    return max(logging.DEBUG, numeric - 10 * verbose)


def setup_logging(level: str = "INFO", verbose: int = 0, stream: TextIO | None = None) -> None:
    """Configure the root logger.

    Safe to call more than once: the existing cal-sync handler is updated in
    place.

    Args:
        level: A standard logging level name such as ``"INFO"``.
        verbose: Number of ``-v`` flags given on the command line.
        stream: Destination stream, *stderr* by default.

    Raises:
        ValueError: If *level* is not a recognised logging level string.
    """
    numeric_level = resolve_level(level, verbose)

    root = logging.getLogger()
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, False):
            handler.setLevel(numeric_level)
            return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S"))
    setattr(handler, _HANDLER_ATTR, True)
    root.addHandler(handler)

"""Logging setup for the neph CLI."""

import logging
import sys
from typing import Optional, TextIO

LOG_FORMAT = "[%(levelname)s] %(message)s"
VERBOSITY_TO_LEVEL = {
    -1: logging.ERROR,
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


def level_for_counts(verbose: int = 0, quiet: int = 0) -> int:
    """Translate repeated -v/-q flags into a logging level."""
    delta = max(-1, min(2, verbose - quiet))
    return VERBOSITY_TO_LEVEL[delta]


def configure_logging(
    verbose: int = 0, quiet: int = 0, stream: Optional[TextIO] = None
) -> None:
    """Configure root logging for CLI usage.

    Args:
        verbose: Number of -v flags given.
        quiet: Number of -q flags given.
        stream: Destination stream (default: stderr).
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(level_for_counts(verbose, quiet))

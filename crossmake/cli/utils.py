"""
Shared utilities for the command-line entry point.
"""

import logging
import os
import sys
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_LOG_LEVEL = "CROSSMAKE_LOG_LEVEL"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(environ: Optional[Mapping[str, str]] = None) -> int:
    """
    Configure logging from CROSSMAKE_LOG_LEVEL (default: info).

    Logs go to stderr so they never mix with the build's stdout.

    Returns:
        The configured level
    """
    environ = os.environ if environ is None else environ
    name = environ.get(ENV_LOG_LEVEL, "info").strip().lower()
    level = LOG_LEVELS.get(name)

    if level == logging.DEBUG:
        format_str = "%(levelname)s [%(name)s] %(message)s"
    else:
        format_str = "%(message)s"

    logging.basicConfig(
        level=level if level is not None else logging.INFO,
        format=format_str,
        stream=sys.stderr,
        force=True,  # Reconfigure if already configured
    )

    if level is None:
        print_warning(f"Unknown {ENV_LOG_LEVEL} '{name}', using 'info'")
        level = logging.INFO
    return level


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


def print_warning(message: str):
    """Print warning message to stderr."""
    print(f"WARNING: {message}", file=sys.stderr)

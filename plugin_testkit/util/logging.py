"""
Logging configuration, called once by the CLI at startup.

Every module that does ``logger = logging.getLogger(__name__)`` inherits
this setup. Levels resolve as: --verbose flag > PLUGIN_TESTKIT_LOG_LEVEL > WARNING.
"""

import logging
import os

from rich.logging import RichHandler

LOG_LEVEL_ENV = "PLUGIN_TESTKIT_LOG_LEVEL"

_NOISY_LOGGERS = ("urllib3", "asyncio")


def resolve_level(verbose: bool = False) -> int:
    """Resolve the effective log level from the CLI flag and environment."""
    if verbose:
        return logging.DEBUG

    name = os.environ.get(LOG_LEVEL_ENV, "WARNING").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def setup_logging(level: int = logging.WARNING) -> None:
    """
    Configure the root logger with a rich console handler.

    Args:
        level: Numeric log level
    """
    handler = RichHandler(
        rich_tracebacks=level <= logging.DEBUG,
        show_path=level <= logging.DEBUG,
        markup=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    if level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

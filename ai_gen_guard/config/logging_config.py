"""
Logging setup for the command-line entry points.

Library modules only create loggers; handlers are installed here.
"""

import logging
import os
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: Optional[str] = None, console: Optional[Console] = None) -> None:
    """Install a Rich console handler on the root logger.

    Args:
        level: Log level name; defaults to ``LOG_LEVEL`` from the environment, then INFO
        console: Console to log to; defaults to stderr
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        show_time=True,
        log_time_format="%Y-%m-%d %H:%M:%S",
    )
    handler.setFormatter(logging.Formatter(fmt="%(message)s"))
    logging.basicConfig(handlers=[handler], level=level, force=True, format="%(message)s")

    # Keep SDK request logging quiet unless asked for
    third_party_level = os.getenv("THIRD_PARTY_LOG_LEVEL", "WARNING").upper()
    for name in ("openai", "httpx", "httpcore"):
        logging.getLogger(name).setLevel(third_party_level)

"""
RouteAudit - Logging setup
Rich console handler for the CLI; library modules only call logging.getLogger.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(
        console=console,
        show_path=False,
        markup=False,
        rich_tracebacks=verbose,
        log_time_format="[%H:%M:%S]",
    )
    logging.basicConfig(level=level, format="%(message)s", handlers=[handler], force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return logging.getLogger("routeaudit")

"""
Logging setup for the packsmith CLI.

Library modules only create module-level loggers with
`logging.getLogger(__name__)`. Handlers are installed here, and only by the
CLI entry point, so embedding applications keep control of their own logging.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "packsmith"


def setup_logging(verbose: bool = False, console: Console | None = None) -> logging.Logger:
    """
    Attach a rich handler to the packsmith logger.

    Args:
        verbose: Log at DEBUG instead of WARNING
        console: Console to write to (defaults to stderr)

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(
            console=console or Console(stderr=True),
            show_time=verbose,
            show_path=False,
            markup=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)

    logger.propagate = False
    return logger

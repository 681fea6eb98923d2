"""
Logging setup for the command line.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False) -> None:
    """Route ``opencl_bench`` loggers to stderr through rich."""
    handler = RichHandler(
        console=Console(stderr=True), show_path=verbose, rich_tracebacks=True
    )
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger = logging.getLogger("opencl_bench")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False

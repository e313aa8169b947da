"""
Logging configuration for inkwell.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves; the CLI calls configure_logging() once.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

# Third-party loggers that are noisy at INFO.
_QUIET_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore")


def configure_logging(verbose: bool = False, console: Console | None = None) -> None:
    """Route inkwell logs through rich on stderr.

    Args:
        verbose: DEBUG level for inkwell when True, WARNING otherwise.
        console: Console to render into (defaults to a stderr console).
    """
    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=verbose,
    )
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    logger = logging.getLogger("inkwell")
    logger.handlers[:] = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.ERROR)

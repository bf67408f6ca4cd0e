"""Logging setup for cache_dance.

Modules log through ``logging.getLogger(__name__)``. Transfer code takes an
explicit :class:`TransferLogger` handle instead, which carries the group
stack (for example ``extract/var-cache-apt-x1y2z3w4``) so interleaved
output from concurrent jobs stays attributable.

Outside CI, records go to stderr through rich. Inside GitHub Actions they
are rendered as workflow commands so warnings and errors show up as
annotations.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any, TextIO

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_LOGGER = "cache_dance"
VERBOSE_PREFIX = "[verbose] "

_HANDLER_MARKER = "_cache_dance_handler"

# Workflow command per level; INFO and below are printed as plain lines
_ACTIONS_COMMANDS = {
    logging.WARNING: "warning",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def is_actions_runtime() -> bool:
    """Return True when running inside a GitHub Actions job."""
    return os.environ.get("GITHUB_ACTIONS") == "true"


def escape_workflow_data(message: str) -> str:
    """Escape a message for use in a workflow command."""
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class ActionsFormatter(logging.Formatter):
    """Render records as GitHub Actions workflow commands."""

    def __init__(self) -> None:
        super().__init__("%(message)s")

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        if record.levelno <= logging.DEBUG:
            return f"{VERBOSE_PREFIX}{message}"
        command = _ACTIONS_COMMANDS.get(record.levelno)
        if command is None:
            return message
        return f"::{command}::{escape_workflow_data(message)}"


class TransferLogger(logging.LoggerAdapter):  # type: ignore[type-arg]
    """Logger handle passed explicitly through transfer calls.

    Attributes:
        groups: Group names, outermost first, rendered as a message prefix.
    """

    def __init__(self, logger: logging.Logger, groups: tuple[str, ...] = ()) -> None:
        super().__init__(logger, {"groups": groups})
        self.groups = groups

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        if self.groups:
            msg = f"[{'/'.join(self.groups)}] {msg}"
        return msg, kwargs

    def group(self, name: str) -> TransferLogger:
        """Return a child handle with ``name`` pushed on the group stack."""
        return TransferLogger(self.logger, (*self.groups, name))

    def verbose(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log detail that is only shown with --verbose."""
        self.debug(msg, *args, **kwargs)


def get_transfer_logger(name: str = PACKAGE_LOGGER) -> TransferLogger:
    """Create a root transfer logger handle with an empty group stack."""
    return TransferLogger(logging.getLogger(name))


def configure_logging(
    level: str = "INFO",
    verbose: bool = False,
    stream: TextIO | None = None,
) -> logging.Handler:
    """Install the cache_dance log handler.

    Calling this again replaces the handler installed previously.

    Args:
        level: Log level name used when not verbose.
        verbose: Lower the level to DEBUG.
        stream: Output stream (defaults to stderr, or stdout in Actions).

    Returns:
        The installed handler.
    """
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            package_logger.removeHandler(existing)

    handler: logging.Handler
    if is_actions_runtime():
        handler = logging.StreamHandler(stream or sys.stdout)
        handler.setFormatter(ActionsFormatter())
    else:
        handler = RichHandler(
            console=Console(file=stream or sys.stderr),
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )
    setattr(handler, _HANDLER_MARKER, True)

    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else level.upper())

    if verbose:
        package_logger.debug("Verbose logging enabled")
    return handler


@contextmanager
def log_group(
    name: str,
    log: TransferLogger | None = None,
    stream: TextIO | None = None,
) -> Iterator[TransferLogger]:
    """Group log output for one phase.

    In GitHub Actions this emits ``::group::``/``::endgroup::`` markers and
    the runner folds the output. Elsewhere the group name becomes part of
    the message prefix.
    """
    base = log or get_transfer_logger()
    if not is_actions_runtime():
        yield base.group(name)
        return

    out = stream or sys.stdout
    out.write(f"::group::{escape_workflow_data(name)}\n")
    out.flush()
    try:
        yield base
    finally:
        out.write("::endgroup::\n")
        out.flush()


__all__ = [
    "ActionsFormatter",
    "TransferLogger",
    "configure_logging",
    "escape_workflow_data",
    "get_transfer_logger",
    "is_actions_runtime",
    "log_group",
]

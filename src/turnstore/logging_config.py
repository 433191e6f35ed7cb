"""structlog configuration.

Set TURNSTORE_DEBUG=1 to see debug events (every append, read and flush).
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

ENV_DEBUG = "TURNSTORE_DEBUG"

_configured = False


def _stderr_logger(*args) -> structlog.PrintLogger:
    # sys.stderr is looked up per logger so redirected streams are honored
    return structlog.PrintLogger(sys.stderr)


def is_debug_enabled() -> bool:
    return os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes", "on")


def configure_logging(level: int | None = None, force: bool = False) -> None:
    """Configure structlog to render to stderr.

    Args:
        level: Minimum stdlib log level. Defaults to DEBUG when
            TURNSTORE_DEBUG is set, WARNING otherwise.
        force: Reconfigure even if already configured.
    """
    global _configured
    if _configured and not force:
        return

    if level is None:
        level = logging.DEBUG if is_debug_enabled() else logging.WARNING

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger(name)

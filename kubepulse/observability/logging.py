"""Structured logging configuration using structlog.

Two renderers are supported: ``json`` for machine consumption (the default
when running as a server) and ``console`` for interactive use from a
terminal.  Per-request context such as the namespace under inspection is
carried through :mod:`structlog.contextvars` so every log line emitted while
an aggregation runs is tagged with it.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import cast

import structlog
from structlog.typing import FilteringBoundLogger, Processor

_LOG_FORMATS: frozenset[str] = frozenset({"json", "console"})


def setup_logging(level: str = "info", fmt: str = "json") -> None:
    """Configure structlog output to stderr.

    Args:
        level: Minimum level name (``debug``, ``info``, ``warning``, ``error``).
        fmt: ``json`` or ``console``.  Unknown values fall back to ``json``.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    renderer: Processor = (
        structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> FilteringBoundLogger:
    """Get a logger bound with a component name."""
    return cast(FilteringBoundLogger, structlog.get_logger(component=component))


@contextmanager
def namespace_context(namespace: str, operation: str) -> Iterator[None]:
    """Bind ``namespace`` and ``operation`` to every log line in the block."""
    with structlog.contextvars.bound_contextvars(namespace=namespace, operation=operation):
        yield


def is_valid_format(fmt: str) -> bool:
    """Return True if *fmt* names a supported renderer."""
    return fmt in _LOG_FORMATS

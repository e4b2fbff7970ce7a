"""structlog setup for watchcache-exporter.

One JSON object per line on stderr, keyed ``ts`` in UTC.  Every module binds
its own ``component`` (``reconciler``, ``collector.endpoints_watcher``, ...)
so the discrepancy warnings can be filtered per source.  Tracebacks from the
reconciler loop's ``_log.exception`` are rendered inline.
"""

from __future__ import annotations

import logging
import sys

import structlog


def setup_logging(level: str = "info") -> None:
    """Configure structlog once at startup; unknown levels fall back to info."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Logger for app-level events, e.g. ``get_logger("app")``."""
    return structlog.get_logger(component=component)  # type: ignore[return-value]

"""Observability module for logging."""

from activity_digest.observability.logging import (
    bind_run_context,
    clear_run_context,
    configure_logging,
    get_logger,
    level_from_name,
)


__all__ = [
    "bind_run_context",
    "clear_run_context",
    "configure_logging",
    "get_logger",
    "level_from_name",
]

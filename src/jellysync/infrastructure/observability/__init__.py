"""Observability: logging configuration and log helpers."""

from .logger_template import log_operation
from .logging import (
    CorrelationIdFilter,
    configure_logging,
    get_correlation_id,
    set_correlation_id,
)
from .sync_log import format_error, format_sync_log_line, redact_sensitive

__all__ = [
    "CorrelationIdFilter",
    "configure_logging",
    "format_error",
    "format_sync_log_line",
    "get_correlation_id",
    "log_operation",
    "redact_sensitive",
    "set_correlation_id",
]

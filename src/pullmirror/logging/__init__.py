"""Logging module for pullmirror.

This module provides structured logging with:
- structlog configuration for consistent log formatting
- Secret redaction for GitHub tokens and authorization headers
- Structured log events for rate limits and sync outcomes

Usage:
    from pullmirror.logging import configure_logging, log_sync_record

    configure_logging(verbose=True)
    log_sync_record("sync-1", "checks", pr_id, True, 120.0)
"""

from pullmirror.logging.structured import (
    configure_logging,
    get_logger,
    log_detail_sync,
    log_rate_limit,
    log_sync_record,
    redact_secrets,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "log_detail_sync",
    "log_rate_limit",
    "log_sync_record",
    "redact_secrets",
]

"""Structured logging for the sync engine.

This module provides:
- structlog configuration for JSON or console logging to stderr
- Secret redaction for GitHub tokens and authorization values
- Structured log events for rate limits, background syncs and detail syncs
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Callable

    from structlog.typing import EventDict, WrappedLogger

# Patterns for secret redaction
SECRET_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # GitHub tokens (ghp_, gho_, ghu_, ghs_, ghr_ prefixes)
    (re.compile(r"(gh[pousr]_[A-Za-z0-9_]{36,})"), "[REDACTED_GITHUB_TOKEN]"),
    # Fine-grained personal access tokens
    (re.compile(r"(github_pat_[A-Za-z0-9_]{22,})"), "[REDACTED_GITHUB_TOKEN]"),
    # Generic tokens that look like they might be sensitive
    (re.compile(r"(token[=:]\s*['\"]?)([A-Za-z0-9_-]{20,})"), r"\1[REDACTED]"),
    # Bearer tokens in headers
    (re.compile(r"(Bearer\s+)([A-Za-z0-9._-]+)", re.IGNORECASE), r"\1[REDACTED]"),
    # Authorization headers
    (re.compile(r"(authorization[=:]\s*['\"]?)([^\s'\"]+)", re.IGNORECASE), r"\1[REDACTED]"),
]


def redact_secrets(value: Any) -> Any:
    """Redact sensitive values from a string, dict, or list.

    Args:
        value: Value to redact. Can be str, dict, list, or other.

    Returns:
        Value with sensitive data redacted
    """
    if isinstance(value, str):
        result = value
        for pattern, replacement in SECRET_PATTERNS:
            result = pattern.sub(replacement, result)
        return result

    if isinstance(value, dict):
        return {k: redact_secrets(v) for k, v in value.items()}

    if isinstance(value, list):
        return [redact_secrets(item) for item in value]

    return value


def _redact_processor(
    _logger: WrappedLogger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """structlog processor that redacts secrets from log events."""
    return redact_secrets(event_dict)


def configure_logging(
    verbose: bool = False,
    json_output: bool = True,
) -> None:
    """Configure structured logging for the application.

    Sets up stdlib logging (used by library modules) and structlog
    (used by the CLI and the event helpers below), both writing to stderr.

    Args:
        verbose: If True, enable DEBUG level. Otherwise INFO.
        json_output: If True, output JSON. Otherwise use console format.
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        level=level,
    )

    processors: list[Callable[..., Any]] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _redact_processor,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a configured structlog logger.

    Args:
        name: Optional logger name (typically __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


# Structured log event helpers


def log_rate_limit(
    budget: str,
    remaining: int,
    limit: int,
    reset_at: str,
    pausing: bool = False,
) -> None:
    """Log rate limit status.

    Args:
        budget: Quota budget name ('bulk' or 'resource')
        remaining: Remaining API calls
        limit: Total API call limit
        reset_at: ISO timestamp when limit resets
        pausing: Whether requests are pausing due to low quota
    """
    log = get_logger("pullmirror.ratelimit")

    if pausing:
        log.warning(
            "rate_limit_pause",
            budget=budget,
            remaining=remaining,
            limit=limit,
            reset_at=reset_at,
            message=f"Pausing until {reset_at} (remaining: {remaining}/{limit})",
        )
    else:
        log.debug(
            "rate_limit_check",
            budget=budget,
            remaining=remaining,
            limit=limit,
            reset_at=reset_at,
        )


def log_sync_record(
    record_id: str,
    resource_type: str,
    resource_id: str,
    success: bool,
    duration_ms: float,
    error: str | None = None,
) -> None:
    """Log one background sync of a pull request.

    Args:
        record_id: Sync record identifier (e.g. 'sync-12')
        resource_type: Resource kind that was synced
        resource_id: Pull request id
        success: Whether the sync succeeded
        duration_ms: Sync duration in milliseconds
        error: Error message if failed
    """
    log = get_logger("pullmirror.sync")

    log_func = log.info if success else log.warning

    log_func(
        "background_sync",
        record_id=record_id,
        resource_type=resource_type,
        resource_id=resource_id,
        success=success,
        duration_ms=round(duration_ms, 2),
        error=error,
    )


def log_detail_sync(
    pull_request_id: str,
    success: bool,
    errors: list[str],
    duration_ms: float,
) -> None:
    """Log completion of a full detail sync.

    Args:
        pull_request_id: Pull request that was synced
        success: True when every resource kind synced
        errors: Per-kind error messages
        duration_ms: Total duration in milliseconds
    """
    log = get_logger("pullmirror.details")
    log_func = log.info if success else log.warning
    log_func(
        "detail_sync_complete",
        pull_request_id=pull_request_id,
        success=success,
        errors=errors,
        duration_ms=round(duration_ms, 2),
    )

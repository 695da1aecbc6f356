# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""Exception hierarchy and the process-wide unexpected-error observer.

Telemetry must never break the host application, so almost nothing here is
raised to callers. Failures are wrapped in one of the types below and handed to
`on_unexpected_error`, which logs them and notifies the installed handler.
"""

from __future__ import annotations

import logging

from collections.abc import Callable
from typing import Any


logger = logging.getLogger(__name__)

type UnexpectedErrorHandler = Callable[[BaseException], None]


class TelemetryAppenderError(Exception):
    """Base exception for all telemetry-appender errors.

    Provides structured error information including details and suggestions
    for resolution.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        suggestions: list[str] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message
            details: Additional context about the error
            suggestions: Actionable suggestions for resolving the error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []

    def __str__(self) -> str:
        """Return the message followed by any details."""
        if not self.details:
            return self.message
        detail_parts = ", ".join(f"{key}: {value}" for key, value in self.details.items())
        return f"{self.message} ({detail_parts})"


class ConfigurationError(TelemetryAppenderError):
    """Configuration and settings errors.

    Raised when settings fail validation, for example an unusable event name prefix.
    """


class EnrichmentError(TelemetryAppenderError):
    """Identity enrichment errors.

    Reported (never raised) when a platform identity lookup fails. The property
    it would have produced is left out of the common data.
    """


class DeliveryError(TelemetryAppenderError):
    """Backend delivery errors.

    Reported (never raised) when a backend client fails to accept or dispose an event.
    """


class PersistenceError(TelemetryAppenderError):
    """Session store persistence errors.

    Reported when the durable session store can't be read or written.
    """


def _log_only(error: BaseException) -> None:
    """Default handler. Logging already happened in `on_unexpected_error`."""


_handler: UnexpectedErrorHandler = _log_only


def set_unexpected_error_handler(handler: UnexpectedErrorHandler | None) -> UnexpectedErrorHandler:
    """Install the process-wide unexpected-error handler.

    Args:
        handler: Callable receiving every reported error, or None to restore the default

    Returns:
        The previously installed handler
    """
    global _handler
    previous = _handler
    _handler = handler or _log_only
    return previous


def on_unexpected_error(error: BaseException) -> None:
    """Report an error that must not propagate to the caller.

    The error is logged with its traceback and passed to the installed handler.
    A handler that raises is logged and otherwise ignored.
    """
    logger.error("Unexpected telemetry error: %s", error, exc_info=error)
    try:
        _handler(error)
    except Exception:
        logger.exception("Unexpected-error handler failed")


__all__ = (
    "ConfigurationError",
    "DeliveryError",
    "EnrichmentError",
    "PersistenceError",
    "TelemetryAppenderError",
    "UnexpectedErrorHandler",
    "on_unexpected_error",
    "set_unexpected_error_handler",
)

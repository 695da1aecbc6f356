# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""telemetry-appender: session-aware telemetry enrichment and fan-out."""

from telemetry_appender._version import __version__
from telemetry_appender.config import AppenderSettings, get_settings, reset_settings
from telemetry_appender.core import (
    HostFacts,
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionStore,
    StorageKeys,
)
from telemetry_appender.exceptions import (
    ConfigurationError,
    DeliveryError,
    EnrichmentError,
    PersistenceError,
    TelemetryAppenderError,
    on_unexpected_error,
    set_unexpected_error_handler,
)
from telemetry_appender.telemetry import BackendClient, PostHogBackendClient, TelemetryAppender


__all__ = (
    "AppenderSettings",
    "BackendClient",
    "ConfigurationError",
    "DeliveryError",
    "EnrichmentError",
    "HostFacts",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "PersistenceError",
    "PostHogBackendClient",
    "SessionStore",
    "StorageKeys",
    "TelemetryAppender",
    "TelemetryAppenderError",
    "__version__",
    "get_settings",
    "on_unexpected_error",
    "reset_settings",
    "set_unexpected_error_handler",
)

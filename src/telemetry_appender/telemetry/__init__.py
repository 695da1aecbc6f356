# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""
Telemetry fan-out.

Key Principles:
- Every event carries the common session and host data
- Each configured backend gets every event, independently
- Fail-safe (errors are reported, never raised to the caller)

Example:
    >>> from telemetry_appender.telemetry import TelemetryAppender
    >>> appender = TelemetryAppender(store)
    >>> appender.log("session_start")
"""

from __future__ import annotations

from telemetry_appender.telemetry.appender import COMMON_PREFIX, AppenderState, TelemetryAppender
from telemetry_appender.telemetry.client import BackendClient, ClientFactory, PostHogBackendClient


__all__ = (
    "COMMON_PREFIX",
    "AppenderState",
    "BackendClient",
    "ClientFactory",
    "PostHogBackendClient",
    "TelemetryAppender",
)

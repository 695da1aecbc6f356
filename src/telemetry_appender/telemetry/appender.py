# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""
Telemetry appender: enriches events with common data and fans them out.

The appender owns one backend client per configured route ("primary",
"alternate") and the common data produced by the identity enricher. Logging
never raises and never blocks on identity lookups; a failing client is
reported and skipped while the others still receive the event.
"""

from __future__ import annotations

import logging

from collections.abc import Mapping
from enum import StrEnum
from types import MappingProxyType, TracebackType
from typing import Any, ClassVar, Self

from telemetry_appender.config.settings import (
    DEFAULT_EVENT_NAME_PREFIX,
    AppenderSettings,
    RouteName,
    get_settings,
)
from telemetry_appender.core.identity import (
    CommonData,
    HostFacts,
    IdentityEnricher,
    IdentitySource,
    Metric,
    NullIdentitySource,
)
from telemetry_appender.core.storage import SessionStore
from telemetry_appender.exceptions import DeliveryError, on_unexpected_error
from telemetry_appender.telemetry.client import (
    BackendClient,
    ClientFactory,
    PostHogBackendClient,
)


logger = logging.getLogger(__name__)

COMMON_PREFIX = "common."


class AppenderState(StrEnum):
    """Lifecycle of a `TelemetryAppender`."""

    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    DISPOSED = "disposed"


class TelemetryAppender:
    """
    Fans telemetry events out to every configured backend client.

    Construction builds one client per non-empty route key and runs identity
    enrichment once. Platform identity lookups may still be pending when the
    constructor returns; events logged before they resolve go out without
    those properties.

    Example:
        >>> appender = TelemetryAppender(JsonFileSessionStore("session.json"))
        >>> appender.log("startup", {"title": "welcome"})
        >>> appender.dispose()
    """

    EVENT_NAME_PREFIX: ClassVar[str] = DEFAULT_EVENT_NAME_PREFIX

    def __init__(
        self,
        store: SessionStore,
        settings: AppenderSettings | None = None,
        *,
        client_factory: ClientFactory | None = None,
        identity_source: IdentitySource | None = None,
        host_facts: HostFacts | None = None,
    ) -> None:
        """
        Initialize the appender.

        Args:
            store: Session store used for session bookkeeping and identity caching
            settings: Appender settings (defaults to the cached global settings)
            client_factory: Builds a backend client from `(prefix, key)`; defaults to PostHog
            identity_source: Platform identity strategy; resolved for this platform if omitted
            host_facts: Precomputed host facts; detected if omitted
        """
        self.settings = settings or get_settings()
        self._state = AppenderState.UNINITIALIZED
        self._clients: list[tuple[RouteName, BackendClient]] = []

        if self.settings.telemetry_enabled:
            factory = client_factory or PostHogBackendClient.factory(
                host=self.settings.posthog_host, distinct_id=self.settings.distinct_id
            )
            self._build_clients(factory)
        else:
            logger.info("Telemetry disabled by configuration")

        if not self.settings.telemetry_enabled:
            # opted out: keep session bookkeeping, never read machine identifiers
            identity_source = NullIdentitySource()
        self._enricher = IdentityEnricher(
            store,
            identity_source,
            refresh_cached_identity=self.settings.refresh_cached_identity,
        )
        self._common: CommonData = self._enricher.initialize(
            host_facts or HostFacts.detect(self.settings.app_version)
        )
        self._state = AppenderState.ACTIVE

    def _build_clients(self, factory: ClientFactory) -> None:
        prefix = self.settings.event_name_prefix
        for route, key in self.settings.route_keys():
            try:
                client = factory(prefix, key)
            except Exception as e:
                on_unexpected_error(
                    DeliveryError(
                        "Failed to create backend client",
                        details={"route": route, "reason": str(e)},
                    )
                )
                continue
            self._clients.append((route, client))
            logger.debug("Telemetry route '%s' enabled", route)

    @property
    def state(self) -> AppenderState:
        return self._state

    @property
    def routes(self) -> tuple[RouteName, ...]:
        """Names of the routes with a live client."""
        return tuple(route for route, _ in self._clients)

    @property
    def common_properties(self) -> Mapping[str, str]:
        return MappingProxyType(self._common.snapshot()[0])

    @property
    def common_metrics(self) -> Mapping[str, Metric]:
        return MappingProxyType(self._common.snapshot()[1])

    def log(self, event_name: str, data: Mapping[str, Any] | None = None) -> None:
        """
        Send an event to every live backend client.

        Args:
            event_name: Event name, without the prefix
            data: Optional caller properties and measurements; not modified

        Note:
            This method never raises. Client failures are reported to the
            unexpected-error observer and the remaining clients still get the event.
        """
        if self._state is AppenderState.DISPOSED:
            logger.debug("Appender disposed, dropping event: %s", event_name)
            return
        try:
            event_data = self._with_common_data(data)
        except Exception as e:
            on_unexpected_error(
                DeliveryError(
                    "Failed to build telemetry event",
                    details={"event": event_name, "reason": str(e)},
                )
            )
            return

        for route, client in tuple(self._clients):
            try:
                client.log(event_name, dict(event_data))
            except Exception as e:
                on_unexpected_error(
                    DeliveryError(
                        "Backend client failed to log event",
                        details={"route": route, "event": event_name, "reason": str(e)},
                    )
                )

    def _with_common_data(self, data: Mapping[str, Any] | None) -> dict[str, Any]:
        event_data: dict[str, Any] = dict(data or {})
        properties, metrics = self._common.snapshot()
        for key, value in metrics.items():
            event_data[f"{COMMON_PREFIX}{key}"] = value
        for key, value in properties.items():
            event_data[f"{COMMON_PREFIX}{key}"] = value
        return event_data

    def dispose(self) -> None:
        """
        Dispose every backend client once and stop accepting events.

        Safe to call more than once. Pending identity lookups are not awaited.
        """
        if self._state is AppenderState.DISPOSED:
            return
        self._state = AppenderState.DISPOSED
        clients, self._clients = self._clients, []

        disposed: set[int] = set()
        for route, client in clients:
            if id(client) in disposed:
                continue
            disposed.add(id(client))
            try:
                client.dispose()
            except Exception as e:
                on_unexpected_error(
                    DeliveryError(
                        "Backend client failed to dispose",
                        details={"route": route, "reason": str(e)},
                    )
                )
        try:
            self._enricher.close()
        except Exception:
            logger.exception("Failed to release identity source")

    def __enter__(self) -> Self:
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Context manager exit with automatic dispose."""
        self.dispose()


__all__ = ("COMMON_PREFIX", "AppenderState", "TelemetryAppender")

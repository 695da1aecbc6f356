# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""
Backend clients: the sinks an appender fans events out to.

A backend client is built from an event-name prefix and an opaque connection
key. The appender only relies on `log` and `dispose`; the default
implementation wraps the PostHog Python client.
"""

from __future__ import annotations

import logging

from collections.abc import Callable
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

from posthog import Posthog


logger = logging.getLogger(__name__)


@runtime_checkable
class BackendClient(Protocol):
    """Sink accepting `(event_name, data)` pairs."""

    def log(self, event_name: str, data: dict[str, Any]) -> None: ...

    def dispose(self) -> None: ...


type ClientFactory = Callable[[str, str], BackendClient]
"""Builds a client from `(event_name_prefix, key)`."""


class PostHogBackendClient:
    """
    PostHog-backed telemetry client.

    Events are captured as `<prefix>/<event_name>`.

    Example:
        >>> client = PostHogBackendClient("monacoworkbench", "phc_project_key")
        >>> client.log("startup", {"common.isNewSession": 1})
        >>> client.dispose()
    """

    def __init__(
        self,
        event_name_prefix: str,
        key: str,
        *,
        host: str = "https://app.posthog.com",
        distinct_id: str = "anonymous",
    ) -> None:
        """
        Initialize PostHog client.

        Args:
            event_name_prefix: Namespace prepended to every event name
            key: PostHog project key
            host: PostHog host URL
            distinct_id: Identifier attached to every captured event
        """
        self.event_name_prefix = event_name_prefix
        self.distinct_id = distinct_id
        self._client: Posthog | None = Posthog(
            project_api_key=key,
            host=host,
            # Disable debug mode in production
            debug=False,
        )
        logger.debug("PostHog backend client initialized for %s", host)

    @classmethod
    def factory(
        cls, *, host: str = "https://app.posthog.com", distinct_id: str = "anonymous"
    ) -> ClientFactory:
        """Return a `ClientFactory` building clients against `host`."""

        def build(event_name_prefix: str, key: str) -> BackendClient:
            return cls(event_name_prefix, key, host=host, distinct_id=distinct_id)

        return build

    def log(self, event_name: str, data: dict[str, Any]) -> None:
        """
        Capture an event.

        Raises whatever the PostHog client raises; the appender isolates failures.
        """
        if self._client is None:
            logger.debug("Client disposed, skipping event: %s", event_name)
            return
        _ = self._client.capture(
            distinct_id=self.distinct_id,
            event=f"{self.event_name_prefix}/{event_name}",
            properties=data,
        )

    def dispose(self) -> None:
        """Flush pending events and close the client. Safe to call more than once."""
        client, self._client = self._client, None
        if client is None:
            return
        client.flush()
        client.shutdown()
        logger.debug("PostHog backend client shut down")

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


__all__ = ("BackendClient", "ClientFactory", "PostHogBackendClient")

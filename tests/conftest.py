# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Global pytest configuration and fixtures for telemetry-appender tests."""

from __future__ import annotations

from collections.abc import Iterator
from concurrent.futures import Future
from pathlib import Path
from typing import Any

import pytest

from telemetry_appender.core.identity import IdentityField
from telemetry_appender.exceptions import set_unexpected_error_handler


# ===========================================================================
# *                    Test Doubles
# ===========================================================================


class RecordingClient:
    """Backend client double that records `(prefixed_name, data)` pairs."""

    def __init__(self, prefix: str, key: str = "") -> None:
        self.prefix = prefix
        self.key = key
        self.events: list[tuple[str, dict[str, Any]]] = []
        self.dispose_calls = 0

    def log(self, event_name: str, data: dict[str, Any]) -> None:
        self.events.append((f"{self.prefix}/{event_name}", data))

    def dispose(self) -> None:
        self.dispose_calls += 1


class RecordingFactory:
    """`ClientFactory` that builds a fresh `RecordingClient` per route."""

    def __init__(self) -> None:
        self.clients: list[RecordingClient] = []

    def __call__(self, prefix: str, key: str) -> RecordingClient:
        client = RecordingClient(prefix, key)
        self.clients.append(client)
        return client


class ManualIdentitySource:
    """Identity source whose lookups stay pending until a test resolves them."""

    available = True

    def __init__(self) -> None:
        self.lookups: dict[IdentityField, Future[str | None]] = {}
        self.closed = False

    def lookup(self, identity: IdentityField) -> Future[str | None]:
        future: Future[str | None] = Future()
        self.lookups[identity] = future
        return future

    def resolve(self, identity: IdentityField, value: str | None) -> None:
        self.lookups[identity].set_result(value)

    def fail(self, identity: IdentityField, error: BaseException) -> None:
        self.lookups[identity].set_exception(error)

    def close(self) -> None:
        self.closed = True


# ===========================================================================
# *                    Fixtures
# ===========================================================================


@pytest.fixture(autouse=True)
def isolated_test_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Ensure all tests run in an isolated environment.

    - Sets a temporary HOME and working directory (no stray `.env` files)
    - Clears TELEMETRY_APPENDER_* environment variables
    - Resets cached settings between tests
    """
    import os

    from telemetry_appender.config.settings import reset_settings

    fake_home = tmp_path / "home"
    fake_home.mkdir(exist_ok=True)
    monkeypatch.setenv("HOME", str(fake_home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(fake_home / ".config"))
    monkeypatch.chdir(tmp_path)
    for name in list(os.environ):
        if name.upper().startswith("TELEMETRY_APPENDER_"):
            monkeypatch.delenv(name)

    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def reported_errors() -> Iterator[list[BaseException]]:
    """Collect everything passed to the unexpected-error observer."""
    errors: list[BaseException] = []
    previous = set_unexpected_error_handler(errors.append)
    yield errors
    set_unexpected_error_handler(previous)


@pytest.fixture
def recording_client() -> RecordingClient:
    """A single client shared by every route, like one mock handed to both."""
    from telemetry_appender.telemetry import TelemetryAppender

    return RecordingClient(TelemetryAppender.EVENT_NAME_PREFIX)


@pytest.fixture
def recording_factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def identity_source() -> ManualIdentitySource:
    return ManualIdentitySource()

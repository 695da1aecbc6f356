# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""
Identity enrichment for telemetry events.

Builds the common properties and metrics merged into every event:
- Host facts (application version, Python runtime version, OS release)
- Session bookkeeping (first session date, last session date, new-session flag)
- Platform identities read from the Windows SQM registry key

Platform identities are best-effort. A registry read runs on a worker thread
and only adds its property once it resolves, so events logged before that
simply don't carry it. Failed or empty reads leave the property out.
"""

from __future__ import annotations

import logging
import platform
import sys
import threading

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import format_datetime
from enum import StrEnum
from functools import partial
from typing import Final, Protocol, runtime_checkable

from telemetry_appender.core.storage import SessionStore, StorageKeys
from telemetry_appender.exceptions import (
    EnrichmentError,
    PersistenceError,
    on_unexpected_error,
)


if sys.platform == "win32":
    import winreg
else:
    winreg = None  # type: ignore[assignment]


logger = logging.getLogger(__name__)

type Metric = int | float


def format_session_date(moment: datetime) -> str:
    """Format a timestamp the way session dates are stored (RFC 1123, GMT)."""
    return format_datetime(moment.astimezone(UTC), usegmt=True)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _safe_fact(getter: Callable[[], str]) -> str | None:
    try:
        return getter() or None
    except Exception:
        logger.debug("Host fact unavailable", exc_info=True)
        return None


@dataclass(frozen=True, slots=True)
class HostFacts:
    """Synchronous host facts, computed once at startup."""

    shell_version: str | None = None
    runtime_version: str | None = None
    os_release: str | None = None

    @classmethod
    def detect(cls, app_version: str | None = None) -> HostFacts:
        """Gather host facts. Missing facts are None; never raises."""
        return cls(
            shell_version=app_version or None,
            runtime_version=_safe_fact(platform.python_version),
            os_release=_safe_fact(platform.release),
        )


@dataclass(slots=True)
class CommonData:
    """Properties and metrics merged into every event.

    After construction only additive merges are allowed: `add_property` never
    replaces an existing key.
    """

    properties: dict[str, str] = field(default_factory=dict)
    metrics: dict[str, Metric] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add_property(self, key: str, value: str) -> bool:
        """Add a property unless the key is already present. Returns True when added."""
        with self._lock:
            if key in self.properties:
                return False
            self.properties[key] = value
            return True

    def snapshot(self) -> tuple[dict[str, str], dict[str, Metric]]:
        """Return copies of the current properties and metrics."""
        with self._lock:
            return dict(self.properties), dict(self.metrics)


class IdentityField(StrEnum):
    """Platform identity values, named after their registry value names."""

    USER_ID = "UserId"
    MACHINE_ID = "MachineId"

    @property
    def property_name(self) -> str:
        return "sqm.userid" if self is IdentityField.USER_ID else "sqm.machineid"

    @property
    def storage_key(self) -> str:
        return (
            StorageKeys.SQM_USER_ID if self is IdentityField.USER_ID else StorageKeys.SQM_MACHINE_ID
        )


@runtime_checkable
class IdentitySource(Protocol):
    """Strategy for reading platform identities."""

    available: bool

    def lookup(self, identity: IdentityField) -> Future[str | None]: ...

    def close(self) -> None: ...


def _resolved(value: str | None) -> Future[str | None]:
    future: Future[str | None] = Future()
    future.set_result(value)
    return future


class NullIdentitySource:
    """Identity source for platforms without an identity registry."""

    available = False

    def lookup(self, identity: IdentityField) -> Future[str | None]:
        return _resolved(None)

    def close(self) -> None:
        return None


class WindowsRegistryIdentitySource:
    """Reads SQM identities from the Windows registry on a worker thread.

    `UserId` comes from HKEY_CURRENT_USER, `MachineId` from HKEY_LOCAL_MACHINE.
    """

    SQM_KEY: Final[str] = r"Software\Microsoft\SQMClient"

    available = True

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry-identity")

    def lookup(self, identity: IdentityField) -> Future[str | None]:
        try:
            return self._executor.submit(self._read, identity)
        except RuntimeError:
            # executor already shut down
            return _resolved(None)

    def _read(self, identity: IdentityField) -> str | None:
        hive = (
            winreg.HKEY_CURRENT_USER
            if identity is IdentityField.USER_ID
            else winreg.HKEY_LOCAL_MACHINE
        )
        try:
            with winreg.OpenKey(hive, self.SQM_KEY) as key:
                value, _ = winreg.QueryValueEx(key, identity.value)
        except OSError as e:
            on_unexpected_error(
                EnrichmentError(
                    "Failed to read platform identity",
                    details={"identity": identity.value, "reason": str(e)},
                )
            )
            return None
        return str(value) if value else None

    def close(self) -> None:
        """Release the worker without waiting for reads in flight."""
        self._executor.shutdown(wait=False, cancel_futures=True)


def resolve_identity_source() -> IdentitySource:
    """Pick the identity source for this platform. Call once at startup."""
    if winreg is not None:
        return WindowsRegistryIdentitySource()
    return NullIdentitySource()


class IdentityEnricher:
    """
    Derives the common data merged into every telemetry event.

    `initialize` writes session bookkeeping to the store as a side effect and
    must run once per process: a second run would move `lastSessionDate` again.

    Example:
        >>> enricher = IdentityEnricher(InMemorySessionStore(), NullIdentitySource())
        >>> data = enricher.initialize(HostFacts())
        >>> data.metrics["isNewSession"]
        1
    """

    def __init__(
        self,
        store: SessionStore,
        identity_source: IdentitySource | None = None,
        *,
        refresh_cached_identity: bool = False,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._store = store
        self._source = identity_source or resolve_identity_source()
        self._refresh_cached_identity = refresh_cached_identity
        self._clock = clock
        self._pending: list[Future[str | None]] = []
        self._data: CommonData | None = None

    @property
    def pending(self) -> tuple[Future[str | None], ...]:
        """Identity lookups issued by `initialize`."""
        return tuple(self._pending)

    def initialize(self, host_facts: HostFacts) -> CommonData:
        """Build common data from host facts, platform identities and the session store."""
        if self._data is not None:
            logger.warning("Identity enrichment already ran for this process; reusing results")
            return self._data

        data = CommonData()
        if host_facts.shell_version:
            data.properties["version.shell"] = host_facts.shell_version
        if host_facts.runtime_version:
            data.properties["version.runtime"] = host_facts.runtime_version

        if self._source.available:
            for identity in IdentityField:
                self._enrich_identity(data, identity)

        self._record_session(data)

        if host_facts.os_release:
            data.properties["osVersion"] = host_facts.os_release

        self._data = data
        return data

    def _get(self, key: str) -> str | None:
        """Read from the store; a failed read counts as absent."""
        try:
            return self._store.get(key)
        except Exception as e:
            on_unexpected_error(
                PersistenceError(
                    "Failed to read session store", details={"key": key, "reason": str(e)}
                )
            )
            return None

    def _put(self, key: str, value: str) -> None:
        try:
            self._store.store(key, value)
        except Exception as e:
            on_unexpected_error(
                PersistenceError(
                    "Failed to write session store", details={"key": key, "reason": str(e)}
                )
            )

    def _record_session(self, data: CommonData) -> None:
        first_session_date = self._get(StorageKeys.FIRST_SESSION_DATE)
        if not first_session_date:
            first_session_date = format_session_date(self._clock())
            self._put(StorageKeys.FIRST_SESSION_DATE, first_session_date)
        data.properties["firstSessionDate"] = first_session_date

        # read the previous value before it is overwritten below
        last_session_date = self._get(StorageKeys.LAST_SESSION_DATE)
        if not last_session_date:
            data.metrics["isNewSession"] = 1
        else:
            data.metrics["isNewSession"] = 0
            data.properties["lastSessionDate"] = last_session_date

        self._put(StorageKeys.LAST_SESSION_DATE, format_session_date(self._clock()))

    def _enrich_identity(self, data: CommonData, identity: IdentityField) -> None:
        cached = self._get(identity.storage_key)
        if cached:
            data.add_property(identity.property_name, cached)
            if not self._refresh_cached_identity:
                return
        future = self._source.lookup(identity)
        self._pending.append(future)
        future.add_done_callback(partial(self._on_identity_resolved, data, identity, cached))

    def _on_identity_resolved(
        self,
        data: CommonData,
        identity: IdentityField,
        cached: str | None,
        future: Future[str | None],
    ) -> None:
        if future.cancelled():
            return
        try:
            value = future.result()
        except Exception as e:
            on_unexpected_error(
                EnrichmentError(
                    "Platform identity lookup failed",
                    details={"identity": identity.value, "reason": str(e)},
                )
            )
            return
        if not value:
            logger.debug("No platform identity found for %s", identity.value)
            return
        _ = data.add_property(identity.property_name, value)
        if value != cached:
            self._put(identity.storage_key, value)

    def close(self) -> None:
        """Release the identity source. Pending lookups are not awaited."""
        self._source.close()


__all__ = (
    "CommonData",
    "HostFacts",
    "IdentityEnricher",
    "IdentityField",
    "IdentitySource",
    "Metric",
    "NullIdentitySource",
    "WindowsRegistryIdentitySource",
    "format_session_date",
    "resolve_identity_source",
)

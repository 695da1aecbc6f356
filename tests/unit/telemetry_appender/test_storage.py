# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0

"""Tests for the session stores."""

from __future__ import annotations

import json
import threading
import time

from pathlib import Path

import pytest

from telemetry_appender.core.identity import HostFacts, IdentityEnricher, NullIdentitySource
from telemetry_appender.core.storage import (
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionStore,
    StorageKeys,
)
from telemetry_appender.exceptions import PersistenceError


pytestmark = [pytest.mark.unit, pytest.mark.telemetry]


def test_stores_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(InMemorySessionStore(), SessionStore)
    assert isinstance(JsonFileSessionStore(tmp_path / "session.json"), SessionStore)


def test_in_memory_last_write_wins() -> None:
    store = InMemorySessionStore({"a": "1"})

    store.store("a", "2")

    assert store.get("a") == "2"
    assert store.get("missing") is None


class TestJsonFileSessionStore:
    def test_missing_file_is_empty(self, tmp_path: Path, reported_errors) -> None:
        store = JsonFileSessionStore(tmp_path / "session.json")

        assert store.get(StorageKeys.FIRST_SESSION_DATE) is None
        assert reported_errors == []

    def test_survives_restart(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "session.json"
        JsonFileSessionStore(path).store(StorageKeys.SQM_USER_ID, "user-42")

        reopened = JsonFileSessionStore(path)

        assert reopened.get(StorageKeys.SQM_USER_ID) == "user-42"
        assert json.loads(path.read_text()) == {StorageKeys.SQM_USER_ID: "user-42"}

    def test_session_dates_across_processes(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"

        first = IdentityEnricher(JsonFileSessionStore(path), NullIdentitySource()).initialize(
            HostFacts()
        )
        second = IdentityEnricher(JsonFileSessionStore(path), NullIdentitySource()).initialize(
            HostFacts()
        )

        assert first.metrics["isNewSession"] == 1
        assert second.metrics["isNewSession"] == 0
        assert second.properties["firstSessionDate"] == first.properties["firstSessionDate"]
        assert "lastSessionDate" in second.properties

    def test_corrupt_file_is_reported_and_replaced(self, tmp_path: Path, reported_errors) -> None:
        path = tmp_path / "session.json"
        path.write_text("{not json")
        store = JsonFileSessionStore(path)

        assert store.get(StorageKeys.LAST_SESSION_DATE) is None
        assert len(reported_errors) == 1
        assert isinstance(reported_errors[0], PersistenceError)

        store.store(StorageKeys.LAST_SESSION_DATE, "Mon, 19 Oct 2026 09:10:00 GMT")

        assert json.loads(path.read_text()) == {
            StorageKeys.LAST_SESSION_DATE: "Mon, 19 Oct 2026 09:10:00 GMT"
        }

    def test_non_object_root_is_rejected(self, tmp_path: Path, reported_errors) -> None:
        path = tmp_path / "session.json"
        path.write_text('["telemetry.lastSessionDate"]')

        assert JsonFileSessionStore(path).get(StorageKeys.LAST_SESSION_DATE) is None
        assert isinstance(reported_errors[0], PersistenceError)

    def test_write_failure_keeps_value_in_memory(self, tmp_path: Path, reported_errors) -> None:
        path = tmp_path / "session.json"
        path.mkdir()
        store = JsonFileSessionStore(path)

        store.store(StorageKeys.SQM_MACHINE_ID, "machine-7")

        assert store.get(StorageKeys.SQM_MACHINE_ID) == "machine-7"
        # one failed read of the directory, one failed write
        assert len(reported_errors) == 2
        assert reported_errors[-1].details["key"] == StorageKeys.SQM_MACHINE_ID

    def test_concurrent_writers_do_not_lose_updates(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A slow writer on another thread can't overwrite a newer snapshot."""
        path = tmp_path / "session.json"
        store = JsonFileSessionStore(path)
        writing = threading.Event()
        write_bytes = Path.write_bytes

        def slow_write_bytes(self: Path, data: bytes) -> int:
            if threading.current_thread().name == "telemetry-identity-test":
                writing.set()
                time.sleep(0.2)
            return write_bytes(self, data)

        monkeypatch.setattr(Path, "write_bytes", slow_write_bytes)
        worker = threading.Thread(
            target=store.store,
            args=(StorageKeys.SQM_USER_ID, "user-42"),
            name="telemetry-identity-test",
        )
        worker.start()
        assert writing.wait(timeout=5)
        store.store(StorageKeys.LAST_SESSION_DATE, "Mon, 19 Oct 2026 09:10:00 GMT")
        worker.join(timeout=5)

        reopened = JsonFileSessionStore(path)
        assert reopened.get(StorageKeys.SQM_USER_ID) == "user-42"
        assert reopened.get(StorageKeys.LAST_SESSION_DATE) == "Mon, 19 Oct 2026 09:10:00 GMT"

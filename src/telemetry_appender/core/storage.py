# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""Session stores: durable key/value storage surviving process restarts.

The appender only needs `get` and `store`. Anything implementing
`SessionStore` can be passed in; the host process usually shares one store
between several subsystems.
"""

from __future__ import annotations

import logging
import threading

from collections.abc import Mapping
from pathlib import Path
from typing import Final, Protocol, runtime_checkable

from pydantic_core import from_json, to_json

from telemetry_appender.exceptions import PersistenceError, on_unexpected_error


logger = logging.getLogger(__name__)


class StorageKeys:
    """Keys owned exclusively by telemetry."""

    SQM_USER_ID: Final[str] = "telemetry.sqm.userId"
    SQM_MACHINE_ID: Final[str] = "telemetry.sqm.machineId"
    LAST_SESSION_DATE: Final[str] = "telemetry.lastSessionDate"
    FIRST_SESSION_DATE: Final[str] = "telemetry.firstSessionDate"


@runtime_checkable
class SessionStore(Protocol):
    """Durable key/value store. Last write wins."""

    def get(self, key: str) -> str | None: ...

    def store(self, key: str, value: str) -> None: ...


class InMemorySessionStore:
    """Dict-backed store. Useful for tests and short-lived processes."""

    def __init__(self, initial: Mapping[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def store(self, key: str, value: str) -> None:
        self._values[key] = value

    def as_dict(self) -> dict[str, str]:
        """Return a copy of everything stored."""
        return dict(self._values)


class JsonFileSessionStore:
    """Session store persisted as a flat JSON object on disk.

    The file is read on first access and rewritten on every `store`. A corrupt
    or unreadable file is reported and treated as empty; a failed write is
    reported and the value stays available in memory for this process.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._values: dict[str, str] | None = None
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if self._values is not None:
            return self._values
        self._values = {}
        if not self.path.exists():
            logger.debug("No session store found at %s", self.path)
            return self._values
        try:
            data = from_json(self.path.read_bytes())
            if not isinstance(data, dict):
                raise ValueError("session store root must be a JSON object")
        except (OSError, ValueError) as e:
            on_unexpected_error(
                PersistenceError(
                    "Failed to read session store",
                    details={"path": str(self.path), "reason": str(e)},
                )
            )
        else:
            self._values = {str(k): str(v) for k, v in data.items()}
        return self._values

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._load().get(key)

    def store(self, key: str, value: str) -> None:
        with self._lock:
            values = self._load()
            values[key] = value
            # writes stay ordered with the in-memory updates
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                _ = self.path.write_bytes(to_json(values, indent=2))
            except OSError as e:
                on_unexpected_error(
                    PersistenceError(
                        "Failed to write session store",
                        details={"path": str(self.path), "key": key, "reason": str(e)},
                    )
                )


__all__ = ("InMemorySessionStore", "JsonFileSessionStore", "SessionStore", "StorageKeys")

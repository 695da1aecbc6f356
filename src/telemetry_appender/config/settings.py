# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""
Telemetry appender configuration settings.

Configuration sources (priority order):
1. Explicit keyword arguments (highest priority)
2. Environment variable
3. `.env` file
4. Field default

Environment Variables:
    TELEMETRY_APPENDER_TELEMETRY_ENABLED: Enable/disable all backend clients (default: true)
    TELEMETRY_APPENDER_PRIMARY_KEY: Connection key for the primary backend
    TELEMETRY_APPENDER_ALTERNATE_KEY: Connection key for the alternate backend
    TELEMETRY_APPENDER_EVENT_NAME_PREFIX: Prefix for every event name (default: monacoworkbench)
    TELEMETRY_APPENDER_POSTHOG_HOST: PostHog host (default: https://app.posthog.com)
    TELEMETRY_APPENDER_REFRESH_CACHED_IDENTITY: Re-read platform identities even when cached
"""

from __future__ import annotations

import os
import platform

from functools import cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from telemetry_appender.exceptions import ConfigurationError


type RouteName = Literal["primary", "alternate"]

DEFAULT_EVENT_NAME_PREFIX = "monacoworkbench"


def get_user_config_dir(*, base_only: bool = False) -> Path:
    """Get the user configuration directory based on the operating system."""
    if (system := platform.system()) == "Windows":
        config_dir = Path(os.getenv("APPDATA", Path("~\\AppData\\Roaming").expanduser()))
    elif system == "Darwin":
        config_dir = Path.home() / "Library" / "Application Support"
    else:
        config_dir = Path(os.getenv("XDG_CONFIG_HOME", Path.home() / ".config"))
    return config_dir if base_only else config_dir / "telemetry_appender"


class AppenderSettings(BaseSettings):
    """Telemetry appender configuration settings."""

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_APPENDER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    telemetry_enabled: Annotated[
        bool,
        Field(
            default=True,
            description=(
                "Build backend clients for configured keys. Set to False to opt out: no events "
                "are sent and platform identities are never read, though session dates are "
                "still kept in the session store."
            ),
        ),
    ]

    primary_key: Annotated[
        str | None,
        Field(default=None, description="Connection key for the primary backend route."),
    ]

    alternate_key: Annotated[
        str | None,
        Field(default=None, description="Connection key for the alternate backend route."),
    ]

    event_name_prefix: Annotated[
        str,
        Field(
            default=DEFAULT_EVENT_NAME_PREFIX,
            description="Namespace prepended to every event name as `<prefix>/<event>`.",
        ),
    ]

    posthog_host: Annotated[
        str,
        Field(
            default="https://app.posthog.com",
            description="PostHog host URL for telemetry events.",
        ),
    ]

    distinct_id: Annotated[
        str,
        Field(default="anonymous", description="Distinct id attached to every PostHog event."),
    ]

    app_version: Annotated[
        str | None,
        Field(default=None, description="Host application version reported as `version.shell`."),
    ]

    refresh_cached_identity: Annotated[
        bool,
        Field(
            default=False,
            description=(
                "Re-read platform identities from the registry even when a cached value exists. "
                "A changed value is persisted for the next process start."
            ),
        ),
    ]

    session_store_path: Annotated[
        Path,
        Field(
            default_factory=lambda: get_user_config_dir() / "session.json",
            description="Location of the JSON session store.",
        ),
    ]

    @field_validator("primary_key", "alternate_key", mode="before")
    @classmethod
    def _blank_key_is_absent(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = str(value).strip()
        return value or None

    @field_validator("event_name_prefix")
    @classmethod
    def _validate_prefix(cls, value: str) -> str:
        if not value or "/" in value:
            raise ConfigurationError(
                "Invalid event name prefix",
                details={"event_name_prefix": value},
                suggestions=["Use a non-empty prefix without '/' characters."],
            )
        return value

    def route_keys(self) -> list[tuple[RouteName, str]]:
        """Return the configured `(route, key)` pairs in delivery order."""
        routes: list[tuple[RouteName, str]] = []
        if self.primary_key:
            routes.append(("primary", self.primary_key))
        if self.alternate_key:
            routes.append(("alternate", self.alternate_key))
        return routes

    @property
    def is_configured(self) -> bool:
        """Check if at least one backend route would be built."""
        return self.telemetry_enabled and bool(self.route_keys())


@cache
def get_settings() -> AppenderSettings:
    """Get cached settings instance."""
    return AppenderSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next `get_settings` call re-reads the environment."""
    get_settings.cache_clear()


__all__ = (
    "DEFAULT_EVENT_NAME_PREFIX",
    "AppenderSettings",
    "RouteName",
    "get_settings",
    "get_user_config_dir",
    "reset_settings",
)

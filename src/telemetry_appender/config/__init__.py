# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""Configuration for the telemetry appender."""

from telemetry_appender.config.settings import (
    DEFAULT_EVENT_NAME_PREFIX,
    AppenderSettings,
    RouteName,
    get_settings,
    get_user_config_dir,
    reset_settings,
)


__all__ = (
    "DEFAULT_EVENT_NAME_PREFIX",
    "AppenderSettings",
    "RouteName",
    "get_settings",
    "get_user_config_dir",
    "reset_settings",
)

# SPDX-FileCopyrightText: 2025 Knitli Inc.
# SPDX-FileContributor: Adam Poulemanos <adam@knit.li>
#
# SPDX-License-Identifier: MIT OR Apache-2.0
"""Session storage and identity enrichment."""

from telemetry_appender.core.identity import (
    CommonData,
    HostFacts,
    IdentityEnricher,
    IdentityField,
    IdentitySource,
    NullIdentitySource,
    WindowsRegistryIdentitySource,
    resolve_identity_source,
)
from telemetry_appender.core.storage import (
    InMemorySessionStore,
    JsonFileSessionStore,
    SessionStore,
    StorageKeys,
)


__all__ = (
    "CommonData",
    "HostFacts",
    "IdentityEnricher",
    "IdentityField",
    "IdentitySource",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "NullIdentitySource",
    "SessionStore",
    "StorageKeys",
    "WindowsRegistryIdentitySource",
    "resolve_identity_source",
)

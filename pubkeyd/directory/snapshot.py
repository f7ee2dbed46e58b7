"""Immutable point-in-time view of the identity directory.

A snapshot is built wholesale from one provider response and never mutated
afterwards. Entries with an empty alias are kept so that "known but not
eligible" stays distinguishable from "unknown" (``is_known``), even though
both resolve to not-found through ``alias_for``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional


@dataclass
class DirectoryListing:
    """Raw result of one ``DirectoryProvider.fetch_directory()`` call.

    aliases: internal id → alias (may be empty string)
    roles:   role name → member ids in provider iteration order
    """

    aliases: dict[str, str] = field(default_factory=dict)
    roles: dict[str, list[str]] = field(default_factory=dict)


@dataclass(frozen=True)
class DirectorySnapshot:
    alias_of: Mapping[str, str]
    members_of: Mapping[str, tuple[str, ...]]
    refreshed_at: float = 0.0

    @classmethod
    def from_listing(cls, listing: DirectoryListing) -> "DirectorySnapshot":
        """Copy a provider listing into read-only containers."""
        return cls(
            alias_of=MappingProxyType(dict(listing.aliases)),
            members_of=MappingProxyType(
                {role: tuple(members) for role, members in listing.roles.items()}
            ),
            refreshed_at=time.time(),
        )

    @classmethod
    def empty(cls) -> "DirectorySnapshot":
        """Placeholder published before the first refresh completes."""
        return cls(alias_of=MappingProxyType({}), members_of=MappingProxyType({}))

    def alias_for(self, internal_id: str) -> Optional[str]:
        """Return the alias, or None when the id is absent or its alias is empty."""
        alias = self.alias_of.get(internal_id)
        return alias or None

    def is_known(self, internal_id: str) -> bool:
        return internal_id in self.alias_of

    def members(self, role: str) -> Optional[tuple[str, ...]]:
        """Return the ordered member ids of ``role``, or None when the role is absent."""
        return self.members_of.get(role)

    @property
    def user_count(self) -> int:
        return len(self.alias_of)

    @property
    def eligible_count(self) -> int:
        """Number of identities with a non-empty alias."""
        return sum(1 for alias in self.alias_of.values() if alias)

    @property
    def role_count(self) -> int:
        return len(self.members_of)

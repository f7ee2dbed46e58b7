"""Resolver — turns identity and role requests into authorized_keys text.

Every request takes one reference to the current directory snapshot and works
against it to the end, so a refresh landing mid-request never mixes two
snapshots.

Role semantics:
  - members are resolved in snapshot order; members without an alias are skipped
  - every alias is fetched through the key cache (concurrently), and the
    texts are concatenated in member order; a repeated alias repeats its block
  - a member whose fetch fails is skipped and logged; the role fails with
    UpstreamUnavailableError only when every attempted member failed
  - a role whose members have no aliases at all resolves to an empty string
"""

from __future__ import annotations

import asyncio
from typing import Optional

from pubkeyd.constants import MAX_NAME_LENGTH
from pubkeyd.directory.coordinator import RefreshCoordinator
from pubkeyd.errors import InvalidInputError, NotFoundError, PubkeydError, UpstreamUnavailableError
from pubkeyd.keys.cache import KeyCache
from pubkeyd.utils.logger import get_logger

logger = get_logger(__name__)


def validate_name(name: str, kind: str = "identity") -> str:
    """Reject names no directory entry could carry.

    Raises:
        InvalidInputError: empty, too long, or containing '/' or control characters.
    """
    if not name or len(name) > MAX_NAME_LENGTH:
        raise InvalidInputError(f"invalid {kind} name length")
    if "/" in name or any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in name):
        raise InvalidInputError(f"invalid characters in {kind} name")
    return name


class Resolver:
    def __init__(self, coordinator: RefreshCoordinator, cache: KeyCache) -> None:
        self._coordinator = coordinator
        self._cache = cache

    def alias_for(self, internal_id: str) -> str:
        """Return the GitHub alias of ``internal_id``.

        Raises:
            NotFoundError: absent from the snapshot, or present with an empty alias.
        """
        validate_name(internal_id)
        alias = self._coordinator.current_snapshot().alias_for(internal_id)
        if alias is None:
            raise NotFoundError(f"user {internal_id} not found")
        return alias

    async def resolve_identity(self, internal_id: str) -> str:
        """Return the authorized_keys text of one identity.

        Raises:
            NotFoundError:            unknown identity or empty alias (cache not consulted).
            UpstreamUnavailableError: the key fetch failed.
        """
        alias = self.alias_for(internal_id)
        logger.info("Found user", user=internal_id, alias=alias)
        try:
            keys = await self._cache.get(alias)
        except UpstreamUnavailableError:
            raise
        except PubkeydError as exc:
            raise UpstreamUnavailableError(f"keys for {alias} unretrievable: {exc.message}") from exc
        logger.info("Returning authorized_keys", user=internal_id, alias=alias)
        return keys

    async def resolve_role(self, role: str) -> str:
        """Return the concatenated authorized_keys text of every member of ``role``.

        Raises:
            NotFoundError:            the role is not in the snapshot.
            UpstreamUnavailableError: at least one member had an alias and every
                                      one of their fetches failed.
        """
        validate_name(role, kind="role")
        snapshot = self._coordinator.current_snapshot()
        members = snapshot.members(role)
        if members is None:
            raise NotFoundError(f"role {role} not found")

        resolved: list[tuple[str, str]] = []
        for member in members:
            alias = snapshot.alias_for(member)
            if alias is None:
                logger.debug("Skipping role member without alias", role=role, user=member)
                continue
            resolved.append((member, alias))

        if not resolved:
            logger.info("Role has no members with an alias", role=role, members=len(members))
            return ""

        results = await asyncio.gather(
            *(self._cache.get(alias) for _, alias in resolved),
            return_exceptions=True,
        )

        blocks: list[str] = []
        for (member, alias), result in zip(resolved, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                logger.error(
                    "User found but authorized_keys unretrievable",
                    role=role,
                    user=member,
                    alias=alias,
                    error=str(result),
                )
                continue
            blocks.append(result)

        if not blocks:
            raise UpstreamUnavailableError(f"no authorized_keys retrievable for role {role}")

        logger.info(
            "Returning authorized_keys of role",
            role=role,
            members=len(members),
            resolved=len(blocks),
            failed=len(resolved) - len(blocks),
        )
        return "".join(blocks)

    def invalidate_identity(self, internal_id: str) -> Optional[str]:
        """Purge the cached keys of ``internal_id``'s alias.

        Unknown identities are a no-op. Returns the alias purged, if any.
        """
        validate_name(internal_id)
        alias = self._coordinator.current_snapshot().alias_for(internal_id)
        if alias is None:
            logger.debug("Purge requested for identity without alias", user=internal_id)
            return None
        self._cache.invalidate(alias)
        logger.info("Purged authorized_keys cache", user=internal_id, alias=alias)
        return alias

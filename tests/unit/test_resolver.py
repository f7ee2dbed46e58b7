"""Tests for Resolver and validate_name.

Tests:
  - resolve_identity(): alias found → key text via the cache
  - absent identity and empty alias both → NotFoundError, cache not consulted
  - key fetch failure → UpstreamUnavailableError
  - resolve_role(): member order, skipped members, repeated aliases
  - partial role failure still returns the succeeding members' blocks
  - every member failing → UpstreamUnavailableError
  - unknown role → NotFoundError; role with no aliased members → ""
  - a refresh removing a user makes it NotFound without a fetch
  - invalidate_identity()
  - name validation
"""

from __future__ import annotations

import pytest

from pubkeyd.constants import MAX_NAME_LENGTH
from pubkeyd.directory.coordinator import RefreshCoordinator
from pubkeyd.directory.snapshot import DirectoryListing, DirectorySnapshot
from pubkeyd.errors import InvalidInputError, NotFoundError, UpstreamUnavailableError
from pubkeyd.keys.cache import KeyCache
from pubkeyd.resolver import Resolver, validate_name

pytestmark = pytest.mark.asyncio


@pytest.fixture
def coordinator(directory, listing):
    return RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))


@pytest.fixture
def cache(fetcher):
    return KeyCache(fetcher)


@pytest.fixture
def resolver(coordinator, cache):
    return Resolver(coordinator, cache)


# ─── Identity ─────────────────────────────────────────────────────────────────


class TestResolveIdentity:
    async def test_returns_keys(self, resolver, fetcher):
        assert await resolver.resolve_identity("alice") == fetcher.keys["alice-gh"]
        assert fetcher.calls == ["alice-gh"]

    async def test_second_request_served_from_cache(self, resolver, fetcher):
        await resolver.resolve_identity("alice")
        await resolver.resolve_identity("alice")
        assert fetcher.calls == ["alice-gh"]

    async def test_unknown_identity_not_found_without_fetch(self, resolver, fetcher):
        with pytest.raises(NotFoundError):
            await resolver.resolve_identity("zed")
        assert fetcher.calls == []

    async def test_empty_alias_is_not_found(self, resolver, fetcher):
        with pytest.raises(NotFoundError):
            await resolver.resolve_identity("dave")
        assert fetcher.calls == []

    async def test_fetch_failure_is_upstream_unavailable(self, resolver, fetcher):
        fetcher.errors["alice-gh"] = UpstreamUnavailableError("GitHub returned HTTP 502")
        with pytest.raises(UpstreamUnavailableError):
            await resolver.resolve_identity("alice")

    async def test_invalid_alias_surfaces_as_upstream_unavailable(self, resolver, fetcher):
        fetcher.errors["alice-gh"] = InvalidInputError("invalid GitHub username")
        with pytest.raises(UpstreamUnavailableError):
            await resolver.resolve_identity("alice")

    async def test_user_removed_by_refresh_is_not_found(self, resolver, coordinator, directory, fetcher):
        await resolver.resolve_identity("alice")

        directory.listing = DirectoryListing(aliases={"bob": "bob-gh"})
        await coordinator.refresh_now()

        with pytest.raises(NotFoundError):
            await resolver.resolve_identity("alice")
        # the cached entry for alice-gh is still live but never consulted
        assert fetcher.calls == ["alice-gh"]

    async def test_alias_for(self, resolver):
        assert resolver.alias_for("carol") == "carol-gh"
        with pytest.raises(NotFoundError):
            resolver.alias_for("dave")


# ─── Role ─────────────────────────────────────────────────────────────────────


class TestResolveRole:
    async def test_concatenates_in_member_order(self, resolver, fetcher):
        keys = await resolver.resolve_role("admins")
        assert keys == fetcher.keys["alice-gh"] + fetcher.keys["bob-gh"]

    async def test_skips_members_without_alias(self, resolver, fetcher):
        # devs = carol, dave (empty alias), erin (absent)
        assert await resolver.resolve_role("devs") == fetcher.keys["carol-gh"]
        assert fetcher.calls == ["carol-gh"]

    async def test_order_follows_snapshot_not_completion(self, directory, fetcher):
        listing = DirectoryListing(
            aliases={"u1": "alice-gh", "u2": "bob-gh"},
            roles={"ops": ["u2", "u1"]},
        )
        coordinator = RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))
        resolver = Resolver(coordinator, KeyCache(fetcher))

        assert await resolver.resolve_role("ops") == fetcher.keys["bob-gh"] + fetcher.keys["alice-gh"]

    async def test_repeated_alias_repeats_block(self, directory, fetcher):
        listing = DirectoryListing(
            aliases={"u1": "alice-gh", "u2": "alice-gh"},
            roles={"ops": ["u1", "u2"]},
        )
        coordinator = RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))
        resolver = Resolver(coordinator, KeyCache(fetcher))

        assert await resolver.resolve_role("ops") == fetcher.keys["alice-gh"] * 2
        assert fetcher.calls == ["alice-gh"]

    async def test_partial_failure_returns_remaining_blocks(self, resolver, fetcher):
        fetcher.errors["alice-gh"] = UpstreamUnavailableError("GitHub returned HTTP 502")
        assert await resolver.resolve_role("admins") == fetcher.keys["bob-gh"]

    async def test_all_members_failing_is_upstream_unavailable(self, resolver, fetcher):
        fetcher.errors["alice-gh"] = UpstreamUnavailableError("down")
        fetcher.errors["bob-gh"] = UpstreamUnavailableError("down")
        with pytest.raises(UpstreamUnavailableError):
            await resolver.resolve_role("admins")

    async def test_unknown_role_not_found(self, resolver, fetcher):
        with pytest.raises(NotFoundError):
            await resolver.resolve_role("nobody")
        assert fetcher.calls == []

    async def test_role_without_aliased_members_is_empty(self, directory, fetcher):
        listing = DirectoryListing(aliases={"dave": ""}, roles={"interns": ["dave", "ghost"]})
        coordinator = RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))
        resolver = Resolver(coordinator, KeyCache(fetcher))

        assert await resolver.resolve_role("interns") == ""
        assert fetcher.calls == []

    async def test_empty_role_is_empty(self, directory, fetcher):
        listing = DirectoryListing(roles={"empty": []})
        coordinator = RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))
        resolver = Resolver(coordinator, KeyCache(fetcher))

        assert await resolver.resolve_role("empty") == ""

    async def test_only_aliased_member_is_fetched(self, directory, fetcher):
        fetcher.keys = {"gh1": "ssh-ed25519 AAAA u1@host\n"}
        listing = DirectoryListing(aliases={"u1": "gh1"}, roles={"r1": ["u1", "u2"]})
        coordinator = RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))
        resolver = Resolver(coordinator, KeyCache(fetcher))

        assert await resolver.resolve_role("r1") == "ssh-ed25519 AAAA u1@host\n"
        assert fetcher.calls == ["gh1"]

    async def test_role_and_identity_scenario(self, directory, fetcher):
        fetcher.keys = {"a1": "K1\n", "a2": "K2\n"}
        listing = DirectoryListing(
            aliases={"u1": "a1", "u2": "a2"},
            roles={"r": ["u1", "u2"]},
        )
        coordinator = RefreshCoordinator(directory, initial=DirectorySnapshot.from_listing(listing))
        resolver = Resolver(coordinator, KeyCache(fetcher))

        assert await resolver.resolve_role("r") == "K1\nK2\n"
        assert await resolver.resolve_identity("u2") == "K2\n"
        with pytest.raises(NotFoundError):
            await resolver.resolve_identity("u3")
        assert sorted(fetcher.calls) == ["a1", "a2"]


# ─── Invalidation ─────────────────────────────────────────────────────────────


class TestInvalidateIdentity:
    async def test_invalidate_forces_refetch(self, resolver, fetcher):
        await resolver.resolve_identity("alice")
        assert resolver.invalidate_identity("alice") == "alice-gh"
        await resolver.resolve_identity("alice")
        assert fetcher.calls == ["alice-gh", "alice-gh"]

    async def test_invalidate_unknown_is_noop(self, resolver):
        assert resolver.invalidate_identity("zed") is None
        assert resolver.invalidate_identity("dave") is None


# ─── Validation ───────────────────────────────────────────────────────────────


class TestValidateName:
    async def test_accepts_ordinary_names(self):
        assert validate_name("alice") == "alice"
        assert validate_name("jane.doe@example.com") == "jane.doe@example.com"
        assert validate_name("Site Reliability", kind="role") == "Site Reliability"

    @pytest.mark.parametrize(
        "name",
        ["", "a" * (MAX_NAME_LENGTH + 1), "../etc", "a/b", "bad\nname", "bad\x00name", "del\x7f"],
    )
    async def test_rejects_invalid_names(self, name):
        with pytest.raises(InvalidInputError):
            validate_name(name)

    async def test_max_length_accepted(self):
        assert validate_name("a" * MAX_NAME_LENGTH)

    async def test_resolver_rejects_before_lookup(self, resolver, fetcher):
        with pytest.raises(InvalidInputError):
            await resolver.resolve_identity("a/b")
        with pytest.raises(InvalidInputError):
            await resolver.resolve_role("")
        assert fetcher.calls == []

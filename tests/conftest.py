"""Root test configuration for pubkeyd.

Provides in-memory stand-ins for the two upstreams so the core can be
exercised without network access:

  FakeDirectory — DirectoryProvider returning a configurable DirectoryListing
  FakeFetcher   — KeyFetcher returning configurable key text per alias
  FakeClock     — manually advanced monotonic clock for TTL tests

Both fakes record their calls and can be held open with an ``asyncio.Event``
gate to create deterministic in-flight windows.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import pytest

from pubkeyd.directory.snapshot import DirectoryListing
from pubkeyd.errors import UpstreamUnavailableError

ALICE_KEYS = "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIAlice alice@laptop\n"
BOB_KEYS = (
    "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQBob bob@desk\n"
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIBob2 bob@phone\n"
)
CAROL_KEYS = "ecdsa-sha2-nistp256 AAAAE2VjZHNhLXNoYTItbmlzdHAyNTYCarol carol@work\n"


class FakeDirectory:
    def __init__(self, listing: Optional[DirectoryListing] = None) -> None:
        self.listing = listing or DirectoryListing()
        self.error: Optional[BaseException] = None
        self.gate: Optional[asyncio.Event] = None
        self.delay: float = 0.0
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def fetch_directory(self) -> DirectoryListing:
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return DirectoryListing(
                aliases=dict(self.listing.aliases),
                roles={role: list(members) for role, members in self.listing.roles.items()},
            )
        finally:
            self.active -= 1


class FakeFetcher:
    def __init__(self, keys: Optional[dict[str, str]] = None) -> None:
        self.keys = dict(keys or {})
        self.errors: dict[str, BaseException] = {}
        self.gate: Optional[asyncio.Event] = None
        self.delay: float = 0.0
        self.calls: list[str] = []

    async def fetch_keys(self, alias: str) -> str:
        self.calls.append(alias)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if alias in self.errors:
            raise self.errors[alias]
        if alias not in self.keys:
            raise UpstreamUnavailableError(f"GitHub returned HTTP 404 for {alias}")
        return self.keys[alias]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def default_listing() -> DirectoryListing:
    """alice and bob in admins, carol in devs, dave known without alias."""
    return DirectoryListing(
        aliases={
            "alice": "alice-gh",
            "bob": "bob-gh",
            "carol": "carol-gh",
            "dave": "",
        },
        roles={
            "admins": ["alice", "bob"],
            "devs": ["carol", "dave", "erin"],
        },
    )


@pytest.fixture
def listing() -> DirectoryListing:
    return default_listing()


@pytest.fixture
def directory(listing: DirectoryListing) -> FakeDirectory:
    return FakeDirectory(listing)


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher({"alice-gh": ALICE_KEYS, "bob-gh": BOB_KEYS, "carol-gh": CAROL_KEYS})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` on the running loop until true or fail after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def until() -> Callable[..., object]:
    return wait_until

"""Public key lookup: fetcher protocol, GitHub fetcher and the TTL key cache."""

from __future__ import annotations

from pubkeyd.keys.cache import CacheEntry, CacheStats, KeyCache
from pubkeyd.keys.github import GitHubKeyFetcher, github_username_valid, normalize_authorized_keys
from pubkeyd.keys.protocol import KeyFetcher

__all__ = [
    "CacheEntry",
    "CacheStats",
    "GitHubKeyFetcher",
    "KeyCache",
    "KeyFetcher",
    "github_username_valid",
    "normalize_authorized_keys",
]

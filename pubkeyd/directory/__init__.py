"""Identity directory: snapshot, provider protocol, OneLogin provider, refresh coordinator."""

from __future__ import annotations

from pubkeyd.directory.coordinator import RefreshCoordinator
from pubkeyd.directory.onelogin import OneLoginDirectory
from pubkeyd.directory.protocol import DirectoryProvider
from pubkeyd.directory.snapshot import DirectoryListing, DirectorySnapshot

__all__ = [
    "DirectoryListing",
    "DirectoryProvider",
    "DirectorySnapshot",
    "OneLoginDirectory",
    "RefreshCoordinator",
]

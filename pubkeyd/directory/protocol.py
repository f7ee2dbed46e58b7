"""DirectoryProvider Protocol.

Implementations: OneLoginDirectory (directory/onelogin.py). Tests use
in-memory fakes that satisfy the same structural interface.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pubkeyd.directory.snapshot import DirectoryListing


@runtime_checkable
class DirectoryProvider(Protocol):
    """Source of the full identity directory.

    There is no delta protocol: every call returns the complete directory.
    """

    async def fetch_directory(self) -> DirectoryListing:
        """Return every identity's alias and every role's ordered members.

        Raises:
            UpstreamUnavailableError: The directory could not be fetched in full.
        """
        ...

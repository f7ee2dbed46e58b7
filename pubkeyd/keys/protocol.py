"""KeyFetcher Protocol.

Implementations: GitHubKeyFetcher (keys/github.py).
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class KeyFetcher(Protocol):
    async def fetch_keys(self, alias: str) -> str:
        """Return the authorized_keys text published for ``alias``.

        Raises:
            InvalidInputError:        ``alias`` is not a valid username for the service.
            UpstreamUnavailableError: The key-hosting service failed.
        """
        ...

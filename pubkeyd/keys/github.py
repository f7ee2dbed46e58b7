"""GitHub public key fetcher.

GitHub publishes every user's SSH public keys at ``https://github.com/<user>.keys``
as one authorized_keys line per key. The fetcher checks the username against
GitHub's naming rule before making a request, then normalizes the body into
newline-terminated lines. Key material is passed through unvalidated.
"""

from __future__ import annotations

import re

import httpx

from pubkeyd.constants import DEFAULT_GITHUB_BASE_URL
from pubkeyd.errors import InvalidInputError, UpstreamUnavailableError
from pubkeyd.utils.logger import get_logger

logger = get_logger(__name__)

# Alphanumeric or single hyphens, no leading hyphen, at most 39 characters.
_GITHUB_USERNAME_RE = re.compile(r"^[a-z\d]([a-z0-9]|-([a-z0-9])){0,38}$")

_KEYS_SUFFIX = "keys"


def github_username_valid(user: str) -> bool:
    """Return True if ``user`` is a syntactically valid GitHub username."""
    return bool(_GITHUB_USERNAME_RE.match(user.lower()))


def normalize_authorized_keys(text: str) -> str:
    """Drop blank lines and terminate every remaining line with a newline.

    Concatenating two normalized blocks therefore never merges two keys onto
    one line.
    """
    lines = [line.strip() for line in text.splitlines()]
    return "".join(f"{line}\n" for line in lines if line)


class GitHubKeyFetcher:
    """KeyFetcher for ``<base_url>/<alias>.keys``.

    Args:
        client:   Shared httpx.AsyncClient (owned by the lifespan).
        base_url: GitHub web root; overridable for GitHub Enterprise.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str = DEFAULT_GITHUB_BASE_URL) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    def keys_url(self, alias: str) -> str:
        return f"{self._base_url}/{alias}.{_KEYS_SUFFIX}"

    async def fetch_keys(self, alias: str) -> str:
        if not github_username_valid(alias):
            raise InvalidInputError(f"invalid GitHub username: {alias!r}")

        url = self.keys_url(alias)
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"GitHub request for {alias} failed: {type(exc).__name__}: {exc}"
            ) from exc

        if response.status_code != 200:
            raise UpstreamUnavailableError(
                f"GitHub returned HTTP {response.status_code} for {alias}"
            )

        keys = normalize_authorized_keys(response.text)
        logger.debug("Fetched GitHub keys", alias=alias, key_count=keys.count("\n"))
        return keys

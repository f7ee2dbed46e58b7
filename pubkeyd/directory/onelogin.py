"""OneLogin directory provider.

Builds a DirectoryListing from the OneLogin REST API:

  POST /auth/oauth2/v2/token   client-credentials access token (cached)
  GET  /api/1/roles            role id → role name
  GET  /api/1/users            users with status, custom_attributes, role_id

List endpoints are paginated; ``pagination.next_link`` is followed until it
is empty. Any transport error, non-200 status or malformed payload fails the
whole fetch with UpstreamUnavailableError: a partial directory is never
returned, so the coordinator keeps serving the previous snapshot.

Eligibility rules:
  - only active users (status == 1) are considered
  - an active user carrying the alias attribute is recorded in ``aliases``,
    even when the value is empty (known but not eligible)
  - every active user joins the member list of each of its roles, in user
    iteration order; members without an alias are skipped later by the resolver
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

import httpx

from pubkeyd.constants import (
    DEFAULT_ALIAS_ATTRIBUTE,
    DEFAULT_ONELOGIN_SHARD,
    ONELOGIN_ACTIVE_STATUS,
)
from pubkeyd.directory.snapshot import DirectoryListing
from pubkeyd.errors import UpstreamUnavailableError
from pubkeyd.utils.logger import get_logger

logger = get_logger(__name__)

_TOKEN_PATH = "/auth/oauth2/v2/token"
_USERS_PATH = "/api/1/users"
_ROLES_PATH = "/api/1/roles"

# Renew the access token this many seconds before OneLogin expires it.
_TOKEN_EXPIRY_MARGIN_S = 60.0


def onelogin_base_url(shard: str) -> str:
    return f"https://api.{shard}.onelogin.com"


class OneLoginDirectory:
    """DirectoryProvider backed by the OneLogin API.

    Args:
        client:          Shared httpx.AsyncClient (owned by the lifespan).
        client_id:       OneLogin API client id.
        client_secret:   OneLogin API client secret.
        shard:           OneLogin shard ("us" or "eu").
        alias_attribute: Custom user attribute holding the GitHub username.
        base_url:        Override of the shard-derived API base URL.
        clock:           Monotonic clock used for token expiry.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        client_id: str,
        client_secret: str,
        shard: str = DEFAULT_ONELOGIN_SHARD,
        alias_attribute: str = DEFAULT_ALIAS_ATTRIBUTE,
        base_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._client_id = client_id
        self._client_secret = client_secret
        self._alias_attribute = alias_attribute
        self._base_url = (base_url or onelogin_base_url(shard)).rstrip("/")
        self._clock = clock
        self._token: Optional[str] = None
        self._token_expires_at: float = 0.0

    async def fetch_directory(self) -> DirectoryListing:
        token = await self._access_token()
        roles_by_id: dict[int, str] = {}
        for role in await self._paginate(_ROLES_PATH, token):
            if "id" in role and role.get("name"):
                roles_by_id[role["id"]] = role["name"]

        listing = DirectoryListing()
        users = await self._paginate(_USERS_PATH, token)
        for user in users:
            username = user.get("username")
            if not username or user.get("status") != ONELOGIN_ACTIVE_STATUS:
                continue

            attributes = user.get("custom_attributes") or {}
            if self._alias_attribute in attributes:
                alias = (attributes.get(self._alias_attribute) or "").strip()
                listing.aliases[username] = alias
                logger.debug("Setting alias for user", user=username, alias=alias)

            for role_id in user.get("role_id") or []:
                role_name = roles_by_id.get(role_id)
                if role_name is None:
                    logger.debug("Unknown role id on user", user=username, role_id=role_id)
                    continue
                listing.roles.setdefault(role_name, []).append(username)

        logger.info(
            "Fetched OneLogin directory",
            users=len(users),
            aliases=len(listing.aliases),
            roles=len(listing.roles),
        )
        return listing

    # ── Auth ──────────────────────────────────────────────────────────────────

    async def _access_token(self) -> str:
        if self._token is not None and self._clock() < self._token_expires_at:
            return self._token

        payload = await self._request(
            "POST",
            f"{self._base_url}{_TOKEN_PATH}",
            headers={
                "Authorization": f"client_id:{self._client_id}, client_secret:{self._client_secret}",
            },
            json={"grant_type": "client_credentials"},
        )
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise UpstreamUnavailableError("OneLogin token response has no access_token")

        expires_in = float(payload.get("expires_in") or 0)
        self._token = token
        self._token_expires_at = self._clock() + max(0.0, expires_in - _TOKEN_EXPIRY_MARGIN_S)
        logger.debug("Obtained OneLogin access token", expires_in_s=expires_in)
        return token

    # ── HTTP helpers ──────────────────────────────────────────────────────────

    async def _paginate(self, path: str, token: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        url: Optional[str] = f"{self._base_url}{path}"
        seen: set[str] = set()
        while url and url not in seen:
            seen.add(url)
            payload = await self._request(
                "GET", url, headers={"Authorization": f"Bearer {token}"}
            )
            data = payload.get("data")
            if not isinstance(data, list):
                raise UpstreamUnavailableError(f"OneLogin response for {path} has no data list")
            items.extend(item for item in data if isinstance(item, dict))
            url = (payload.get("pagination") or {}).get("next_link")
        return items

    async def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailableError(
                f"OneLogin request failed: {type(exc).__name__}: {exc}"
            ) from exc

        if response.status_code == 401:
            # Token revoked or expired early: re-authenticate on the next cycle.
            self._token = None
        if response.status_code != 200:
            raise UpstreamUnavailableError(
                f"OneLogin {method} {url} returned HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamUnavailableError(f"OneLogin returned invalid JSON for {url}") from exc
        if not isinstance(payload, dict):
            raise UpstreamUnavailableError(f"OneLogin returned a non-object payload for {url}")
        return payload

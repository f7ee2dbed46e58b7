"""Key lookup routes.

  GET    /authorized_keys/{user_id}      keys of one OneLogin user
  GET    /role_authorized_keys/{role}    concatenated keys of every member of a role
  DELETE /authorized_keys/{user_id}      purge the cached keys of one user
  GET    /github_name/{user_id}          GitHub alias of one user
  GET    /refresh  (or POST)             trigger a directory refresh, returns immediately
  GET    /metrics                        Prometheus exposition
  GET    /                               service discovery

Key and alias bodies are text/plain so the output can be handed straight to
sshd's AuthorizedKeysCommand (e.g. ``curl -sf http://127.0.0.1:2020/authorized_keys/%u``).
Until the first directory snapshot is loaded every route here except / and
/metrics answers ``503 starting`` as text/plain.
Authentication of this surface is left to a gate in front of the daemon.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

from pubkeyd.directory.coordinator import RefreshCoordinator
from pubkeyd.errors import InvalidInputError, NotFoundError, PubkeydError, ServiceStartingError
from pubkeyd.metrics import (
    AUTHORIZED_KEYS_REQUESTS,
    GITHUB_NAME_REQUESTS,
    ROLE_AUTHORIZED_KEYS_REQUESTS,
)
from pubkeyd.resolver import Resolver
from pubkeyd.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["keys"])

_USER_NOT_FOUND = "404 user not found\n"
_ROLE_NOT_FOUND = "404 role not found\n"
_USER_UNAVAILABLE = "503 couldn't retrieve users authorized_keys\n"
_ROLE_UNAVAILABLE = "503 couldn't retrieve roles authorized_keys\n"


# ─── Dependencies ─────────────────────────────────────────────────────────────


async def require_ready(request: Request) -> None:
    """Answer ``503 starting`` (text/plain) until the first directory snapshot is loaded.

    Raises:
        ServiceStartingError: Rendered by the PubkeydError handler in pubkeyd/main.py.
    """
    if not getattr(request.app.state, "ready", False):
        raise ServiceStartingError("pubkeyd is loading the directory")


async def get_resolver(request: Request) -> Resolver:
    await require_ready(request)
    return request.app.state.resolver


async def get_coordinator(request: Request) -> RefreshCoordinator:
    await require_ready(request)
    return request.app.state.coordinator


# ─── Helpers ──────────────────────────────────────────────────────────────────


def _respond(counter: Counter, method: str, status_code: int, body: str) -> PlainTextResponse:
    counter.labels(code=str(status_code), method=method).inc()
    return PlainTextResponse(body, status_code=status_code)


def _error_response(
    counter: Counter,
    method: str,
    exc: PubkeydError,
    subject: str,
    not_found_body: str,
    upstream_body: str,
    **log_fields: str,
) -> PlainTextResponse:
    """Log ``exc`` at the level its kind deserves and render the route's body for it."""
    if isinstance(exc, NotFoundError):
        logger.info(f"{subject} not found", **log_fields)
        return _respond(counter, method, 404, not_found_body)
    if isinstance(exc, InvalidInputError):
        logger.info("Invalid name rejected", error=exc.message, **log_fields)
        return _respond(counter, method, 400, f"{exc.public_message}\n")

    logger.error(f"{subject} found but authorized_keys unretrievable", error=exc.message, **log_fields)
    return _respond(counter, method, 503, upstream_body)


# ─── Routes ───────────────────────────────────────────────────────────────────


@router.get("/")
async def root() -> dict[str, str]:
    return {
        "service": "pubkeyd",
        "authorized_keys": "/authorized_keys/{user}",
        "role_authorized_keys": "/role_authorized_keys/{role}",
        "health": "/health",
        "metrics": "/metrics",
    }


@router.get("/authorized_keys/{user_id}")
async def get_authorized_keys(
    user_id: str, resolver: Resolver = Depends(get_resolver)
) -> PlainTextResponse:
    try:
        keys = await resolver.resolve_identity(user_id)
    except PubkeydError as exc:
        return _error_response(
            AUTHORIZED_KEYS_REQUESTS, "GET", exc, "User", _USER_NOT_FOUND, _USER_UNAVAILABLE,
            user=user_id,
        )
    return _respond(AUTHORIZED_KEYS_REQUESTS, "GET", 200, keys)


@router.get("/role_authorized_keys/{role}")
async def get_role_authorized_keys(
    role: str, resolver: Resolver = Depends(get_resolver)
) -> PlainTextResponse:
    try:
        keys = await resolver.resolve_role(role)
    except PubkeydError as exc:
        return _error_response(
            ROLE_AUTHORIZED_KEYS_REQUESTS, "GET", exc, "Role", _ROLE_NOT_FOUND, _ROLE_UNAVAILABLE,
            role=role,
        )
    return _respond(ROLE_AUTHORIZED_KEYS_REQUESTS, "GET", 200, keys)


@router.delete("/authorized_keys/{user_id}")
async def delete_authorized_keys(
    user_id: str, resolver: Resolver = Depends(get_resolver)
) -> PlainTextResponse:
    logger.debug("Received request to purge authorized_keys cache", user=user_id)
    try:
        resolver.invalidate_identity(user_id)
    except PubkeydError as exc:
        return _error_response(
            AUTHORIZED_KEYS_REQUESTS, "DELETE", exc, "User", _USER_NOT_FOUND, _USER_UNAVAILABLE,
            user=user_id,
        )
    return _respond(
        AUTHORIZED_KEYS_REQUESTS, "DELETE", 200,
        f"Purging authorized_keys cache for user {user_id}\n",
    )


@router.get("/github_name/{user_id}")
async def get_github_name(
    user_id: str, resolver: Resolver = Depends(get_resolver)
) -> PlainTextResponse:
    try:
        alias = resolver.alias_for(user_id)
    except PubkeydError as exc:
        return _error_response(
            GITHUB_NAME_REQUESTS, "GET", exc, "User", _USER_NOT_FOUND, _USER_UNAVAILABLE,
            user=user_id,
        )
    logger.info("Found user", user=user_id, alias=alias)
    return _respond(GITHUB_NAME_REQUESTS, "GET", 200, f"{alias}\n")


@router.api_route("/refresh", methods=["GET", "POST"])
async def do_refresh(coordinator: RefreshCoordinator = Depends(get_coordinator)) -> PlainTextResponse:
    logger.debug("Received request to refresh OneLogin users")
    coordinator.trigger()
    return PlainTextResponse("Refreshing OneLogin users\n")


@router.get("/metrics")
async def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

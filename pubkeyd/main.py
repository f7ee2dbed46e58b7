"""pubkeyd FastAPI application factory + lifespan lifecycle.

Startup sequence:
  1. load_config()                 → app.state.config
  2. create_http_client()          → shared httpx client for OneLogin and GitHub
  3. OneLoginDirectory / GitHubKeyFetcher (unless injected through create_app)
  4. KeyCache, RefreshCoordinator, Resolver
  5. coordinator.refresh_now()     → first directory load; failure exits the process
  6. coordinator.start()           → scheduled + on-demand refresh loop
  7. key cache sweeper task
  8. app.state.ready = True

Shutdown (reverse):
  ready = False → stop sweeper → stop refresh loop → close http client

Run with:
  uvicorn pubkeyd.main:app --host 127.0.0.1 --port 2020
or ``pubkeyd`` (pubkeyd/run.py).
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from pubkeyd.api import router as api_router
from pubkeyd.config import Config, load_config
from pubkeyd.directory.coordinator import RefreshCoordinator
from pubkeyd.directory.onelogin import OneLoginDirectory
from pubkeyd.directory.protocol import DirectoryProvider
from pubkeyd.errors import PubkeydError
from pubkeyd.health import router as health_router
from pubkeyd.keys.cache import KeyCache
from pubkeyd.keys.github import GitHubKeyFetcher
from pubkeyd.keys.protocol import KeyFetcher
from pubkeyd.resolver import Resolver
from pubkeyd.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)

# ─── Shared HTTP client ───────────────────────────────────────────────────────

POOL_MAX_CONNECTIONS: int = 50
POOL_MAX_KEEPALIVE: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0


def create_http_client(timeout_s: float) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient used by both upstream clients.

    Created once in the lifespan and closed at shutdown; never per request.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=True,
        headers={"User-Agent": "pubkeyd"},
    )


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence.

    Raises:
        SystemExit(1): invalid config, missing OneLogin credentials, or a
                       failed initial directory load. The process never
                       serves without a first snapshot.
    """
    logger.info("pubkeyd starting up...")

    config: Config = app.state.config or load_config()
    app.state.config = config

    http_client = create_http_client(config.github.timeout_s)

    directory: Optional[DirectoryProvider] = app.state.directory
    if directory is None:
        try:
            config.require_credentials()
        except SystemExit:
            await http_client.aclose()
            raise
        directory = OneLoginDirectory(
            http_client,
            client_id=config.onelogin.client_id,
            client_secret=config.onelogin.client_secret,
            shard=config.onelogin.shard,
            alias_attribute=config.onelogin.alias_attribute,
            base_url=config.onelogin.base_url,
        )
    fetcher: KeyFetcher = app.state.fetcher or GitHubKeyFetcher(
        http_client, base_url=config.github.base_url
    )

    cache = KeyCache(fetcher, ttl_s=config.cache.ttl_s, fetch_timeout_s=config.github.timeout_s)
    coordinator = RefreshCoordinator(
        directory,
        refresh_interval_s=config.refresh.interval_s,
        timeout_s=config.onelogin.timeout_s,
    )
    app.state.key_cache = cache
    app.state.coordinator = coordinator
    app.state.resolver = Resolver(coordinator, cache)

    # ── First load must succeed before serving ────────────────────────────────
    try:
        await coordinator.refresh_now()
    except Exception as exc:
        logger.error(
            "Initial directory load failed — refusing to start",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        await http_client.aclose()
        raise SystemExit(1) from exc

    coordinator.start()
    sweeper_task: asyncio.Task[None] = asyncio.create_task(
        cache.run_sweeper(config.cache.sweep_interval_s), name="pubkeyd-key-cache-sweeper"
    )

    app.state.ready = True
    logger.info(
        "pubkeyd ready",
        refresh_interval_s=config.refresh.interval_s,
        cache_ttl_s=config.cache.ttl_s,
    )

    yield

    logger.info("pubkeyd shutting down...")
    app.state.ready = False

    if not sweeper_task.done():
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass

    await coordinator.stop()
    await cache.aclose()

    try:
        await http_client.aclose()
    except Exception as exc:
        logger.warning("HTTP client close error (non-fatal)", error=str(exc))

    logger.info("pubkeyd shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(
    config: Optional[Config] = None,
    directory: Optional[DirectoryProvider] = None,
    fetcher: Optional[KeyFetcher] = None,
) -> FastAPI:
    """Create and configure the pubkeyd FastAPI application.

    Args:
        config:    Use this config instead of calling load_config() at startup.
        directory: Directory provider to use instead of OneLogin.
        fetcher:   Key fetcher to use instead of GitHub.

    Returns:
        Configured FastAPI application with lifespan, routers and error handlers.
    """
    application = FastAPI(
        title="pubkeyd",
        description="Serves GitHub SSH public keys for OneLogin users and roles",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if DEBUG else None,
        redoc_url="/redoc" if DEBUG else None,
        openapi_url="/openapi.json" if DEBUG else None,
    )

    # Set before lifespan so requests arriving during startup see ready=False.
    application.state.ready = False
    application.state.config = config
    application.state.directory = directory
    application.state.fetcher = fetcher

    application.include_router(health_router)
    application.include_router(api_router)

    @application.exception_handler(PubkeydError)
    async def pubkeyd_error_handler(request: Request, exc: PubkeydError) -> PlainTextResponse:
        logger.warning(
            "Request failed",
            status_code=exc.status_code,
            error=exc.message,
            path=str(request.url.path),
        )
        return PlainTextResponse(f"{exc.public_message}\n", status_code=exc.status_code)

    @application.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return application


# Module-level instance for uvicorn.
app = create_app()

"""Health endpoints for pubkeyd.

  GET /health            — liveness: 200 whenever the process is up, regardless
                           of directory or cache state
  GET /health/directory  — snapshot and key cache details (503 before ready)
"""

from __future__ import annotations

import time
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from pubkeyd.directory.coordinator import RefreshCoordinator
from pubkeyd.keys.cache import KeyCache

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict[str, Any]:
    """Liveness probe. ``ready`` reports whether the first snapshot is loaded."""
    return {
        "status": "ok",
        "ready": bool(getattr(request.app.state, "ready", False)),
    }


@router.get("/health/directory")
async def health_directory(request: Request) -> dict[str, Any]:
    """Directory snapshot and key cache details.

    Response body (200):
        {
          "users": 120,
          "eligible_users": 97,
          "roles": 14,
          "snapshot_age_s": 42.1,
          "refreshing": false,
          "refresh_pending": false,
          "last_refresh_error": null,
          "key_cache": {"entries": 8, "ttl_s": 120.0, "hits": 40, "misses": 9,
                        "shared": 1, "fetch_failures": 1}
        }
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(status_code=503, detail={"status": "starting"})

    coordinator: RefreshCoordinator = request.app.state.coordinator
    cache: KeyCache = request.app.state.key_cache
    snapshot = coordinator.current_snapshot()
    stats = cache.stats()

    return {
        "users": snapshot.user_count,
        "eligible_users": snapshot.eligible_count,
        "roles": snapshot.role_count,
        "snapshot_age_s": round(time.time() - snapshot.refreshed_at, 1),
        "refreshing": coordinator.refreshing,
        "refresh_pending": coordinator.refresh_pending,
        "last_refresh_error": coordinator.last_error,
        "key_cache": {
            "entries": len(cache),
            "ttl_s": cache.ttl_s,
            "hits": stats.hits,
            "misses": stats.misses,
            "shared": stats.shared,
            "fetch_failures": stats.fetch_failures,
        },
    }

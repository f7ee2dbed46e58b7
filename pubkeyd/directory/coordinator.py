"""Refresh coordinator — owns the published DirectorySnapshot.

Lifecycle (driven by the lifespan in pubkeyd/main.py):
  1. ``await coordinator.refresh_now()``  — first load, must succeed
  2. ``coordinator.start()``              — background loop
  3. ``coordinator.trigger()``            — on-demand refresh (GET/POST /refresh)
  4. ``await coordinator.stop()``         — shutdown

Concurrency:
  - Readers call ``current_snapshot()`` and get the last published snapshot.
    They never wait on a refresh in flight.
  - Only one refresh cycle runs at a time (``_cycle_lock``).
  - Triggers are an ``asyncio.Event``. Any number of triggers arriving while a
    cycle runs collapse into exactly one follow-up cycle.
  - A failed cycle leaves the published snapshot and the key cache untouched.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Optional

from pubkeyd.constants import DEFAULT_DIRECTORY_TIMEOUT_S, DEFAULT_REFRESH_INTERVAL_S
from pubkeyd.directory.protocol import DirectoryProvider
from pubkeyd.directory.snapshot import DirectorySnapshot
from pubkeyd.errors import UpstreamUnavailableError
from pubkeyd.metrics import DIRECTORY_REFRESHES, KNOWN_ROLES, KNOWN_USERS
from pubkeyd.utils.logger import Timer, get_logger

logger = get_logger(__name__)


class RefreshCoordinator:
    """Single writer of the directory snapshot.

    Args:
        provider:           Source of the full directory.
        refresh_interval_s: Seconds between scheduled refreshes.
        timeout_s:          Upper bound on one ``fetch_directory()`` call.
        initial:            Snapshot published before the first refresh
                            (defaults to an empty one).
    """

    def __init__(
        self,
        provider: DirectoryProvider,
        refresh_interval_s: float = DEFAULT_REFRESH_INTERVAL_S,
        timeout_s: float = DEFAULT_DIRECTORY_TIMEOUT_S,
        initial: Optional[DirectorySnapshot] = None,
    ) -> None:
        self._provider = provider
        self._refresh_interval_s = refresh_interval_s
        self._timeout_s = timeout_s
        self._snapshot = initial or DirectorySnapshot.empty()
        self._publish_lock = threading.Lock()
        self._cycle_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._last_error: Optional[str] = None

    # ── Read side ─────────────────────────────────────────────────────────────

    def current_snapshot(self) -> DirectorySnapshot:
        """Return the latest published snapshot (no I/O, never blocks)."""
        return self._snapshot

    @property
    def refreshing(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def refresh_pending(self) -> bool:
        """True when a trigger is waiting for the next cycle."""
        return self._wakeup.is_set()

    @property
    def last_error(self) -> Optional[str]:
        """Message of the most recent failed cycle, cleared by the next success."""
        return self._last_error

    # ── Write side ────────────────────────────────────────────────────────────

    async def refresh_now(self) -> DirectorySnapshot:
        """Run one refresh cycle and publish the result.

        Waits for a cycle already in flight to finish first, so cycles never
        overlap.

        Returns:
            The newly published snapshot.

        Raises:
            UpstreamUnavailableError: The provider failed or timed out. The
                previously published snapshot is still current.
        """
        async with self._cycle_lock:
            logger.info("Refreshing directory")
            try:
                with Timer("directory refresh", logger) as timer:
                    listing = await asyncio.wait_for(
                        self._provider.fetch_directory(), timeout=self._timeout_s
                    )
                    snapshot = DirectorySnapshot.from_listing(listing)
            except asyncio.TimeoutError as exc:
                self._record_failure("timeout")
                raise UpstreamUnavailableError(
                    f"directory fetch timed out after {self._timeout_s}s"
                ) from exc
            except UpstreamUnavailableError as exc:
                self._record_failure(exc.message)
                raise
            except Exception as exc:
                self._record_failure(str(exc))
                raise UpstreamUnavailableError(f"directory fetch failed: {exc}") from exc

            with self._publish_lock:
                self._snapshot = snapshot
            self._last_error = None

            DIRECTORY_REFRESHES.labels(outcome="success").inc()
            KNOWN_USERS.set(snapshot.eligible_count)
            KNOWN_ROLES.set(snapshot.role_count)
            logger.info(
                "Directory refreshed",
                users=snapshot.user_count,
                eligible_users=snapshot.eligible_count,
                roles=snapshot.role_count,
                duration_ms=round(timer.duration_ms, 1),
            )
            return snapshot

    def _record_failure(self, reason: str) -> None:
        self._last_error = reason
        DIRECTORY_REFRESHES.labels(outcome="failure").inc()

    def trigger(self) -> None:
        """Request an out-of-band refresh without waiting for it.

        At most one extra cycle is ever pending: repeated triggers before the
        background loop picks up the request are absorbed.
        """
        if self._wakeup.is_set():
            logger.debug("Refresh already pending — trigger absorbed")
            return
        self._wakeup.set()
        logger.debug("Refresh requested")

    # ── Background loop ───────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the background refresh task (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._run(), name="pubkeyd-directory-refresh")
        logger.info("Directory refresh loop started", interval_s=self._refresh_interval_s)

    async def stop(self) -> None:
        """Cancel the background task and wait for it to exit."""
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        logger.info("Directory refresh loop stopped")

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._refresh_interval_s)
                reason = "demand"
            except asyncio.TimeoutError:
                reason = "schedule"
            # Cleared before the cycle so a trigger arriving mid-cycle queues one more.
            self._wakeup.clear()

            try:
                await self.refresh_now()
            except UpstreamUnavailableError as exc:
                logger.error(
                    "Directory refresh failed — serving previous snapshot",
                    reason=reason,
                    error=exc.message,
                    snapshot_age_s=self._snapshot_age(),
                )
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error(
                    "Directory refresh crashed — serving previous snapshot",
                    reason=reason,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )

    def _snapshot_age(self) -> Optional[float]:
        refreshed_at = self._snapshot.refreshed_at
        if not refreshed_at:
            return None
        return round(time.time() - refreshed_at, 1)

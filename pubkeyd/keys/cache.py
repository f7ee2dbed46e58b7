"""TTL read-through cache of authorized_keys text, keyed by GitHub alias.

GitHub lookups are slow and rate limited, so every alias's key text is kept
for a fixed TTL after it was fetched.

Invariants:
  - An entry is never served at or after ``created_at + ttl`` and is never
    evicted before that (except by ``invalidate``/``clear``).
  - At most one fetch per alias is attached to the cache at a time. Concurrent
    misses for the same alias await the same future and all receive the same
    text or the same error. The fetch runs in a task owned by the cache, so
    cancelling any caller (including the one whose miss started it) never
    cancels it for the rest.
  - Failures are not cached: the next ``get`` after a failed fetch is a new miss.
  - ``invalidate`` drops the entry and detaches any fetch in flight, so the
    next ``get`` always fetches afresh and the detached result is never stored.

Locking:
  ``_lock`` guards the two dictionaries and is never held across an ``await``.
"""

from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from pubkeyd.constants import DEFAULT_KEY_CACHE_TTL_S, DEFAULT_KEY_FETCH_TIMEOUT_S
from pubkeyd.errors import PubkeydError, UpstreamUnavailableError
from pubkeyd.keys.protocol import KeyFetcher
from pubkeyd.metrics import KEY_FETCHES
from pubkeyd.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    """One alias's key text plus its lifetime on the cache clock."""

    text: str
    created_at: float
    expires_at: float

    def live(self, now: float) -> bool:
        return now < self.expires_at


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    shared: int = 0
    """Misses that joined a fetch already in flight instead of starting one."""
    fetch_failures: int = 0


class KeyCache:
    """Single-flight TTL cache in front of a KeyFetcher.

    Args:
        fetcher:         Key-hosting lookup invoked on a miss.
        ttl_s:           Lifetime of a cached entry in seconds.
        fetch_timeout_s: Upper bound on one ``fetch_keys`` call.
        clock:           Monotonic clock (injectable for tests).
    """

    def __init__(
        self,
        fetcher: KeyFetcher,
        ttl_s: float = DEFAULT_KEY_CACHE_TTL_S,
        fetch_timeout_s: float = DEFAULT_KEY_FETCH_TIMEOUT_S,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._ttl_s = ttl_s
        self._fetch_timeout_s = fetch_timeout_s
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Future[str]] = {}
        self._tasks: dict[asyncio.Task[None], tuple[str, asyncio.Future[str]]] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    @property
    def ttl_s(self) -> float:
        return self._ttl_s

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> CacheStats:
        """Return a copy of the hit/miss counters."""
        with self._lock:
            return CacheStats(**vars(self._stats))

    # ── Read-through ──────────────────────────────────────────────────────────

    async def get(self, alias: str) -> str:
        """Return the key text for ``alias``, fetching it on a miss.

        Raises:
            UpstreamUnavailableError: The fetch failed or timed out.
            InvalidInputError:        The fetcher rejected the alias.
        """
        with self._lock:
            entry = self._entries.get(alias)
            if entry is not None:
                if entry.live(self._clock()):
                    self._stats.hits += 1
                    return entry.text
                del self._entries[alias]

            future = self._inflight.get(alias)
            leader = future is None
            if future is None:
                future = asyncio.get_running_loop().create_future()
                self._inflight[alias] = future
                self._stats.misses += 1
            else:
                self._stats.shared += 1

        if leader:
            logger.debug("Key cache miss", alias=alias)
            task = asyncio.create_task(self._fetch(alias, future), name=f"pubkeyd-key-fetch-{alias}")
            self._tasks[task] = (alias, future)
            task.add_done_callback(self._forget_task)
        else:
            logger.debug("Joining in-flight key fetch", alias=alias)

        # shield: a cancelled caller, first or not, must not cancel the fetch for the others
        return await asyncio.shield(future)

    async def _fetch(self, alias: str, future: asyncio.Future[str]) -> None:
        """Run one fetch in a cache-owned task and settle ``future`` with its outcome."""
        try:
            text = await asyncio.wait_for(
                self._fetcher.fetch_keys(alias), timeout=self._fetch_timeout_s
            )
        except asyncio.TimeoutError:
            self._settle(
                alias,
                future,
                error=UpstreamUnavailableError(
                    f"key fetch for {alias} timed out after {self._fetch_timeout_s}s"
                ),
            )
            return
        except PubkeydError as exc:
            self._settle(alias, future, error=exc)
            return
        except asyncio.CancelledError:
            # Only aclose() cancels fetch tasks.
            self._settle(
                alias, future, error=UpstreamUnavailableError(f"key fetch for {alias} was cancelled")
            )
            raise
        except Exception as exc:
            self._settle(
                alias, future, error=UpstreamUnavailableError(f"key fetch for {alias} failed: {exc}")
            )
            return

        self._settle(alias, future, text=text)

    def _forget_task(self, task: asyncio.Task[None]) -> None:
        self._tasks.pop(task, None)

    def _settle(
        self,
        alias: str,
        future: asyncio.Future[str],
        text: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        now = self._clock()
        with self._lock:
            attached = self._inflight.get(alias) is future
            if attached:
                del self._inflight[alias]
                if error is None and text is not None:
                    self._entries[alias] = CacheEntry(
                        text=text, created_at=now, expires_at=now + self._ttl_s
                    )
            if error is not None:
                self._stats.fetch_failures += 1

        if error is None:
            KEY_FETCHES.labels(outcome="success").inc()
            if not attached:
                logger.debug("Key fetch finished after invalidation — not cached", alias=alias)
            future.set_result(text)  # type: ignore[arg-type]
        else:
            KEY_FETCHES.labels(outcome="failure").inc()
            logger.warning("Key fetch failed", alias=alias, error=str(error))
            future.set_exception(error)
            # Mark retrieved so the loop does not warn when nobody else was waiting.
            future.exception()

    # ── Invalidation / expiry ─────────────────────────────────────────────────

    def invalidate(self, alias: str) -> bool:
        """Drop ``alias`` from the cache; a no-op when nothing is cached.

        Returns:
            True if an entry or an in-flight fetch was dropped.
        """
        with self._lock:
            removed = self._entries.pop(alias, None) is not None
            detached = self._inflight.pop(alias, None) is not None
        logger.debug("Key cache invalidated", alias=alias, removed=removed, detached=detached)
        return removed or detached

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [alias for alias, entry in self._entries.items() if not entry.live(now)]
            for alias in expired:
                del self._entries[alias]
        if expired:
            logger.debug("Key cache swept", removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._inflight.clear()

    async def aclose(self) -> None:
        """Cancel every fetch still in flight; their waiters get UpstreamUnavailableError."""
        pending = list(self._tasks.items())
        tasks = [task for task, _ in pending]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        # a task cancelled before its first step never settles its future
        for _, (alias, future) in pending:
            if not future.done():
                self._settle(
                    alias, future, error=UpstreamUnavailableError(f"key fetch for {alias} was cancelled")
                )
        if tasks:
            logger.debug("Cancelled in-flight key fetches", count=len(tasks))

    async def run_sweeper(self, interval_s: float) -> None:
        """Call ``sweep()`` every ``interval_s`` seconds until cancelled."""
        try:
            while True:
                await asyncio.sleep(interval_s)
                self.sweep()
        except asyncio.CancelledError:
            logger.debug("Key cache sweeper cancelled")
            raise

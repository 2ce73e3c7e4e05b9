"""
Result Cache

Short-lived, in-memory key/value memoization for search results and other
read paths.

Design choices
--------------
- Explicitly constructed and passed to the components that need it; no
  module-level singleton.
- Each entry stores its value and an absolute expiry timestamp.
- Lazy expiry on ``get`` plus an active sweep run by a background task.
- Thread-safe access using a re-entrant lock; no cross-key locking, since
  staleness is tolerated and entries expire on their own.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("exicon.cache")


@dataclass
class _Entry:
    value: Any
    expires_at: float


class ResultCache:
    """
    In-memory TTL cache.

    Parameters
    ----------
    default_ttl : float
        Time-to-live in seconds for entries stored without an explicit TTL.
    clock : Callable[[], float]
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = RLock()
        self._default_ttl = default_ttl
        self._clock = clock
        self._sweeper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or ``None`` on a miss. An expired entry is
        removed and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = self._default_ttl if ttl is None else ttl
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove every key starting with ``prefix``."""
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def sweep(self) -> int:
        """Drop all expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.expires_at <= now]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Cache sweep removed %s expired entries", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_sweeper(self, interval: float = 60.0) -> asyncio.Task:
        """
        Start the periodic sweep on the running event loop. Calling it
        again while a sweeper is alive returns the existing task.
        """
        if self._sweeper is not None and not self._sweeper.done():
            return self._sweeper

        async def _run() -> None:
            while True:
                await asyncio.sleep(interval)
                self.sweep()

        self._sweeper = asyncio.create_task(_run(), name="result-cache-sweeper")
        return self._sweeper

    async def shutdown(self) -> None:
        """Stop the sweeper and drop all entries."""
        task, self._sweeper = self._sweeper, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.clear()

"""Short-lived cache for read-mostly lookup maps.

Bill listings need tenancy, tenant and unit maps on every request. Building
them means a full table scan, so they are kept for a few minutes. Entries
are never invalidated on write: a write followed by a cached read may see
stale data until the entry expires.
"""

import logging
import time
from typing import Any, Callable, Dict, Hashable, NamedTuple, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CacheEntry(NamedTuple):
    """Cached value with its absolute expiry time (clock seconds)."""

    value: Any
    expires_at: float


class TtlCache:
    """Key/value cache whose entries expire after a fixed time-to-live.

    The clock is injectable so expiry can be tested deterministically.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Optional[Clock] = None):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: Dict[Hashable, CacheEntry] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store a value for `ttl_seconds` (default: the cache TTL)."""
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def get_or_build(self, key: Hashable, build: Callable[[], Any]) -> Any:
        """Return the cached value or build, store and return a fresh one."""
        cached = self.get(key)
        if cached is not None:
            return cached
        logger.debug(f"Lookup cache miss for {key}")
        value = build()
        self.set(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["CacheEntry", "Clock", "TtlCache"]

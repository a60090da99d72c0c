"""
Process-wide TTL cache for monetization lookups.

Entries are keyed by ``(kind, entity_id)`` tuples, e.g. ``("usage", user_id)``
or ``("feature", feature_id)``. Reads check the entry age before trusting it;
writes to the backing store invalidate the affected entries instead of
refreshing them.
"""

import logging
import time
from threading import Lock
from typing import Any, Callable, Dict, Hashable, Iterable, Optional, Set, Tuple

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, Hashable]

# Stored in place of a value to remember a confirmed "not found"
MISSING = object()


class TTLCache:
    """Thread-safe TTL cache with get-or-fetch semantics.

    The lock only guards dictionary access. Fetch callbacks run outside the
    lock so a slow store read for one key never blocks other keys. A fetch
    that overlaps an invalidation of its key does not store its result, so an
    old snapshot can never outlive the write that replaced it.
    """

    def __init__(self, ttl_seconds: float = 300, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[CacheKey, Tuple[Any, float]] = {}
        # Fetches in progress per key, and keys invalidated while one was running
        self._inflight: Dict[CacheKey, int] = {}
        self._stale: Set[CacheKey] = set()
        self._lock = Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_seconds

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _lookup(self, key: CacheKey, ttl_seconds: float) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None

            value, stored_at = entry
            age = self._clock() - stored_at
            if age >= ttl_seconds:
                # Expired, remove it
                del self._entries[key]
                logger.debug("Cache expired for key: %s", key)
                return False, None

            return True, value

    def get(self, key: CacheKey, ttl_seconds: Optional[float] = None) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        hit, value = self._lookup(key, ttl_seconds if ttl_seconds is not None else self._ttl_seconds)
        if not hit or value is MISSING:
            return None
        return value

    def set(self, key: CacheKey, value: Any) -> None:
        """Store value with the current timestamp."""
        with self._lock:
            self._entries[key] = (value, self._clock())

    def get_or_fetch(
        self,
        key: CacheKey,
        fetch: Callable[[], Any],
        *,
        ttl_seconds: Optional[float] = None,
        cache_none: bool = False,
    ) -> Optional[Any]:
        """Return a fresh cached value or call ``fetch`` and cache its result.

        Exceptions raised by ``fetch`` propagate and nothing is cached, so an
        unreachable store never resurrects an expired entry. A result whose
        key was invalidated while ``fetch`` ran is returned but not stored.

        Args:
            key: ``(kind, entity_id)`` cache key
            fetch: Zero-argument loader hitting the backing store
            ttl_seconds: Per-call TTL override
            cache_none: Remember a ``None`` result as a confirmed miss
        """
        hit, value = self._lookup(key, ttl_seconds if ttl_seconds is not None else self._ttl_seconds)
        if hit:
            logger.debug("Cache hit for key: %s", key)
            return None if value is MISSING else value

        with self._lock:
            self._inflight[key] = self._inflight.get(key, 0) + 1

        try:
            value = fetch()
        finally:
            with self._lock:
                stale = key in self._stale
                remaining = self._inflight[key] - 1
                if remaining:
                    self._inflight[key] = remaining
                else:
                    del self._inflight[key]
                    self._stale.discard(key)

        if stale:
            logger.debug("Cache write skipped after invalidation for key: %s", key)
            return value

        if value is None:
            if cache_none:
                self.set(key, MISSING)
            return None

        self.set(key, value)
        return value

    def _drop(self, keys: Iterable[CacheKey]) -> int:
        # Caller holds the lock
        removed = 0
        for k in keys:
            if self._entries.pop(k, None) is not None:
                removed += 1
        return removed

    def _mark_stale(self, match: Callable[[CacheKey], bool]) -> None:
        # Caller holds the lock
        self._stale.update(k for k in self._inflight if match(k))

    def invalidate(self, key: CacheKey) -> bool:
        """Drop a single entry. Returns True if one was present."""
        with self._lock:
            removed = self._drop([key]) > 0
            self._mark_stale(lambda k: k == key)
        if removed:
            logger.debug("Cache invalidated for key: %s", key)
        return removed

    def invalidate_kind(self, kind: str) -> int:
        """Drop every entry of one kind (e.g. all feature flags)."""
        with self._lock:
            removed = self._drop([k for k in self._entries if k[0] == kind])
            self._mark_stale(lambda k: k[0] == kind)
        return removed

    def invalidate_entity(self, entity_id: Hashable, kinds: Optional[Iterable[str]] = None) -> int:
        """Drop the entries belonging to an entity.

        Args:
            entity_id: Second element of the cache key
            kinds: Restrict to these kinds; every kind when omitted

        Returns:
            Number of entries removed
        """
        allowed = None if kinds is None else frozenset(kinds)

        def match(k: CacheKey) -> bool:
            return k[1] == entity_id and (allowed is None or k[0] in allowed)

        with self._lock:
            removed = self._drop([k for k in self._entries if match(k)])
            self._mark_stale(match)
        if removed:
            logger.debug("Cache invalidated %d entries for %s", removed, entity_id)
        return removed

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._entries.clear()
            self._stale.update(self._inflight)
        logger.debug("Cache cleared")

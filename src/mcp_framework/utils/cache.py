"""Generic expiring cache shared by every cache site in the framework.

Used for bearer-token decisions, introspection responses, JWKS signing keys,
PKCE sessions and authorization-server metadata.

The cache uses an OrderedDict with TTL expiration and LRU eviction when
max_size is reached. An entry is never returned once its TTL has elapsed, and
is additionally dropped early when the optional ``expiry_of`` hook reports
that the cached payload's own expiry (a token ``exp``, wall-clock seconds)
has passed.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

DEFAULT_TTL = 300.0

DEFAULT_MAX_SIZE = 1000


class CacheEntry(Generic[V]):
    """Cache entry with TTL expiration.

    Attributes:
        value: Cached payload
        expires_at: Clock reading at which the entry expires
    """

    __slots__ = ("value", "expires_at")

    def __init__(self, value: V, expires_at: float) -> None:
        self.value = value
        self.expires_at = expires_at


class ExpiringCache(Generic[K, V]):
    """Thread-safe in-memory LRU cache with per-entry TTL.

    All operations hold an internal lock for their whole (non-suspending)
    critical section, so the cache is safe to share across asyncio tasks and
    threads. Concurrent writers for the same key simply overwrite each other.

    Args:
        default_ttl: TTL in seconds used when ``set`` is called without one
        max_size: Maximum entries (0 for unlimited); the least recently used
            entry is evicted first
        expiry_of: Optional hook returning the payload's own expiry as a Unix
            timestamp; entries are dropped once ``time.time()`` reaches it
        clock: Monotonic clock used for TTL bookkeeping (overridable in tests)
        prune_threshold: When set, inserting past this many entries triggers a
            sweep of expired entries before LRU eviction is considered

    Example:
        >>> cache: ExpiringCache[str, int] = ExpiringCache(default_ttl=60.0, max_size=100)
        >>> cache.set("answer", 42)
        >>> cache.get("answer")
        42
    """

    def __init__(
        self,
        default_ttl: float = DEFAULT_TTL,
        max_size: int = DEFAULT_MAX_SIZE,
        *,
        expiry_of: Optional[Callable[[V], Optional[float]]] = None,
        clock: Callable[[], float] = time.monotonic,
        prune_threshold: Optional[int] = None,
    ) -> None:
        self._cache: OrderedDict[K, CacheEntry[V]] = OrderedDict()
        self._lock = Lock()
        self._default_ttl = default_ttl
        self._max_size = max_size
        self._expiry_of = expiry_of
        self._clock = clock
        self._prune_threshold = prune_threshold

    def _is_expired(self, entry: CacheEntry[V], now: float) -> bool:
        if now >= entry.expires_at:
            return True
        if self._expiry_of is not None:
            exp = self._expiry_of(entry.value)
            if exp is not None and time.time() >= exp:
                return True
        return False

    def get(self, key: K) -> Optional[V]:
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, self._clock()):
                del self._cache[key]
                return None
            self._cache.move_to_end(key)
            return entry.value

    def set(self, key: K, value: V, ttl: Optional[float] = None) -> None:
        if ttl is None:
            ttl = self._default_ttl
        with self._lock:
            now = self._clock()
            if key in self._cache:
                del self._cache[key]
            else:
                if self._prune_threshold is not None and len(self._cache) >= self._prune_threshold:
                    self._remove_expired_locked(now)
                if self._max_size > 0:
                    while len(self._cache) >= self._max_size:
                        self._cache.popitem(last=False)
            self._cache[key] = CacheEntry(value, now + ttl)

    def pop(self, key: K) -> Optional[V]:
        """Atomically remove and return an unexpired entry.

        Returns None when the key is unknown or the entry has expired; in both
        cases the key is gone afterwards, so a value can be redeemed once.
        """
        with self._lock:
            entry = self._cache.pop(key, None)
            if entry is None or self._is_expired(entry, self._clock()):
                return None
            return entry.value

    def invalidate(self, key: K) -> None:
        with self._lock:
            self._cache.pop(key, None)

    def clear_all(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    @property
    def max_size(self) -> int:
        return self._max_size

    def _remove_expired_locked(self, now: float) -> int:
        expired = [k for k, e in self._cache.items() if self._is_expired(e, now)]
        for k in expired:
            del self._cache[k]
        return len(expired)

    def cleanup_expired(self) -> int:
        """Remove all expired entries from cache.

        Returns:
            Number of expired entries removed
        """
        with self._lock:
            return self._remove_expired_locked(self._clock())

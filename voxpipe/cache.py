"""
Single-slot cached value with key check and optional TTL.

Used for the transcription endpoint, API keys and reasoning availability.
A changed key always forces a reload, so a value is never served against
configuration it wasn't computed for.
"""

import threading
import time
from typing import Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")

_MISSING = object()


class CachedValue(Generic[V]):
    """
    Holds one value computed for one key.

    Usage:
        cache = CachedValue(ttl=30.0)
        value = cache.get(("openai", ""), lambda: compute())
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._key: object = _MISSING
        self._value: object = _MISSING
        self._expires_at: Optional[float] = None

    def get(self, key: Hashable, loader: Callable[[], V]) -> V:
        """
        Return the cached value for key, loading it on miss or expiry.

        Loader exceptions propagate and leave the cache empty.
        """
        with self._lock:
            if self._is_fresh(key):
                return self._value  # type: ignore[return-value]

        value = loader()
        self.set(key, value)
        return value

    def set(self, key: Hashable, value: V) -> None:
        """Store value for key, restarting the TTL."""
        with self._lock:
            self._key = key
            self._value = value
            self._expires_at = None if self.ttl is None else self._clock() + self.ttl

    def peek(self, key: Hashable) -> Optional[V]:
        """Return the cached value if fresh for key, else None."""
        with self._lock:
            if self._is_fresh(key):
                return self._value  # type: ignore[return-value]
            return None

    def invalidate(self) -> None:
        """Drop the cached value."""
        with self._lock:
            self._key = _MISSING
            self._value = _MISSING
            self._expires_at = None

    def _is_fresh(self, key: Hashable) -> bool:
        """Must be called with lock held."""
        if self._value is _MISSING or self._key != key:
            return False
        if self._expires_at is not None and self._clock() >= self._expires_at:
            return False
        return True

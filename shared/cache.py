"""
In-memory caching used by the transcript tiers and the negative cache.
"""

import time
from typing import Any


class MemoryCache:
    """Process-lifetime key/value cache with optional per-entry TTL."""

    def __init__(self, default_ttl: float | None = None) -> None:
        """
        Args:
            default_ttl: Seconds an entry stays valid, ``None`` keeps entries
                until they are deleted or the cache is cleared.
        """
        self.default_ttl = default_ttl
        self._cache: dict[str, tuple[Any, float | None]] = {}

    def get(self, key: str) -> Any | None:
        """
        Get value from cache by key.

        Returns:
            Cached value if present and not expired, None otherwise
        """
        item = self._cache.get(key)
        if item is None:
            return None
        value, expires = item
        if expires is not None and time.monotonic() >= expires:
            del self._cache[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, using ``default_ttl`` when ``ttl`` is omitted."""
        ttl = self.default_ttl if ttl is None else ttl
        expires = time.monotonic() + ttl if ttl is not None else None
        self._cache[key] = (value, expires)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns the number removed."""
        doomed = [key for key in self._cache if key.startswith(prefix)]
        for key in doomed:
            del self._cache[key]
        return len(doomed)

    def clear(self) -> None:
        """Clear all cached values."""
        self._cache.clear()

    def size(self) -> int:
        return len(self._cache)

    def cleanup_expired(self) -> int:
        """
        Remove expired items from cache.

        Returns:
            Number of expired items removed
        """
        now = time.monotonic()
        expired_keys = [
            key for key, (_, expires) in self._cache.items() if expires is not None and now >= expires
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

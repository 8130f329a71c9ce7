"""Volatile Store Module - In-process mirror of the durable store.

Philosophy:
- Dictionary lookups for the hot path
- Thread-safe operations
- Lost on restart, refilled lazily from the durable store

Public API (the "studs"):
    VolatileStore: Thread-safe key -> CacheEntry mapping
"""

import threading

from dimcache.cache.entry import CacheEntry


class VolatileStore:
    """In-memory cache tier.

    Example:
        >>> store = VolatileStore()
        >>> store.put(CacheEntry("countries", ["US"], 1700000000000))
        >>> store.get("countries").value
        ['US']
    """

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CacheEntry | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous entry for its key."""
        with self._lock:
            self._entries[entry.key] = entry

    def remove(self, key: str, expected: CacheEntry | None = None) -> bool:
        """Remove the entry for a key.

        Args:
            key: Cache key
            expected: Only remove if the stored entry is this exact object

        Returns:
            True if an entry was removed, False otherwise
        """
        with self._lock:
            current = self._entries.get(key)
            if current is None:
                return False
            if expected is not None and current is not expected:
                return False
            del self._entries[key]
            return True

    def keys(self) -> set[str]:
        """Snapshot of keys currently held in memory."""
        with self._lock:
            return set(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["VolatileStore"]

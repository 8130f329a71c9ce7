"""Lookup Cache Module - Two-tier TTL cache facade.

Philosophy:
- Tiered caching (in-memory + file-based)
- Per-key TTL from a static expiry policy
- Thread-safe operations (per-key locks, no cross-key ordering)
- Graceful degradation: storage failures never reach the caller

Public API (the "studs"):
    LookupCache: get/set/clear/stats over the volatile and durable tiers
    CacheStats: Snapshot of keys present in each tier

Read path:
    volatile hit (fresh)  -> return value
    volatile expired      -> drop from memory, fall through
    durable hit (fresh)   -> promote into memory, return value
    otherwise             -> None (caller fetches and calls set)
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dimcache.cache.durable_store import DurableStore, StorageWriteError
from dimcache.cache.entry import CacheEntry, now_ms
from dimcache.cache.expiry_policy import ExpiryPolicy
from dimcache.cache.volatile_store import VolatileStore

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


@dataclass
class CacheStats:
    """Keys present in each cache tier at snapshot time.

    Attributes:
        volatile_keys: Keys held in memory
        durable_keys: Keys with a durable unit on disk
    """

    volatile_keys: set[str] = field(default_factory=set)
    durable_keys: set[str] = field(default_factory=set)

    @property
    def is_empty(self) -> bool:
        return not self.volatile_keys and not self.durable_keys

    def to_dict(self) -> dict[str, Any]:
        """Convert to the admin API response shape.

        Returns:
            Dictionary with memoryCache and fileCache sections
        """
        return {
            "memoryCache": {
                "size": len(self.volatile_keys),
                "keys": sorted(self.volatile_keys),
            },
            "fileCache": {
                "size": len(self.durable_keys),
                "keys": sorted(self.durable_keys),
            },
        }


class LookupCache:
    """Two-tier cache for lookup tables with per-key expiry.

    The cache never fetches data itself. A miss returns None and the caller
    is expected to fetch fresh data and call set().

    Cache directory: ~/.dimcache/cache (one JSON file per key)

    Example:
        >>> cache = LookupCache(cache_dir=Path("/tmp/dimcache"))
        >>> entry = cache.set("countries", ["US", "CN"])
        >>> cache.get("countries")
        ['US', 'CN']
    """

    DEFAULT_CACHE_DIR = Path.home() / ".dimcache" / "cache"

    def __init__(
        self,
        cache_dir: Path | None = None,
        policy: ExpiryPolicy | None = None,
        clock: Clock | None = None,
    ):
        """Initialize lookup cache.

        Args:
            cache_dir: Directory for durable units (default: ~/.dimcache/cache)
            policy: Per-key TTL table (default: ExpiryPolicy())
            clock: Callable returning epoch milliseconds (default: now_ms)
        """
        self.cache_dir = Path(cache_dir or self.DEFAULT_CACHE_DIR).expanduser()
        self.policy = policy if policy is not None else ExpiryPolicy()
        self._clock = clock or now_ms
        self._volatile = VolatileStore()
        self._durable = DurableStore(self.cache_dir)
        self._key_locks: dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def now(self) -> int:
        """Current time in epoch milliseconds according to the cache clock."""
        return self._clock()

    def ttl_for(self, key: str) -> int:
        return self.policy.ttl_for(key)

    def is_expired(self, entry: CacheEntry) -> bool:
        return entry.is_expired(self.ttl_for(entry.key), self.now())

    def get(self, key: str) -> Any | None:
        """Get a cached value.

        Args:
            key: Cache key

        Returns:
            Cached value if present and fresh in either tier, None otherwise
        """
        with self._lock_for(key):
            entry = self._volatile.get(key)
            if entry is not None:
                if not self.is_expired(entry):
                    logger.debug(f"Cache hit (memory): '{key}'")
                    return entry.value
                self._volatile.remove(key, expected=entry)
                logger.debug(f"Cache expired (memory): '{key}'")

            entry = self._durable.read(key)
            if entry is not None and not self.is_expired(entry):
                self._volatile.put(entry)
                logger.debug(f"Cache hit (disk): '{key}'")
                return entry.value

            logger.debug(f"Cache miss: '{key}'")
            return None

    def set(self, key: str, value: Any) -> CacheEntry:
        """Store a value, stamping it with the current time.

        The in-memory tier is always updated. A failure to persist the entry
        is logged and does not fail the call.

        Args:
            key: Cache key (must not be empty)
            value: JSON-serializable payload

        Returns:
            The newly created CacheEntry

        Raises:
            ValueError: If key is empty
        """
        if not key:
            raise ValueError("Cache key must not be empty")

        with self._lock_for(key):
            entry = CacheEntry(key=key, value=value, stored_at=self.now())
            self._volatile.put(entry)
            try:
                self._durable.write(entry)
            except StorageWriteError as e:
                logger.warning(f"Cache persisted in memory only: {e}")

        logger.debug(f"Cache updated: '{key}' (TTL: {self.ttl_for(key)}ms)")
        return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Get the freshest known entry for a key, ignoring expiry.

        Memory is preferred over disk. Nothing is promoted or removed.

        Args:
            key: Cache key

        Returns:
            CacheEntry if either tier holds one, None otherwise
        """
        with self._lock_for(key):
            entry = self._volatile.get(key)
            if entry is not None:
                return entry
            return self._durable.read(key)

    def clear(self, key: str) -> None:
        """Remove a key from both tiers (no-op if not cached).

        Args:
            key: Cache key
        """
        with self._lock_for(key):
            self._volatile.remove(key)
            try:
                self._durable.delete(key)
            except StorageWriteError as e:
                logger.warning(str(e))
            except ValueError:
                # Empty key never has a durable unit
                pass
        logger.debug(f"Cache cleared: '{key}'")

    def clear_all(self) -> None:
        """Remove every entry from both tiers.

        Each key is cleared under its own lock, so a concurrent set() lands
        either entirely before or entirely after the clear of that key.
        Keys first written after the snapshot are kept. Durable deletions
        continue past individual failures.
        """
        failed: list[str] = []
        for key in sorted(self._volatile.keys() | self._durable.keys()):
            with self._lock_for(key):
                self._volatile.remove(key)
                try:
                    self._durable.delete(key)
                except StorageWriteError as e:
                    logger.warning(str(e))
                    failed.append(key)

        if failed:
            logger.warning(f"Cache cleared with {len(failed)} durable unit(s) left: {failed}")
        else:
            logger.debug("All cache cleared")

    def stats(self) -> CacheStats:
        """Snapshot of which keys are present in each tier.

        Returns:
            CacheStats (no expiry information)
        """
        return CacheStats(
            volatile_keys=self._volatile.keys(),
            durable_keys=self._durable.keys(),
        )


__all__ = ["CacheStats", "Clock", "LookupCache"]

"""Cache Module - Caching infrastructure for dimcache.

Philosophy:
- Tiered caching (in-memory + file-based)
- Per-key TTL-based expiration (24h countries, 7d devices, 30d languages)
- Background refresh for proactive cache warming
- Thread-safe operations

Public API (the "studs"):
    From lookup_cache:
        LookupCache: Two-tier cache facade (get/set/clear/stats)
        CacheStats: Keys present per tier

    From entry:
        CacheEntry: Cached value with write timestamp

    From expiry_policy:
        ExpiryPolicy: Immutable key -> TTL table
        LookupDomain: Closed set of upstream lookup tables

    From durable_store:
        StorageReadError: Durable unit unreadable (treated as miss)
        StorageWriteError: Durable unit not written (logged, non-fatal)

    From background_refresh:
        RefreshScheduler: Warmup + recurring proactive refresh
        RefreshReport: Outcome of a warmup or refresh pass
"""

from dimcache.cache.background_refresh import (
    FetchFunction,
    RefreshReport,
    RefreshScheduler,
    RefreshSchedulerError,
    SchedulerState,
)
from dimcache.cache.durable_store import StorageReadError, StorageWriteError
from dimcache.cache.entry import CacheEntry, now_ms
from dimcache.cache.expiry_policy import (
    DEFAULT_EXPIRY_MS,
    DEFAULT_TTLS,
    ExpiryPolicy,
    LookupDomain,
)
from dimcache.cache.lookup_cache import CacheStats, LookupCache

__all__ = [
    "DEFAULT_EXPIRY_MS",
    "DEFAULT_TTLS",
    "CacheEntry",
    "CacheStats",
    "ExpiryPolicy",
    "FetchFunction",
    "LookupCache",
    "LookupDomain",
    "RefreshReport",
    "RefreshScheduler",
    "RefreshSchedulerError",
    "SchedulerState",
    "StorageReadError",
    "StorageWriteError",
    "now_ms",
]

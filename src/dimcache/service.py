"""Cache Service Module - Public cache operations for routing and admin layers.

Philosophy:
- One explicit instance per process, passed to collaborators (no module singleton)
- Thin coordination over LookupCache + RefreshScheduler
- Failures degrade to "treat as miss" or "skip and retry next cycle"

Public API (the "studs"):
    CacheService: get/set/clear/stats, warmup and auto-refresh control
"""

import logging
import threading
from collections.abc import Mapping
from typing import Any

from dimcache.cache.background_refresh import FetchFunction, RefreshReport, RefreshScheduler
from dimcache.cache.lookup_cache import LookupCache
from dimcache.config_manager import DimCacheConfig
from dimcache.log_sanitizer import LogSanitizer

logger = logging.getLogger(__name__)


class CacheService:
    """Produced interface of the cache subsystem.

    Example:
        >>> service = CacheService.from_config(ConfigManager.load_config())
        >>> service.initialize(UpstreamClient())
        >>> service.get_cached_data("countries")["status"]
        'success'
    """

    def __init__(self, cache: LookupCache, scheduler: RefreshScheduler | None = None):
        """Initialize cache service.

        Args:
            cache: Cache instance owned by this service
            scheduler: Refresh scheduler (default: RefreshScheduler(cache))
        """
        self.cache = cache
        self.scheduler = scheduler or RefreshScheduler(cache)
        self._init_lock = threading.Lock()
        self._initialized = False
        self._default_fetch: FetchFunction | None = None

    @classmethod
    def from_config(cls, config: DimCacheConfig) -> "CacheService":
        """Build a service from loaded configuration."""
        cache = LookupCache(cache_dir=config.cache_path, policy=config.expiry_policy())
        scheduler = RefreshScheduler(
            cache,
            interval=config.refresh_interval,
            threshold_ms=config.refresh_threshold_ms,
        )
        return cls(cache, scheduler)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def get_cache(self, key: str) -> Any | None:
        return self.cache.get(key)

    def set_cache(self, key: str, data: Any) -> None:
        self.cache.set(key, data)

    def clear_cache(self, key: str) -> None:
        self.cache.clear(key)

    def clear_all_cache(self) -> None:
        self.cache.clear_all()

    def get_cache_stats(self) -> dict[str, Any]:
        """Cache statistics in the admin API response shape."""
        return self.cache.stats().to_dict()

    def warmup_cache(self, fetch_fn: FetchFunction) -> RefreshReport:
        return self.scheduler.warmup(fetch_fn)

    def start_auto_refresh(self, fetch_fn: FetchFunction) -> RefreshReport:
        """Warm the cache and start the recurring refresh timer.

        Returns:
            RefreshReport from the warmup pass
        """
        return self.scheduler.start(fetch_fn)

    def stop_auto_refresh(self) -> None:
        self.scheduler.stop()

    def initialize(self, fetch_fn: FetchFunction) -> RefreshReport | None:
        """Warm up and start auto refresh once per service instance.

        Later calls are no-ops. The fetch function is remembered as the
        default for get_cached_data().

        Args:
            fetch_fn: Function used to fetch fresh data from upstream

        Returns:
            RefreshReport from the warmup pass, or None if already initialized
        """
        with self._init_lock:
            if self._initialized:
                return None

            logger.info("Initializing cache system...")
            self._default_fetch = fetch_fn
            report = self.start_auto_refresh(fetch_fn)
            self._initialized = True
            logger.info("Cache system initialized")
            return report

    def shutdown(self) -> None:
        """Stop auto refresh and allow initialize() to run again."""
        with self._init_lock:
            self.stop_auto_refresh()
            self._initialized = False

    def get_cached_data(
        self,
        key: str,
        endpoint: str | None = None,
        fetch_fn: FetchFunction | None = None,
    ) -> dict[str, Any]:
        """Serve a lookup table from cache, fetching it on a miss.

        Args:
            key: Cache key
            endpoint: Upstream endpoint (default: the scheduler's endpoint for key)
            fetch_fn: Fetch function (default: the one given to initialize())

        Returns:
            {"status": "success", "data": ..., "msg": ...} on a hit or fetch,
            {"status": "error", "data": [], "msg": ...} otherwise
        """
        cached = self.cache.get(key)
        if cached is not None:
            return {"status": "success", "data": cached, "msg": f"Cached {key} data"}

        fetch = fetch_fn or self._default_fetch
        endpoint = endpoint or self.scheduler.endpoints.get(key)

        if fetch is not None and endpoint is not None:
            logger.debug(f"Cache miss, fetching from API: '{key}'")
            try:
                result = fetch(endpoint, {})
            except Exception as e:
                logger.warning(
                    f"API request failed for '{key}': {LogSanitizer.sanitize_exception(e)}"
                )
            else:
                data = result.get("data") if isinstance(result, Mapping) else None
                if data:
                    self.cache.set(key, data)
                    response = dict(result)
                    response.setdefault("status", "success")
                    response.setdefault("msg", f"Fetched {key} data")
                    return response
        else:
            logger.debug(f"No fetch function or endpoint for '{key}'")

        logger.info(f"API failed for: '{key}', no fallback data")
        return {"status": "error", "data": [], "msg": f"Failed to fetch {key} data"}


__all__ = ["CacheService"]

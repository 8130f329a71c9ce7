"""Background Refresh Module - Warmup and proactive cache refresh.

Philosophy:
- Warm every known key once at start, then keep entries warm on a timer
- Refresh only keys nearing expiry (bounds upstream traffic)
- One failing key never aborts the batch or cancels the timer
- Deterministic stop: no tick fires after stop() returns

Public API (the "studs"):
    RefreshScheduler: Warmup + recurring refresh over a LookupCache
    RefreshReport: Outcome of one warmup or refresh pass
    SchedulerState: Idle/running state
    FetchFunction: fetch(endpoint, params) -> {"data": ...}

Architecture:
- Daemon thread per start(), each with its own stop Event
- start() while running stops the old thread before arming a new one
- Tick interval: 1h, refresh threshold: 1h remaining lifetime
"""

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from dimcache.cache.expiry_policy import HOUR_MS, LookupDomain
from dimcache.cache.lookup_cache import LookupCache

logger = logging.getLogger(__name__)

FetchFunction = Callable[[str, dict[str, Any]], Mapping[str, Any] | None]


class RefreshSchedulerError(Exception):
    """Raised when the refresh scheduler is misconfigured."""

    pass


class SchedulerState(StrEnum):
    """Refresh scheduler states."""

    IDLE = "idle"
    RUNNING = "running"


@dataclass
class RefreshReport:
    """Outcome of one warmup or refresh pass.

    Attributes:
        refreshed: Keys fetched and stored
        skipped: Keys left untouched (still valid or no endpoint)
        failed: Key -> reason for keys whose fetch failed or returned no data
    """

    refreshed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        return (
            f"{len(self.refreshed)} refreshed, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )


class RefreshScheduler:
    """Warmup and proactive refresh for a LookupCache.

    Example:
        >>> scheduler = RefreshScheduler(cache)
        >>> scheduler.start(client)  # warmup now, refresh every hour
        >>> scheduler.stop()
    """

    DEFAULT_INTERVAL = 3600  # 1 hour
    DEFAULT_THRESHOLD_MS = HOUR_MS
    DEFAULT_JOIN_TIMEOUT = 5.0
    THREAD_NAME = "dimcache-refresh"

    def __init__(
        self,
        cache: LookupCache,
        interval: float | None = None,
        threshold_ms: int | None = None,
        endpoints: Mapping[str, str] | None = None,
        join_timeout: float | None = None,
    ):
        """Initialize refresh scheduler.

        Args:
            cache: Cache to keep warm
            interval: Seconds between refresh ticks (default: 3600 = 1h)
            threshold_ms: Refresh keys with less remaining lifetime (default: 1h)
            endpoints: Key -> upstream endpoint (default: LookupDomain endpoints)
            join_timeout: Seconds stop() waits for an in-progress tick (default: 5)

        Raises:
            RefreshSchedulerError: If interval or threshold is not positive
        """
        self.cache = cache
        self.interval = self.DEFAULT_INTERVAL if interval is None else interval
        self.threshold_ms = self.DEFAULT_THRESHOLD_MS if threshold_ms is None else threshold_ms
        self.endpoints = dict(LookupDomain.endpoints() if endpoints is None else endpoints)
        self.join_timeout = self.DEFAULT_JOIN_TIMEOUT if join_timeout is None else join_timeout

        if self.interval <= 0:
            raise RefreshSchedulerError(f"Refresh interval must be positive, got {self.interval}")
        if self.threshold_ms <= 0:
            raise RefreshSchedulerError(
                f"Refresh threshold must be positive, got {self.threshold_ms}"
            )

        self._lock = threading.RLock()
        self._thread: threading.Thread | None = None
        self._stop_event: threading.Event | None = None

    @property
    def state(self) -> SchedulerState:
        if self._thread is not None:
            return SchedulerState.RUNNING
        return SchedulerState.IDLE

    @property
    def is_running(self) -> bool:
        return self.state == SchedulerState.RUNNING

    def start(self, fetch: FetchFunction) -> RefreshReport:
        """Run warmup, then arm the recurring refresh timer.

        Calling start() while running replaces the existing timer, so at most
        one recurring pass is ever active for this scheduler.

        Args:
            fetch: Function used to fetch fresh data from upstream

        Returns:
            RefreshReport from the warmup pass
        """
        with self._lock:
            self._stop_locked()

            report = self.warmup(fetch)

            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(fetch, stop_event),
                name=self.THREAD_NAME,
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            thread.start()

        logger.info(f"Auto refresh started (interval: {self.interval}s)")
        return report

    def stop(self) -> None:
        """Cancel the recurring refresh timer.

        A fetch already in progress is not interrupted, but no further tick
        is started once this returns.
        """
        with self._lock:
            self._stop_locked()

    def _stop_locked(self) -> None:
        thread, stop_event = self._thread, self._stop_event
        if thread is None or stop_event is None:
            return

        stop_event.set()
        self._thread = None
        self._stop_event = None

        if thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                logger.warning("Refresh tick still finishing after stop; no further ticks will run")

        logger.info("Auto refresh stopped")

    def _run(self, fetch: FetchFunction, stop_event: threading.Event) -> None:
        """Timer loop (runs in the background thread)."""
        while not stop_event.wait(self.interval):
            try:
                self._refresh_pass(fetch, stop_event)
            except Exception as e:
                # Keep the timer alive, retry on the next tick
                logger.error(f"Automatic cache refresh failed: {e}")

    def warmup(self, fetch: FetchFunction) -> RefreshReport:
        """Fetch every policy key that has no valid cached value.

        Args:
            fetch: Function used to fetch fresh data from upstream

        Returns:
            RefreshReport for the pass
        """
        logger.info("Starting cache warmup...")
        report = RefreshReport()

        for key in self.cache.policy.keys():
            if self.cache.get(key) is not None:
                logger.debug(f"Cache already valid for: '{key}'")
                report.skipped.append(key)
                continue

            logger.debug(f"Warming up cache for: '{key}'")
            self._refresh_key(key, fetch, report)

        logger.info(f"Cache warmup completed: {report.summary()}")
        return report

    def refresh_once(self, fetch: FetchFunction) -> RefreshReport:
        """Run a single proactive refresh pass.

        Keys with no entry in either tier, or with less than threshold_ms of
        lifetime left, are fetched and stored. Others are left untouched.

        Args:
            fetch: Function used to fetch fresh data from upstream

        Returns:
            RefreshReport for the pass
        """
        return self._refresh_pass(fetch, None)

    def _refresh_pass(
        self, fetch: FetchFunction, stop_event: threading.Event | None
    ) -> RefreshReport:
        logger.info("Starting automatic cache refresh...")
        report = RefreshReport()

        for key in self.cache.policy.keys():
            if stop_event is not None and stop_event.is_set():
                logger.debug("Refresh stopped, abandoning remaining keys")
                break

            entry = self.cache.peek(key)
            if entry is not None:
                time_left = entry.time_left(self.cache.ttl_for(key), self.cache.now())
                if time_left >= self.threshold_ms:
                    report.skipped.append(key)
                    continue
                logger.debug(f"Cache for '{key}' expires in {time_left}ms, refreshing")
            else:
                logger.debug(f"No cache entry for '{key}', refreshing")

            self._refresh_key(key, fetch, report)

        logger.info(f"Automatic cache refresh completed: {report.summary()}")
        return report

    def _refresh_key(self, key: str, fetch: FetchFunction, report: RefreshReport) -> None:
        """Fetch one key and store the result, recording the outcome."""
        endpoint = self.endpoints.get(key)
        if endpoint is None:
            logger.debug(f"No upstream endpoint for '{key}', skipping")
            report.skipped.append(key)
            return

        try:
            result = fetch(endpoint, {})
        except Exception as e:
            logger.warning(f"Error refreshing cache for '{key}': {e}")
            report.failed[key] = str(e)
            return

        # An empty table is valid data; only a missing or null field is skipped
        data = result.get("data") if isinstance(result, Mapping) else None
        if data is None:
            logger.warning(f"Upstream returned no data for '{key}', keeping existing cache")
            report.failed[key] = "no data in upstream response"
            return

        self.cache.set(key, data)
        report.refreshed.append(key)


__all__ = [
    "FetchFunction",
    "RefreshReport",
    "RefreshScheduler",
    "RefreshSchedulerError",
    "SchedulerState",
]

"""Cache Entry Module - Immutable cached value with write timestamp.

Philosophy:
- Entries are never mutated in place, a new set supersedes the old entry
- Timestamps are owned by the cache, never by the caller
- Serialized form matches the on-disk unit layout

Public API (the "studs"):
    CacheEntry: One cached value for one logical key
    now_ms: Current time in epoch milliseconds
"""

import math
import time
from dataclasses import dataclass
from typing import Any


def now_ms() -> int:
    """Return the current time in milliseconds since the epoch.

    Returns:
        Epoch milliseconds as an integer

    Example:
        >>> now_ms() > 0
        True
    """
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CacheEntry:
    """Cached value for a single key.

    Attributes:
        key: Logical cache key (lookup domain or caller-supplied string)
        value: Opaque payload, returned unmodified
        stored_at: Epoch milliseconds when the value was written (None = unknown)
    """

    key: str
    value: Any
    stored_at: int | None = None

    def age(self, now: int) -> int | None:
        """Milliseconds since the entry was stored, or None without a timestamp."""
        if self.stored_at is None:
            return None
        return now - self.stored_at

    def is_expired(self, ttl_ms: int, now: int) -> bool:
        """Check whether the entry has outlived its TTL.

        An entry without a recorded timestamp is always expired.

        Args:
            ttl_ms: Time-to-live in milliseconds
            now: Current time in epoch milliseconds

        Returns:
            True if expired, False otherwise
        """
        age = self.age(now)
        if age is None:
            return True
        return age > ttl_ms

    def time_left(self, ttl_ms: int, now: int) -> int:
        """Remaining lifetime in milliseconds (negative once expired).

        Args:
            ttl_ms: Time-to-live in milliseconds
            now: Current time in epoch milliseconds

        Returns:
            ttl_ms minus the entry age, or -ttl_ms if there is no timestamp
        """
        age = self.age(now)
        if age is None:
            return -ttl_ms
        return ttl_ms - age

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization.

        Returns:
            Dictionary with "key", "data" and "timestamp" fields
        """
        return {
            "key": self.key,
            "data": self.value,
            "timestamp": self.stored_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        """Create from dictionary.

        Args:
            data: Dictionary with "key", "data" and "timestamp" fields

        Returns:
            CacheEntry object

        Raises:
            TypeError: If data is not a dictionary or the timestamp is not numeric
            ValueError: If the timestamp is NaN or infinite
            KeyError: If the key or data field is missing
        """
        if not isinstance(data, dict):
            raise TypeError(f"Expected a JSON object, got {type(data).__name__}")

        timestamp = data.get("timestamp")
        if timestamp is not None:
            if isinstance(timestamp, bool) or not isinstance(timestamp, int | float):
                raise TypeError(f"Invalid timestamp: {timestamp!r}")
            if not math.isfinite(timestamp):
                raise ValueError(f"Timestamp must be finite, got {timestamp!r}")
            timestamp = int(timestamp)

        return cls(key=str(data["key"]), value=data["data"], stored_at=timestamp)


__all__ = ["CacheEntry", "now_ms"]

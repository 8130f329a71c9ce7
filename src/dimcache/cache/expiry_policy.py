"""Expiry Policy Module - Per-key TTL table for cached lookup tables.

Philosophy:
- Static configuration, immutable for the process lifetime
- Unknown keys fall back to a 24h default
- The policy keys define the warmup and refresh domain

Public API (the "studs"):
    ExpiryPolicy: Immutable key -> TTL mapping
    LookupDomain: Closed set of upstream lookup tables
    DEFAULT_EXPIRY_MS: Fallback TTL for keys not in the table
    DEFAULT_TTLS: TTL table for the known lookup domains
"""

from collections.abc import Iterator, Mapping
from enum import StrEnum
from types import MappingProxyType

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS

DEFAULT_EXPIRY_MS = DAY_MS


class LookupDomain(StrEnum):
    """Lookup tables served by the upstream API."""

    COUNTRIES = "countries"
    DEVICES = "devices"
    OPERATING_SYSTEMS = "operating_systems"
    BROWSERS = "browsers"
    LANGUAGES = "languages"
    TIME_ZONES = "time_zones"
    CONNECTION_TYPES = "connection_types"

    @property
    def endpoint(self) -> str:
        """Upstream endpoint path for this lookup table."""
        return f"/{self.value}"

    @classmethod
    def endpoints(cls) -> dict[str, str]:
        """Map every domain key to its upstream endpoint path."""
        return {domain.value: domain.endpoint for domain in cls}


# TTL Rationale:
# - countries (24h): country lists pick up new geo entries most often
# - devices/operating_systems/browsers (7d): change with new product releases
# - languages/time_zones/connection_types (30d): effectively static
DEFAULT_TTLS: dict[str, int] = {
    LookupDomain.COUNTRIES: DAY_MS,
    LookupDomain.DEVICES: 7 * DAY_MS,
    LookupDomain.OPERATING_SYSTEMS: 7 * DAY_MS,
    LookupDomain.BROWSERS: 7 * DAY_MS,
    LookupDomain.LANGUAGES: 30 * DAY_MS,
    LookupDomain.TIME_ZONES: 30 * DAY_MS,
    LookupDomain.CONNECTION_TYPES: 30 * DAY_MS,
}


class ExpiryPolicy:
    """Immutable mapping from cache key to TTL in milliseconds.

    Example:
        >>> policy = ExpiryPolicy()
        >>> policy.ttl_for("devices") == 7 * DAY_MS
        True
        >>> policy.ttl_for("unknown-key") == DEFAULT_EXPIRY_MS
        True
    """

    def __init__(
        self,
        ttls: Mapping[str, int] | None = None,
        default_ttl_ms: int = DEFAULT_EXPIRY_MS,
    ):
        """Initialize expiry policy.

        Args:
            ttls: Key -> TTL in milliseconds (default: DEFAULT_TTLS)
            default_ttl_ms: TTL for keys not in the table (default: 24h)

        Raises:
            ValueError: If any TTL is not positive
        """
        table = dict(DEFAULT_TTLS if ttls is None else ttls)
        for key, ttl in table.items():
            if ttl <= 0:
                raise ValueError(f"TTL for '{key}' must be positive, got {ttl}")
        if default_ttl_ms <= 0:
            raise ValueError(f"Default TTL must be positive, got {default_ttl_ms}")

        self._ttls: Mapping[str, int] = MappingProxyType({str(k): v for k, v in table.items()})
        self._default_ttl_ms = default_ttl_ms

    @classmethod
    def with_overrides(cls, overrides: Mapping[str, int]) -> "ExpiryPolicy":
        """Build a policy from the defaults with some TTLs replaced or added.

        Args:
            overrides: Key -> TTL in milliseconds

        Returns:
            New ExpiryPolicy
        """
        table = {str(k): v for k, v in DEFAULT_TTLS.items()}
        table.update(overrides)
        return cls(table)

    @property
    def default_ttl_ms(self) -> int:
        return self._default_ttl_ms

    def ttl_for(self, key: str) -> int:
        """Get TTL in milliseconds for a key, falling back to the default."""
        return self._ttls.get(key, self._default_ttl_ms)

    def keys(self) -> list[str]:
        """Keys with an explicit TTL, in declaration order."""
        return list(self._ttls)

    def as_dict(self) -> dict[str, int]:
        return dict(self._ttls)

    def __contains__(self, key: object) -> bool:
        return key in self._ttls

    def __iter__(self) -> Iterator[str]:
        return iter(self._ttls)

    def __len__(self) -> int:
        return len(self._ttls)

    def __repr__(self) -> str:
        return f"ExpiryPolicy({dict(self._ttls)!r}, default_ttl_ms={self._default_ttl_ms})"


__all__ = [
    "DAY_MS",
    "DEFAULT_EXPIRY_MS",
    "DEFAULT_TTLS",
    "HOUR_MS",
    "ExpiryPolicy",
    "LookupDomain",
]

"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores the cache location, refresh timing, upstream settings and per-key
TTL overrides. Configuration is read once at startup and is not mutated
while the cache runs.

Security:
- Config file permissions: 0600 (owner read/write only)
- API key never stored in the config file (environment only)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for Python 3.11+ without tomli installed
    import tomllib as tomli  # type: ignore[import,no-redef]

import tomlkit

from dimcache.cache.expiry_policy import ExpiryPolicy

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


def _positive_number(data: dict[str, Any], name: str, default: float) -> float:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
        raise ConfigError(f"'{name}' must be a positive number, got {value!r}")
    return value


@dataclass
class DimCacheConfig:
    """dimcache configuration data.

    Durations are in seconds; the cache converts them to milliseconds.
    """

    cache_dir: str = "~/.dimcache/cache"
    refresh_interval: float = 3600  # 1 hour between refresh ticks
    refresh_threshold: float = 3600  # refresh when less than 1 hour of life remains
    api_base_url: str = "https://cloaking.house/api"
    request_timeout: float = 30
    max_retries: int = 5
    ttl: dict[str, float] = field(default_factory=dict)  # key -> TTL override

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    @property
    def refresh_threshold_ms(self) -> int:
        return int(self.refresh_threshold * 1000)

    def expiry_policy(self) -> ExpiryPolicy:
        """Build the expiry policy: defaults plus configured TTL overrides."""
        return ExpiryPolicy.with_overrides(
            {key: int(seconds * 1000) for key, seconds in self.ttl.items()}
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting an empty TTL table."""
        data: dict[str, Any] = {
            "cache_dir": self.cache_dir,
            "refresh_interval": self.refresh_interval,
            "refresh_threshold": self.refresh_threshold,
            "api_base_url": self.api_base_url,
            "request_timeout": self.request_timeout,
            "max_retries": self.max_retries,
        }
        if self.ttl:
            data["ttl"] = dict(self.ttl)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DimCacheConfig":
        """Create from dictionary.

        Raises:
            ConfigError: If a value has the wrong type or range
        """
        defaults = cls()

        ttl = data.get("ttl", {})
        if not isinstance(ttl, dict):
            raise ConfigError("'ttl' must be a table of key = seconds")
        for key, seconds in ttl.items():
            if isinstance(seconds, bool) or not isinstance(seconds, int | float) or seconds <= 0:
                raise ConfigError(f"TTL for '{key}' must be a positive number, got {seconds!r}")

        max_retries = data.get("max_retries", defaults.max_retries)
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 1:
            raise ConfigError(f"'max_retries' must be a positive integer, got {max_retries!r}")

        return cls(
            cache_dir=str(data.get("cache_dir", defaults.cache_dir)),
            refresh_interval=_positive_number(data, "refresh_interval", defaults.refresh_interval),
            refresh_threshold=_positive_number(
                data, "refresh_threshold", defaults.refresh_threshold
            ),
            api_base_url=str(data.get("api_base_url", defaults.api_base_url)),
            request_timeout=_positive_number(data, "request_timeout", defaults.request_timeout),
            max_retries=max_retries,
            ttl=dict(ttl),
        )


class ConfigManager:
    """Manage dimcache configuration file.

    Configuration is stored at ~/.dimcache/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".dimcache"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If a custom path is given but does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> DimCacheConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            DimCacheConfig object (defaults if the file does not exist)

        Raises:
            ConfigError: If loading fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return DimCacheConfig()

        try:
            mode = config_path.stat().st_mode & 0o777
            if mode & 0o077:  # Check if group/other have any permissions
                logger.warning(
                    f"Config file has insecure permissions: {oct(mode)}. Fixing to 0600..."
                )
                os.chmod(config_path, 0o600)

            with open(config_path, "rb") as f:
                data = tomli.load(f)

        except Exception as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        if "api_key" in data:
            logger.warning("Ignoring 'api_key' in config file; set DIMCACHE_API_KEY instead")

        logger.debug(f"Loaded config from: {config_path}")
        return DimCacheConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: DimCacheConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Existing comments and formatting are preserved.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional)

        Returns:
            Path the configuration was written to

        Raises:
            ConfigError: If saving fails
        """
        temp_path: Path | None = None
        try:
            if custom_path:
                config_path = Path(custom_path).expanduser().resolve()
                config_path.parent.mkdir(parents=True, exist_ok=True)
            else:
                cls.DEFAULT_CONFIG_DIR.mkdir(parents=True, exist_ok=True)
                os.chmod(cls.DEFAULT_CONFIG_DIR, 0o700)
                config_path = cls.DEFAULT_CONFIG_FILE

            temp_path = config_path.with_suffix(".tmp")

            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            # Set secure permissions before moving
            os.chmod(temp_path, 0o600)

            # Atomic rename
            temp_path.replace(config_path)

            logger.debug(f"Saved config to: {config_path}")
            return config_path

        except Exception as e:
            if temp_path and temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e


__all__ = ["ConfigError", "ConfigManager", "DimCacheConfig"]

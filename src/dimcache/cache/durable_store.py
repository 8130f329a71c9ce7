"""Durable Store Module - One JSON file per cache key.

Philosophy:
- File-based persistence survives process restarts
- One unit per key, no shared index (file presence is the existence signal)
- Atomic writes (temp file + rename) so readers never see half-written units
- Secure permissions (0700 directory, 0600 files)

Public API (the "studs"):
    DurableStore: Per-key on-disk entry storage
    StorageReadError: Durable unit missing, unreadable or malformed
    StorageWriteError: Durable unit could not be written or deleted
    key_to_filename: Deterministic file name for a cache key

Layout:
    <cache_dir>/<quoted-key>.json  ->  {"key": ..., "data": ..., "timestamp": ...}
"""

import json
import logging
import os
from pathlib import Path
from urllib.parse import quote, unquote

from dimcache.cache.entry import CacheEntry

logger = logging.getLogger(__name__)

UNIT_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"


class StorageReadError(Exception):
    """Raised when a durable unit is missing, unreadable or malformed."""

    pass


class StorageWriteError(Exception):
    """Raised when a durable unit cannot be written or deleted."""

    pass


def key_to_filename(key: str) -> str:
    """Create the durable unit file name for a cache key.

    Every character outside the unreserved URL set is percent-encoded, so
    arbitrary caller keys cannot escape the cache directory.

    Args:
        key: Cache key (must not be empty)

    Returns:
        File name for the key

    Raises:
        ValueError: If key is empty

    Example:
        >>> key_to_filename("countries")
        'countries.json'
        >>> key_to_filename("a/b")
        'a%2Fb.json'
    """
    if not key:
        raise ValueError("Cache key must not be empty")
    return quote(key, safe="") + UNIT_SUFFIX


def filename_to_key(filename: str) -> str | None:
    """Reverse key_to_filename, returning None for non-unit files."""
    if not filename.endswith(UNIT_SUFFIX) or filename == UNIT_SUFFIX:
        return None
    return unquote(filename[: -len(UNIT_SUFFIX)])


class DurableStore:
    """Per-key on-disk storage for cache entries.

    Example:
        >>> store = DurableStore(Path("/tmp/dimcache"))
        >>> store.write(CacheEntry("countries", ["US"], 1700000000000))
        >>> store.read("countries").value
        ['US']
    """

    def __init__(self, cache_dir: Path):
        """Initialize durable store.

        Args:
            cache_dir: Directory holding one JSON unit per key
        """
        self.cache_dir = Path(cache_dir).expanduser()

    def path_for(self, key: str) -> Path:
        """Path of the durable unit for a key."""
        return self.cache_dir / key_to_filename(key)

    def _ensure_cache_dir(self) -> None:
        """Ensure cache directory exists with secure permissions.

        Raises:
            StorageWriteError: If directory creation fails
        """
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            # Owner only: rwx------
            os.chmod(self.cache_dir, 0o700)
        except Exception as e:
            raise StorageWriteError(f"Failed to create cache directory: {e}") from e

    def load(self, key: str) -> CacheEntry:
        """Load the durable unit for a key.

        Args:
            key: Cache key

        Returns:
            CacheEntry read from disk

        Raises:
            StorageReadError: If the unit is missing, unreadable or malformed
        """
        try:
            path = self.path_for(key)
        except ValueError as e:
            raise StorageReadError(str(e)) from e

        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise StorageReadError(f"No durable unit for '{key}'") from e
        except (OSError, ValueError) as e:
            raise StorageReadError(f"Failed to read durable unit for '{key}': {e}") from e

        try:
            entry = CacheEntry.from_dict(data)
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise StorageReadError(f"Malformed durable unit for '{key}': {e}") from e

        if entry.key != key:
            raise StorageReadError(
                f"Durable unit for '{key}' holds entry for '{entry.key}'"
            )
        return entry

    def read(self, key: str) -> CacheEntry | None:
        """Read the durable unit for a key, treating any failure as a miss.

        Args:
            key: Cache key

        Returns:
            CacheEntry if present and well formed, None otherwise
        """
        if not key:
            # Empty key never has a durable unit
            return None

        try:
            return self.load(key)
        except StorageReadError as e:
            if isinstance(e.__cause__, FileNotFoundError):
                logger.debug(f"Durable miss: '{key}'")
            else:
                logger.warning(f"Ignoring durable unit: {e}")
            return None

    def write(self, entry: CacheEntry) -> None:
        """Persist an entry, replacing any previous unit for its key.

        Args:
            entry: Entry to persist

        Raises:
            StorageWriteError: If the unit cannot be written
        """
        temp_path: Path | None = None
        try:
            self._ensure_cache_dir()

            path = self.path_for(entry.key)
            temp_path = path.with_name(path.name + TEMP_SUFFIX)

            with open(temp_path, "w") as f:
                json.dump(entry.to_dict(), f)

            # Set secure permissions before moving
            os.chmod(temp_path, 0o600)

            # Atomic rename
            temp_path.replace(path)

            logger.debug(f"Durable unit written: {path}")

        except StorageWriteError:
            raise
        except Exception as e:
            if temp_path is not None and temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.debug(f"Failed to remove temp file {temp_path}: {cleanup_error}")
            raise StorageWriteError(f"Failed to write durable unit for '{entry.key}': {e}") from e

    def delete(self, key: str) -> bool:
        """Delete the durable unit for a key.

        Args:
            key: Cache key

        Returns:
            True if a unit was deleted, False if none existed

        Raises:
            StorageWriteError: If the unit exists but cannot be deleted
        """
        path = self.path_for(key)
        try:
            path.unlink()
            logger.debug(f"Durable unit deleted: {path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageWriteError(f"Failed to delete durable unit for '{key}': {e}") from e

    def keys(self) -> set[str]:
        """Keys that currently have a durable unit.

        Returns:
            Set of cache keys (empty if the directory is missing or unreadable)
        """
        try:
            names = os.listdir(self.cache_dir)
        except FileNotFoundError:
            return set()
        except OSError as e:
            logger.warning(f"Failed to list cache directory {self.cache_dir}: {e}")
            return set()

        keys = set()
        for name in names:
            key = filename_to_key(name)
            if key is not None:
                keys.add(key)
        return keys


__all__ = [
    "DurableStore",
    "StorageReadError",
    "StorageWriteError",
    "filename_to_key",
    "key_to_filename",
]

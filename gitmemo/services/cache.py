"""
Local ephemeral cache with per-entry expiry.

Entries are JSON envelopes {data, timestamp, version, expiry} kept in a
string key-value storage under a fixed prefix, so the cache can share the
storage with unrelated keys. The cache has no authority: it can be dropped at
any time, and every failure inside it is logged and treated as a miss.

Key layout: {category}:{owner}:{repo}:{discriminators}
"""

import json
import logging
import time
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

CACHE_PREFIX = "gitmemo_cache:"
DEFAULT_VERSION = "1.0"

# Expiry per category, in milliseconds
ISSUES_EXPIRY_MS = 15 * 60 * 1000
LABELS_EXPIRY_MS = 15 * 60 * 1000
CONFIG_EXPIRY_MS = 15 * 60 * 1000
DEFAULT_EXPIRY_MS = ISSUES_EXPIRY_MS


# ============ KEY BUILDERS ============

def issues_key(owner: str, repo: str, page: int, labels: Optional[str] = None) -> str:
    return f"issues:{owner}:{repo}:{page}:{labels or ''}"


def issues_prefix(owner: str, repo: str) -> str:
    """Prefix covering every cached issue page of a repository."""
    return f"issues:{owner}:{repo}:"


def issue_key(owner: str, repo: str, number: int) -> str:
    return f"issue:{owner}:{repo}:{number}"


def labels_key(owner: str, repo: str) -> str:
    return f"labels:{owner}:{repo}"


def config_key() -> str:
    """The active repository config; never holds a token."""
    return "config:active"


# ============ STORAGE BACKEND ============

class StorageFullError(Exception):
    """Raised by a storage backend when a write exceeds its capacity."""


class MemoryStorage:
    """
    In-process string storage with a byte quota.

    Behaves like browser local storage: writes that would push the total
    size of keys and values past max_bytes are refused.
    """

    def __init__(self, max_bytes: int = 5 * 1024 * 1024):
        self.max_bytes = max_bytes
        self._items: dict[str, str] = {}

    def _size_of(self, key: str, value: str) -> int:
        return len(key.encode("utf-8")) + len(value.encode("utf-8"))

    def used_bytes(self) -> int:
        return sum(self._size_of(k, v) for k, v in self._items.items())

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        current = self._items.get(key)
        used = self.used_bytes() - (self._size_of(key, current) if current is not None else 0)
        if used + self._size_of(key, value) > self.max_bytes:
            raise StorageFullError(
                f"storage quota exceeded ({used + self._size_of(key, value)} > {self.max_bytes} bytes)"
            )
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self._items.keys())


# ============ CACHE ============

class StorageCache:
    """
    Expiring cache over a string storage backend.

    Constructed once per process and injected where needed. The clock
    returns milliseconds and can be replaced in tests.
    """

    def __init__(
        self,
        storage: Optional[MemoryStorage] = None,
        clock: Optional[Callable[[], float]] = None,
        prefix: str = CACHE_PREFIX,
    ):
        self.storage = storage if storage is not None else MemoryStorage()
        self._clock = clock or (lambda: time.time() * 1000)
        self.prefix = prefix

    def _full_key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _now(self) -> float:
        return self._clock()

    def _is_expired(self, timestamp: float, expiry: float) -> bool:
        # An entry is valid for exactly `expiry` ms after it was written
        return self._now() - timestamp >= expiry

    def _all_keys(self) -> list[str]:
        return [key for key in self.storage.keys() if key.startswith(self.prefix)]

    def set(
        self,
        key: str,
        data: Any,
        expiry: Optional[float] = None,
        version: Optional[str] = None,
    ) -> None:
        """
        Store data under key. Never raises.

        On a storage failure, expired entries are cleaned up and the write is
        retried once; if that fails too the write is dropped.
        """
        envelope = {
            "data": data,
            "timestamp": self._now(),
            "version": version or DEFAULT_VERSION,
            "expiry": expiry or DEFAULT_EXPIRY_MS,
        }
        full_key = self._full_key(key)

        try:
            serialized = json.dumps(envelope, default=str)
        except (TypeError, ValueError) as e:
            logger.warning("Cache set skipped for %s: data not serializable (%s)", key, e)
            return

        try:
            self.storage.set_item(full_key, serialized)
            logger.debug("Cache set: %s (%d bytes)", key, len(serialized))
            return
        except Exception as e:
            logger.warning("Cache set failed for %s: %s. Cleaning up and retrying", key, e)

        self.cleanup()
        try:
            self.storage.set_item(full_key, serialized)
            logger.debug("Cache set after cleanup: %s", key)
        except Exception as e:
            logger.error("Cache set dropped for %s after cleanup: %s", key, e)

    def get(self, key: str, version: Optional[str] = None) -> Any:
        """
        Return the cached data, or None when absent, expired, corrupt or of
        another version than requested. Stale entries are removed on read.
        """
        raw = self.storage.get_item(self._full_key(key))
        if raw is None:
            logger.debug("Cache miss: %s", key)
            return None

        try:
            envelope = json.loads(raw)
            timestamp = float(envelope["timestamp"])
            expiry = float(envelope.get("expiry") or DEFAULT_EXPIRY_MS)
            data = envelope["data"]
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Cache entry corrupt, removing %s: %s", key, e)
            self.remove(key)
            return None

        if self._is_expired(timestamp, expiry):
            logger.debug("Cache expired: %s (age %.0fms)", key, self._now() - timestamp)
            self.remove(key)
            return None

        if version is not None and envelope.get("version") != version:
            logger.debug("Cache version mismatch for %s: %s != %s", key, envelope.get("version"), version)
            self.remove(key)
            return None

        logger.debug("Cache hit: %s", key)
        return data

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    def remove(self, key: str) -> None:
        try:
            self.storage.remove_item(self._full_key(key))
        except Exception as e:
            logger.warning("Cache remove failed for %s: %s", key, e)

    def remove_prefix(self, prefix: str) -> int:
        """Remove every entry whose (unprefixed) key starts with prefix."""
        removed = 0
        for full_key in self._all_keys():
            if full_key[len(self.prefix):].startswith(prefix):
                self.storage.remove_item(full_key)
                removed += 1
        if removed:
            logger.debug("Cache invalidated %d entries under %s", removed, prefix)
        return removed

    def clear(self) -> None:
        keys = self._all_keys()
        logger.info("Clearing all cache entries (%d items)", len(keys))
        for full_key in keys:
            self.storage.remove_item(full_key)

    def get_stats(self) -> dict[str, Any]:
        keys = [key[len(self.prefix):] for key in self._all_keys()]
        return {"size": len(keys), "keys": keys}

    def cleanup(self) -> int:
        """Remove expired and unreadable entries under the cache prefix."""
        cleaned = 0
        for full_key in self._all_keys():
            raw = self.storage.get_item(full_key)
            if raw is None:
                continue
            try:
                envelope = json.loads(raw)
                expired = self._is_expired(
                    float(envelope["timestamp"]),
                    float(envelope.get("expiry") or DEFAULT_EXPIRY_MS),
                )
            except (ValueError, TypeError, KeyError):
                expired = True
            if expired:
                self.storage.remove_item(full_key)
                cleaned += 1
        logger.info("Cache cleanup completed: removed %d items", cleaned)
        return cleaned

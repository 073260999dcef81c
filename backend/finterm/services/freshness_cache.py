"""TTL cache over a key/value byte store.

Values are stored as JSON text with an expiry. An entry is logically absent
once ``now > expires_at``; expired rows are deleted lazily on read or by an
explicit :meth:`FreshnessCache.clear_expired` sweep.

Storage failures never reach the caller: reads degrade to a cache miss and
writes are logged and dropped.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from .clock import Clock, to_utc, utc_now
from .kv_store import KeyValueStore, kv_store

logger = logging.getLogger(__name__)

CACHE_PREFIX = "cache:"
DEFAULT_TTL_MINUTES = 5


@dataclass
class CacheEntry:
    """A cached value and its lifetime."""
    key: str
    data: str  # JSON text
    expires_at: datetime
    created_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def value(self) -> Any:
        return json.loads(self.data)

    def to_bytes(self) -> bytes:
        return json.dumps({
            "key": self.key,
            "data": self.data,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }).encode("utf-8")

    @classmethod
    def from_bytes(cls, raw: bytes) -> "CacheEntry":
        record = json.loads(raw.decode("utf-8"))
        return cls(
            key=record["key"],
            data=record["data"],
            expires_at=to_utc(datetime.fromisoformat(record["expires_at"])),
            created_at=to_utc(datetime.fromisoformat(record["created_at"])),
        )


class FreshnessCache:
    """Generic key -> JSON value cache with per-entry TTL."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock = utc_now,
        default_ttl_minutes: float = DEFAULT_TTL_MINUTES,
    ):
        self._store = store
        self._clock = clock
        self.default_ttl_minutes = default_ttl_minutes

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def _now(self) -> datetime:
        return to_utc(self._clock())

    @staticmethod
    def _store_key(key: str) -> str:
        return f"{CACHE_PREFIX}{key}"

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Raw entry for ``key`` whether or not it has expired."""
        try:
            raw = await self._store.read(self._store_key(key))
        except Exception as e:
            logger.warning(f"Cache read failed for '{key}': {e}")
            return None

        if raw is None:
            return None

        try:
            return CacheEntry.from_bytes(raw)
        except (ValueError, KeyError, TypeError, UnicodeDecodeError) as e:
            logger.warning(f"Discarding unreadable cache entry '{key}': {e}")
            return None

    async def get(self, key: str) -> Optional[Any]:
        """Cached value for ``key``; None when absent, expired or unreadable."""
        entry = await self.get_entry(key)
        if entry is None:
            return None

        if entry.is_expired(self._now()):
            await self.delete(key)
            return None

        try:
            return entry.value()
        except ValueError as e:
            logger.warning(f"Cache entry '{key}' holds invalid JSON: {e}")
            return None

    async def set(self, key: str, value: Any, ttl_minutes: Optional[float] = None) -> None:
        """Store ``value`` for ``ttl_minutes``, replacing any existing entry.

        Raises:
            ValueError: If ``ttl_minutes`` is not positive.
            TypeError: If ``value`` is not JSON-serializable.
        """
        if ttl_minutes is None:
            ttl_minutes = self.default_ttl_minutes
        if ttl_minutes <= 0:
            raise ValueError(f"ttl_minutes must be > 0, got {ttl_minutes}")

        now = self._now()
        entry = CacheEntry(
            key=key,
            data=json.dumps(value),
            expires_at=now + timedelta(minutes=ttl_minutes),
            created_at=now,
        )

        try:
            await self._store.write(self._store_key(key), entry.to_bytes())
        except Exception as e:
            logger.error(f"Cache write failed for '{key}': {e}")

    async def delete(self, key: str) -> None:
        try:
            await self._store.delete(self._store_key(key))
        except Exception as e:
            logger.error(f"Cache delete failed for '{key}': {e}")

    async def _cache_keys(self) -> list:
        try:
            keys = await self._store.iterate()
        except Exception as e:
            logger.error(f"Cache key scan failed: {e}")
            return []
        return [k[len(CACHE_PREFIX):] for k in keys if k.startswith(CACHE_PREFIX)]

    async def clear(self) -> int:
        """Remove every cache entry. Other data in the store is untouched."""
        keys = await self._cache_keys()
        for key in keys:
            await self.delete(key)
        logger.info(f"Cache cleared ({len(keys)} entries)")
        return len(keys)

    async def clear_expired(self) -> int:
        """Sweep entries whose expiry has passed (and unreadable ones).

        Returns:
            Number of entries removed.
        """
        now = self._now()
        removed = 0
        for key in await self._cache_keys():
            entry = await self.get_entry(key)
            if entry is None or entry.is_expired(now):
                await self.delete(key)
                removed += 1
        if removed:
            logger.info(f"Removed {removed} expired cache entries")
        return removed


# Global instance
freshness_cache = FreshnessCache(kv_store)

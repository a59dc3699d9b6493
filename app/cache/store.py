"""
Cache store adapters.

The cache is a disposable projection of the catalog store. Adapters translate
backend failures into ``CacheUnavailable``; callers decide how to degrade.
"""
import re
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, Optional, Tuple

import redis
import structlog

from app.core.config import settings
from app.core.exceptions import CacheUnavailable

logger = structlog.get_logger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(prefix: str) -> str:
    """Escape redis MATCH metacharacters so a prefix is matched literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", prefix)


class CacheStore(ABC):
    """Key/value cache with per-key expiration."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None on a miss."""

    @abstractmethod
    def set(self, key: str, value: str, ttl: int) -> None:
        """Store ``value`` for ``ttl`` seconds."""

    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete exact keys and return how many existed."""

    @abstractmethod
    def delete_by_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix`` and return the count."""

    @abstractmethod
    def delete_all(self) -> int:
        """Wipe the cache and return the number of keys removed."""

    @abstractmethod
    def stats(self) -> dict:
        """Backend statistics for the admin dashboard."""


class RedisCacheStore(CacheStore):

    def __init__(self, client: redis.Redis, scan_batch: int = 500):
        self.client = client
        self.scan_batch = scan_batch

    @classmethod
    def from_settings(cls) -> "RedisCacheStore":
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            socket_timeout=settings.CACHE_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.CACHE_CONNECT_TIMEOUT,
            decode_responses=True,
        )
        return cls(client, scan_batch=settings.CACHE_SCAN_BATCH)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"get {key}: {exc}") from exc

    def set(self, key: str, value: str, ttl: int) -> None:
        try:
            self.client.set(key, value, ex=ttl)
        except redis.RedisError as exc:
            raise CacheUnavailable(f"set {key}: {exc}") from exc

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self.client.unlink(*keys))
        except redis.RedisError as exc:
            raise CacheUnavailable(f"delete {keys}: {exc}") from exc

    def delete_by_prefix(self, prefix: str) -> int:
        pattern = f"{escape_glob(prefix)}*"
        deleted = 0
        try:
            batch = []
            for key in self.client.scan_iter(match=pattern, count=self.scan_batch):
                batch.append(key)
                if len(batch) >= self.scan_batch:
                    deleted += int(self.client.unlink(*batch))
                    batch = []
            if batch:
                deleted += int(self.client.unlink(*batch))
        except redis.RedisError as exc:
            raise CacheUnavailable(f"delete_by_prefix {prefix}: {exc}") from exc
        return deleted

    def delete_all(self) -> int:
        try:
            count = int(self.client.dbsize())
            self.client.flushdb()
        except redis.RedisError as exc:
            raise CacheUnavailable(f"delete_all: {exc}") from exc
        return count

    def stats(self) -> dict:
        try:
            info = self.client.info()
            total_keys = int(self.client.dbsize())
        except redis.RedisError as exc:
            raise CacheUnavailable(f"stats: {exc}") from exc

        hits = int(info.get("keyspace_hits", 0))
        misses = int(info.get("keyspace_misses", 0))
        lookups = hits + misses
        max_memory = int(info.get("maxmemory", 0)) or int(info.get("total_system_memory", 0))
        return {
            "backend": "redis",
            "total_keys": total_keys,
            "memory_usage_mb": round(int(info.get("used_memory", 0)) / (1024 * 1024), 2),
            "max_memory_mb": round(max_memory / (1024 * 1024), 2),
            "cache_hits": hits,
            "cache_misses": misses,
            "evicted_keys": int(info.get("evicted_keys", 0)),
            "hit_ratio_percent": round(hits / lookups * 100, 2) if lookups else 0.0,
        }


class InMemoryCacheStore(CacheStore):
    """Process-local store with lazy expiry. The clock is injectable for TTL tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def _live(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._live(key)
            if value is None:
                self.misses += 1
            else:
                self.hits += 1
            return value

    def set(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)

    def delete(self, *keys: str) -> int:
        count = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    del self._entries[key]
                    count += 1
        return count

    def delete_by_prefix(self, prefix: str) -> int:
        with self._lock:
            return self._drop(key for key in list(self._entries) if key.startswith(prefix))

    def delete_all(self) -> int:
        with self._lock:
            return self._drop(list(self._entries))

    def _drop(self, keys: Iterable[str]) -> int:
        now = self._clock()
        count = 0
        for key in keys:
            _, expires_at = self._entries.pop(key)
            if expires_at > now:
                count += 1
        return count

    def keys(self) -> list:
        with self._lock:
            now = self._clock()
            return sorted(key for key, (_, expires_at) in self._entries.items() if expires_at > now)

    def stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "backend": "memory",
            "total_keys": len(self.keys()),
            "cache_hits": self.hits,
            "cache_misses": self.misses,
            "hit_ratio_percent": round(self.hits / lookups * 100, 2) if lookups else 0.0,
        }


def build_cache_store() -> CacheStore:
    if settings.CACHE_BACKEND == "memory":
        logger.info("cache_backend_selected", backend="memory")
        return InMemoryCacheStore()
    logger.info("cache_backend_selected", backend="redis")
    return RedisCacheStore.from_settings()

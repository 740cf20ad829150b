"""Key-value cache backends used for rule lists, decisions and permission lookups.

Values are JSON-compatible Python objects. Every backend supports the five
operations the decision cache needs: ``get``, ``set`` with a TTL, ``add``
(set-if-absent), ``incr`` and ``delete``.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

import redis

from authz_core.common.errors import CacheUnavailableError
from authz_core.settings import Settings

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: int) -> None: ...

    def add(self, key: str, value: Any, ttl: int | None = None) -> bool: ...

    def incr(self, key: str) -> int: ...

    def delete(self, *keys: str) -> int: ...


class MemoryCacheBackend:
    """Thread-safe in-process cache with monotonic-clock expiry.

    Suitable for a single process and for tests. Several oracle instances
    must share :class:`RedisCacheBackend` instead so they agree on one version
    counter.
    """

    def __init__(self, *, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl: int | None) -> float | None:
        if ttl is None:
            return None
        return self._clock() + ttl

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._live(key)
            return None if entry is None else entry[0]

    def set(self, key: str, value: Any, ttl: int) -> None:
        with self._lock:
            self._entries[key] = (value, self._expiry(ttl))

    def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (value, self._expiry(ttl))
            return True

    def incr(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                value, expires_at = 0, None
            else:
                value, expires_at = entry
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"Cache value at {key!r} is not an integer")
            value += 1
            self._entries[key] = (value, expires_at)
            return value

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._live(key) is not None:
                    removed += 1
                self._entries.pop(key, None)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class RedisCacheBackend:
    """redis-py backed cache shared by every oracle instance.

    Any ``redis.RedisError`` is raised as :class:`CacheUnavailableError`; the
    oracle never falls back to uncached evaluation against a dead version
    store.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> RedisCacheBackend:
        timeout = settings.redis_socket_timeout.total_seconds()
        client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    @staticmethod
    def _dumps(value: Any) -> str:
        return json.dumps(value, separators=(",", ":"), sort_keys=True)

    @staticmethod
    def _loads(raw: Any) -> Any:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("authz.cache.decode_failed")
            return None

    def get(self, key: str) -> Any | None:
        try:
            raw = self._client.get(key)
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"Cache read failed for {key!r}") from exc
        return self._loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            self._client.set(key, self._dumps(value), ex=ttl)
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"Cache write failed for {key!r}") from exc

    def add(self, key: str, value: Any, ttl: int | None = None) -> bool:
        try:
            return bool(self._client.set(key, self._dumps(value), ex=ttl, nx=True))
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"Cache write failed for {key!r}") from exc

    def incr(self, key: str) -> int:
        try:
            return int(self._client.incr(key))
        except redis.RedisError as exc:
            raise CacheUnavailableError(f"Cache increment failed for {key!r}") from exc

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self._client.delete(*keys))
        except redis.RedisError as exc:
            raise CacheUnavailableError("Cache delete failed") from exc


def build_cache_backend(settings: Settings) -> CacheBackend:
    if settings.cache_backend == "redis":
        logger.info("authz.cache.backend", extra={"backend": "redis"})
        return RedisCacheBackend.from_settings(settings)
    logger.info("authz.cache.backend", extra={"backend": "memory"})
    return MemoryCacheBackend()


__all__ = [
    "CacheBackend",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "build_cache_backend",
]

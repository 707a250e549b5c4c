from __future__ import annotations

# key-value cache for challenges and revoked tokens
import json
import logging
import time
from threading import Lock
from typing import Any, Dict, Optional, Tuple

from redis import Connection, ConnectionPool, Redis, SSLConnection
from redis.exceptions import RedisError

from r2s_auth.core.config import Settings
from r2s_auth.core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)


class CacheManager:
    """Short-TTL key-value cache backed by Redis, or by an in-process map.

    The in-process map is used when ``REDIS_HOST`` is not configured. It is only
    correct for a single service instance (development and tests). When Redis is
    configured every failure is surfaced as ``UpstreamUnavailable``; there is no
    silent fallback to memory because challenges and revocations must be
    visible to every instance.
    """

    def __init__(self, settings: Settings, redis_client: Optional[Redis] = None):
        self.memory_cache: Dict[str, Tuple[bytes, Optional[float]]] = {}
        self._memory_lock = Lock()
        self.pool: Optional[ConnectionPool] = None
        self.client: Optional[Redis] = redis_client

        if self.client is not None:
            return
        if settings.REDIS_HOST is None or settings.REDIS_HOST.strip() == "":
            logger.warning("REDIS_HOST not set, using in-process cache")
            return
        self.pool = ConnectionPool(
            host=settings.REDIS_HOST,
            port=settings.REDIS_PORT,
            db=settings.REDIS_DB,
            password=settings.REDIS_PASSWORD,
            socket_connect_timeout=1,
            socket_timeout=5,
            retry_on_timeout=False,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            connection_class=SSLConnection if settings.REDIS_SSL else Connection,
        )
        self.client = Redis(connection_pool=self.pool)

    @property
    def uses_redis(self) -> bool:
        return self.client is not None

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a JSON-serialisable value that expires after ``ttl_seconds``."""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        data = json.dumps(value, default=str).encode("utf-8")
        if self.client is not None:
            try:
                self.client.set(key, data, ex=ttl_seconds)
            except RedisError as e:
                raise self._unavailable("set", e) from e
            return
        self._set_memory(key, data, ttl_seconds)

    def get(self, key: str) -> Optional[Any]:
        if self.client is not None:
            try:
                result = self.client.get(key)
            except RedisError as e:
                raise self._unavailable("get", e) from e
        else:
            result = self._get_memory(key)
        return self._decode(result)

    def getdel(self, key: str) -> Optional[Any]:
        """Atomically read and delete ``key``.

        At most one caller ever observes the value, even when several instances
        race on the same key.
        """
        if self.client is not None:
            try:
                result = self.client.getdel(key)
            except RedisError as e:
                raise self._unavailable("getdel", e) from e
        else:
            result = self._pop_memory(key)
        return self._decode(result)

    def exists(self, key: str) -> bool:
        if self.client is not None:
            try:
                return bool(self.client.exists(key))
            except RedisError as e:
                raise self._unavailable("exists", e) from e
        return self._get_memory(key) is not None

    def delete(self, key: str) -> None:
        if self.client is not None:
            try:
                self.client.delete(key)
            except RedisError as e:
                raise self._unavailable("delete", e) from e
            return
        self._pop_memory(key)

    def close(self) -> None:
        if self.pool is not None:
            self.pool.disconnect()

    @staticmethod
    def _decode(result: Optional[bytes]) -> Optional[Any]:
        if result is None or result == b"":
            return None
        try:
            return json.loads(result)
        except (json.JSONDecodeError, TypeError):
            return None

    @staticmethod
    def _unavailable(op: str, error: Exception) -> UpstreamUnavailable:
        logger.error("redis %s failed: %s", op, error)
        return UpstreamUnavailable()

    def _set_memory(self, key: str, data: bytes, ttl_seconds: int) -> None:
        expires_at = time.monotonic() + ttl_seconds
        with self._memory_lock:
            self._evict_expired()
            self.memory_cache[key] = (data, expires_at)

    def _get_memory(self, key: str) -> Optional[bytes]:
        """Get from memory cache, removing expired entries"""
        now = time.monotonic()
        with self._memory_lock:
            cached = self.memory_cache.get(key)
            if cached is None:
                return None
            value, expires_at = cached
            if expires_at is not None and expires_at <= now:
                self.memory_cache.pop(key, None)
                return None
            return value

    def _pop_memory(self, key: str) -> Optional[bytes]:
        now = time.monotonic()
        with self._memory_lock:
            cached = self.memory_cache.pop(key, None)
        if cached is None:
            return None
        value, expires_at = cached
        if expires_at is not None and expires_at <= now:
            return None
        return value

    def _evict_expired(self) -> None:
        # caller holds _memory_lock
        now = time.monotonic()
        expired_keys = [
            k for k, (_, exp) in self.memory_cache.items()
            if exp is not None and exp <= now
        ]
        for k in expired_keys:
            self.memory_cache.pop(k, None)

"""Key/value persistence for bulk upload jobs, caches and pending intents.

Values are JSON documents. Redis is used when REDIS_URL is configured;
otherwise a process-local dict store is used (dev and tests).
"""

from __future__ import annotations

import json
import logging
import threading
import time
from typing import Any, Protocol

from orgman.core.config import Settings, settings

logger = logging.getLogger(__name__)

REDIS_DISABLED_URL = "memory://"
REDIS_CONNECT_TIMEOUT_SECONDS = 2.0
REDIS_SOCKET_TIMEOUT_SECONDS = 2.0
REDIS_HEALTH_CHECK_SECONDS = 30


class KeyValueStoreError(Exception):
    """Raised when the backing store cannot be read or written."""


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    def delete(self, key: str) -> None: ...


class RedisKeyValueStore:
    """JSON values stored under a namespaced redis key."""

    def __init__(self, client, prefix: str = "orgman:") -> None:
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Any | None:
        import redis

        try:
            raw = self._client.get(self._key(key))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Failed to read {key}") from exc
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable value for key %s", key)
            return None

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        import redis

        payload = json.dumps(value, separators=(",", ":"), default=str)
        try:
            if ttl_seconds:
                self._client.setex(self._key(key), ttl_seconds, payload)
            else:
                self._client.set(self._key(key), payload)
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Failed to write {key}") from exc

    def delete(self, key: str) -> None:
        import redis

        try:
            self._client.delete(self._key(key))
        except redis.RedisError as exc:
            raise KeyValueStoreError(f"Failed to delete {key}") from exc


class InMemoryKeyValueStore:
    """Thread-safe dict store with optional expiry."""

    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            payload, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                del self._data[key]
                return None
        return json.loads(payload)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        # Serialize so callers never share mutable state with the store
        payload = json.dumps(value, default=str)
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._data[key] = (payload, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


_memory_store: InMemoryKeyValueStore | None = None
_redis_stores: dict[str, RedisKeyValueStore] = {}


def redis_url(cfg: Settings) -> str | None:
    url = (cfg.REDIS_URL or "").strip()
    if not url or url.lower() == REDIS_DISABLED_URL:
        return None
    return url


def _connect(url: str, max_connections: int):
    import redis

    pool = redis.ConnectionPool.from_url(
        url,
        max_connections=max(1, max_connections),
        socket_connect_timeout=REDIS_CONNECT_TIMEOUT_SECONDS,
        socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        health_check_interval=REDIS_HEALTH_CHECK_SECONDS,
        retry_on_timeout=True,
        decode_responses=True,
    )
    return redis.Redis(connection_pool=pool)


def get_kv_store(cfg: Settings | None = None) -> KeyValueStore:
    """Pooled redis store when REDIS_URL is configured, else the shared in-memory store."""
    cfg = cfg or settings
    url = redis_url(cfg)
    if url:
        store = _redis_stores.get(url)
        if store is None:
            store = RedisKeyValueStore(
                _connect(url, cfg.REDIS_MAX_CONNECTIONS), prefix=cfg.KV_KEY_PREFIX
            )
            _redis_stores[url] = store
            logger.info(
                "Using redis key/value store (max_connections=%d)", cfg.REDIS_MAX_CONNECTIONS
            )
        return store

    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryKeyValueStore()
    return _memory_store

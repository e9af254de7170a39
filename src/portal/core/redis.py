"""Shared state store backed by Redis.

The FileMaker session token and the circuit breaker failure counter must be
visible to every process instance, so they live here rather than in process
memory. ``SharedStateStore`` is the contract the bridge depends on;
``RedisStateStore`` is the production implementation. Any Redis failure is
re-raised as ``StateStoreError`` so callers can decide how to degrade.
"""

from __future__ import annotations

from typing import Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from src.portal.config import get_settings

# ── Module-level Redis pool (lazy init) ─────────────────────────────────────

_redis_pool: aioredis.Redis | None = None


def get_redis_pool() -> aioredis.Redis:
    """Get or create the Redis connection pool singleton."""
    global _redis_pool
    if _redis_pool is None:
        settings = get_settings()
        _redis_pool = aioredis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool:
        await _redis_pool.close()
        _redis_pool = None


# ── Store contract ──────────────────────────────────────────────────────────


class StateStoreError(Exception):
    """The shared state store could not be reached or rejected the command."""


class SharedStateStore(Protocol):
    """TTL-capable key/value store shared by all process instances."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, ttl_seconds: int) -> bool: ...

    async def delete(self, key: str) -> int: ...


# ── Redis implementation ────────────────────────────────────────────────────


class RedisStateStore:
    """SharedStateStore over a redis.asyncio client.

    INCR is atomic on the server, which is what keeps the circuit breaker
    counter correct across concurrent invocations.
    """

    def __init__(self, redis_client: aioredis.Redis):
        self._redis = redis_client

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(key)
        except RedisError as exc:
            raise StateStoreError(f"GET {key} failed: {exc}") from exc

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            await self._redis.set(key, value, ex=ttl_seconds)
        except RedisError as exc:
            raise StateStoreError(f"SET {key} failed: {exc}") from exc

    async def incr(self, key: str) -> int:
        try:
            return int(await self._redis.incr(key))
        except RedisError as exc:
            raise StateStoreError(f"INCR {key} failed: {exc}") from exc

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        try:
            return bool(await self._redis.expire(key, ttl_seconds))
        except RedisError as exc:
            raise StateStoreError(f"EXPIRE {key} failed: {exc}") from exc

    async def delete(self, key: str) -> int:
        try:
            return int(await self._redis.delete(key))
        except RedisError as exc:
            raise StateStoreError(f"DEL {key} failed: {exc}") from exc


def get_state_store() -> RedisStateStore:
    """Get a RedisStateStore using the global Redis pool."""
    return RedisStateStore(get_redis_pool())

"""
Redis ephemeral store adapter - Implements EphemeralStore protocol.

This module provides the Redis implementation of the domain's store port
using redis-py's asyncio client.

Atomicity:
- batch() runs every operation inside one MULTI/EXEC round trip.
- increment() pipelines INCR with EXPIRE NX so the window TTL is attached
  exactly once, when the key is created (requires Redis >= 7.0).
- compare_and_swap() is an optimistic WATCH/MULTI transaction: the ops are
  applied only if the watched key still holds the expected value.

Every redis or socket failure, including client-side timeouts, is
translated into StoreUnavailable.
"""

import asyncio
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

from src.domain.exceptions import StoreUnavailable
from src.domain.models import StoreOp

logger = logging.getLogger(__name__)


class RedisEphemeralStore:
    """
    Implements EphemeralStore protocol via redis.asyncio.

    Uses structural subtyping - no explicit inheritance from Protocol.
    The client must be created with decode_responses=True.
    """

    def __init__(self, client: redis.Redis) -> None:
        """
        Initialize store with a shared redis client.

        Args:
            client: redis.asyncio client held for the lifetime of the process
        """
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout_seconds: float = 2.0) -> "RedisEphemeralStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(client)

    @property
    def client(self) -> redis.Redis:
        return self._client

    @contextmanager
    def _translate(self, operation: str, key: str) -> Iterator[None]:
        try:
            yield
        except (RedisError, asyncio.TimeoutError, OSError) as e:
            logger.error("Redis %s error for %s: %s", operation, key, e)
            raise StoreUnavailable(f"Failed to {operation} key: {key}") from e

    async def get(self, key: str) -> str | None:
        with self._translate("get", key):
            return await self._client.get(key)

    async def set_with_ttl(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._translate("set", key):
            await self._client.set(key, value, ex=ttl_seconds)

    async def set_if_absent(self, key: str, value: str, ttl_seconds: int) -> bool:
        with self._translate("set", key):
            return bool(await self._client.set(key, value, ex=ttl_seconds, nx=True))

    async def increment(self, key: str, ttl_seconds: int | None = None) -> int:
        with self._translate("increment", key):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                if ttl_seconds:
                    pipe.expire(key, ttl_seconds, nx=True)
                results = await pipe.execute()
        return int(results[0])

    async def exists(self, key: str) -> bool:
        with self._translate("check", key):
            return await self._client.exists(key) == 1

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._translate("delete", ", ".join(keys)):
            return await self._client.delete(*keys)

    async def batch(self, ops: Sequence[StoreOp]) -> None:
        if not ops:
            return
        with self._translate("batch", ", ".join(op.key for op in ops)):
            async with self._client.pipeline(transaction=True) as pipe:
                _queue(pipe, ops)
                await pipe.execute()

    async def compare_and_swap(self, key: str, expected: str, ops: Sequence[StoreOp]) -> bool:
        with self._translate("swap", key):
            async with self._client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    if current != expected:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    _queue(pipe, ops)
                    await pipe.execute()
                except WatchError:
                    logger.debug("Watched key %s changed before EXEC", key)
                    return False
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, asyncio.TimeoutError, OSError) as e:
            logger.error("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        await self._client.aclose()


def _queue(pipe, ops: Sequence[StoreOp]) -> None:
    for op in ops:
        if op.kind == "set":
            pipe.set(op.key, op.value, ex=op.ttl_seconds)
        elif op.kind == "delete":
            pipe.delete(op.key)
        else:
            raise ValueError(f"Unsupported store operation: {op.kind}")

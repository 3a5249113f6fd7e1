"""
Redis-backed distribution store.

Each distribution is one Redis hash. Reads use ``HGETALL`` / ``HMGET``;
increments and snapshot writes run inside ``MULTI``/``EXEC``; guarded writes
add ``WATCH`` so a snapshot computed from stale state is never applied.

Connections come from a :class:`redis.asyncio.BlockingConnectionPool` sized
by the caller (one per update worker plus request headroom). Every round trip
runs under ``asyncio.timeout``.

Example::

    store = RedisStore("redis://localhost:6379/0", max_connections=9, timeout=5.0)
    await store.ping()
    raw = await store.get_all("orders")
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from forget_spine.core.errors import (
    ConcurrentUpdateError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from forget_spine.core.logging import get_logger
from forget_spine.distribution import RATE_KEY, TOTAL_KEY, UPDATED_KEY

logger = get_logger(__name__)


class RedisStore:
    """Redis hash store with a bounded pool and per-call deadlines.

    Args:
        url: ``redis://host:port/db`` URL.
        max_connections: Pool size; callers block (up to ``timeout``) when
            every connection is busy.
        timeout: Deadline in seconds for each round trip, ``None`` disables.
        client: Pre-built ``redis.asyncio.Redis`` (tests, shared pools).
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        max_connections: int = 10,
        timeout: float | None = 5.0,
        client: Any = None,
    ) -> None:
        if client is None:
            pool = aioredis.BlockingConnectionPool.from_url(
                url,
                max_connections=max_connections,
                timeout=timeout,
                decode_responses=True,
            )
            client = aioredis.Redis.from_pool(pool)
        self._url = url
        self._client = client
        self._timeout = timeout

    @asynccontextmanager
    async def _round_trip(self, operation: str, name: str | None = None) -> AsyncIterator[None]:
        """Apply the deadline and translate client errors."""
        try:
            async with asyncio.timeout(self._timeout):
                yield
        except TimeoutError as exc:
            raise StoreTimeoutError(
                f"{operation} exceeded {self._timeout}s", timeout=self._timeout, cause=exc
            ).with_context(distribution=name, operation=operation) from exc
        except (RedisError, OSError) as exc:
            raise StoreUnavailableError(
                f"{operation} failed: {exc}", cause=exc
            ).with_context(distribution=name, operation=operation) from exc

    async def get_all(self, name: str) -> dict[str, str]:
        async with self._round_trip("get_all", name):
            return await self._client.hgetall(name)

    async def get_fields(self, name: str, *keys: str) -> list[str | None]:
        async with self._round_trip("get_fields", name):
            return await self._client.hmget(name, list(keys))

    async def increment(self, name: str, field: str, amount: int, *, now: int) -> None:
        async with self._round_trip("increment", name):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hincrby(name, field, amount)
                pipe.hincrby(name, TOTAL_KEY, amount)
                pipe.hsetnx(name, UPDATED_KEY, now)
                await pipe.execute()

    async def write(
        self,
        name: str,
        values: Mapping[str, int],
        *,
        expect: Mapping[str, str | None] | None = None,
    ) -> None:
        if not values:
            return
        async with self._round_trip("write", name):
            async with self._client.pipeline(transaction=True) as pipe:
                try:
                    if expect:
                        keys = list(expect)
                        await pipe.watch(name)
                        current = await pipe.hmget(name, keys)
                        if list(current) != [expect[k] for k in keys]:
                            raise ConcurrentUpdateError(
                                f"{name} changed since it was loaded"
                            ).with_context(
                                distribution=name,
                                operation="write",
                                expected=dict(expect),
                                found=dict(zip(keys, current)),
                            )
                        pipe.multi()
                    pipe.hset(name, mapping=dict(values))
                    await pipe.execute()
                except WatchError as exc:
                    raise ConcurrentUpdateError(
                        f"{name} changed during the transaction", cause=exc
                    ).with_context(distribution=name, operation="write") from exc

    async def set_rate(self, name: str, rate: float) -> None:
        async with self._round_trip("set_rate", name):
            await self._client.hset(name, RATE_KEY, repr(float(rate)))

    async def clear_rate(self, name: str) -> None:
        async with self._round_trip("clear_rate", name):
            await self._client.hdel(name, RATE_KEY)

    async def ping(self) -> bool:
        async with self._round_trip("ping"):
            return bool(await self._client.ping())

    async def close(self) -> None:
        await self._client.aclose()
        logger.debug("redis_store_closed", url=self._url)


__all__ = ["RedisStore"]

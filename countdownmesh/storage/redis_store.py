"""
Redis Durable Store
===================

Group state slots kept in Redis/Valkey so several gateway processes can
share one durable plane. Run the server with AOF (appendfsync always) if
an acknowledged put must survive a crash.

Key layout:
    {prefix}:{namespace}:{key}  ->  HASH { d: <framed blob>, u: <epoch ms> }

HSET on a single key is atomic, so a failed put leaves the previous hash
intact.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from countdownmesh.core.errors import StorageError
from countdownmesh.core.types import Err, Ok, Result

logger = logging.getLogger(__name__)

FIELD_DATA = "d"
FIELD_UPDATED = "u"


@dataclass
class RedisStoreStats:
    """Operation counters for health reporting."""

    get_count: int = 0
    put_count: int = 0
    errors: int = 0
    total_put_latency_ns: int = 0


class RedisDurableStore:
    """
    Redis-backed DurableStore.

    Usage:
        store = RedisDurableStore("redis://localhost:6379/0")
        await store.connect()
        await store.put(group.shard_key, "group", blob)

    A pre-built client may be injected; connect() then only pings it.
    """

    __slots__ = ("_url", "_prefix", "_client", "_connected", "_stats")

    def __init__(
        self,
        url: str,
        key_prefix: str = "countdown",
        client: Optional[Any] = None,
    ) -> None:
        self._url = url
        self._prefix = key_prefix
        self._client: Optional[Any] = client
        self._connected = False
        self._stats = RedisStoreStats()

    def _key(self, namespace: str, key: str) -> str:
        return f"{self._prefix}:{namespace}:{key}"

    # -------------------------------------------------------------------------
    # CONNECTION MANAGEMENT
    # -------------------------------------------------------------------------

    async def connect(self) -> Result[None, StorageError]:
        """Create the client if needed and verify it with PING."""
        try:
            if self._client is None:
                self._client = aioredis.Redis.from_url(self._url, decode_responses=False)
            await self._client.ping()
            self._connected = True
            logger.info("Durable store connected", extra={"backend": "redis", "url": self._url})
            return Ok(None)

        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._stats.errors += 1
            return Err(StorageError.connection_failed("redis", self._url, cause=e))

    async def close(self) -> None:
        """Safe to call multiple times."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self._connected = False

    @property
    def stats(self) -> RedisStoreStats:
        return self._stats

    # -------------------------------------------------------------------------
    # SLOT OPERATIONS
    # -------------------------------------------------------------------------

    async def get(self, namespace: str, key: str) -> Result[Optional[bytes], StorageError]:
        if not self._connected or self._client is None:
            return Err(StorageError.connection_failed("redis", self._url))

        redis_key = self._key(namespace, key)
        try:
            value = await self._client.hget(redis_key, FIELD_DATA)
            self._stats.get_count += 1
            return Ok(bytes(value) if value is not None else None)

        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._stats.errors += 1
            return Err(StorageError.read_failed("redis", redis_key, cause=e))

    async def put(self, namespace: str, key: str, value: bytes) -> Result[None, StorageError]:
        if not self._connected or self._client is None:
            return Err(StorageError.connection_failed("redis", self._url))

        redis_key = self._key(namespace, key)
        start_ns = time.perf_counter_ns()
        try:
            await self._client.hset(
                redis_key,
                mapping={FIELD_DATA: value, FIELD_UPDATED: int(time.time() * 1000)},
            )
            self._stats.put_count += 1
            self._stats.total_put_latency_ns += time.perf_counter_ns() - start_ns
            return Ok(None)

        except (RedisError, OSError, asyncio.TimeoutError) as e:
            self._stats.errors += 1
            return Err(StorageError.write_failed("redis", redis_key, cause=e))

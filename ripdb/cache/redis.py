"""
Redis fast store implementation.

This module provides the production fast store backend. It works with:
- Redis / Redis Stack
- Managed Redis (ElastiCache, Upstash via rediss://)
- Any Redis protocol-compatible server

Invariants:
    - One envelope string per key, plain GET/SET (no TTL is applied)
    - Responses are decoded to str
    - Redis exceptions never leak; they are wrapped in FastStoreError

How to change safely:
    - Test against a real Redis before deploying
    - Do not add expiry here; eviction is the operator's concern
"""

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from ..errors import FastStoreConnectionError, FastStoreError

logger = logging.getLogger(__name__)


class RedisFastStore:
    """Redis implementation of the FastStore protocol.

    Uses redis.asyncio with a connection pool owned by this instance.

    Attributes:
        config: Redis configuration

    Example:
        >>> config = RedisConfig(url="redis://localhost:6379/0")
        >>> store = RedisFastStore(config)
        >>> await store.connect()
        >>> await store.set("user:1", envelope_json)
    """

    def __init__(self, config: Any) -> None:
        """Initialize Redis fast store.

        Args:
            config: RedisConfig instance
        """
        self.config = config
        self._client: aioredis.Redis | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the client and verify the server is reachable.

        Raises:
            FastStoreConnectionError: If the server cannot be reached
        """
        if self._client is not None:
            return

        client = aioredis.from_url(
            self.config.url,
            username=self.config.username,
            password=self.config.password,
            decode_responses=True,
            socket_connect_timeout=self.config.socket_timeout,
            socket_timeout=self.config.socket_timeout,
        )

        try:
            await client.ping()
        except RedisError as e:
            await client.aclose()
            logger.error(f"Failed to connect to Redis: {e}")
            raise FastStoreConnectionError(f"Failed to connect to Redis: {e}") from e

        self._client = client
        logger.info("Connected to Redis")

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self._client is None:
            return

        try:
            await self._client.aclose()
        except RedisError as e:
            logger.warning(f"Error closing Redis client: {e}")
        finally:
            self._client = None
            logger.info("Redis connection closed")

    async def get(self, key: str) -> str | None:
        client = self._require_client()
        try:
            return await client.get(key)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise FastStoreConnectionError(f"Redis connection lost: {e}") from e
        except RedisError as e:
            raise FastStoreError(f"Redis GET failed for {key}: {e}") from e

    async def set(self, key: str, value: str) -> None:
        client = self._require_client()
        try:
            await client.set(key, value)
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise FastStoreConnectionError(f"Redis connection lost: {e}") from e
        except RedisError as e:
            raise FastStoreError(f"Redis SET failed for {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        client = self._require_client()
        try:
            return bool(await client.delete(key))
        except RedisError as e:
            raise FastStoreError(f"Redis DEL failed for {key}: {e}") from e

    def _require_client(self) -> aioredis.Redis:
        if self._client is None:
            raise FastStoreConnectionError("Not connected to Redis")
        return self._client

"""
In-memory fast store implementation for testing.

This module provides a simple in-memory fast store for:
- Unit tests
- Local development without a Redis server

Invariants:
    - All data is lost on process exit
    - Same single-key atomicity as Redis GET/SET
    - Safe to use from multiple coroutines

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the FastStore protocol
"""

from __future__ import annotations

import asyncio
import logging

from ..errors import FastStoreConnectionError, FastStoreError

logger = logging.getLogger(__name__)


class InMemoryFastStore:
    """In-memory implementation of FastStore for testing.

    Example:
        >>> store = InMemoryFastStore()
        >>> await store.connect()
        >>> await store.set("k", "v")
        >>> await store.get("k")
        'v'
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._connected = False
        self._lock = asyncio.Lock()
        self._fail_writes = 0
        self.read_count = 0
        self.write_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryFastStore connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._data.clear()
        logger.debug("InMemoryFastStore closed")

    async def get(self, key: str) -> str | None:
        if not self._connected:
            raise FastStoreConnectionError("Not connected")
        async with self._lock:
            self.read_count += 1
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not self._connected:
            raise FastStoreConnectionError("Not connected")
        async with self._lock:
            if self._fail_writes > 0:
                self._fail_writes -= 1
                raise FastStoreError(f"Injected write failure for {key}")
            self._data[key] = value
            self.write_count += 1

    async def delete(self, key: str) -> bool:
        if not self._connected:
            raise FastStoreConnectionError("Not connected")
        async with self._lock:
            return self._data.pop(key, None) is not None

    # Testing helpers

    def raw(self, key: str) -> str | None:
        """Read a stored value without touching counters (testing helper)."""
        return self._data.get(key)

    def put_raw(self, key: str, value: str) -> None:
        """Store an arbitrary value, bypassing the codec (testing helper)."""
        self._data[key] = value

    def keys(self) -> list[str]:
        """List stored keys (testing helper)."""
        return sorted(self._data)

    def fail_next_writes(self, count: int = 1) -> None:
        """Make the next count set() calls raise FastStoreError (testing helper)."""
        self._fail_writes = count

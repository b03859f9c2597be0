"""
Base protocol for the fast store abstraction.

The fast store is the low-latency, mutable key-value tier. RipDB stores one
encoded envelope per key and only needs whole-value get/set.

Invariants:
    - get() returns None for absent keys, never raises for them
    - set() returns only after the backend acknowledged the write
    - Single-key reads and writes are atomic; nothing else is assumed

How to change safely:
    - Protocol changes require updating all implementations
    - Keep values as str; encoding belongs to the envelope codec
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..errors import FastStoreConnectionError, FastStoreError

if TYPE_CHECKING:
    from ..config import ClientConfig

__all__ = [
    "FastStore",
    "FastStoreError",
    "FastStoreConnectionError",
    "create_fast_store",
]


@runtime_checkable
class FastStore(Protocol):
    """Protocol for fast store backends.

    Example:
        >>> store = RedisFastStore(config.redis)
        >>> await store.connect()
        >>> await store.set("user:1", '{"cid":"pending","data":{}}')
        >>> raw = await store.get("user:1")
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend.

        Raises:
            FastStoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and release resources."""
        ...

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Read the value stored at key.

        Returns:
            The stored string, or None if the key is absent

        Raises:
            FastStoreConnectionError: If not connected
            FastStoreError: For other read failures
        """
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Write value at key, replacing any previous value.

        Raises:
            FastStoreConnectionError: If not connected
            FastStoreError: For other write failures
        """
        ...

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key. Returns True if it existed."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...


def create_fast_store(config: "ClientConfig") -> FastStore:
    """Factory function to create a fast store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import CacheBackend
    from .memory import InMemoryFastStore
    from .redis import RedisFastStore

    if config.cache_backend == CacheBackend.REDIS:
        return RedisFastStore(config.redis)
    elif config.cache_backend == CacheBackend.MEMORY:
        return InMemoryFastStore()
    else:
        raise ValueError(f"Unsupported cache backend: {config.cache_backend}")

"""
Fast store abstraction for RipDB.

This module provides a pluggable fast store interface supporting:
- Redis (production)
- In-memory (for testing)

The fast store is the primary read/write path. It holds exactly one
encoded envelope per key; the archive holds the durable copy.

Invariants:
    - Last write wins per key
    - Absent keys read as None
"""

from .base import (
    FastStore,
    FastStoreConnectionError,
    FastStoreError,
    create_fast_store,
)
from .memory import InMemoryFastStore
from .redis import RedisFastStore

__all__ = [
    # Protocol and errors
    "FastStore",
    "FastStoreError",
    "FastStoreConnectionError",
    # Factory
    "create_fast_store",
    # Implementations
    "RedisFastStore",
    "InMemoryFastStore",
]

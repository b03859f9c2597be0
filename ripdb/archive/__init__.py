"""
Archive module for RipDB.

This module handles durable, content-addressed storage of payloads:
- IPFS (pinning-service API for writes, HTTP gateway for reads)
- In-memory (for testing)

Invariants:
    - Archived blobs are immutable once written
    - Addresses are opaque and derived from content
    - Reads retry transient failures; access denial is terminal
"""

from .base import (
    PENDING,
    Address,
    ArchiveError,
    ArchiveReadError,
    ArchiveStore,
    ArchiveWriteError,
    UnauthorizedError,
    create_archive_store,
)
from .gateway import ArchiveGateway
from .ipfs import IpfsArchiveStore
from .memory import InMemoryArchiveStore
from .retry import RetryPolicy

__all__ = [
    # Protocol and types
    "ArchiveStore",
    "Address",
    "PENDING",
    "ArchiveError",
    "ArchiveReadError",
    "ArchiveWriteError",
    "UnauthorizedError",
    # Gateway and policy
    "ArchiveGateway",
    "RetryPolicy",
    # Factory
    "create_archive_store",
    # Implementations
    "IpfsArchiveStore",
    "InMemoryArchiveStore",
]

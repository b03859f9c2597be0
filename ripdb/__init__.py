"""
RipDB - Redis + IPFS JSON database.

A fast, mutable key-value cache (Redis) backed by a slow, immutable
content-addressed archive (IPFS):

    ┌─────────────┐   set/get/purge   ┌──────────────┐
    │   Caller    │──────────────────▶│  RipDBClient │
    └─────────────┘                   └──────┬───────┘
                                             │
                        ┌────────────────────┴────────────────────┐
                        │ sync                    background/fallback│
                        ▼                                          ▼
                   ┌─────────┐                              ┌─────────────┐
                   │  Redis  │                              │    IPFS     │
                   │ (cache) │                              │  (archive)  │
                   └─────────┘                              └─────────────┘

Invariants:
    - Writes are visible from the cache before archival completes
    - A stale backup never overwrites a newer write's metadata
    - Payloads are purged from the cache only after they are archived

How to change safely:
    - The envelope wire format is shared with existing data; see envelope.py
    - Background tasks must fence on the write's timestamp token
"""

from ._version import __version__
from .client import BackupPolicy, RipDBClient
from .config import ClientConfig
from .envelope import PENDING, Envelope, decode, encode
from .errors import (
    ArchiveError,
    ArchiveFetchExhaustedError,
    ArchiveReadError,
    ArchiveWriteError,
    CorruptRecordError,
    FastStoreConnectionError,
    FastStoreError,
    PendingArchiveError,
    PurgeConflictError,
    RipDbError,
    UnauthorizedError,
)

__all__ = [
    "__version__",
    # Client
    "RipDBClient",
    "BackupPolicy",
    "ClientConfig",
    # Envelope
    "Envelope",
    "PENDING",
    "encode",
    "decode",
    # Errors
    "RipDbError",
    "CorruptRecordError",
    "PendingArchiveError",
    "PurgeConflictError",
    "ArchiveError",
    "ArchiveWriteError",
    "ArchiveReadError",
    "UnauthorizedError",
    "ArchiveFetchExhaustedError",
    "FastStoreError",
    "FastStoreConnectionError",
]

"""
Base protocol for the content-addressed archive store.

An archive store keeps immutable blobs addressed by a value derived from
their content. Backends perform exactly one attempt per call; retry policy
lives in ArchiveGateway.

Invariants:
    - store_blob() returns only after the blob is durably accepted
    - An address is never interpreted, only stored and compared
    - read_blob() raises UnauthorizedError for access denial (terminal)
      and ArchiveReadError for everything else that went wrong (transient)

How to change safely:
    - Protocol changes require updating all implementations
    - Never map a transient condition to UnauthorizedError
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from ..envelope import PENDING, Address
from ..errors import ArchiveError, ArchiveReadError, ArchiveWriteError, UnauthorizedError

if TYPE_CHECKING:
    from ..config import ClientConfig

__all__ = [
    "Address",
    "PENDING",
    "ArchiveStore",
    "ArchiveError",
    "ArchiveReadError",
    "ArchiveWriteError",
    "UnauthorizedError",
    "create_archive_store",
]


@runtime_checkable
class ArchiveStore(Protocol):
    """Protocol for archive store backends.

    Example:
        >>> archive = IpfsArchiveStore(config.ipfs)
        >>> await archive.connect()
        >>> cid = await archive.store_blob(b'{"name":"Ann"}')
        >>> body = await archive.read_blob(cid)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Prepare the transport. Must be called before other operations."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release transport resources."""
        ...

    @abstractmethod
    async def store_blob(self, data: bytes) -> Address:
        """Upload a blob and return its content address.

        Raises:
            ArchiveWriteError: If the upload fails
        """
        ...

    @abstractmethod
    async def read_blob(self, address: Address) -> bytes:
        """Read a blob by address, one attempt only.

        Raises:
            UnauthorizedError: If access is denied (HTTP 403)
            ArchiveReadError: For any other failure
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the transport is ready."""
        ...


def create_archive_store(config: "ClientConfig") -> ArchiveStore:
    """Factory function to create an archive store from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import ArchiveBackend
    from .ipfs import IpfsArchiveStore
    from .memory import InMemoryArchiveStore

    if config.archive_backend == ArchiveBackend.IPFS:
        return IpfsArchiveStore(config.ipfs)
    elif config.archive_backend == ArchiveBackend.MEMORY:
        return InMemoryArchiveStore()
    else:
        raise ValueError(f"Unsupported archive backend: {config.archive_backend}")

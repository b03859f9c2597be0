"""
In-memory archive store implementation for testing.

Blobs are addressed by their SHA-256 digest, so identical content always
yields the same address, like a real content-addressed store.

Invariants:
    - All data is lost on process exit
    - Stored blobs are immutable
    - Injected failures surface through the same error types as IPFS

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with the ArchiveStore protocol
"""

from __future__ import annotations

import asyncio
import hashlib
import logging

from ..envelope import Address
from ..errors import ArchiveError, ArchiveReadError, ArchiveWriteError, UnauthorizedError

logger = logging.getLogger(__name__)


class InMemoryArchiveStore:
    """In-memory implementation of ArchiveStore for testing.

    Besides storing blobs, it offers hooks for the scenarios the client has
    to survive: transient read failures, access denial, failed uploads, and
    uploads held back until a test releases them.

    Example:
        >>> archive = InMemoryArchiveStore()
        >>> await archive.connect()
        >>> address = await archive.store_blob(b"{}")
        >>> archive.fail_next_reads(2)
        >>> await archive.read_blob(address)  # raises ArchiveReadError
    """

    def __init__(self) -> None:
        self._blobs: dict[Address, bytes] = {}
        self._connected = False
        self._denied: set[Address] = set()
        self._read_failures: list[ArchiveError] = []
        self._write_failures = 0
        self._write_gate = asyncio.Event()
        self._write_gate.set()
        self.read_count = 0
        self.write_count = 0

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryArchiveStore connected")

    async def close(self) -> None:
        """Close; blobs are kept so a test can inspect them afterwards."""
        self._connected = False
        self._write_gate.set()
        logger.debug("InMemoryArchiveStore closed")

    async def store_blob(self, data: bytes) -> Address:
        if not self._connected:
            raise ArchiveWriteError("Archive not connected")

        await self._write_gate.wait()

        self.write_count += 1
        if self._write_failures > 0:
            self._write_failures -= 1
            raise ArchiveWriteError("Injected archive write failure")

        address = self.address_for(data)
        self._blobs[address] = data
        return address

    async def read_blob(self, address: Address) -> bytes:
        if not self._connected:
            raise ArchiveError("Archive not connected")

        self.read_count += 1

        if address in self._denied:
            raise UnauthorizedError("Unauthorized", address=address)

        if self._read_failures:
            raise self._read_failures.pop(0)

        blob = self._blobs.get(address)
        if blob is None:
            raise ArchiveReadError(f"Blob not found: {address}", address=address, status_code=404)
        return blob

    @staticmethod
    def address_for(data: bytes) -> Address:
        """Content address assigned to data."""
        return f"mem-{hashlib.sha256(data).hexdigest()}"

    # Testing helpers

    def has_blob(self, address: Address) -> bool:
        return address in self._blobs

    def blob_count(self) -> int:
        return len(self._blobs)

    def put_blob(self, address: Address, data: bytes) -> None:
        """Store data under an arbitrary address (testing helper)."""
        self._blobs[address] = data

    def fail_next_reads(self, count: int = 1, error: ArchiveError | None = None) -> None:
        """Make the next count reads fail (testing helper).

        Args:
            count: Number of failing reads
            error: Error to raise; defaults to a transient ArchiveReadError
        """
        for _ in range(count):
            self._read_failures.append(
                error or ArchiveReadError("Injected transient read failure", status_code=503)
            )

    def fail_next_writes(self, count: int = 1) -> None:
        """Make the next count uploads fail (testing helper)."""
        self._write_failures = count

    def deny(self, address: Address) -> None:
        """Answer reads of address with UnauthorizedError (testing helper)."""
        self._denied.add(address)

    def hold_writes(self) -> None:
        """Block uploads until release_writes() is called (testing helper)."""
        self._write_gate.clear()

    def release_writes(self) -> None:
        """Let held uploads proceed (testing helper)."""
        self._write_gate.set()

"""
Archive gateway for RipDB.

The gateway wraps an ArchiveStore backend with the fetch retry policy:
- store() uploads once and reports failures as ArchiveWriteError
- fetch() retries transient read failures with exponential backoff

Retry semantics:
    attempt 1 ... attempt N (N = retries, default 5)
    delay before attempt k+1 = min(max_delay, initial * factor ** (k - 1))
    each attempt bounded by attempt_timeout_s
    HTTP 403 (UnauthorizedError) stops immediately, no retry
    A backend that is not connected raises ArchiveError, no retry

Invariants:
    - fetch() of the PENDING sentinel never touches the backend
    - Exhaustion always raises ArchiveFetchExhaustedError chained to the
      last underlying error
    - There is no overall deadline across attempts

How to change safely:
    - Keep UnauthorizedError terminal; retrying a denial only adds latency
    - Writes are deliberately not retried here; callers own that policy
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

from ..envelope import PENDING, Address, decode_payload
from ..errors import (
    ArchiveError,
    ArchiveFetchExhaustedError,
    ArchiveReadError,
    ArchiveWriteError,
    PendingArchiveError,
    UnauthorizedError,
)
from .base import ArchiveStore
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ArchiveGateway:
    """Content-addressed blob storage with bounded-retry retrieval.

    Attributes:
        store_backend: Single-attempt archive backend
        retry_policy: Backoff policy for fetches

    Example:
        >>> gateway = ArchiveGateway(IpfsArchiveStore(config.ipfs))
        >>> await gateway.connect()
        >>> cid = await gateway.store(b'{"name":"Ann"}')
        >>> payload = await gateway.fetch_json(cid)
    """

    def __init__(
        self,
        store_backend: ArchiveStore,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.store_backend = store_backend
        self.retry_policy = retry_policy or RetryPolicy()

        self._stores = 0
        self._store_failures = 0
        self._fetches = 0
        self._fetch_attempts = 0
        self._fetch_failures = 0

    @property
    def is_connected(self) -> bool:
        return self.store_backend.is_connected

    async def connect(self) -> None:
        await self.store_backend.connect()

    async def close(self) -> None:
        await self.store_backend.close()

    async def store(self, data: bytes) -> Address:
        """Upload a blob and return its content address.

        Args:
            data: Blob contents

        Returns:
            Address assigned by the archive

        Raises:
            ArchiveWriteError: If the upload fails (not retried)
        """
        try:
            address = await self.store_backend.store_blob(data)
        except ArchiveWriteError:
            self._store_failures += 1
            raise
        except ArchiveError as e:
            self._store_failures += 1
            raise ArchiveWriteError(f"Archive upload failed: {e.message}") from e

        self._stores += 1
        logger.debug(
            "Blob stored in archive",
            extra={"address": address, "size_bytes": len(data)},
        )
        return address

    async def fetch(self, address: Address, retries: int | None = None) -> bytes:
        """Fetch a blob by address, retrying transient failures.

        Args:
            address: Content address, or PENDING
            retries: Maximum attempts in total (defaults to the policy's)

        Returns:
            Blob contents

        Raises:
            PendingArchiveError: If address is the PENDING sentinel
            UnauthorizedError: If the gateway denies access
            ArchiveFetchExhaustedError: If every attempt failed
            ArchiveError: If the backend is not connected (a usage error)
        """
        return await self._fetch_with_retry(address, retries, lambda body, _: body)

    async def fetch_json(self, address: Address, retries: int | None = None) -> Any:
        """Fetch and decode a JSON payload.

        A malformed body counts as a transient failure and is retried.
        """
        return await self._fetch_with_retry(address, retries, decode_payload)

    async def _fetch_with_retry(
        self,
        address: Address,
        retries: int | None,
        parse: Callable[[bytes, Address], T],
    ) -> T:
        if address == PENDING:
            raise PendingArchiveError("Cannot fetch from archive, backup is pending")

        max_attempts = retries if retries is not None else self.retry_policy.max_attempts
        if max_attempts < 1:
            raise ValueError("retries must be at least 1")

        self._fetches += 1
        last_error: ArchiveReadError | None = None

        for attempt in range(1, max_attempts + 1):
            self._fetch_attempts += 1
            try:
                body = await self._read_once(address)
                return parse(body, address)

            except UnauthorizedError:
                self._fetch_failures += 1
                logger.warning(
                    "Archive gateway denied access",
                    extra={"address": address, "attempt": attempt},
                )
                raise

            except ArchiveReadError as e:
                last_error = e
                if attempt == max_attempts:
                    break

                delay = self.retry_policy.compute_delay(attempt)
                logger.warning(
                    f"Archive fetch failed, retrying in {delay:.2f}s: {e.message}",
                    extra={"address": address, "attempt": attempt, "max_attempts": max_attempts},
                )
                await asyncio.sleep(delay)

        self._fetch_failures += 1
        logger.error(
            "Archive fetch exhausted all attempts",
            extra={"address": address, "attempts": max_attempts},
        )
        raise ArchiveFetchExhaustedError(
            f"Failed to fetch {address} after {max_attempts} attempts: {last_error}",
            address=address,
            attempts=max_attempts,
            last_error=last_error,
        ) from last_error

    async def _read_once(self, address: Address) -> bytes:
        timeout = self.retry_policy.attempt_timeout_s
        try:
            return await asyncio.wait_for(self.store_backend.read_blob(address), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ArchiveReadError(
                f"Archive read timed out after {timeout}s", address=address
            ) from e

    @property
    def stats(self) -> dict[str, Any]:
        """Get gateway statistics."""
        return {
            "stores": self._stores,
            "store_failures": self._store_failures,
            "fetches": self._fetches,
            "fetch_attempts": self._fetch_attempts,
            "fetch_failures": self._fetch_failures,
        }

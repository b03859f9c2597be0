"""
IPFS archive store implementation.

Blobs are uploaded through a pinning-service HTTP API (nft.storage
compatible) and read back through an IPFS HTTP gateway:

    upload:  POST {api_url}/upload   Authorization: Bearer <api_key>
             -> {"ok": true, "value": {"cid": "bafy..."}}
    read:    GET  {gateway_url}/{cid}

Invariants:
    - The CID returned by the API is stored verbatim, never parsed
    - Gateway 403 maps to UnauthorizedError; every other failure to read
      maps to ArchiveReadError
    - One HTTP request per call; retries belong to ArchiveGateway

How to change safely:
    - Swapping pinning providers only touches store_blob()
    - Test with a real gateway before changing status handling
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..envelope import Address
from ..errors import ArchiveError, ArchiveReadError, ArchiveWriteError, UnauthorizedError

logger = logging.getLogger(__name__)


class IpfsArchiveStore:
    """IPFS implementation of the ArchiveStore protocol.

    Uses a single httpx.AsyncClient for uploads and gateway reads.

    Attributes:
        config: IPFS configuration

    Example:
        >>> config = IpfsConfig(api_key="...", gateway_url="https://ipfs.io/ipfs")
        >>> archive = IpfsArchiveStore(config)
        >>> await archive.connect()
        >>> cid = await archive.store_blob(b'{"name":"Ann"}')
    """

    def __init__(
        self,
        config: Any,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize IPFS archive store.

        Args:
            config: IpfsConfig instance
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self.api_url = config.api_url.rstrip("/")
        self.gateway_url = config.gateway_url.rstrip("/")
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client."""
        if self._client is not None:
            return

        self._client = httpx.AsyncClient(
            timeout=self.config.timeout,
            transport=self._transport,
            follow_redirects=True,
        )
        logger.info(
            "IPFS archive ready",
            extra={"api_url": self.api_url, "gateway_url": self.gateway_url},
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is None:
            return
        await self._client.aclose()
        self._client = None
        logger.info("IPFS archive closed")

    async def store_blob(self, data: bytes) -> Address:
        """Upload a JSON blob to the pinning service.

        Raises:
            ArchiveWriteError: On transport failure, non-2xx status, or an
                unexpected response body
        """
        client = self._require_client()
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"

        try:
            response = await client.post(f"{self.api_url}/upload", content=data, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ArchiveWriteError(f"IPFS upload request failed: {e}") from e

        if not response.is_success:
            raise ArchiveWriteError(
                f"IPFS upload failed with status {response.status_code}: {response.text[:200]}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ArchiveWriteError(f"IPFS upload returned a malformed body: {e}") from e

        if not isinstance(body, dict) or not body.get("ok", False):
            raise ArchiveWriteError(f"IPFS upload was rejected: {body!r}"[:300])

        value = body.get("value")
        cid = value.get("cid") if isinstance(value, dict) else None
        if not isinstance(cid, str) or not cid:
            raise ArchiveWriteError(f"IPFS upload returned no CID: {body!r}"[:300])

        return cid

    async def read_blob(self, address: Address) -> bytes:
        """Read a blob through the gateway, one attempt.

        Raises:
            UnauthorizedError: If the gateway responds 403
            ArchiveReadError: On transport failure or any other non-2xx status
        """
        client = self._require_client()
        url = f"{self.gateway_url}/{address}"

        try:
            response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ArchiveReadError(f"IPFS gateway request failed: {e}", address=address) from e

        if response.status_code == 403:
            raise UnauthorizedError("Unauthorized", address=address)

        if not response.is_success:
            raise ArchiveReadError(
                f"IPFS gateway returned status {response.status_code}",
                address=address,
                status_code=response.status_code,
            )

        return response.content

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise ArchiveError("IPFS archive is not connected")
        return self._client

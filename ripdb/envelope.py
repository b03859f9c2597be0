"""
Envelope record and codec for RipDB.

An envelope wraps one payload with its archival metadata. It is the only
value RipDB ever writes to the fast store, serialized as JSON:

    {"cid": "<address>" | "pending", "setAtTimestamp": 1700000000000,
     "authAddress": ["..."], "encrypted": false, "data": <json> | null}

Invariants:
    - Field names and the "pending" sentinel are a storage contract shared
      with existing records and must not change
    - Optional fields are omitted from the wire form when unset
    - decode(encode(e)) == e for every valid envelope
    - data is None only after a purge, and purge never runs while pending

How to change safely:
    - Add new optional fields only; readers must tolerate their absence
    - Never rename wire fields
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass
from typing import Any

from .errors import ArchiveReadError, CorruptRecordError

PENDING = "pending"

Address = str


@dataclass(frozen=True)
class Envelope:
    """A persisted record for one key.

    Attributes:
        cid: Archive address of the durable copy, or PENDING
        set_at_timestamp: Fencing token (ms) issued once per set() call
        auth_address: Opaque passthrough, not interpreted by RipDB
        encrypted: Opaque passthrough, not interpreted by RipDB
        data: The payload, or None once purged from the fast store
    """

    cid: str = PENDING
    set_at_timestamp: int | None = None
    auth_address: tuple[str, ...] | None = None
    encrypted: bool | None = None
    data: Any = None

    @property
    def is_pending(self) -> bool:
        """Whether archival has not completed yet."""
        return self.cid == PENDING

    @property
    def is_purged(self) -> bool:
        """Whether the payload has been dropped from the fast store."""
        return self.data is None

    def with_data(self, data: Any) -> Envelope:
        return dataclasses.replace(self, data=data)

    def with_cid(self, cid: Address) -> Envelope:
        return dataclasses.replace(self, cid=cid)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary."""
        result: dict[str, Any] = {"cid": self.cid}
        if self.set_at_timestamp is not None:
            result["setAtTimestamp"] = self.set_at_timestamp
        if self.auth_address is not None:
            result["authAddress"] = list(self.auth_address)
        if self.encrypted is not None:
            result["encrypted"] = self.encrypted
        result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Envelope:
        """Create from the wire dictionary.

        Raises:
            CorruptRecordError: If a field has the wrong shape
        """
        cid = data.get("cid")
        if not isinstance(cid, str) or not cid:
            raise CorruptRecordError(f"Envelope has invalid cid: {cid!r}")

        timestamp = data.get("setAtTimestamp")
        # bool is an int subclass
        if timestamp is not None and (
            isinstance(timestamp, bool) or not isinstance(timestamp, int)
        ):
            raise CorruptRecordError(f"Envelope has invalid setAtTimestamp: {timestamp!r}")

        auth_address = data.get("authAddress")
        if auth_address is not None:
            if not isinstance(auth_address, list) or not all(
                isinstance(a, str) for a in auth_address
            ):
                raise CorruptRecordError("Envelope authAddress must be a list of strings")
            auth_address = tuple(auth_address)

        encrypted = data.get("encrypted")
        if encrypted is not None and not isinstance(encrypted, bool):
            raise CorruptRecordError(f"Envelope has invalid encrypted flag: {encrypted!r}")

        return cls(
            cid=cid,
            set_at_timestamp=timestamp,
            auth_address=auth_address,
            encrypted=encrypted,
            data=data.get("data"),
        )

    def __str__(self) -> str:
        state = "purged" if self.is_purged else "resident"
        return f"Envelope(cid={self.cid}, ts={self.set_at_timestamp}, {state})"


def encode(envelope: Envelope) -> str:
    """Serialize an envelope to the fast store's string form."""
    return json.dumps(envelope.to_dict(), separators=(",", ":"))


def decode(raw: str | bytes, key: str | None = None) -> Envelope:
    """Parse an envelope from the fast store's string form.

    Args:
        raw: Stored value
        key: Key the value was read from (for error context)

    Returns:
        Decoded envelope

    Raises:
        CorruptRecordError: If the value is not a valid encoded envelope
    """
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        parsed = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise CorruptRecordError(f"Stored value is not valid JSON: {e}", key=key) from e

    if not isinstance(parsed, dict):
        raise CorruptRecordError(
            f"Stored value is a JSON {type(parsed).__name__}, expected an object", key=key
        )

    try:
        return Envelope.from_dict(parsed)
    except CorruptRecordError as e:
        raise CorruptRecordError(e.message, key=key) from e


def encode_payload(value: Any) -> bytes:
    """Serialize a raw value for upload to the archive."""
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def decode_payload(body: bytes, address: Address | None = None) -> Any:
    """Parse a payload fetched from the archive.

    Raises:
        ArchiveReadError: If the body is not valid JSON (treated as transient)
    """
    try:
        return json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ArchiveReadError(f"Archive returned a malformed body: {e}", address=address) from e

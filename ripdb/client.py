"""
RipDB client - tier orchestrator over the fast store and the archive.

Write path:
    set() ──▶ fast store SET (awaited, envelope cid="pending")
          └─▶ background backup task:
                 archive store ──▶ re-read envelope ──▶ fence check ──▶ SET cid

Read path:
    get() ──▶ fast store GET ──▶ data resident? return it
                               └─▶ purged: archive fetch (retrying)
                                     └─▶ background repopulation SET

Purge:
    purge() ──▶ fast store GET ──▶ refuse if pending ──▶ SET data=null

Invariants:
    - set() returns once the fast store acknowledged the envelope; it never
      waits for the archive
    - A backup commits its cid only if the stored envelope still carries the
      fencing token captured by the set() that started it
    - A purged envelope always has a resolved cid
    - cid moves from "pending" to an address and never back
    - Background failures are logged and counted, never raised to callers

How to change safely:
    - Never write an envelope from a background task without re-reading it
      and comparing the fencing token first
    - Keep background tasks referenced in self._tasks until they finish
    - The wire format is owned by envelope.py; do not build JSON here
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Coroutine, Iterable

from .archive import ArchiveGateway, RetryPolicy, create_archive_store
from .cache import FastStore, create_fast_store
from .envelope import PENDING, Address, Envelope, decode, encode, encode_payload
from .errors import (
    ArchiveWriteError,
    CorruptRecordError,
    PendingArchiveError,
    PurgeConflictError,
)

if TYPE_CHECKING:
    from .config import BackupConfig, ClientConfig, RetryConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BackupPolicy:
    """Policy for background archive uploads.

    Attributes:
        max_retries: Extra upload attempts after a failure (0 = single attempt)
        backoff: Delay schedule between upload attempts
        drain_timeout_s: How long close() waits for in-flight tasks
    """

    max_retries: int = 0
    backoff: RetryPolicy = field(default_factory=RetryPolicy)
    drain_timeout_s: float = 30.0

    @classmethod
    def from_config(cls, backup: "BackupConfig", retry: "RetryConfig") -> BackupPolicy:
        return cls(
            max_retries=backup.max_retries,
            backoff=RetryPolicy.from_config(retry),
            drain_timeout_s=backup.drain_timeout_seconds,
        )


class RipDBClient:
    """Redis + IPFS JSON store.

    Values are JSON documents. Each key holds one envelope in the fast
    store; the payload is backed up to the archive in the background and
    can be purged from the fast store once the backup has landed.

    Attributes:
        fast_store: Fast store backend (Redis in production)
        archive: Archive gateway (IPFS in production)
        backup_policy: Upload retry and shutdown policy

    Example:
        >>> async with RipDBClient.from_config(ClientConfig.from_env()) as db:
        ...     await db.set("user:1", {"name": "Ann"})
        ...     envelope = await db.get("user:1")
        ...     envelope.data
        {'name': 'Ann'}
    """

    def __init__(
        self,
        fast_store: FastStore,
        archive: ArchiveGateway,
        backup_policy: BackupPolicy | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            fast_store: Fast store backend
            archive: Archive gateway
            backup_policy: Background upload policy
            clock: Wall clock in seconds (used for fencing tokens)
        """
        self.fast_store = fast_store
        self.archive = archive
        self.backup_policy = backup_policy or BackupPolicy()
        self._clock = clock or time.time
        self._last_timestamp = 0
        self._tasks: set[asyncio.Task] = set()
        # (key, token) of every backup task not yet finished
        self._inflight_backups: set[tuple[str, int | None]] = set()

        self._backups_started = 0
        self._backups_committed = 0
        self._backups_superseded = 0
        self._backups_failed = 0
        self._repopulations = 0
        self._repopulations_failed = 0

    @classmethod
    def from_config(cls, config: "ClientConfig") -> RipDBClient:
        """Build a client with the backends selected by configuration."""
        return cls(
            fast_store=create_fast_store(config),
            archive=ArchiveGateway(
                create_archive_store(config),
                RetryPolicy.from_config(config.retry),
            ),
            backup_policy=BackupPolicy.from_config(config.backup, config.retry),
        )

    async def connect(self) -> None:
        """Connect both tiers."""
        await self.fast_store.connect()
        await self.archive.connect()
        logger.info("RipDB client connected")

    async def close(self) -> None:
        """Drain background tasks, then close both tiers.

        Tasks still running after the drain timeout are cancelled; their
        envelopes stay pending.
        """
        if self._tasks:
            drained = await self.wait_for_pending(self.backup_policy.drain_timeout_s)
            if not drained:
                stragglers = list(self._tasks)
                logger.warning(
                    "Cancelling background tasks still running at shutdown",
                    extra={"count": len(stragglers)},
                )
                for task in stragglers:
                    task.cancel()
                await asyncio.gather(*stragglers, return_exceptions=True)

        await self.fast_store.close()
        await self.archive.close()
        logger.info("RipDB client closed")

    async def __aenter__(self) -> RipDBClient:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # Public operations

    async def set(
        self,
        key: str,
        value: Any,
        *,
        auth_address: Iterable[str] | None = None,
        encrypted: bool | None = None,
    ) -> Envelope:
        """Store a value and schedule its archive backup.

        Returns as soon as the fast store has the new envelope; the backup
        runs in the background.

        Args:
            key: Fast store key
            value: JSON-serializable value (not None, which marks a purge)
            auth_address: Opaque passthrough metadata
            encrypted: Opaque passthrough metadata

        Returns:
            The envelope that was written (cid is "pending")

        Raises:
            ValueError: If value is None
            TypeError: If value is not JSON-serializable
            FastStoreError: If the fast store write fails
        """
        if value is None:
            raise ValueError("Cannot set None; use purge() to drop a payload")

        # Serialize now so later mutation of value cannot change the backup
        payload = encode_payload(value)

        envelope = Envelope(
            cid=PENDING,
            set_at_timestamp=self._issue_timestamp(),
            auth_address=tuple(auth_address) if auth_address is not None else None,
            encrypted=encrypted,
            data=value,
        )
        await self.fast_store.set(key, encode(envelope))

        self._spawn_backup(key, payload, envelope.set_at_timestamp, name=f"ripdb-backup:{key}")
        return envelope

    async def get(self, key: str) -> Envelope | None:
        """Read a value, falling back to the archive if it was purged.

        Returns:
            The envelope with data populated, or None if the key is absent

        Raises:
            CorruptRecordError: If the stored value is not an envelope, or
                the archived payload is null
            PendingArchiveError: If the payload was purged before backup
            UnauthorizedError: If the archive gateway denies access
            ArchiveFetchExhaustedError: If every fetch attempt failed
        """
        envelope = await self.inspect(key)
        if envelope is None:
            return None

        if envelope.data is not None:
            return envelope

        if envelope.is_pending:
            raise PendingArchiveError(
                "Cannot fetch from archive, backup is pending", key=key
            )

        logger.debug("Payload purged, fetching from archive", extra={"key": key, "cid": envelope.cid})
        data = await self.archive.fetch_json(envelope.cid)
        if data is None:
            # null would read back as a purged record
            raise CorruptRecordError(
                f"Archived payload {envelope.cid} is null", key=key
            )
        rehydrated = envelope.with_data(data)

        self._spawn(self._repopulate(key, rehydrated), name=f"ripdb-repopulate:{key}")
        return rehydrated

    async def purge(self, key: str) -> None:
        """Drop the payload from the fast store, keeping its archive address.

        Purging a missing key is a no-op.

        Raises:
            CorruptRecordError: If the stored value is not an envelope
            PurgeConflictError: If the backup has not completed yet
        """
        envelope = await self.inspect(key)
        if envelope is None:
            return

        if envelope.is_pending:
            raise PurgeConflictError(
                "Cannot purge fast store before archive backup is complete", key=key
            )

        if envelope.is_purged:
            return

        await self.fast_store.set(key, encode(envelope.with_data(None)))
        logger.debug("Purged payload from fast store", extra={"key": key, "cid": envelope.cid})

    async def inspect(self, key: str) -> Envelope | None:
        """Read the stored envelope as-is, without archive fallback."""
        raw = await self.fast_store.get(key)
        if raw is None:
            return None
        return decode(raw, key=key)

    async def rebackup(self, key: str) -> bool:
        """Retry the archive backup of a record stuck in the pending state.

        The new backup is fenced on the record's current token, so a write
        that lands in the meantime still wins.

        Returns:
            True if a backup was scheduled. False if the record is missing,
            already archived, has no payload, or a backup for its current
            token is still running.
        """
        envelope = await self.inspect(key)
        if envelope is None or not envelope.is_pending or envelope.data is None:
            return False

        if (key, envelope.set_at_timestamp) in self._inflight_backups:
            logger.info(
                "Backup already in flight, re-backup skipped",
                extra={"key": key, "token": envelope.set_at_timestamp},
            )
            return False

        self._spawn_backup(
            key,
            encode_payload(envelope.data),
            envelope.set_at_timestamp,
            name=f"ripdb-rebackup:{key}",
        )
        logger.info("Re-backup scheduled", extra={"key": key})
        return True

    async def wait_for_pending(self, timeout: float | None = None) -> bool:
        """Wait for in-flight background tasks.

        Args:
            timeout: Maximum wait in seconds (None waits indefinitely)

        Returns:
            True if all tasks finished, False on timeout
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        while self._tasks:
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            _, pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            if pending:
                return False
        return True

    @property
    def stats(self) -> dict[str, Any]:
        """Get client statistics."""
        return {
            "backups_started": self._backups_started,
            "backups_committed": self._backups_committed,
            "backups_superseded": self._backups_superseded,
            "backups_failed": self._backups_failed,
            "repopulations": self._repopulations,
            "repopulations_failed": self._repopulations_failed,
            "pending_tasks": len(self._tasks),
        }

    # Background work

    async def _backup(self, key: str, payload: bytes, token: int | None) -> None:
        """Upload payload, then commit its cid if the write was not superseded."""
        try:
            address = await self._store_payload(key, payload)

            current = await self.inspect(key)
            if current is None or current.set_at_timestamp != token:
                self._backups_superseded += 1
                logger.info(
                    "Backup superseded by a newer write, cid not recorded",
                    extra={"key": key, "token": token, "cid": address},
                )
                return

            await self.fast_store.set(key, encode(current.with_cid(address)))
            self._backups_committed += 1
            logger.debug("Backup committed", extra={"key": key, "cid": address})

        except Exception as e:
            self._backups_failed += 1
            logger.error(
                f"Archive backup failed for {key}: {e}",
                exc_info=True,
                extra={"key": key, "token": token},
            )

    async def _store_payload(self, key: str, payload: bytes) -> Address:
        attempts = self.backup_policy.max_retries + 1
        attempt = 1
        while True:
            try:
                return await self.archive.store(payload)
            except ArchiveWriteError as e:
                if attempt >= attempts:
                    raise
                delay = self.backup_policy.backoff.compute_delay(attempt)
                logger.warning(
                    f"Archive upload failed, retrying in {delay:.2f}s: {e.message}",
                    extra={"key": key, "attempt": attempt, "max_attempts": attempts},
                )
                await asyncio.sleep(delay)
                attempt += 1

    async def _repopulate(self, key: str, rehydrated: Envelope) -> None:
        """Write a payload fetched from the archive back to the fast store.

        Skipped if the stored record changed since it was read.
        """
        try:
            current = await self.inspect(key)
            if (
                current is None
                or current.set_at_timestamp != rehydrated.set_at_timestamp
                or current.cid != rehydrated.cid
                or current.data is not None
            ):
                logger.debug("Record changed since fetch, skipping repopulation", extra={"key": key})
                return

            await self.fast_store.set(key, encode(rehydrated))
            self._repopulations += 1

        except Exception as e:
            self._repopulations_failed += 1
            logger.warning(
                f"Cache repopulation failed for {key}: {e}",
                extra={"key": key, "cid": rehydrated.cid},
            )

    def _spawn_backup(self, key: str, payload: bytes, token: int | None, name: str) -> None:
        # Cleared by a done callback: a task cancelled before its first step
        # never runs the coroutine body
        entry = (key, token)
        self._inflight_backups.add(entry)
        self._backups_started += 1
        task = self._spawn(self._backup(key, payload, token), name=name)
        task.add_done_callback(lambda _: self._inflight_backups.discard(entry))

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _issue_timestamp(self) -> int:
        """Issue a fencing token: wall-clock ms, strictly increasing per process."""
        now = int(self._clock() * 1000)
        if now <= self._last_timestamp:
            now = self._last_timestamp + 1
        self._last_timestamp = now
        return now

"""
Unit tests for RipDBClient (tier orchestrator).

Tests cover:
- Write path and background backup
- Fencing of stale backups
- Read-through from the archive after purge
- Purge refusal while pending
- Background failure isolation
- Re-backup and shutdown
"""

import asyncio
import json
import logging

import pytest
import pytest_asyncio

from ripdb.archive import ArchiveGateway, InMemoryArchiveStore, RetryPolicy
from ripdb.cache import InMemoryFastStore
from ripdb.client import BackupPolicy, RipDBClient
from ripdb.envelope import PENDING, Envelope, decode, encode, encode_payload
from ripdb.errors import (
    ArchiveFetchExhaustedError,
    CorruptRecordError,
    FastStoreError,
    PendingArchiveError,
    PurgeConflictError,
    UnauthorizedError,
)


class RecordingFastStore(InMemoryFastStore):
    """In-memory fast store that keeps every value written per key."""

    def __init__(self):
        super().__init__()
        self.history = {}

    async def set(self, key, value):
        await super().set(key, value)
        self.history.setdefault(key, []).append(value)


def address_of(value):
    return InMemoryArchiveStore.address_for(encode_payload(value))


@pytest_asyncio.fixture
async def fast_store():
    store = RecordingFastStore()
    await store.connect()
    return store


@pytest_asyncio.fixture
async def archive_backend():
    backend = InMemoryArchiveStore()
    await backend.connect()
    return backend


@pytest_asyncio.fixture
async def client(fast_store, archive_backend):
    gateway = ArchiveGateway(archive_backend, RetryPolicy(initial_delay_s=0.0))
    db = RipDBClient(
        fast_store,
        gateway,
        BackupPolicy(backoff=RetryPolicy(initial_delay_s=0.0), drain_timeout_s=1.0),
    )
    yield db
    await db.wait_for_pending(timeout=1.0)


def stored(fast_store, key):
    raw = fast_store.raw(key)
    return None if raw is None else decode(raw)


class TestSet:
    """Tests for set() and the background backup."""

    @pytest.mark.asyncio
    async def test_set_writes_pending_envelope(self, client, fast_store, archive_backend):
        """set() returns a pending envelope already visible in the fast store."""
        archive_backend.hold_writes()

        envelope = await client.set("k", {"a": 1})

        assert envelope.cid == PENDING
        assert envelope.data == {"a": 1}
        assert envelope.set_at_timestamp is not None
        assert stored(fast_store, "k") == envelope

        archive_backend.release_writes()

    @pytest.mark.asyncio
    async def test_backup_resolves_cid(self, client, fast_store, archive_backend):
        """After the backup completes the envelope carries the archive address."""
        envelope = await client.set("k", {"a": 1})
        assert await client.wait_for_pending(timeout=1.0)

        current = stored(fast_store, "k")
        assert current.cid == address_of({"a": 1})
        assert current.data == {"a": 1}
        assert current.set_at_timestamp == envelope.set_at_timestamp
        assert archive_backend.has_blob(current.cid)
        assert client.stats["backups_committed"] == 1

    @pytest.mark.asyncio
    async def test_read_hit_without_archive_access(self, client, archive_backend):
        """A resident payload is served from the fast store only."""
        await client.set("k", [1, 2, 3])

        envelope = await client.get("k")

        assert envelope.data == [1, 2, 3]
        assert archive_backend.read_count == 0

    @pytest.mark.asyncio
    async def test_passthrough_fields_survive_backup(self, client, fast_store):
        """Opaque metadata is stored and preserved by the backup."""
        await client.set("k", "v", auth_address=["0xabc", "0xdef"], encrypted=True)
        await client.wait_for_pending(timeout=1.0)

        current = stored(fast_store, "k")
        assert current.auth_address == ("0xabc", "0xdef")
        assert current.encrypted is True
        assert not current.is_pending

    @pytest.mark.asyncio
    async def test_backup_uses_value_at_set_time(self, client, archive_backend):
        """Mutating the value after set() does not change what is archived."""
        value = {"n": 1}
        await client.set("k", value)
        value["n"] = 2
        await client.wait_for_pending(timeout=1.0)

        assert archive_backend.has_blob(address_of({"n": 1}))
        assert not archive_backend.has_blob(address_of({"n": 2}))

    @pytest.mark.asyncio
    async def test_set_none_rejected(self, client, fast_store):
        """None is reserved for purged payloads."""
        with pytest.raises(ValueError):
            await client.set("k", None)

        assert fast_store.raw("k") is None

    @pytest.mark.asyncio
    async def test_fast_store_failure_propagates(self, client, fast_store):
        """A failed fast store write fails set() and starts no backup."""
        fast_store.fail_next_writes(1)

        with pytest.raises(FastStoreError):
            await client.set("k", 1)

        assert client.stats["backups_started"] == 0
        assert client.stats["pending_tasks"] == 0

    @pytest.mark.asyncio
    async def test_tokens_strictly_increase(self, fast_store, archive_backend):
        """Tokens stay unique even when the clock does not advance."""
        db = RipDBClient(fast_store, ArchiveGateway(archive_backend), clock=lambda: 1000.0)

        first = await db.set("a", 1)
        second = await db.set("b", 2)
        await db.wait_for_pending(timeout=1.0)

        assert first.set_at_timestamp == 1_000_000
        assert second.set_at_timestamp == 1_000_001


class TestFencing:
    """A stale backup must never overwrite a newer write."""

    @pytest.mark.asyncio
    async def test_superseded_backup_does_not_commit(self, client, fast_store, archive_backend):
        """Only the latest write's archive address is ever recorded."""
        archive_backend.hold_writes()

        await client.set("k", {"v": 1})
        second = await client.set("k", {"v": 2})

        archive_backend.release_writes()
        assert await client.wait_for_pending(timeout=1.0)

        current = stored(fast_store, "k")
        assert current.data == {"v": 2}
        assert current.set_at_timestamp == second.set_at_timestamp
        assert current.cid == address_of({"v": 2})

        stale_address = address_of({"v": 1})
        assert all(decode(raw).cid != stale_address for raw in fast_store.history["k"])
        # The stale blob itself is orphaned in the archive
        assert archive_backend.has_blob(stale_address)

        assert client.stats["backups_superseded"] == 1
        assert client.stats["backups_committed"] == 1

    @pytest.mark.asyncio
    async def test_backup_aborts_when_key_deleted(self, client, fast_store, archive_backend):
        """A backup for a key that disappeared does not recreate it."""
        archive_backend.hold_writes()
        await client.set("k", 1)
        await fast_store.delete("k")

        archive_backend.release_writes()
        await client.wait_for_pending(timeout=1.0)

        assert fast_store.raw("k") is None
        assert client.stats["backups_superseded"] == 1


class TestPurge:
    """Tests for purge()."""

    @pytest.mark.asyncio
    async def test_purge_before_backup_rejected(self, client, fast_store, archive_backend):
        """Purging a pending record fails and leaves it untouched."""
        archive_backend.hold_writes()
        await client.set("k", {"a": 1})
        before = fast_store.raw("k")

        with pytest.raises(PurgeConflictError) as exc_info:
            await client.purge("k")

        assert exc_info.value.key == "k"
        assert fast_store.raw("k") == before
        archive_backend.release_writes()

    @pytest.mark.asyncio
    async def test_purge_keeps_metadata(self, client, fast_store):
        """Purge drops only the payload."""
        await client.set("k", {"a": 1}, encrypted=False)
        await client.wait_for_pending(timeout=1.0)
        archived = stored(fast_store, "k")

        await client.purge("k")

        purged = stored(fast_store, "k")
        assert purged.data is None
        assert purged.cid == archived.cid
        assert purged.set_at_timestamp == archived.set_at_timestamp
        assert purged.encrypted is False

    @pytest.mark.asyncio
    async def test_purge_missing_key_is_noop(self, client, fast_store):
        """Purging a key that does not exist does nothing."""
        await client.purge("missing")

        assert fast_store.write_count == 0

    @pytest.mark.asyncio
    async def test_purge_corrupt_record(self, client, fast_store):
        """A corrupt record is refused."""
        fast_store.put_raw("k", "{{{")

        with pytest.raises(CorruptRecordError):
            await client.purge("k")


class TestGet:
    """Tests for get()."""

    async def _archived_and_purged(self, client, key, value):
        await client.set(key, value)
        await client.wait_for_pending(timeout=1.0)
        await client.purge(key)

    @pytest.mark.asyncio
    async def test_null_archived_payload_is_corrupt(self, client, fast_store, archive_backend):
        """An archived null cannot be returned as data, it would read as purged."""
        archive_backend.put_blob("bafy-null", b"null")
        await fast_store.set(
            "k", encode(Envelope(cid="bafy-null", set_at_timestamp=1, data=None))
        )

        with pytest.raises(CorruptRecordError) as exc_info:
            await client.get("k")

        assert exc_info.value.key == "k"
        assert client.stats["pending_tasks"] == 0

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, client):
        """A missing key is an empty result, not an error."""
        assert await client.get("missing") is None

    @pytest.mark.asyncio
    async def test_reconstruct_after_purge(self, client, fast_store, archive_backend):
        """A purged payload is fetched from the archive with the same address."""
        await self._archived_and_purged(client, "k", {"a": 1})
        address = stored(fast_store, "k").cid

        envelope = await client.get("k")

        assert envelope.data == {"a": 1}
        assert envelope.cid == address
        assert archive_backend.read_count == 1

    @pytest.mark.asyncio
    async def test_reconstruct_repopulates_cache(self, client, fast_store, archive_backend):
        """The fetched payload is written back so the next read is a hit."""
        await self._archived_and_purged(client, "k", {"a": 1})

        await client.get("k")
        await client.wait_for_pending(timeout=1.0)

        assert stored(fast_store, "k").data == {"a": 1}
        assert client.stats["repopulations"] == 1

        again = await client.get("k")
        assert again.data == {"a": 1}
        assert archive_backend.read_count == 1

    @pytest.mark.asyncio
    async def test_purged_pending_record_raises(self, client, fast_store, archive_backend):
        """A record without payload or address cannot be reconstructed."""
        fast_store.put_raw("k", encode(Envelope(cid=PENDING, set_at_timestamp=1, data=None)))

        with pytest.raises(PendingArchiveError):
            await client.get("k")

        assert archive_backend.read_count == 0

    @pytest.mark.asyncio
    async def test_unauthorized_propagates(self, client, fast_store, archive_backend):
        """A gateway 403 reaches the caller unchanged."""
        await self._archived_and_purged(client, "k", {"a": 1})
        archive_backend.deny(stored(fast_store, "k").cid)

        with pytest.raises(UnauthorizedError):
            await client.get("k")

        assert archive_backend.read_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_fetch_propagates(self, client, archive_backend):
        """Persistent transient failures surface as ArchiveFetchExhaustedError."""
        await self._archived_and_purged(client, "k", {"a": 1})
        archive_backend.fail_next_reads(10)

        with pytest.raises(ArchiveFetchExhaustedError):
            await client.get("k")

        assert archive_backend.read_count == 5

    @pytest.mark.asyncio
    async def test_corrupt_record(self, client, fast_store):
        """A corrupt record is refused."""
        fast_store.put_raw("k", '["not", "an", "envelope"]')

        with pytest.raises(CorruptRecordError):
            await client.get("k")

    @pytest.mark.asyncio
    async def test_repopulation_failure_is_swallowed(self, client, fast_store):
        """A failed write-back does not fail get()."""
        await self._archived_and_purged(client, "k", {"a": 1})
        fast_store.fail_next_writes(1)

        envelope = await client.get("k")
        await client.wait_for_pending(timeout=1.0)

        assert envelope.data == {"a": 1}
        assert stored(fast_store, "k").data is None
        assert client.stats["repopulations_failed"] == 1

    @pytest.mark.asyncio
    async def test_repopulation_skipped_after_newer_write(self, client, fast_store):
        """The write-back never replaces a record written after the fetch."""
        await self._archived_and_purged(client, "k", {"a": 1})

        await client.get("k")
        await client.set("k", {"a": 2})
        await client.wait_for_pending(timeout=1.0)

        assert stored(fast_store, "k").data == {"a": 2}
        assert client.stats["repopulations"] == 0

    @pytest.mark.asyncio
    async def test_user_scenario(self, client, fast_store, archive_backend):
        """Write, read, archive, purge and reconstruct a user record."""
        await client.set("user:1", {"name": "Ann"})

        first = await client.get("user:1")
        assert first.data == {"name": "Ann"}

        await client.wait_for_pending(timeout=1.0)
        address = stored(fast_store, "user:1").cid
        assert address != PENDING

        await client.purge("user:1")
        assert json.loads(fast_store.raw("user:1"))["data"] is None

        reconstructed = await client.get("user:1")
        assert reconstructed.data == {"name": "Ann"}
        assert reconstructed.cid == address
        assert archive_backend.read_count == 1


class TestBackgroundFailures:
    """Background failures are logged and counted, never raised."""

    @pytest.mark.asyncio
    async def test_backup_failure_leaves_record_pending(
        self, client, fast_store, archive_backend, caplog
    ):
        """A failed upload keeps the record pending and logs an error."""
        archive_backend.fail_next_writes(1)

        with caplog.at_level(logging.ERROR, logger="ripdb.client"):
            envelope = await client.set("k", {"a": 1})
            await client.wait_for_pending(timeout=1.0)

        assert envelope.data == {"a": 1}
        assert stored(fast_store, "k").is_pending
        assert client.stats["backups_failed"] == 1
        assert any("Archive backup failed" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_backup_retries_when_configured(self, fast_store, archive_backend):
        """Upload retries are opt-in through BackupPolicy."""
        db = RipDBClient(
            fast_store,
            ArchiveGateway(archive_backend),
            BackupPolicy(max_retries=2, backoff=RetryPolicy(initial_delay_s=0.0)),
        )
        archive_backend.fail_next_writes(2)

        await db.set("k", {"a": 1})
        await db.wait_for_pending(timeout=1.0)

        assert not stored(fast_store, "k").is_pending
        assert archive_backend.write_count == 3
        assert db.stats["backups_committed"] == 1

    @pytest.mark.asyncio
    async def test_no_upload_retry_by_default(self, client, archive_backend):
        """By default a failed upload is attempted once."""
        archive_backend.fail_next_writes(1)

        await client.set("k", 1)
        await client.wait_for_pending(timeout=1.0)

        assert archive_backend.write_count == 1


class TestRebackup:
    """Tests for rebackup()."""

    @pytest.mark.asyncio
    async def test_rebackup_resolves_stuck_record(self, client, fast_store, archive_backend):
        """A record left pending by a failed upload can be backed up again."""
        archive_backend.fail_next_writes(1)
        await client.set("k", {"a": 1})
        await client.wait_for_pending(timeout=1.0)
        assert stored(fast_store, "k").is_pending

        assert await client.rebackup("k") is True
        await client.wait_for_pending(timeout=1.0)

        assert stored(fast_store, "k").cid == address_of({"a": 1})

    @pytest.mark.asyncio
    async def test_rebackup_noop_cases(self, client, fast_store):
        """Missing or already archived records are not backed up again."""
        assert await client.rebackup("missing") is False

        await client.set("k", 1)
        await client.wait_for_pending(timeout=1.0)
        assert await client.rebackup("k") is False

    @pytest.mark.asyncio
    async def test_rebackup_skipped_while_backup_in_flight(
        self, client, fast_store, archive_backend
    ):
        """A write whose backup is still uploading is not uploaded twice."""
        archive_backend.hold_writes()
        await client.set("k", {"a": 1})

        assert await client.rebackup("k") is False

        archive_backend.release_writes()
        await client.wait_for_pending(timeout=1.0)

        assert client.stats["backups_started"] == 1
        assert client.stats["backups_committed"] == 1
        assert archive_backend.write_count == 1
        assert stored(fast_store, "k").cid == address_of({"a": 1})

    @pytest.mark.asyncio
    async def test_rebackup_allowed_after_backup_finishes(self, client, archive_backend):
        """Once the failed backup task is done, the token can be retried."""
        archive_backend.fail_next_writes(1)
        await client.set("k", {"a": 1})
        await client.wait_for_pending(timeout=1.0)

        assert await client.rebackup("k") is True
        assert await client.rebackup("k") is False

        await client.wait_for_pending(timeout=1.0)
        assert client.stats["backups_committed"] == 1


class TestLifecycle:
    """Tests for connect/close and task draining."""

    @pytest.mark.asyncio
    async def test_context_manager_connects_and_closes(self):
        """The client owns both stores' lifecycle."""
        fast_store = InMemoryFastStore()
        backend = InMemoryArchiveStore()

        async with RipDBClient(fast_store, ArchiveGateway(backend)) as db:
            assert fast_store.is_connected
            assert backend.is_connected
            await db.set("k", 1)

        assert not fast_store.is_connected
        assert not backend.is_connected
        assert db.stats["backups_committed"] == 1

    @pytest.mark.asyncio
    async def test_close_cancels_stuck_tasks(self):
        """Tasks still running after the drain timeout are cancelled."""
        fast_store = InMemoryFastStore()
        backend = InMemoryArchiveStore()
        db = RipDBClient(
            fast_store, ArchiveGateway(backend), BackupPolicy(drain_timeout_s=0.05)
        )
        await db.connect()
        backend.hold_writes()

        await db.set("k", 1)
        await db.close()

        assert db.stats["pending_tasks"] == 0
        assert db.stats["backups_committed"] == 0

    @pytest.mark.asyncio
    async def test_wait_for_pending_timeout(self, client, archive_backend):
        """wait_for_pending reports a timeout."""
        archive_backend.hold_writes()
        await client.set("k", 1)

        assert await client.wait_for_pending(timeout=0.01) is False

        archive_backend.release_writes()
        assert await client.wait_for_pending(timeout=1.0) is True

    @pytest.mark.asyncio
    async def test_set_does_not_wait_for_archive(self, client, archive_backend):
        """set() completes while the upload is still blocked."""
        archive_backend.hold_writes()

        envelope = await asyncio.wait_for(client.set("k", 1), timeout=1.0)

        assert envelope.is_pending
        assert client.stats["pending_tasks"] == 1
        archive_backend.release_writes()

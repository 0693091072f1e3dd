"""Tests for session store backends.

Both backends run the same contract tests.
"""

import asyncio
import sqlite3
from types import SimpleNamespace

import pytest
import pytest_asyncio

from onetouch.config import StoreConfig
from onetouch.errors import (
    CollisionError,
    PreconditionFailedError,
    SessionNotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from onetouch.pairing.session import PairingSession, PairingStatus
from onetouch.pairing.sqlite_store import SqliteSessionStore
from onetouch.pairing.store import MemorySessionStore, open_store

NOW = 1_700_000_000.0


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def backend(request, tmp_path):
    """Each store backend, closed after the test."""
    if request.param == "memory":
        store = MemorySessionStore()
    else:
        store = SqliteSessionStore(tmp_path / "sessions.db")
    yield store
    await store.close()


def make_session(code="ABC123", ttl=120.0, initiator_ref="web"):
    return PairingSession.create(code, now=NOW, ttl=ttl, initiator_ref=initiator_ref)


class TestInsertAndGet:
    """Tests for insert and get."""

    @pytest.mark.asyncio
    async def test_round_trip(self, backend):
        """Inserted session reads back unchanged."""
        session = make_session()
        await backend.insert(session)

        assert await backend.get("ABC123") == session

    @pytest.mark.asyncio
    async def test_get_missing(self, backend):
        """Unknown code raises SessionNotFoundError."""
        with pytest.raises(SessionNotFoundError):
            await backend.get("ZZZ999")

    @pytest.mark.asyncio
    async def test_duplicate_code_collides(self, backend):
        """Second insert with the same code raises CollisionError."""
        await backend.insert(make_session(initiator_ref="first"))

        with pytest.raises(CollisionError):
            await backend.insert(make_session(initiator_ref="second"))

        assert (await backend.get("ABC123")).initiator_ref == "first"


class TestCompareAndSetClaimed:
    """Tests for the conditional claim."""

    @pytest.mark.asyncio
    async def test_claims_pending_session(self, backend):
        """Pending, unexpired session is claimed."""
        await backend.insert(make_session())

        claimed = await backend.compare_and_set_claimed("ABC123", NOW + 5, "phone")

        assert claimed.status is PairingStatus.CLAIMED
        assert claimed.claimed_at == NOW + 5
        assert claimed.responder_ref == "phone"
        assert await backend.get("ABC123") == claimed

    @pytest.mark.asyncio
    async def test_second_claim_fails(self, backend):
        """Claimed session cannot be claimed again and stays unchanged."""
        await backend.insert(make_session())
        first = await backend.compare_and_set_claimed("ABC123", NOW + 5, "phone")

        with pytest.raises(PreconditionFailedError):
            await backend.compare_and_set_claimed("ABC123", NOW + 6, "tablet")

        assert await backend.get("ABC123") == first

    @pytest.mark.asyncio
    async def test_expired_session_not_claimed(self, backend):
        """Claim at or after expires_at fails without modifying the row."""
        session = make_session(ttl=10)
        await backend.insert(session)

        with pytest.raises(PreconditionFailedError):
            await backend.compare_and_set_claimed("ABC123", NOW + 10, "phone")
        with pytest.raises(PreconditionFailedError):
            await backend.compare_and_set_claimed("ABC123", NOW + 60, "phone")

        assert await backend.get("ABC123") == session

    @pytest.mark.asyncio
    async def test_missing_session(self, backend):
        """Claim on an unknown code fails the precondition."""
        with pytest.raises(PreconditionFailedError):
            await backend.compare_and_set_claimed("ZZZ999", NOW, "phone")

    @pytest.mark.asyncio
    async def test_concurrent_claims_single_winner(self, backend):
        """Only one of many concurrent conditional claims succeeds."""
        await backend.insert(make_session())

        results = await asyncio.gather(
            *(
                backend.compare_and_set_claimed("ABC123", NOW + 1, f"phone-{i}")
                for i in range(10)
            ),
            return_exceptions=True,
        )

        winners = [r for r in results if isinstance(r, PairingSession)]
        losers = [r for r in results if isinstance(r, PreconditionFailedError)]
        assert len(winners) == 1
        assert len(losers) == 9


class TestPurgeExpired:
    """Tests for housekeeping purge."""

    @pytest.mark.asyncio
    async def test_purges_only_old_rows(self, backend):
        """Rows expiring before the cutoff are deleted, others kept."""
        await backend.insert(make_session("OLD111", ttl=10))
        await backend.insert(make_session("NEW222", ttl=1000))

        removed = await backend.purge_expired(NOW + 100)

        assert removed == 1
        with pytest.raises(SessionNotFoundError):
            await backend.get("OLD111")
        assert (await backend.get("NEW222")).code == "NEW222"

    @pytest.mark.asyncio
    async def test_purged_code_can_be_reused(self, backend):
        """After purge the code is free again."""
        await backend.insert(make_session("OLD111", ttl=10))
        await backend.purge_expired(NOW + 100)

        await backend.insert(make_session("OLD111"))


class TestSqliteDurability:
    """Tests specific to the SQLite backend."""

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        """Sessions persist across store instances."""
        path = tmp_path / "sessions.db"
        store = SqliteSessionStore(path)
        await store.insert(make_session())
        await store.compare_and_set_claimed("ABC123", NOW + 1, "phone")
        await store.close()

        reopened = SqliteSessionStore(path)
        try:
            session = await reopened.get("ABC123")
            assert session.status is PairingStatus.CLAIMED
            assert session.responder_ref == "phone"
        finally:
            await reopened.close()

    @pytest.mark.asyncio
    async def test_two_connections_single_winner(self, tmp_path):
        """The conditional update holds across separate connections."""
        path = tmp_path / "sessions.db"
        a = SqliteSessionStore(path)
        b = SqliteSessionStore(path)
        try:
            await a.insert(make_session())
            await a.compare_and_set_claimed("ABC123", NOW + 1, "phone-a")

            with pytest.raises(PreconditionFailedError):
                await b.compare_and_set_claimed("ABC123", NOW + 1, "phone-b")
            with pytest.raises(CollisionError):
                await b.insert(make_session())
        finally:
            await a.close()
            await b.close()

    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        """Missing parent directories are created, the file on first use."""
        path = tmp_path / "nested" / "dir" / "sessions.db"
        store = SqliteSessionStore(path)
        try:
            assert path.parent.is_dir()
            await store.insert(make_session())
            assert path.exists()
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_rejected_row_is_not_a_collision(self, tmp_path):
        """A NOT NULL failure is a validation error, not a code collision."""
        store = SqliteSessionStore(tmp_path / "sessions.db")
        row = SimpleNamespace(
            code="ABC123",
            status=PairingStatus.PENDING,
            created_at=NOW,
            expires_at=float("nan"),  # sqlite binds NaN as NULL
            claimed_at=None,
            initiator_ref="web",
            responder_ref=None,
        )
        try:
            with pytest.raises(ValidationError):
                await store.insert(row)
            with pytest.raises(SessionNotFoundError):
                await store.get("ABC123")
        finally:
            await store.close()

    @pytest.mark.asyncio
    async def test_locked_database_does_not_block_loop(self, tmp_path):
        """Waiting on a locked file leaves the event loop free."""
        path = tmp_path / "sessions.db"
        store = SqliteSessionStore(path, timeout=0.5)
        await store.insert(make_session("FIRST1"))

        locker = sqlite3.connect(path)
        locker.execute("BEGIN EXCLUSIVE")

        loop = asyncio.get_running_loop()
        beats = []

        async def heartbeat():
            while True:
                beats.append(loop.time())
                await asyncio.sleep(0.02)

        ticker = asyncio.create_task(heartbeat())
        try:
            with pytest.raises(StoreUnavailableError):
                await store.insert(make_session("LOCKED"))
        finally:
            ticker.cancel()
            locker.rollback()
            locker.close()
            await store.close()

        gaps = [b - a for a, b in zip(beats, beats[1:])]
        assert len(beats) > 10
        assert max(gaps) < 0.2


class TestOpenStore:
    """Tests for the backend factory."""

    def test_memory(self):
        assert isinstance(open_store(StoreConfig()), MemorySessionStore)

    def test_sqlite(self, tmp_path):
        store = open_store(StoreConfig(backend="sqlite", path=str(tmp_path / "s.db")))
        assert isinstance(store, SqliteSessionStore)

    def test_sqlite_requires_path(self):
        with pytest.raises(ValueError):
            open_store(StoreConfig(backend="sqlite"))

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            open_store(StoreConfig(backend="redis"))

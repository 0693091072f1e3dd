"""SQLite-backed session store.

Uniqueness comes from the primary key on ``code`` and claiming is a
single conditional UPDATE, so both hold across processes sharing the
database file. Queries go through SQLAlchemy's async engine on the
aiosqlite driver, which runs sqlite in a worker thread; a locked
database delays only the waiting request, never the event loop.
"""

import asyncio
import logging
from pathlib import Path

from sqlalchemy import (
    CheckConstraint,
    Column,
    Float,
    MetaData,
    String,
    Table,
    delete,
    select,
    update,
)
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from onetouch.errors import (
    CollisionError,
    PreconditionFailedError,
    SessionNotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from onetouch.pairing.session import PairingSession, PairingStatus

logger = logging.getLogger(__name__)

metadata = MetaData()

sessions_table = Table(
    "one_touch_sessions",
    metadata,
    Column("code", String(6), primary_key=True),
    Column("status", String(16), nullable=False, server_default="pending"),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
    Column("claimed_at", Float, nullable=True),
    Column("initiator_ref", String, nullable=True),
    Column("responder_ref", String, nullable=True),
    CheckConstraint(
        "status IN ('pending', 'claimed')", name="ck_one_touch_sessions_status"
    ),
    CheckConstraint(
        "(status = 'claimed') = (claimed_at IS NOT NULL)",
        name="ck_one_touch_sessions_claimed_at",
    ),
)


class SqliteSessionStore:
    """Session store on a SQLite database file.

    The schema is created on first use.

    Attributes:
        path: Database file path.
    """

    def __init__(self, path: str | Path, timeout: float = 5.0) -> None:
        """Set up the engine. No connection is opened until first use.

        Args:
            path: Database file path. Parent directories are created.
            timeout: Seconds a statement waits on a locked database.
        """
        self.path = str(path)
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self._engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{self.path}",
            connect_args={"timeout": timeout},
        )
        self._schema_lock = asyncio.Lock()
        self._schema_ready = False

    async def _ensure_schema(self) -> None:
        if self._schema_ready:
            return
        async with self._schema_lock:
            if self._schema_ready:
                return
            try:
                async with self._engine.begin() as conn:
                    await conn.run_sync(metadata.create_all)
            except SQLAlchemyError as e:
                raise StoreUnavailableError(f"Cannot open session database: {e}") from e
            self._schema_ready = True
            logger.debug(f"Opened session database at {self.path}")

    async def insert(self, session: PairingSession) -> None:
        await self._ensure_schema()
        stmt = (
            sqlite_insert(sessions_table)
            .values(
                code=session.code,
                status=session.status.value,
                created_at=session.created_at,
                expires_at=session.expires_at,
                claimed_at=session.claimed_at,
                initiator_ref=session.initiator_ref,
                responder_ref=session.responder_ref,
            )
            .on_conflict_do_nothing(index_elements=[sessions_table.c.code])
        )
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
        except IntegrityError as e:
            # Key conflicts are absorbed above; this is a rejected row.
            raise ValidationError(f"Session rejected by store: {e.orig}") from e
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Insert failed: {e}") from e

        if result.rowcount == 0:
            raise CollisionError(f"Code already exists: {session.code}")

    async def get(self, code: str) -> PairingSession:
        await self._ensure_schema()
        try:
            async with self._engine.connect() as conn:
                row = (
                    await conn.execute(
                        select(sessions_table).where(sessions_table.c.code == code)
                    )
                ).first()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Read failed: {e}") from e

        if row is None:
            raise SessionNotFoundError(code)
        return _to_session(row)

    async def compare_and_set_claimed(
        self,
        code: str,
        now: float,
        responder_ref: str | None,
    ) -> PairingSession:
        await self._ensure_schema()
        stmt = (
            update(sessions_table)
            .where(
                sessions_table.c.code == code,
                sessions_table.c.status == PairingStatus.PENDING.value,
                sessions_table.c.expires_at > now,
            )
            .values(
                status=PairingStatus.CLAIMED.value,
                claimed_at=now,
                responder_ref=responder_ref,
            )
        )
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(stmt)
                if result.rowcount != 1:
                    raise PreconditionFailedError(code)
                row = (
                    await conn.execute(
                        select(sessions_table).where(sessions_table.c.code == code)
                    )
                ).one()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Claim failed: {e}") from e
        return _to_session(row)

    async def purge_expired(self, before: float) -> int:
        await self._ensure_schema()
        try:
            async with self._engine.begin() as conn:
                result = await conn.execute(
                    delete(sessions_table).where(sessions_table.c.expires_at < before)
                )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Purge failed: {e}") from e

        if result.rowcount:
            logger.info(f"Purged {result.rowcount} expired sessions")
        return result.rowcount

    async def close(self) -> None:
        await self._engine.dispose()


def _to_session(row: Row) -> PairingSession:
    values = dict(row._mapping)
    values["status"] = PairingStatus(values["status"])
    return PairingSession(**values)

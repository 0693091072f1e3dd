"""Session storage interface and in-memory backend.

Backends must provide two atomic primitives: insert with a uniqueness
constraint on the code, and a conditional claim that checks status and
expiry in the same step as the write. The pairing service never does
read-then-write on its own.
"""

import logging
from typing import TYPE_CHECKING, Dict, Protocol

from onetouch.errors import (
    CollisionError,
    PreconditionFailedError,
    SessionNotFoundError,
)
from onetouch.pairing.session import PairingSession, PairingStatus

if TYPE_CHECKING:
    from onetouch.config import StoreConfig

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Protocol for pairing session storage."""

    async def insert(self, session: PairingSession) -> None:
        """Insert a new session.

        Raises:
            CollisionError: If the code already exists.
        """
        ...

    async def get(self, code: str) -> PairingSession:
        """Read a session.

        Raises:
            SessionNotFoundError: If no session has this code.
        """
        ...

    async def compare_and_set_claimed(
        self,
        code: str,
        now: float,
        responder_ref: str | None,
    ) -> PairingSession:
        """Claim a session if it is still pending and ``expires_at > now``.

        Raises:
            PreconditionFailedError: If the row is missing, not pending or
                past expiry. The row is left untouched.
        """
        ...

    async def purge_expired(self, before: float) -> int:
        """Delete sessions with ``expires_at < before``. Returns count."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...


class MemorySessionStore:
    """In-memory session store for development and tests.

    Each method runs to completion without awaiting, so every operation
    is atomic with respect to other coroutines on the same event loop.
    Not safe to share across threads.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, PairingSession] = {}

    async def insert(self, session: PairingSession) -> None:
        if session.code in self._sessions:
            raise CollisionError(f"Code already exists: {session.code}")
        self._sessions[session.code] = session

    async def get(self, code: str) -> PairingSession:
        try:
            return self._sessions[code]
        except KeyError:
            raise SessionNotFoundError(code) from None

    async def compare_and_set_claimed(
        self,
        code: str,
        now: float,
        responder_ref: str | None,
    ) -> PairingSession:
        session = self._sessions.get(code)
        if (
            session is None
            or session.status is not PairingStatus.PENDING
            or not session.expires_at > now
        ):
            raise PreconditionFailedError(code)

        claimed = session.claimed(now, responder_ref)
        self._sessions[code] = claimed
        return claimed

    async def purge_expired(self, before: float) -> int:
        stale = [
            code for code, session in self._sessions.items()
            if session.expires_at < before
        ]
        for code in stale:
            del self._sessions[code]
        if stale:
            logger.info(f"Purged {len(stale)} expired sessions")
        return len(stale)

    async def close(self) -> None:
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, code: str) -> bool:
        return code in self._sessions


def open_store(config: "StoreConfig") -> SessionStore:
    """Create the store backend named in config.

    Args:
        config: Store configuration.

    Returns:
        Ready-to-use store.

    Raises:
        ValueError: If the backend is unknown or misconfigured.
    """
    backend = config.backend.lower()
    if backend == "memory":
        return MemorySessionStore()
    if backend == "sqlite":
        from onetouch.pairing.sqlite_store import SqliteSessionStore

        if not config.path:
            raise ValueError("store.path is required for the sqlite backend")
        return SqliteSessionStore(config.path)
    raise ValueError(f"Unknown store backend: {config.backend}")

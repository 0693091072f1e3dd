"""Pairing service: create, status and claim.

Owns the session state machine. Holds no locks and no per-session
state; all cross-caller coordination happens in the store's atomic
insert and conditional claim.
"""

import logging
import math
import time
from typing import Callable, Optional

from onetouch.errors import (
    CollisionError,
    CollisionExhaustedError,
    PreconditionFailedError,
    SessionNotFoundError,
    ValidationError,
)
from onetouch.pairing.codes import CodeGenerator, normalize_code
from onetouch.pairing.session import (
    DEFAULT_INITIATOR_REF,
    DEFAULT_RESPONDER_REF,
    DEFAULT_TTL,
    ClaimResult,
    PairingSession,
    PairingStatus,
    StatusReport,
    derive_status,
    is_expired,
)
from onetouch.pairing.store import SessionStore

logger = logging.getLogger(__name__)


class PairingService:
    """Business logic for short-code pairing sessions."""

    MAX_CREATE_ATTEMPTS = 5
    MAX_TTL = 3600.0  # seconds

    def __init__(
        self,
        store: SessionStore,
        code_generator: Optional[CodeGenerator] = None,
        clock: Callable[[], float] = time.time,
        ttl: float = DEFAULT_TTL,
        max_create_attempts: int = MAX_CREATE_ATTEMPTS,
        max_ttl: float = MAX_TTL,
    ):
        """Initialize pairing service.

        Args:
            store: Session storage backend.
            code_generator: Code source. Defaults to a CSPRNG-backed generator.
            clock: Returns current Unix time; injectable for tests.
            ttl: Default session lifetime in seconds.
            max_create_attempts: Inserts to try before giving up on collisions.
            max_ttl: Longest lifetime a caller may request.
        """
        if not (math.isfinite(max_ttl) and max_ttl > 0):
            raise ValueError("max_ttl must be a positive number")
        if not _ttl_in_range(ttl, max_ttl):
            raise ValueError(f"ttl must be in (0, {max_ttl:g}]")
        if max_create_attempts < 1:
            raise ValueError("max_create_attempts must be at least 1")

        self.store = store
        self.code_generator = code_generator or CodeGenerator()
        self.clock = clock
        self.ttl = ttl
        self.max_ttl = max_ttl
        self.max_create_attempts = max_create_attempts

    async def create_session(
        self,
        initiator_ref: Optional[str] = None,
        ttl: Optional[float] = None,
    ) -> PairingSession:
        """Create a new pending session under a fresh code.

        Args:
            initiator_ref: Creating device id (audit only).
            ttl: Lifetime in seconds; defaults to the service TTL.

        Returns:
            The stored session.

        Raises:
            ValidationError: If ttl is not a finite number in (0, max_ttl].
            CollisionExhaustedError: If every attempt hit an existing code.
            StoreUnavailableError: If the store fails.
        """
        if ttl is None:
            ttl = self.ttl
        if not _ttl_in_range(ttl, self.max_ttl):
            raise ValidationError(
                f"ttl must be between 0 and {self.max_ttl:g} seconds"
            )

        for attempt in range(1, self.max_create_attempts + 1):
            session = PairingSession.create(
                code=self.code_generator.generate(),
                now=self.clock(),
                ttl=ttl,
                initiator_ref=initiator_ref or DEFAULT_INITIATOR_REF,
            )
            try:
                await self.store.insert(session)
            except CollisionError:
                logger.warning(
                    f"Code collision on attempt {attempt}/{self.max_create_attempts}, "
                    "regenerating"
                )
                continue

            logger.info(f"Pairing session created (ttl={ttl}s)")
            logger.debug(f"Created session {session.code}")
            return session

        logger.error(f"Gave up after {self.max_create_attempts} code collisions")
        raise CollisionExhaustedError(
            f"No free code after {self.max_create_attempts} attempts"
        )

    async def get_status(self, code: str) -> StatusReport:
        """Get the derived status of a session. Never writes.

        Raises:
            ValidationError: If the code is malformed.
            SessionNotFoundError: If the code is unknown.
        """
        code = normalize_code(code)
        session = await self.store.get(code)
        return derive_status(session, self.clock())

    async def claim_session(
        self,
        code: str,
        responder_ref: Optional[str] = None,
    ) -> ClaimResult:
        """Claim a session for the responder.

        Exactly one caller per code gets ClaimResult.OK. Everybody else
        gets ALREADY_CLAIMED or EXPIRED.

        Args:
            code: Code from the claim link.
            responder_ref: Claiming device id (audit only).

        Returns:
            Claim outcome.

        Raises:
            ValidationError: If the code is malformed.
            SessionNotFoundError: If the code is unknown.
        """
        code = normalize_code(code)
        responder_ref = responder_ref or DEFAULT_RESPONDER_REF
        now = self.clock()

        # Pre-read only sharpens the result for codes that are already terminal.
        session = await self.store.get(code)
        result = self._classify_terminal(session, now)
        if result is not None:
            logger.info(f"Claim rejected: {result.value}")
            return result

        try:
            await self.store.compare_and_set_claimed(code, now, responder_ref)
        except PreconditionFailedError:
            try:
                session = await self.store.get(code)
            except SessionNotFoundError:
                logger.info("Session vanished during claim")
                raise
            result = self._classify_terminal(session, now) or ClaimResult.EXPIRED
            logger.info(f"Claim lost race: {result.value}")
            return result

        logger.info("Pairing session claimed")
        logger.debug(f"Claimed session {code} by {responder_ref}")
        return ClaimResult.OK

    @staticmethod
    def _classify_terminal(
        session: PairingSession, now: float
    ) -> Optional[ClaimResult]:
        if session.status is PairingStatus.CLAIMED:
            return ClaimResult.ALREADY_CLAIMED
        if is_expired(session, now):
            return ClaimResult.EXPIRED
        return None

    async def purge_expired(self, grace: float) -> int:
        """Delete sessions that expired more than ``grace`` seconds ago.

        Housekeeping only; nothing in the request path depends on it.
        """
        return await self.store.purge_expired(self.clock() - grace)


def _ttl_in_range(ttl: float, max_ttl: float) -> bool:
    # NaN compares false against everything, so check finiteness first
    return math.isfinite(ttl) and 0 < ttl <= max_ttl

"""Pairing session record and status derivation.

Only ``pending`` and ``claimed`` are ever stored. ``expired`` is derived
at read time by comparing ``expires_at`` with the caller's clock, and
that comparison lives in :func:`is_expired` alone.
"""

import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

DEFAULT_TTL = 120.0  # seconds

DEFAULT_INITIATOR_REF = "web"
DEFAULT_RESPONDER_REF = "mobile-web"


class PairingStatus(str, Enum):
    """Observable session states."""

    PENDING = "pending"
    CLAIMED = "claimed"
    EXPIRED = "expired"  # derived, never persisted

    @property
    def is_terminal(self) -> bool:
        return self is not PairingStatus.PENDING


class ClaimResult(str, Enum):
    """Outcome of a claim attempt.

    ALREADY_CLAIMED and EXPIRED are routine results of a race or a
    timeout, not faults.
    """

    OK = "ok"
    ALREADY_CLAIMED = "already_claimed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class PairingSession:
    """One pairing session row, keyed by code.

    Attributes:
        code: Six-character upper-case code.
        status: PENDING or CLAIMED.
        created_at: Unix timestamp of creation.
        expires_at: created_at + TTL.
        claimed_at: Unix timestamp of the successful claim, else None.
        initiator_ref: Opaque id of the creating device (audit only).
        responder_ref: Opaque id of the claiming device (audit only).
    """

    code: str
    status: PairingStatus
    created_at: float
    expires_at: float
    claimed_at: Optional[float] = None
    initiator_ref: Optional[str] = None
    responder_ref: Optional[str] = None

    def __post_init__(self) -> None:
        if not (math.isfinite(self.created_at) and math.isfinite(self.expires_at)):
            raise ValueError("created_at and expires_at must be finite")
        if self.status is PairingStatus.EXPIRED:
            raise ValueError("expired is derived and cannot be stored")
        if (self.claimed_at is not None) != (self.status is PairingStatus.CLAIMED):
            raise ValueError("claimed_at must be set if and only if status is claimed")

    @classmethod
    def create(
        cls,
        code: str,
        now: float,
        ttl: float = DEFAULT_TTL,
        initiator_ref: Optional[str] = None,
    ) -> "PairingSession":
        """Create a new pending session.

        Args:
            code: Normalized code.
            now: Creation time (Unix seconds).
            ttl: Seconds until an unclaimed session expires.
            initiator_ref: Creating device id.

        Returns:
            New pending PairingSession.
        """
        return cls(
            code=code,
            status=PairingStatus.PENDING,
            created_at=now,
            expires_at=now + ttl,
            initiator_ref=initiator_ref,
        )

    def claimed(self, now: float, responder_ref: Optional[str]) -> "PairingSession":
        """Return the claimed copy of this session."""
        return replace(
            self,
            status=PairingStatus.CLAIMED,
            claimed_at=now,
            responder_ref=responder_ref,
        )


@dataclass(frozen=True)
class StatusReport:
    """Derived status of a session as seen by a caller at one instant."""

    status: PairingStatus
    expires_at: float
    claimed_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON responses."""
        return {
            "status": self.status.value,
            "expires_at": format_timestamp(self.expires_at),
            "claimed_at": format_timestamp(self.claimed_at),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "StatusReport":
        """Create from a JSON response body."""
        return cls(
            status=PairingStatus(d["status"]),
            expires_at=parse_timestamp(d["expires_at"]),
            claimed_at=parse_timestamp(d.get("claimed_at")),
        )


def is_expired(session: PairingSession, now: float) -> bool:
    """Whether a session is expired at ``now``.

    A pending session is live while ``now < expires_at``. The store's
    conditional claim tests ``expires_at > now``, the exact negation.
    Claimed sessions never expire.
    """
    return session.status is PairingStatus.PENDING and now >= session.expires_at


def derive_status(session: PairingSession, now: float) -> StatusReport:
    """Compute the status a caller observes at ``now``."""
    if is_expired(session, now):
        status = PairingStatus.EXPIRED
    else:
        status = session.status
    return StatusReport(
        status=status,
        expires_at=session.expires_at,
        claimed_at=session.claimed_at,
    )


def format_timestamp(ts: Optional[float]) -> Optional[str]:
    """Format a Unix timestamp as ISO-8601 UTC with a Z suffix."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[float]:
    """Parse an ISO-8601 timestamp (Z or offset) back to Unix seconds."""
    if value is None:
        return None
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()

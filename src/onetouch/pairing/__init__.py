"""Pairing module for onetouch.

Provides short-code device pairing:
- Code generation
- Session storage with atomic claim
- Create / status / claim service
- Initiator-side status polling
"""

from .codes import CodeGenerator, normalize_code
from .poller import StatusPoller
from .service import PairingService
from .session import ClaimResult, PairingSession, PairingStatus, StatusReport
from .store import MemorySessionStore, SessionStore, open_store

__all__ = [
    "ClaimResult",
    "CodeGenerator",
    "MemorySessionStore",
    "PairingService",
    "PairingSession",
    "PairingStatus",
    "SessionStore",
    "StatusPoller",
    "StatusReport",
    "normalize_code",
    "open_store",
]

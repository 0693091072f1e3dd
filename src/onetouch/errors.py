"""Base exceptions for onetouch."""


class OnetouchError(Exception):
    """Base exception for all onetouch errors."""

    pass


class ValidationError(OnetouchError):
    """Malformed or missing request field (usually the code)."""

    pass


class SessionNotFoundError(OnetouchError):
    """No pairing session exists for the code."""

    pass


class CollisionError(OnetouchError):
    """Store rejected an insert because the code already exists."""

    pass


class CollisionExhaustedError(OnetouchError):
    """Every creation attempt collided with an existing code."""

    pass


class PreconditionFailedError(OnetouchError):
    """Conditional claim rejected: session not pending or already past expiry."""

    pass


class TransientError(OnetouchError):
    """Infrastructure trouble; the caller may retry."""

    pass


class StoreUnavailableError(TransientError):
    """Session store backend failed."""

    pass


class TransportError(TransientError):
    """HTTP client could not reach the pairing server."""

    pass


class InvalidResponseError(OnetouchError):
    """Server reply could not be understood (not from a pairing server?)."""

    pass

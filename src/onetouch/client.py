"""HTTP client for the pairing server."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from onetouch.errors import (
    CollisionExhaustedError,
    InvalidResponseError,
    OnetouchError,
    SessionNotFoundError,
    StoreUnavailableError,
    TransportError,
    ValidationError,
)
from onetouch.pairing.session import ClaimResult, StatusReport, parse_timestamp

logger = logging.getLogger(__name__)

CLAIM_RESULTS = {
    200: ClaimResult.OK,
    409: ClaimResult.ALREADY_CLAIMED,
    410: ClaimResult.EXPIRED,
}


@dataclass(frozen=True)
class CreatedSession:
    """Server response to a create request."""

    code: str
    expires_at: float
    claim_url: Optional[str] = None


class PairingClient:
    """Talks to a PairingServer over HTTP.

    Features:
    - Retry with backoff on store_unavailable (3 attempts: 0.5s, 1s)
    - Connection failures and timeouts surface as TransportError
    - Context manager for session lifecycle
    """

    MAX_RETRIES = 3
    RETRY_DELAYS = [0.5, 1.0]  # seconds

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 5.0,
        http_session: Optional[aiohttp.ClientSession] = None,
    ):
        """Initialize client.

        Args:
            base_url: Server URL, e.g. http://127.0.0.1:8790.
            request_timeout: Per-request timeout in seconds.
            http_session: Optional aiohttp session (for testing).
        """
        self._base_url = base_url.rstrip("/")
        self._timeout = request_timeout
        self._session = http_session
        self._owns_session = http_session is None

    async def __aenter__(self):
        """Enter async context, creating session if needed."""
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args):
        """Exit async context, closing owned session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def create_session(
        self,
        initiator_ref: Optional[str] = None,
        ttl: Optional[float] = None,
    ) -> CreatedSession:
        """Create a pairing session.

        Raises:
            CollisionExhaustedError: If the server ran out of code attempts.
            StoreUnavailableError: If the store stayed down through all retries.
            TransportError: If the server could not be reached.
            InvalidResponseError: If the reply is not a create response.
        """
        body: dict[str, Any] = {}
        if initiator_ref is not None:
            body["initiator_ref"] = initiator_ref
        if ttl is not None:
            body["ttl"] = ttl

        status, data = await self._request("POST", "/api/one-touch/create", json=body)
        if status != 200:
            raise self._error_for(status, data)
        try:
            return CreatedSession(
                code=data["code"],
                expires_at=parse_timestamp(data["expires_at"]),
                claim_url=data.get("claim_url"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(f"Malformed create response: {e!r}") from e

    async def get_status(self, code: str) -> StatusReport:
        """Get the derived status of a session.

        Raises:
            SessionNotFoundError: If the code is unknown.
            ValidationError: If the code is malformed.
            TransientError: On store or transport trouble.
            InvalidResponseError: If the reply is not a status report.
        """
        status, data = await self._request(
            "GET", "/api/one-touch/status", params={"code": code}
        )
        if status != 200:
            raise self._error_for(status, data)
        try:
            return StatusReport.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(f"Malformed status response: {e!r}") from e

    async def claim_session(
        self,
        code: str,
        responder_ref: Optional[str] = None,
    ) -> ClaimResult:
        """Claim a session.

        Returns:
            OK, ALREADY_CLAIMED or EXPIRED.

        Raises:
            SessionNotFoundError: If the code is unknown.
            ValidationError: If the code is malformed.
            TransientError: On store or transport trouble.
        """
        body: dict[str, Any] = {"code": code}
        if responder_ref is not None:
            body["responder_ref"] = responder_ref

        status, data = await self._request("POST", "/api/one-touch/claim", json=body)
        if status in CLAIM_RESULTS:
            return CLAIM_RESULTS[status]
        raise self._error_for(status, data)

    async def _request(
        self, method: str, path: str, **kwargs: Any
    ) -> tuple[int, dict[str, Any]]:
        """Send a request, retrying while the server reports store_unavailable.

        Returns:
            (HTTP status, decoded JSON body).
        """
        for attempt in range(self.MAX_RETRIES):
            status, data = await self._try_request(method, path, **kwargs)
            if not (status == 503 and data.get("error") == "store_unavailable"):
                return status, data

            if attempt < self.MAX_RETRIES - 1:
                delay = self.RETRY_DELAYS[min(attempt, len(self.RETRY_DELAYS) - 1)]
                logger.warning(
                    f"Store unavailable (attempt {attempt + 1}), retrying in {delay}s"
                )
                await asyncio.sleep(delay)

        logger.error(f"Store unavailable after {self.MAX_RETRIES} attempts")
        return status, data

    async def _try_request(
        self, method: str, path: str, **kwargs: Any
    ) -> tuple[int, dict[str, Any]]:
        """Single request attempt."""
        if self._session is None:
            raise RuntimeError("Client not initialized - use async context manager")

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request(
                method,
                url,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
                **kwargs,
            ) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                if not isinstance(data, dict):
                    data = {}
                return resp.status, data
        except aiohttp.ClientError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"{method} {path} timed out") from e

    @staticmethod
    def _error_for(status: int, data: dict[str, Any]) -> OnetouchError:
        """Map an error response to an exception."""
        error = data.get("error")
        message = data.get("message") or f"HTTP {status}"
        if status == 400:
            return ValidationError(message)
        if status == 404:
            return SessionNotFoundError(message)
        if error == "collision_exhausted":
            return CollisionExhaustedError(message)
        if status == 503:
            return StoreUnavailableError(message)
        return TransportError(f"Unexpected response {status}: {message}")

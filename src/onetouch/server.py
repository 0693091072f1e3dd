"""HTTP server for short-code pairing.

Single aiohttp server handling all routes:
- /health - Health check
- /api/one-touch/create - Create a pairing session (initiator)
- /api/one-touch/status?code= - Poll session status (initiator)
- /api/one-touch/claim - Claim a session (responder)
"""

import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Optional

from aiohttp import web

from onetouch.errors import (
    CollisionExhaustedError,
    SessionNotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from onetouch.pairing.service import PairingService
from onetouch.pairing.session import ClaimResult, format_timestamp

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding window rate limiter keyed by client IP.

    Keys with no request in the last window are swept once per window,
    so memory follows recent clients rather than every client ever seen.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed in window.
            window_seconds: Window size in seconds.
            clock: Monotonic seconds; injectable for tests.
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.requests: Dict[str, Deque[float]] = {}
        self._last_sweep = clock()

    def is_allowed(self, key: str) -> bool:
        """Check if request is allowed.

        Args:
            key: Rate limit key (client IP).

        Returns:
            True if request is allowed, False if rate limited.
        """
        now = self.clock()
        cutoff = now - self.window_seconds
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(cutoff)
            self._last_sweep = now

        timestamps = self.requests.get(key)
        if timestamps is not None:
            while timestamps and timestamps[0] <= cutoff:
                timestamps.popleft()

        if timestamps and len(timestamps) >= self.max_requests:
            return False

        if not timestamps:
            timestamps = self.requests[key] = deque()
        timestamps.append(now)
        return True

    def _sweep(self, cutoff: float) -> None:
        """Drop keys with no request newer than cutoff."""
        stale = [key for key, ts in self.requests.items() if not ts or ts[-1] <= cutoff]
        for key in stale:
            del self.requests[key]


CLAIM_STATUS = {
    ClaimResult.OK: 200,
    ClaimResult.ALREADY_CLAIMED: 409,
    ClaimResult.EXPIRED: 410,
}


class PairingServer:
    """aiohttp front end for PairingService.

    Status and claim routes are rate limited per client IP to keep code
    guessing infeasible within a session's lifetime.
    """

    def __init__(
        self,
        service: PairingService,
        claim_base_url: Optional[str] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        """Initialize server.

        Args:
            service: Pairing service to expose.
            claim_base_url: Static base for claim links; None leaves claim_url null.
            rate_limiter: Per-IP limiter for status and claim routes.
        """
        self.service = service
        self.claim_base_url = claim_base_url.rstrip("/") if claim_base_url else None
        self.ip_limiter = rate_limiter or RateLimiter(max_requests=60, window_seconds=60)

        self.app = web.Application()
        self._setup_routes()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._port: int = 0

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get("/health", self._handle_health)
        self.app.router.add_post("/api/one-touch/create", self._handle_create)
        self.app.router.add_get("/api/one-touch/status", self._handle_status)
        self.app.router.add_post("/api/one-touch/claim", self._handle_claim)

    async def _handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="OK")

    async def _handle_create(self, request: web.Request) -> web.Response:
        """Create a pairing session for the initiator."""
        try:
            body = await self._read_json(request, required=False)
            initiator_ref = _optional_str(body, "initiator_ref")
            ttl = _optional_ttl(body)
            session = await self.service.create_session(
                initiator_ref=initiator_ref, ttl=ttl
            )
        except ValidationError as e:
            return self._error_response("invalid_request", str(e), 400)
        except CollisionExhaustedError as e:
            return self._error_response("collision_exhausted", str(e), 503)
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable during create: {e}")
            return self._error_response("store_unavailable", "Store unavailable", 503)

        return web.json_response({
            "code": session.code,
            "expires_at": format_timestamp(session.expires_at),
            "claim_url": self.build_claim_url(session.code),
        })

    async def _handle_status(self, request: web.Request) -> web.Response:
        """Report the derived status of a session."""
        if not self.ip_limiter.is_allowed(_client_ip(request)):
            return self._error_response("rate_limited", "Too many requests", 429)

        try:
            report = await self.service.get_status(request.query.get("code"))
        except ValidationError as e:
            return self._error_response("invalid_request", str(e), 400)
        except SessionNotFoundError:
            return self._error_response("not_found", "Session not found", 404)
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable during status: {e}")
            return self._error_response("store_unavailable", "Store unavailable", 503)

        return web.json_response(report.to_dict())

    async def _handle_claim(self, request: web.Request) -> web.Response:
        """Claim a session for the responder."""
        if not self.ip_limiter.is_allowed(_client_ip(request)):
            return self._error_response("rate_limited", "Too many requests", 429)

        try:
            body = await self._read_json(request, required=True)
            result = await self.service.claim_session(
                body.get("code"),
                responder_ref=_optional_str(body, "responder_ref"),
            )
        except ValidationError as e:
            return self._error_response("invalid_request", str(e), 400)
        except SessionNotFoundError:
            return self._error_response("not_found", "Session not found", 404)
        except StoreUnavailableError as e:
            logger.error(f"Store unavailable during claim: {e}")
            return self._error_response("store_unavailable", "Store unavailable", 503)

        if result is ClaimResult.OK:
            return web.json_response({"ok": True})
        return self._error_response(
            result.value,
            "Session already claimed" if result is ClaimResult.ALREADY_CLAIMED
            else "Session expired",
            CLAIM_STATUS[result],
        )

    def build_claim_url(self, code: str) -> Optional[str]:
        """Claim link for a code, or None without a configured base URL."""
        if not self.claim_base_url:
            return None
        return f"{self.claim_base_url}/claim?code={code}"

    async def _read_json(self, request: web.Request, required: bool) -> Dict[str, Any]:
        """Read a JSON object body.

        Raises:
            ValidationError: If the body is missing (when required), not
                JSON, or not an object.
        """
        if not request.can_read_body:
            if required:
                raise ValidationError("Missing request body")
            return {}
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Request body is not valid JSON") from None
        if body is None and not required:
            return {}
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        return body

    def _error_response(self, error: str, message: str, status: int) -> web.Response:
        """Create a JSON error response."""
        return web.json_response(
            {"ok": False, "error": error, "message": message},
            status=status,
        )

    async def start(self, host: str, port: int) -> web.AppRunner:
        """Start the server.

        Args:
            host: Host to bind to.
            port: Port to bind to (0 for random).

        Returns:
            App runner for cleanup.
        """
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port)
        await self._site.start()

        if self._site._server and self._site._server.sockets:
            self._port = self._site._server.sockets[0].getsockname()[1]
        else:
            self._port = port

        logger.info(f"Pairing server started on {host}:{self._port}")
        return self._runner

    async def stop(self) -> None:
        """Stop the server and close the session store."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
        await self.service.store.close()
        logger.info("Pairing server stopped")

    def get_port(self) -> int:
        """Get the actual bound port."""
        return self._port


def _client_ip(request: web.Request) -> str:
    return request.remote or "unknown"


def _optional_str(body: Dict[str, Any], key: str) -> Optional[str]:
    value = body.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


def _optional_ttl(body: Dict[str, Any]) -> Optional[float]:
    value = body.get("ttl")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("ttl must be a number of seconds")
    return float(value)

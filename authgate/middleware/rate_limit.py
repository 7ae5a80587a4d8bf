"""
AuthGate — Credential Throttling Middleware
=============================================

What:  Per-IP sliding window limit on the credential endpoints
       (POST /api/login, POST /api/register) to slow down password guessing
       and mass registration.
How:   Keeps the timestamps of recent attempts per client IP in memory;
       when the window already holds `auth_rate_limit_attempts` entries the
       request is answered with 429 and a Retry-After header.

Scope:
    State is per process. Behind several workers each worker enforces its
    own window.
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict, FrozenSet, Optional, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from authgate.config import Settings, settings as default_settings
from authgate.exceptions import RateLimitExceededError
from authgate.middleware.logging import client_ip

logger = logging.getLogger(__name__)

THROTTLED_ROUTES: FrozenSet[Tuple[str, str]] = frozenset(
    {("POST", "/api/login"), ("POST", "/api/register")}
)

# Sweep idle IPs every this many recorded attempts
CLEANUP_EVERY = 1000


class CredentialThrottleMiddleware(BaseHTTPMiddleware):
    """In-memory sliding window limiter for THROTTLED_ROUTES."""

    def __init__(self, app: ASGIApp, settings: Optional[Settings] = None):
        super().__init__(app)
        settings = settings or default_settings
        self.max_attempts = settings.auth_rate_limit_attempts
        self.window = settings.auth_rate_limit_window
        self._attempts: Dict[str, Deque[float]] = defaultdict(deque)
        self._recorded = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if (request.method, request.url.path) not in THROTTLED_ROUTES:
            return await call_next(request)

        ip = client_ip(request)
        now = time.time()
        window_start = now - self.window

        attempts = self._attempts[ip]
        while attempts and attempts[0] <= window_start:
            attempts.popleft()

        if len(attempts) >= self.max_attempts:
            retry_after = int(attempts[0] + self.window - now) + 1
            logger.warning(
                "Credential rate limit exceeded for IP %s: %d attempts in %ds window",
                ip,
                len(attempts),
                self.window,
            )
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": exc.message,
                    "details": {"retry_after": retry_after},
                },
                headers={"Retry-After": str(retry_after)},
            )

        attempts.append(now)
        self._recorded += 1
        if self._recorded % CLEANUP_EVERY == 0:
            self._cleanup_inactive_ips(window_start)

        return await call_next(request)

    def _cleanup_inactive_ips(self, window_start: float) -> None:
        inactive = [
            ip for ip, stamps in self._attempts.items()
            if not stamps or stamps[-1] <= window_start
        ]
        for ip in inactive:
            del self._attempts[ip]
        if inactive:
            logger.debug("Cleaned up %d inactive IP entries", len(inactive))

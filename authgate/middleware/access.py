"""
AuthGate — Access Filter Middleware
=====================================

What:  Per-request authorization gate. Public routes pass unconditionally;
       every other route requires an authenticated principal in the session.
How:   Classifies the path against an explicit route table, then checks the
       session for the "user_id" key.
When:  Runs inside SessionMiddleware (needs `request.session`) and before
       any route handler.

Route table:
    Each RouteRule names one path and whether it is public. Exact rules
    match only the identical path. Mount rules cover a static directory:
    the directory itself and anything below it at a "/" boundary, so
    "/css/app.css" matches the "/css" mount but "/cssx" does not. A route
    is public only if a rule says so; new routes are protected by default.

Dot segments:
    A path containing a "." or ".." segment (after percent-decoding) is
    never public. "/css/%2e%2e/dashboard.html" would otherwise match the
    "/css" mount while StaticFiles resolves it to "/dashboard.html".

Rejection:
    /api/... paths  → 401 {"error": "not_authenticated", "message": "Not authenticated"}
    other paths     → 302 redirect to the login page

The filter does not re-check that the account still exists; /api/me does.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import unquote

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from authgate.config import Settings, settings as default_settings
from authgate.exceptions import NotAuthenticatedError
from authgate.services.auth_service import is_authenticated

logger = logging.getLogger(__name__)

API_PREFIX = "/api/"


@dataclass(frozen=True)
class RouteRule:
    path: str
    public: bool = True
    mount: bool = False

    def matches(self, path: str) -> bool:
        if not self.mount:
            return path == self.path
        base = self.path.rstrip("/")
        return path == base or path.startswith(base + "/")


DEFAULT_ROUTE_TABLE: Tuple[RouteRule, ...] = (
    # Pages
    RouteRule("/"),
    RouteRule("/login.html"),
    RouteRule("/register.html"),
    # Static assets
    RouteRule("/css", mount=True),
    RouteRule("/js", mount=True),
    RouteRule("/fonts", mount=True),
    # Credential API
    RouteRule("/api/register"),
    RouteRule("/api/login"),
    RouteRule("/api/logout"),
    # Probes
    RouteRule("/health"),
)

DOCS_ROUTE_TABLE: Tuple[RouteRule, ...] = (
    RouteRule("/docs", mount=True),
    RouteRule("/redoc"),
    RouteRule("/openapi.json"),
)


class AccessPolicy:
    """Answers "is this path public?" from an explicit route table."""

    def __init__(self, rules: Iterable[RouteRule] = DEFAULT_ROUTE_TABLE):
        self.rules: Tuple[RouteRule, ...] = tuple(rules)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AccessPolicy":
        rules = list(DEFAULT_ROUTE_TABLE)
        if settings.docs_enabled:
            rules.extend(DOCS_ROUTE_TABLE)
        return cls(rules)

    def rule_for(self, path: str) -> Optional[RouteRule]:
        for rule in self.rules:
            if rule.matches(path):
                return rule
        return None

    def is_public(self, path: str) -> bool:
        if has_dot_segments(path):
            return False
        rule = self.rule_for(path)
        return rule is not None and rule.public


def has_dot_segments(path: str) -> bool:
    """True if any "/"-separated segment of the decoded path is "." or ".."."""
    decoded = unquote(path).replace("\\", "/")
    return any(segment in (".", "..") for segment in decoded.split("/"))


def is_api_path(path: str) -> bool:
    return path.startswith(API_PREFIX)


class AccessFilterMiddleware(BaseHTTPMiddleware):
    """
    Rejects unauthenticated requests to protected routes.

    Args:
        policy:     route table; defaults to AccessPolicy.from_settings()
        login_page: redirect target for rejected page requests
    """

    def __init__(
        self,
        app: ASGIApp,
        policy: Optional[AccessPolicy] = None,
        login_page: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        super().__init__(app)
        settings = settings or default_settings
        self.policy = policy or AccessPolicy.from_settings(settings)
        self.login_page = login_page or settings.login_page

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path

        if self.policy.is_public(path):
            return await call_next(request)

        if is_authenticated(request.session):
            return await call_next(request)

        if is_api_path(path):
            logger.info("Rejected unauthenticated API request: %s %s", request.method, path)
            exc = NotAuthenticatedError()
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": exc.error_code, "message": exc.message},
            )

        logger.info("Redirecting unauthenticated request for %s to %s", path, self.login_page)
        return RedirectResponse(url=self.login_page, status_code=302)

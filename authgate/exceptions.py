"""
AuthGate — Custom Exception Hierarchy
=======================================

What:  Application-specific exceptions for every error scenario.
How:   Each exception carries a message and an optional context dict.
       API-facing classes also carry `status_code` and a stable `error_code`;
       the handlers registered in main.py turn them into structured JSON.
Who:   Raised by the registry, services and middleware; caught by handlers.

Exception Hierarchy:
    AuthGateError (base)
    ├── ConfigNotFoundError       → registry degrades to zero clients
    ├── ConfigParseError          → registry degrades to zero clients
    ├── ClientValidationError     → one registry entry skipped
    ├── ConnectivityError         → one registry entry skipped
    ├── ValidationError           → 400 Bad Request
    ├── DuplicateCredentialError  → 400 Bad Request
    ├── InvalidCredentialsError   → 401 Unauthorized
    ├── NotAuthenticatedError     → 401 Unauthorized
    ├── NotFoundError             → 404 Not Found
    ├── RateLimitExceededError    → 429 Too Many Requests
    ├── StorageError              → 500 Internal Server Error
    └── ServiceUnavailableError   → 503 Service Unavailable

Security Note:
    `message` is safe to return to the client. `context` is for server-side
    logs only and passes through `authgate.redaction` before it is emitted.
"""

from typing import Any, Dict, List, Optional


class AuthGateError(Exception):
    """
    Base exception for all AuthGate errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code: int = 500
    error_code: str = "server_error"
    # When True the context is returned to the client as "details"
    expose_context: bool = False

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


# ══════════════════════════════════════════════════════════════════════════
# Registry errors (recovered inside ConnectionRegistry, never sent to clients)
# ══════════════════════════════════════════════════════════════════════════


class ConfigNotFoundError(AuthGateError):
    """
    Raised by ConfigDiscovery when no candidate location holds the file.

    `attempted` lists every path tried, in priority order, for diagnostics.
    """

    def __init__(self, filename: str, attempted: List[str]):
        self.filename = filename
        self.attempted = list(attempted)
        super().__init__(
            message=f"Configuration file '{filename}' was not found",
            context={"attempted": self.attempted},
        )


class ConfigParseError(AuthGateError):
    """The configuration file exists but is not a usable client document."""

    def __init__(
        self,
        message: str = "Configuration file could not be parsed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ClientValidationError(AuthGateError):
    """
    One client entry is invalid (unsupported engine kind, missing
    connection fields, bad pool size). Only that entry is skipped.
    """

    def __init__(
        self,
        message: str = "Invalid database client entry",
        client_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if client_name:
            ctx["client"] = client_name
        super().__init__(message=message, context=ctx)
        self.client_name = client_name


class ConnectivityError(AuthGateError):
    """The startup connectivity probe failed for one client."""

    def __init__(
        self,
        client_name: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["client"] = client_name
        super().__init__(
            message=f"Database client '{client_name}' is unreachable",
            context=ctx,
        )
        self.client_name = client_name


# ══════════════════════════════════════════════════════════════════════════
# API errors
# ══════════════════════════════════════════════════════════════════════════


class ValidationError(AuthGateError):
    """
    Raised when client input fails validation (missing or empty fields).

    HTTP: 400 Bad Request. Schema-level failures raised by FastAPI are mapped
    to the same status and error code in main.py.

    Example response:
        {
            "error": "validation_error",
            "message": "Missing required fields",
            "details": {"fields": ["email", "password"]}
        }
    """

    status_code = 400
    error_code = "validation_error"
    expose_context = True

    def __init__(
        self,
        message: str = "Validation failed",
        fields: Optional[List[str]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if fields:
            ctx["fields"] = list(fields)
        super().__init__(message=message, context=ctx)
        self.fields = list(fields or [])


class DuplicateCredentialError(AuthGateError):
    """Username or email already taken (storage uniqueness violation)."""

    status_code = 400
    error_code = "duplicate_credential"

    def __init__(
        self,
        message: str = "Username or email already exists",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvalidCredentialsError(AuthGateError):
    """
    Login failed.

    HTTP: 401 Unauthorized. Raised with the same message for an unknown
    identity and for a wrong password, so responses cannot be used to
    enumerate accounts.
    """

    status_code = 401
    error_code = "invalid_credentials"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Invalid credentials", context=context)


class NotAuthenticatedError(AuthGateError):
    """No authenticated principal in the session."""

    status_code = 401
    error_code = "not_authenticated"

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__(message="Not authenticated", context=context)


class NotFoundError(AuthGateError):
    """
    Raised when a requested resource does not exist.

    HTTP: 404 Not Found. For /api/me this means the account behind the
    session vanished after login.
    """

    status_code = 404
    error_code = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class RateLimitExceededError(AuthGateError):
    """
    Raised when a client exceeds the credential endpoint rate limit.

    HTTP: 429 Too Many Requests, with a Retry-After header.
    """

    status_code = 429
    error_code = "rate_limit_exceeded"
    expose_context = True

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Too many attempts. Please wait {retry_after} seconds before retrying."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class StorageError(AuthGateError):
    """
    Raised when a database operation fails for any unclassified reason.

    Security Note:
        The message returned to the client is always generic. Driver text,
        SQL and constraint names are logged server-side only.
    """

    status_code = 500
    error_code = "storage_error"

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ServiceUnavailableError(AuthGateError):
    """No database client is registered (the registry degraded to empty)."""

    status_code = 503
    error_code = "service_unavailable"

    def __init__(
        self,
        message: str = "Database not available",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)

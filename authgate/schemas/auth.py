"""
AuthGate — Pydantic Request/Response Schemas
==============================================

What:  API contract for the authentication endpoints.
How:   FastAPI validates request bodies against these models and serializes
       responses through them (OpenAPI docs are generated from them too).

Request fields are Optional on purpose: a missing or empty field is a
business-rule failure reported by AuthService as a 400 validation_error,
the same as an empty string.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class RegisterRequest(BaseModel):
    username: Optional[str] = Field(default=None, description="Unique account name")
    email: Optional[str] = Field(default=None, description="Unique e-mail address")
    password: Optional[str] = Field(default=None, description="Plain-text password (never stored)")


class LoginRequest(BaseModel):
    """
    What:  Login credentials.

    `username` accepts either the account name or the e-mail address.
    """
    username: Optional[str] = Field(default=None, description="Username or e-mail address")
    password: Optional[str] = Field(default=None, description="Plain-text password")


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class UserResponse(BaseModel):
    """
    What:  Public representation of an account.
    Never includes the password hash.
    """
    id: int = Field(description="User identifier")
    username: str = Field(description="Account name")
    email: str = Field(description="E-mail address")

    model_config = {"from_attributes": True}


class SuccessResponse(BaseModel):
    success: bool = Field(default=True)
    message: Optional[str] = Field(default=None, description="Human-readable confirmation")


class LoginResponse(BaseModel):
    success: bool = Field(default=True)
    user: UserResponse


class MeResponse(BaseModel):
    user: UserResponse


class ErrorResponse(BaseModel):
    """
    What:  Standardized error body for all API errors.

    Fields:
        error:   machine-readable code (e.g. "invalid_credentials")
        message: human-readable description
        details: optional extra context for 4xx errors (e.g. missing fields)

    The request id is NOT part of the body; it is returned in the
    X-Request-ID response header.
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded")
    version: str = Field(description="Application version")
    registry: str = Field(description="Connection registry state")
    clients: List[str] = Field(description="Registered database client names")
    database: str = Field(description="Default client connectivity: connected, disconnected, absent")
    uptime_seconds: float = Field(description="Seconds since service started")


class HelloResponse(BaseModel):
    message: str = Field(description="Greeting")
    status: str = Field(default="success")
    version: str = Field(description="Application version")
    timestamp: datetime = Field(description="Server time (UTC)")

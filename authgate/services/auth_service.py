"""
AuthGate — Authentication Service (Business Logic)
====================================================

What:  register / login / logout / me on top of ConnectionRegistry, the
       session store, and PasswordService.
How:   Each operation obtains the default client from the registry, issues
       its query through an AsyncSession, and translates storage failures
       into the application's exception hierarchy.
Who:   Called by routes/auth.py; tests call it directly with a plain dict
       standing in for the session.

Session contract:
    The session is any mutable mapping scoped to one client (in production,
    Starlette's signed-cookie `request.session`). A principal is present
    iff the "user_id" key is present. Concurrent requests of one session
    are not serialized: the last response to set the cookie wins.

Error mapping:
    no default client            → ServiceUnavailableError (503), no query issued
    missing / empty fields       → ValidationError (400)
    uniqueness violation         → DuplicateCredentialError (400)
    unknown identity OR mismatch → InvalidCredentialsError (401), identical
    no principal in session      → NotAuthenticatedError (401)
    account gone after login     → NotFoundError (404)
    anything else from storage   → StorageError (500), generic message
"""

import asyncio
import logging
from typing import Any, MutableMapping, Optional

from fastapi import Depends, Request
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from authgate.database import DatabaseClient
from authgate.exceptions import (
    DuplicateCredentialError,
    InvalidCredentialsError,
    NotAuthenticatedError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from authgate.models.user import User
from authgate.redaction import redact
from authgate.registry import ConnectionRegistry, get_registry
from authgate.schemas.auth import UserResponse
from authgate.services.password import PasswordService

logger = logging.getLogger(__name__)

SESSION_USER_ID = "user_id"
SESSION_USERNAME = "username"

# Failures treated as storage errors when not classified otherwise
STORAGE_FAILURES = (SQLAlchemyError, OSError, asyncio.TimeoutError)

Session = MutableMapping[str, Any]


def _clean(value: Optional[str]) -> str:
    return value.strip() if isinstance(value, str) else ""


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(message="Missing required fields", fields=missing)


def _storage_error(operation: str, exc: BaseException) -> StorageError:
    logger.error(
        "Storage failure during %s: %s: %s",
        operation,
        type(exc).__name__,
        redact(str(exc)),
    )
    return StorageError(context={"operation": operation, "error_type": type(exc).__name__})


def is_authenticated(session: Session) -> bool:
    return SESSION_USER_ID in session


class AuthService:
    """
    Stateless between calls: all state lives in the registry (clients) and
    in the caller's session mapping.

    Args:
        registry:    provides the database client
        passwords:   Argon2 hashing / verification
        client_name: registry client to use (None = default client)
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        passwords: PasswordService,
        client_name: Optional[str] = None,
    ):
        self.registry = registry
        self.passwords = passwords
        self.client_name = client_name

    async def _client(self) -> DatabaseClient:
        return await self.registry.require_client(self.client_name)

    # ── register ──────────────────────────────────────────────────────────

    async def register(self, username: Optional[str], email: Optional[str], password: Optional[str]) -> None:
        """
        Creates an account.

        Raises:
            ServiceUnavailableError, ValidationError,
            DuplicateCredentialError, StorageError
        """
        client = await self._client()

        username, email = _clean(username), _clean(email)
        _require(username=username, email=email, password=password)

        password_hash = await self.passwords.hash_async(password)

        try:
            async with client.session() as db:
                db.add(User(username=username, email=email, password_hash=password_hash))
                await db.commit()
        except IntegrityError:
            logger.info("Registration rejected: username or email already exists")
            raise DuplicateCredentialError() from None
        except STORAGE_FAILURES as e:
            raise _storage_error("register", e) from None

        logger.info("User registered: %s", username)

    # ── login ─────────────────────────────────────────────────────────────

    async def login(self, session: Session, identifier: Optional[str], password: Optional[str]) -> UserResponse:
        """
        Verifies credentials and binds the principal to `session`.

        `identifier` matches either the username or the e-mail address in a
        single query. Unknown identity and wrong password raise the same
        InvalidCredentialsError.
        """
        client = await self._client()

        identifier = _clean(identifier)
        _require(username=identifier, password=password)

        try:
            async with client.session() as db:
                result = await db.execute(
                    select(User)
                    .where(or_(User.username == identifier, User.email == identifier))
                    .order_by(User.id)
                    .limit(1)
                )
                user = result.scalars().first()
        except STORAGE_FAILURES as e:
            raise _storage_error("login", e) from None

        if user is None:
            await self.passwords.burn_async(password)
            raise InvalidCredentialsError()

        if not await self.passwords.verify_async(user.password_hash, password):
            raise InvalidCredentialsError()

        if self.passwords.needs_rehash(user.password_hash):
            await self._rehash(client, user.id, password)

        session.clear()
        session[SESSION_USER_ID] = user.id
        session[SESSION_USERNAME] = user.username

        logger.info("User logged in: id=%s", user.id)
        return UserResponse.model_validate(user)

    async def _rehash(self, client: DatabaseClient, user_id: int, password: str) -> None:
        """
        Replaces a legacy or outdated hash after a successful verification.

        A failure here does not fail the login; the hash is retried on the
        next login.
        """
        new_hash = await self.passwords.hash_async(password)
        try:
            async with client.session() as db:
                await db.execute(
                    update(User).where(User.id == user_id).values(password_hash=new_hash)
                )
                await db.commit()
        except STORAGE_FAILURES as e:
            logger.warning(
                "Password rehash for user id=%s failed (%s); keeping the old hash",
                user_id,
                type(e).__name__,
            )
            return
        logger.info("Password hash upgraded for user id=%s", user_id)

    # ── logout ────────────────────────────────────────────────────────────

    async def logout(self, session: Session) -> None:
        """Removes the principal keys. Succeeds with or without a principal."""
        user_id = session.pop(SESSION_USER_ID, None)
        session.pop(SESSION_USERNAME, None)
        if user_id is not None:
            logger.info("User logged out: id=%s", user_id)

    # ── me ────────────────────────────────────────────────────────────────

    async def me(self, session: Session) -> UserResponse:
        """
        Re-reads the session's account from storage.

        Username and email come from the database, not from the session.
        When the account no longer exists, NotFoundError is raised and the
        session is left untouched.
        """
        client = await self._client()

        raw_id = session.get(SESSION_USER_ID)
        if raw_id is None:
            raise NotAuthenticatedError()
        try:
            user_id = int(raw_id)
        except (TypeError, ValueError):
            raise NotAuthenticatedError(context={"reason": "malformed user_id"}) from None

        try:
            async with client.session() as db:
                user = await db.get(User, user_id)
        except STORAGE_FAILURES as e:
            raise _storage_error("me", e) from None

        if user is None:
            logger.warning("Session references missing user id=%s", user_id)
            raise NotFoundError(resource="user", resource_id=str(user_id))

        return UserResponse.model_validate(user)


def get_auth_service(
    request: Request,
    registry: ConnectionRegistry = Depends(get_registry),
) -> AuthService:
    """FastAPI dependency building an AuthService for the request."""
    return AuthService(registry=registry, passwords=request.app.state.passwords)

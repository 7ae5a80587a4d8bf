"""
AuthGate — Authentication Route Handlers
==========================================

What:  POST /api/register, POST /api/login, POST /api/logout, GET /api/me.
How:   Thin handlers: unpack the body, pass `request.session` to
       AuthService, wrap the result. Errors raised by the service are
       formatted by the exception handlers in main.py.

| Method & Path       | Success                                  | Failure                        |
|---------------------|------------------------------------------|--------------------------------|
| POST /api/register  | 200 {success:true}                       | 400 fields/duplicate, 503      |
| POST /api/login     | 200 {success:true, user:{...}} + cookie  | 400, 401, 500, 503             |
| POST /api/logout    | 200 {success:true}                       | none                           |
| GET  /api/me        | 200 {user:{...}}                         | 401, 404, 500, 503             |
"""

import logging

from fastapi import APIRouter, Depends, Request

from authgate.schemas.auth import (
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MeResponse,
    RegisterRequest,
    SuccessResponse,
)
from authgate.services.auth_service import AuthService, get_auth_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Auth"])


@router.post(
    "/register",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    responses={
        400: {"description": "Missing fields or duplicate username/email", "model": ErrorResponse},
        500: {"description": "Storage error", "model": ErrorResponse},
        503: {"description": "No database available", "model": ErrorResponse},
    },
    summary="Register a new account",
)
async def register(
    payload: RegisterRequest,
    auth: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    await auth.register(payload.username, payload.email, payload.password)
    return SuccessResponse(message="User created successfully")


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        400: {"description": "Missing username or password", "model": ErrorResponse},
        401: {"description": "Invalid credentials", "model": ErrorResponse},
        500: {"description": "Storage error", "model": ErrorResponse},
        503: {"description": "No database available", "model": ErrorResponse},
    },
    summary="Log in with username or e-mail",
)
async def login(
    payload: LoginRequest,
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> LoginResponse:
    """
    Verifies the credentials and binds the account to the session cookie.

    `username` may hold either the account name or the e-mail address.
    """
    user = await auth.login(request.session, payload.username, payload.password)
    return LoginResponse(user=user)


@router.post(
    "/logout",
    response_model=SuccessResponse,
    response_model_exclude_none=True,
    summary="Log out (always succeeds)",
)
async def logout(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> SuccessResponse:
    await auth.logout(request.session)
    return SuccessResponse(message="Logged out")


@router.get(
    "/me",
    response_model=MeResponse,
    responses={
        401: {"description": "Not authenticated", "model": ErrorResponse},
        404: {"description": "Account no longer exists", "model": ErrorResponse},
        500: {"description": "Storage error", "model": ErrorResponse},
        503: {"description": "No database available", "model": ErrorResponse},
    },
    summary="Current account",
)
async def me(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> MeResponse:
    """Fresh from storage; the session only supplies the user id."""
    user = await auth.me(request.session)
    return MeResponse(user=user)

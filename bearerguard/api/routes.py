from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Header

from bearerguard.api.schemas import (
    ClaimsResponse,
    Envelope,
    LoginRequest,
    RegisterRequest,
    RevokeRequest,
    RevokeResponse,
    TokenResponse,
    UserResponse,
)
from bearerguard.service.jwt import ClaimSet
from bearerguard.service.runtime import get_runtime

router = APIRouter(prefix="/v1")


async def get_claims(authorization: Optional[str] = Header(None)) -> ClaimSet:
    """Resolve the caller from the ``Authorization: Bearer`` header."""
    runtime = get_runtime()
    return await runtime.auth.authenticate(authorization)


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create a user account.

    Raises:
        400: If the username or password fails validation
        403: If registration is disabled
        409: If the username is taken
    """
    runtime = get_runtime()
    user = await runtime.auth.register(body.username, body.password)
    return Envelope(
        status="ok",
        data=UserResponse(id=user.id, username=user.username, created_at=user.created_at),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Exchange a username and password for a bearer token.

    Raises:
        401: If credentials are invalid
    """
    runtime = get_runtime()
    _, issued = await runtime.auth.login(body.username, body.password)
    return Envelope(
        status="ok",
        data=TokenResponse(token=issued.token, expires_at=issued.expires_at),
    )


@router.post("/auth/revoke", response_model=Envelope, tags=["auth"])
async def revoke(
    body: Optional[RevokeRequest] = Body(None),
    claims: ClaimSet = Depends(get_claims),
):
    """Revoke the caller's tokens.

    Without ``revoke_before_time`` every token issued up to now is revoked,
    including the one used for this request.
    """
    runtime = get_runtime()
    before = body.revoke_before_time if body else None
    revoked_before = await runtime.auth.revoke(claims.user_id, before)
    return Envelope(
        status="ok",
        data=RevokeResponse(user_id=claims.user_id, revoked_before=revoked_before),
    )


@router.get("/me", response_model=Envelope, tags=["auth"])
async def get_current_user(claims: ClaimSet = Depends(get_claims)):
    runtime = get_runtime()
    return Envelope(status="ok", data=ClaimsResponse(**runtime.auth.describe(claims)))

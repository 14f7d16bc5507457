"""
Auth API — Token refresh and Firebase account proxies.

POST /api/v1/auth/refresh — new access/refresh pair (jwt provider).
POST /api/v1/auth/login — email/password sign-in through Firebase.
POST /api/v1/auth/register — create a Firebase account and its user row.
POST /api/v1/auth/reset-password — send a Firebase password-reset email.
"""

import asyncio
import logging

from fastapi import APIRouter, status

from app.core.security import refresh_access_token
from app.models.auth import (
    FirebaseSessionResponse,
    LoginRequest,
    PasswordResetRequest,
    RefreshTokenRequest,
    RegisterRequest,
    TokenPairResponse,
)
from app.services import firebase
from app.services.users import ensure_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


def _session(data: dict, name: str | None = None) -> FirebaseSessionResponse:
    return FirebaseSessionResponse(
        idToken=data["idToken"],
        refreshToken=data["refreshToken"],
        expiresIn=int(data.get("expiresIn", 3600)),
        user={
            "id": data["localId"],
            "email": data.get("email"),
            "name": name or data.get("displayName") or None,
        },
    )


@router.post("/refresh", response_model=TokenPairResponse)
async def refresh(payload: RefreshTokenRequest) -> TokenPairResponse:
    """
    Exchange a refresh token for a new token pair.

    Returns:
        200: New access and refresh tokens.
        401: INVALID_TOKEN or TOKEN_EXPIRED.
    """
    return TokenPairResponse(**refresh_access_token(payload.refresh_token))


@router.post("/login", response_model=FirebaseSessionResponse)
async def login(payload: LoginRequest) -> FirebaseSessionResponse:
    """
    Sign in with email and password.

    Returns:
        200: Firebase ID token, refresh token and the user's basic info.
        400: auth/user-not-found, auth/wrong-password, auth/user-disabled.
    """
    data = await firebase.sign_in_with_password(payload.email, payload.password)
    logger.info("Login for user %s", data["localId"][:8])
    return _session(data)


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=FirebaseSessionResponse,
)
async def register(payload: RegisterRequest) -> FirebaseSessionResponse:
    """
    Create a Firebase account and the matching users row.

    Returns:
        201: Account created; tokens for the new session.
        400: auth/email-already-in-use, auth/weak-password, auth/invalid-email.
    """
    data = await firebase.sign_up(payload.email, payload.password, payload.name)
    await asyncio.to_thread(ensure_user, data["localId"], payload.email, payload.name)
    logger.info("Registered user %s", data["localId"][:8])
    return _session(data, payload.name)


@router.post("/reset-password")
async def reset_password(payload: PasswordResetRequest) -> dict:
    """
    Send a password-reset email.

    Returns:
        200: Email sent (Firebase decides whether the address exists).
        400: auth/user-not-found, auth/invalid-email.
    """
    await firebase.send_password_reset(payload.email)
    return {"message": "Password reset email sent"}

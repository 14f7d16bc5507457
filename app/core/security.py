"""
Security — Authentication and authorization dependencies.

One dependency, get_current_user, authenticates every protected route.
The verification strategy is chosen by AUTH_PROVIDER:

- "firebase": the Bearer token is a Firebase ID token verified with the
  Admin SDK. The user row is created the first time a UID is seen.
- "jwt": the Bearer token is an HS256 access token issued by this
  service (see create_access_token / refresh_access_token).

Usage in route handlers:
    from app.core.security import get_current_user_id

    @router.get("/protected")
    async def protected_route(user_id: str = Depends(get_current_user_id)):
        return {"user_id": user_id}

Internal callers (the subscription worker, the email service) use
require_service_caller with the shared X-Service-Key header instead.
"""

import asyncio
import hmac
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
from fastapi import Depends, Header, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from app.core.config import (
    ACCESS_TOKEN_TTL_MINUTES,
    AUTH_PROVIDER,
    JWT_ALGORITHM,
    JWT_REFRESH_SECRET,
    JWT_SECRET,
    REFRESH_TOKEN_TTL_DAYS,
    SERVICE_API_KEY,
)
from app.core.errors import AUTH_ERRORS, AppError

logger = logging.getLogger(__name__)

# auto_error=False so a missing header produces our own 401 envelope
# instead of FastAPI's default 403.
_bearer_scheme = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """The caller identity resolved from a verified token."""

    id: str
    email: str | None = None
    name: str | None = None
    email_verified: bool = False
    provider: str = Field(..., description="'firebase' or 'jwt'")
    claims: dict[str, Any] = Field(default_factory=dict)


def _unauthorized(key: str, details: dict | None = None) -> AppError:
    return AppError.from_catalog(
        AUTH_ERRORS[key], status.HTTP_401_UNAUTHORIZED, details
    )


# ===================================================================
# Token issuance (jwt strategy)
# ===================================================================

def _refresh_secret() -> str:
    return JWT_REFRESH_SECRET or JWT_SECRET


def _require_secret(secret: str) -> str:
    if not secret:
        logger.error("JWT_SECRET is not configured")
        raise AppError.from_catalog(
            AUTH_ERRORS["SECRET_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    return secret


def create_access_token(
    user_id: str, email: str | None = None, name: str | None = None
) -> str:
    """Issue a short-lived HS256 access token for the given user."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "name": name,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_TTL_MINUTES),
    }
    return jwt.encode(payload, _require_secret(JWT_SECRET), algorithm=JWT_ALGORITHM)


def create_refresh_token(user_id: str) -> str:
    """Issue a refresh token. Each token carries a unique jti."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "type": "refresh",
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(days=REFRESH_TOKEN_TTL_DAYS),
    }
    return jwt.encode(payload, _require_secret(_refresh_secret()), algorithm=JWT_ALGORITHM)


def refresh_access_token(refresh_token: str) -> dict[str, Any]:
    """
    Exchange a refresh token for a new access/refresh pair.

    Raises:
        AppError(401): TOKEN_EXPIRED when the refresh token has expired,
            INVALID_TOKEN when it is malformed or not a refresh token.
    """
    try:
        claims = jwt.decode(
            refresh_token,
            _require_secret(_refresh_secret()),
            algorithms=[JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("TOKEN_EXPIRED")
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected refresh token: %s", exc)
        raise _unauthorized("INVALID_TOKEN")

    if claims.get("type") != "refresh" or not claims.get("sub"):
        raise _unauthorized("INVALID_TOKEN", {"reason": "not a refresh token"})

    user_id = claims["sub"]
    return {
        "accessToken": create_access_token(user_id, claims.get("email"), claims.get("name")),
        "refreshToken": create_refresh_token(user_id),
        "expiresIn": ACCESS_TOKEN_TTL_MINUTES * 60,
        "tokenType": "Bearer",
    }


# ===================================================================
# Verification strategies
# ===================================================================

def _verify_jwt(token: str) -> AuthenticatedUser:
    try:
        claims = jwt.decode(token, _require_secret(JWT_SECRET), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("TOKEN_EXPIRED")
    except jwt.InvalidTokenError as exc:
        logger.info("Rejected access token: %s", exc)
        raise _unauthorized("INVALID_TOKEN")

    if claims.get("type") != "access":
        raise _unauthorized("INVALID_TOKEN", {"reason": "not an access token"})
    if not claims.get("sub"):
        raise _unauthorized("INVALID_TOKEN", {"reason": "missing subject"})

    return AuthenticatedUser(
        id=str(claims["sub"]),
        email=claims.get("email"),
        name=claims.get("name"),
        email_verified=bool(claims.get("email_verified", False)),
        provider="jwt",
        claims=claims,
    )


async def _verify_firebase(token: str) -> AuthenticatedUser:
    # Lazy import keeps firebase_admin out of the jwt-only code path.
    from app.services import firebase

    # verify_id_token may fetch Google's public keys; keep it off the loop.
    claims = await asyncio.to_thread(firebase.verify_id_token, token)

    user = AuthenticatedUser(
        id=claims["uid"],
        email=claims.get("email"),
        name=claims.get("name"),
        email_verified=bool(claims.get("email_verified", False)),
        provider="firebase",
        claims=claims,
    )
    await asyncio.to_thread(_sync_firebase_user, user)
    return user


def _sync_firebase_user(user: AuthenticatedUser) -> None:
    from app.services.users import ensure_user

    try:
        ensure_user(user.id, user.email, user.name, user.email_verified)
    except Exception as exc:
        # Authentication itself succeeded; routes that need the row
        # report USER_NOT_FOUND on their own.
        logger.error("User sync failed for %s: %s", user.id[:8], exc)


# ===================================================================
# Dependencies
# ===================================================================

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> AuthenticatedUser:
    """
    FastAPI dependency that authenticates the caller.

    Raises:
        AppError(401): MISSING_HEADERS, INVALID_TOKEN, TOKEN_EXPIRED or
            USER_MISMATCH (X-User-ID sent but different from the token).
        AppError(500): SECRET_ERROR when the jwt strategy has no secret.
    """
    if credentials is None or not credentials.credentials:
        raise _unauthorized(
            "MISSING_HEADERS",
            {"required": ["Authorization: Bearer <token>"]},
        )

    token = credentials.credentials

    if AUTH_PROVIDER == "jwt":
        user = _verify_jwt(token)
    else:
        user = await _verify_firebase(token)

    if x_user_id and x_user_id != user.id:
        logger.warning(
            "X-User-ID %s does not match token subject %s", x_user_id[:8], user.id[:8]
        )
        raise _unauthorized("USER_MISMATCH")

    return user


async def get_current_user_id(
    user: AuthenticatedUser = Depends(get_current_user),
) -> str:
    """Convenience dependency returning only the authenticated user's ID."""
    return user.id


async def require_service_caller(
    x_service_key: str | None = Header(None, alias="X-Service-Key"),
) -> None:
    """
    Restrict an endpoint to internal services holding SERVICE_API_KEY.

    Raises:
        AppError(403): If the key is missing, wrong, or not configured.
    """
    if not SERVICE_API_KEY or not x_service_key or not hmac.compare_digest(
        x_service_key.encode(), SERVICE_API_KEY.encode()
    ):
        raise AppError.from_catalog(AUTH_ERRORS["FORBIDDEN"], status.HTTP_403_FORBIDDEN)

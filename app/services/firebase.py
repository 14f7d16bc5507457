"""
Firebase Service — Admin SDK token verification and Identity Toolkit proxy.

Token verification uses firebase_admin (Application Default Credentials
on Cloud Run). Email/password login, registration and password reset
are proxied to the Identity Toolkit REST API with the project's web API
key, so the frontend can use one backend for every auth call.
"""

import logging
from typing import Any

import firebase_admin
import httpx
from fastapi import status
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions

from app.core.config import (
    FIREBASE_API_KEY,
    FIREBASE_PROJECT_ID,
    GOOGLE_APPLICATION_CREDENTIALS,
    GOOGLE_CLOUD_PROJECT,
)
from app.core.errors import AUTH_ERRORS, AppError

logger = logging.getLogger(__name__)

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"

# Identity Toolkit error messages -> client-facing Firebase error codes
_IDENTITY_ERRORS: dict[str, tuple[str, str]] = {
    "EMAIL_NOT_FOUND": ("auth/user-not-found", "No account exists with this email"),
    "INVALID_PASSWORD": ("auth/wrong-password", "Incorrect password"),
    "INVALID_LOGIN_CREDENTIALS": ("auth/wrong-password", "Incorrect email or password"),
    "USER_DISABLED": ("auth/user-disabled", "This account has been disabled"),
    "EMAIL_EXISTS": ("auth/email-already-in-use", "An account already exists with this email"),
    "WEAK_PASSWORD": ("auth/weak-password", "Password should be at least 6 characters"),
    "INVALID_EMAIL": ("auth/invalid-email", "The email address is badly formatted"),
    "TOO_MANY_ATTEMPTS_TRY_LATER": (
        "auth/too-many-requests",
        "Too many attempts. Please try again later",
    ),
}


def init_firebase() -> firebase_admin.App:
    """
    Initialize the default Firebase app once and return it.

    Uses the service-account file in GOOGLE_APPLICATION_CREDENTIALS when
    set, otherwise Application Default Credentials.
    """
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass

    project_id = FIREBASE_PROJECT_ID or GOOGLE_CLOUD_PROJECT
    if GOOGLE_APPLICATION_CREDENTIALS:
        cred = credentials.Certificate(GOOGLE_APPLICATION_CREDENTIALS)
    else:
        cred = credentials.ApplicationDefault()

    app = firebase_admin.initialize_app(cred, {"projectId": project_id})
    logger.info("Firebase Admin SDK initialized (project=%s)", project_id or "default")
    return app


def verify_id_token(token: str) -> dict[str, Any]:
    """
    Verify a Firebase ID token and return its decoded claims.

    Raises:
        AppError(401): TOKEN_EXPIRED, or INVALID_TOKEN for any other
            verification failure (bad signature, revoked, malformed).
    """
    init_firebase()
    try:
        return firebase_auth.verify_id_token(token)
    except firebase_auth.ExpiredIdTokenError:
        raise AppError.from_catalog(AUTH_ERRORS["TOKEN_EXPIRED"], status.HTTP_401_UNAUTHORIZED)
    except (firebase_auth.InvalidIdTokenError, ValueError) as exc:
        logger.info("Rejected Firebase ID token: %s", exc)
        raise AppError.from_catalog(AUTH_ERRORS["INVALID_TOKEN"], status.HTTP_401_UNAUTHORIZED)
    except firebase_auth.CertificateFetchError as exc:
        logger.error("Could not fetch Firebase public keys: %s", exc)
        raise AppError.from_catalog(
            AUTH_ERRORS["SECRET_ERROR"], status.HTTP_503_SERVICE_UNAVAILABLE
        )


def map_identity_error(message: str) -> AppError:
    """Translate an Identity Toolkit error message into an AppError(400)."""
    # Messages look like "WEAK_PASSWORD : Password should be at least 6 characters"
    key = (message or "").split(":", 1)[0].strip()
    code, text = _IDENTITY_ERRORS.get(key, ("auth/unknown", message or "Authentication failed"))
    return AppError(code, text, status.HTTP_400_BAD_REQUEST, {"firebaseError": key})


async def _identity_request(action: str, payload: dict[str, Any]) -> dict[str, Any]:
    if not FIREBASE_API_KEY:
        raise AppError.from_catalog(
            AUTH_ERRORS["SECRET_ERROR"], status.HTTP_503_SERVICE_UNAVAILABLE
        )

    try:
        async with httpx.AsyncClient() as client:
            response = await client.post(
                f"{IDENTITY_TOOLKIT_URL}/accounts:{action}",
                params={"key": FIREBASE_API_KEY},
                json=payload,
                timeout=10.0,
            )
    except httpx.RequestError as exc:
        logger.error("Identity Toolkit %s unreachable: %s", action, exc)
        raise AppError.from_catalog(
            AUTH_ERRORS["SECRET_ERROR"], status.HTTP_503_SERVICE_UNAVAILABLE
        ) from exc

    try:
        data = response.json()
    except ValueError:
        data = {}

    if response.status_code != 200:
        message = (data.get("error") or {}).get("message", "")
        logger.info("Identity Toolkit %s failed: %s", action, message or response.status_code)
        raise map_identity_error(message)

    return data


async def sign_in_with_password(email: str, password: str) -> dict[str, Any]:
    """Sign in with email/password; returns idToken, refreshToken and localId."""
    return await _identity_request(
        "signInWithPassword",
        {"email": email, "password": password, "returnSecureToken": True},
    )


async def sign_up(email: str, password: str, display_name: str | None = None) -> dict[str, Any]:
    """Create a Firebase account; display_name is applied through the Admin SDK."""
    data = await _identity_request(
        "signUp",
        {"email": email, "password": password, "returnSecureToken": True},
    )
    if display_name and data.get("localId"):
        init_firebase()
        try:
            firebase_auth.update_user(data["localId"], display_name=display_name)
        except firebase_exceptions.FirebaseError as exc:
            logger.warning("Could not set display name for %s: %s", data["localId"][:8], exc)
    return data


async def send_password_reset(email: str) -> None:
    """Ask Firebase to send a password-reset email."""
    await _identity_request("sendOobCode", {"requestType": "PASSWORD_RESET", "email": email})

"""
Errors — Application error type and global exception handlers.

Every failure that reaches a client is serialized to the same JSON
envelope:

    {
        "error": "NOT_FOUND",
        "message": "Subscription not found",
        "status": 404,
        "details": {...},
        "timestamp": "2025-04-01T10:00:00+00:00",
        "request_id": "..."
    }

Route handlers raise AppError (or HTTPException) and the
handlers registered by register_exception_handlers() do the rest.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Tagged application error carrying an HTTP status and error code."""

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc).isoformat()

    @classmethod
    def from_catalog(
        cls,
        entry: dict[str, str],
        status_code: int,
        details: dict[str, Any] | None = None,
        message: str | None = None,
    ) -> "AppError":
        """Build an error from one of the *_ERRORS catalog entries."""
        return cls(entry["code"], message or entry["message"], status_code, details)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "status": self.status_code,
            "details": self.details,
            "timestamp": self.timestamp,
        }


# ===================================================================
# Error catalogs
# ===================================================================

AUTH_ERRORS = {
    "MISSING_HEADERS": {"code": "MISSING_HEADERS", "message": "Missing required headers"},
    "INVALID_TOKEN": {"code": "INVALID_TOKEN", "message": "Invalid authentication token"},
    "TOKEN_EXPIRED": {"code": "TOKEN_EXPIRED", "message": "Authentication token has expired"},
    "USER_MISMATCH": {
        "code": "USER_MISMATCH",
        "message": "Token user ID does not match provided user ID",
    },
    "SECRET_ERROR": {"code": "SECRET_ERROR", "message": "Authentication service unavailable"},
    "FORBIDDEN": {"code": "FORBIDDEN", "message": "Service credentials required"},
}

USER_ERRORS = {
    "NOT_FOUND": {"code": "USER_NOT_FOUND", "message": "User not found"},
    "FETCH_ERROR": {"code": "USER_FETCH_ERROR", "message": "Failed to fetch user profile"},
    "UPDATE_ERROR": {"code": "USER_UPDATE_ERROR", "message": "Failed to update user profile"},
    "NO_EMAIL": {
        "code": "VALIDATION_ERROR",
        "message": "No email address provided or available for the user",
    },
}

SUBSCRIPTION_ERRORS = {
    "NOT_FOUND": {"code": "SUBSCRIPTION_NOT_FOUND", "message": "Subscription not found"},
    "FETCH_ERROR": {"code": "SUBSCRIPTION_FETCH_ERROR", "message": "Failed to fetch subscriptions"},
    "CREATE_ERROR": {"code": "SUBSCRIPTION_CREATE_ERROR", "message": "Failed to create subscription"},
    "UPDATE_ERROR": {"code": "SUBSCRIPTION_UPDATE_ERROR", "message": "Failed to update subscription"},
    "DELETE_ERROR": {"code": "SUBSCRIPTION_DELETE_ERROR", "message": "Failed to delete subscription"},
    "TYPE_NOT_FOUND": {"code": "TYPE_NOT_FOUND", "message": "Subscription type not found"},
    "TEMPLATE_NOT_FOUND": {"code": "TEMPLATE_NOT_FOUND", "message": "Template not found"},
    "SHARE_TARGET_NOT_FOUND": {
        "code": "SHARE_TARGET_NOT_FOUND",
        "message": "No user exists with that email",
    },
}

NOTIFICATION_ERRORS = {
    "NOT_FOUND": {"code": "NOTIFICATION_NOT_FOUND", "message": "Notification not found"},
    "FETCH_ERROR": {"code": "NOTIFICATION_FETCH_ERROR", "message": "Failed to fetch notifications"},
    "UPDATE_ERROR": {"code": "NOTIFICATION_UPDATE_ERROR", "message": "Failed to update notification"},
    "CREATE_ERROR": {"code": "NOTIFICATION_CREATE_ERROR", "message": "Failed to create notification"},
}


# ===================================================================
# Exception handlers
# ===================================================================

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
}


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or "unknown"


def _envelope(request: Request, error: AppError) -> JSONResponse:
    body = error.to_dict()
    body["request_id"] = _request_id(request)
    return JSONResponse(status_code=error.status_code, content=body)


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    else:
        logger.info("%s %s rejected: %s (%s)", request.method, request.url.path, exc.code, exc.message)
    response = _envelope(request, exc)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    message = detail if isinstance(detail, str) else "Request failed"
    details = detail if isinstance(detail, dict) else {}
    error = AppError(
        _STATUS_CODES.get(exc.status_code, "SERVER_ERROR" if exc.status_code >= 500 else "ERROR"),
        message,
        exc.status_code,
        details,
    )
    response = _envelope(request, error)
    for key, value in (exc.headers or {}).items():
        response.headers[key] = value
    return response


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    error = AppError(
        "VALIDATION_ERROR",
        "The request contains invalid parameters.",
        status.HTTP_400_BAD_REQUEST,
        {"errors": fields},
    )
    return _envelope(request, error)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    error = AppError("INTERNAL_ERROR", "An unexpected error occurred")
    return _envelope(request, error)


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the JSON error envelope handlers to the application."""
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

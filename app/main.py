"""
Nifya Orchestration Service — FastAPI Entry Point

Backend-for-frontend for the Nifya web app: authenticates callers,
serves users/subscriptions/notifications/templates over REST, and
publishes notification emails to Pub/Sub for the email worker.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from app.api.auth import router as auth_router
from app.api.notifications import router as notifications_router
from app.api.subscriptions import router as subscriptions_router
from app.api.templates import router as templates_router
from app.api.users import router as users_router
from app.core.config import (
    API_V1_PREFIX,
    APP_VERSION,
    AUTH_PROVIDER,
    BUILD_TIMESTAMP,
    COMMIT_SHA,
    CORS_ALLOWED_ORIGIN_REGEX,
    DEPLOYMENT_ID,
    ENVIRONMENT,
    LOG_LEVEL,
    RUN_MIGRATIONS_ON_STARTUP,
    SERVICE_NAME,
    is_firebase_configured,
    is_pubsub_configured,
)
from app.core.errors import register_exception_handlers
from app.core.logging import configure_logging, request_id_var
from app.core.security import AuthenticatedUser, get_current_user

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(LOG_LEVEL)
    logger.info(
        "Starting %s %s (env=%s, auth=%s, pubsub=%s)",
        SERVICE_NAME,
        APP_VERSION,
        ENVIRONMENT,
        AUTH_PROVIDER,
        "on" if is_pubsub_configured() else "off",
    )

    if RUN_MIGRATIONS_ON_STARTUP:
        from app.db.migrations import run_migrations

        try:
            applied = await run_migrations()
        except Exception:
            logger.exception("Startup migrations failed")
            raise
        logger.info("Startup migrations applied: %s", ", ".join(applied) or "none")

    if AUTH_PROVIDER == "firebase" and is_firebase_configured():
        from app.services.firebase import init_firebase

        init_firebase()

    yield
    logger.info("Shutting down %s", SERVICE_NAME)


app = FastAPI(
    title="Nifya API",
    description="Nifya orchestration service: users, subscriptions and notifications",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origin_regex=CORS_ALLOWED_ORIGIN_REGEX,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-User-ID", "X-Request-ID", "X-Service-Key"],
    expose_headers=["X-Request-ID"],
)

register_exception_handlers(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response


# --- Register API routers ---
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(subscriptions_router)
app.include_router(templates_router)
app.include_router(notifications_router)


@app.get("/health")
async def health_check():
    """Health check endpoint. Returns service status."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": APP_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.get("/version")
async def version():
    """Build information for deployment checks."""
    return {
        "service": SERVICE_NAME,
        "version": APP_VERSION,
        "environment": ENVIRONMENT,
        "commit": COMMIT_SHA,
        "build_timestamp": BUILD_TIMESTAMP or None,
        "deployment_id": DEPLOYMENT_ID,
    }


@app.get(f"{API_V1_PREFIX}/me")
async def get_me(user: AuthenticatedUser = Depends(get_current_user)):
    """
    Protected endpoint — returns the authenticated caller.

    Used to verify that authentication is wired up correctly.
    """
    return {"user_id": user.id, "email": user.email, "provider": user.provider}


# --- Legacy unversioned paths used by older frontends ---

def _legacy_target(request: Request, path: str) -> str:
    query = request.url.query
    return f"{API_V1_PREFIX}{path}" + (f"?{query}" if query else "")


@app.api_route("/api/subscriptions", methods=["GET", "POST"], include_in_schema=False)
async def legacy_subscriptions(request: Request):
    return RedirectResponse(_legacy_target(request, "/subscriptions"), status_code=301)


@app.api_route(
    "/api/subscriptions/{subscription_id}/process",
    methods=["POST"],
    include_in_schema=False,
)
async def legacy_process_subscription(subscription_id: str, request: Request):
    # 308 keeps the POST method and body.
    return RedirectResponse(
        _legacy_target(request, f"/subscriptions/{subscription_id}/process"),
        status_code=308,
    )


@app.api_route(
    "/api/subscriptions/{subscription_id}",
    methods=["GET", "PATCH", "DELETE"],
    include_in_schema=False,
)
async def legacy_subscription(subscription_id: str, request: Request):
    return RedirectResponse(
        _legacy_target(request, f"/subscriptions/{subscription_id}"), status_code=301
    )

"""
Dependency and Module Import Checks

Tests that all backend dependencies are installed and that every
application module imports cleanly.
Run with: pytest tests/test_imports.py -v
"""


def test_fastapi():
    """FastAPI — Web framework."""
    import fastapi
    assert hasattr(fastapi, "FastAPI")
    print(f"  fastapi {fastapi.__version__}")


def test_uvicorn():
    """Uvicorn — ASGI server."""
    import uvicorn
    assert hasattr(uvicorn, "run")
    print(f"  uvicorn {uvicorn.__version__}")


def test_pydantic():
    """Pydantic — Request validation."""
    import pydantic
    from pydantic import BaseModel
    assert BaseModel is not None
    print(f"  pydantic {pydantic.__version__}")


def test_supabase():
    """Supabase — Database client."""
    from supabase import create_client
    assert create_client is not None


def test_asyncpg():
    """asyncpg — Direct Postgres connection for migrations."""
    import asyncpg
    assert hasattr(asyncpg, "connect")
    print(f"  asyncpg {asyncpg.__version__}")


def test_google_cloud_pubsub():
    """google-cloud-pubsub — Event and email job publishing."""
    from google.cloud import pubsub_v1
    assert hasattr(pubsub_v1, "PublisherClient")


def test_firebase_admin():
    """firebase-admin — ID token verification."""
    import firebase_admin
    from firebase_admin import auth
    assert hasattr(auth, "verify_id_token")
    print(f"  firebase-admin {firebase_admin.__version__}")


def test_httpx():
    """httpx — Async HTTP client for the worker and Identity Toolkit."""
    import httpx
    assert hasattr(httpx, "AsyncClient")
    print(f"  httpx {httpx.__version__}")


def test_pyjwt():
    """PyJWT — Access and refresh tokens."""
    import jwt
    assert hasattr(jwt, "encode")
    print(f"  PyJWT {jwt.__version__}")


def test_python_dotenv():
    """python-dotenv — Environment variable management."""
    from dotenv import load_dotenv
    assert load_dotenv is not None


def test_app_modules_import():
    """Every application module imports without side effects."""
    import app.api.auth
    import app.api.notifications
    import app.api.subscriptions
    import app.api.templates
    import app.api.users
    import app.core.config
    import app.core.errors
    import app.core.logging
    import app.core.security
    import app.db.migrations
    import app.db.supabase_client
    import app.services.firebase
    import app.services.notifications
    import app.services.pubsub
    import app.services.subscriptions
    import app.services.templates
    import app.services.users
    import app.services.worker
    print("  all app modules import")


def test_app_routes_registered():
    """The FastAPI app exposes the versioned routers."""
    from app.main import app

    paths = {route.path for route in app.routes}
    for expected in (
        "/health",
        "/version",
        "/api/v1/me",
        "/api/v1/auth/refresh",
        "/api/v1/users/me",
        "/api/v1/users/me/email-preferences",
        "/api/v1/subscriptions",
        "/api/v1/subscriptions/{subscription_id}",
        "/api/v1/templates",
        "/api/v1/notifications",
        "/api/v1/notifications/email-sent",
    ):
        assert expected in paths, f"missing route {expected}"
    print(f"  {len(paths)} routes registered")

"""
Supabase Client

Lazily created Supabase clients shared by the route handlers.

All request handling goes through the service-role client: callers are
authenticated by Firebase or by our own JWTs, not by Supabase Auth, so
row ownership is enforced in the handlers with explicit user_id filters.
The anon client is kept for read-only public data (subscription types,
templates) where RLS policies allow anonymous selects.
"""

import logging

from supabase import Client, create_client

from app.core.config import (
    SUPABASE_ANON_KEY,
    SUPABASE_SERVICE_ROLE_KEY,
    SUPABASE_URL,
    validate_supabase_config,
)

logger = logging.getLogger(__name__)

_anon_client: Client | None = None
_service_client: Client | None = None

# PostgREST / Postgres signals that the request reached the database
# but the table has not been created yet.
_MISSING_TABLE_MARKERS = ("42P01", "PGRST205", "does not exist", "Could not find")


def get_supabase_client() -> Client:
    """Client using the anon key (RLS applies)."""
    global _anon_client
    if _anon_client is None:
        validate_supabase_config()
        _anon_client = create_client(SUPABASE_URL, SUPABASE_ANON_KEY)
    return _anon_client


def get_service_client() -> Client:
    """
    Client using the service_role key.

    Bypasses Row Level Security. Every query issued with it on behalf of
    a user must filter by that user's ID.
    """
    global _service_client
    if _service_client is None:
        validate_supabase_config()
        _service_client = create_client(SUPABASE_URL, SUPABASE_SERVICE_ROLE_KEY)
        logger.info("Supabase service client created for %s", SUPABASE_URL)
    return _service_client


def reset_clients() -> None:
    """Drop cached clients (used when configuration changes in tests)."""
    global _anon_client, _service_client
    _anon_client = None
    _service_client = None


def test_connection() -> dict:
    """
    Check that Supabase is reachable with the configured credentials.

    Reads one row from schema_version. A database that has not been
    migrated yet still counts as connected, reported with
    schema="missing".

    Raises:
        EnvironmentError: if credentials are missing.
        Exception: any other client error (network, auth).
    """
    validate_supabase_config()
    client = get_service_client()

    try:
        result = (
            client.table("schema_version")
            .select("version")
            .order("version", desc=True)
            .limit(1)
            .execute()
        )
    except Exception as exc:
        if any(marker in str(exc) for marker in _MISSING_TABLE_MARKERS):
            return {"status": "connected", "schema": "missing", "supabase_url": SUPABASE_URL}
        raise

    latest = result.data[0]["version"] if result.data else None
    return {"status": "connected", "schema": latest or "empty", "supabase_url": SUPABASE_URL}

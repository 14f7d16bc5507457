"""
Supabase Connection Tests

Tests that:
1. Configuration validation reports missing credentials
2. test_connection() distinguishes an unmigrated database from a failure
3. Against a live project (when configured): the clients initialize and
   every Nifya table is reachable

Prerequisites for the live tests:
- Fill in SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_SERVICE_ROLE_KEY in .env
- Apply migrations: python -m app.db.migrations

Run with: pytest tests/test_supabase_connection.py -v
"""

from unittest.mock import MagicMock, patch

import pytest


# ---------------------------------------------------------------------------
# Helper: check if Supabase credentials are configured
# ---------------------------------------------------------------------------

def _supabase_configured() -> bool:
    """Return True if all three Supabase env vars are non-empty."""
    from app.core.config import SUPABASE_URL, SUPABASE_ANON_KEY, SUPABASE_SERVICE_ROLE_KEY
    return bool(SUPABASE_URL and SUPABASE_ANON_KEY and SUPABASE_SERVICE_ROLE_KEY)


requires_supabase = pytest.mark.skipif(
    not _supabase_configured(),
    reason="Supabase credentials not configured in .env — fill them in to run these tests",
)

NIFYA_TABLES = (
    "users",
    "subscription_types",
    "subscriptions",
    "subscription_processing",
    "subscription_shares",
    "notifications",
)


# ---------------------------------------------------------------------------
# 1. Configuration validation
# ---------------------------------------------------------------------------

class TestConfigValidation:
    """validate_supabase_config() with patched settings."""

    def test_missing_url_raises(self):
        from app.core import config
        with patch.object(config, "SUPABASE_URL", ""):
            with pytest.raises(EnvironmentError) as exc_info:
                config.validate_supabase_config()
        assert "SUPABASE_URL" in str(exc_info.value)
        print("  Missing SUPABASE_URL reported")

    def test_all_set(self):
        from app.core import config
        with patch.object(config, "SUPABASE_URL", "https://x.supabase.co"), \
             patch.object(config, "SUPABASE_ANON_KEY", "anon"), \
             patch.object(config, "SUPABASE_SERVICE_ROLE_KEY", "service"):
            assert config.validate_supabase_config() is True


# ---------------------------------------------------------------------------
# 2. test_connection() with a mocked client
# ---------------------------------------------------------------------------

class TestConnectionCheck:
    """test_connection() result shapes."""

    def _chain(self, client):
        return (
            client.table.return_value.select.return_value
            .order.return_value.limit.return_value.execute
        )

    @patch("app.db.supabase_client.validate_supabase_config")
    @patch("app.db.supabase_client.get_service_client")
    def test_reports_latest_version(self, mock_get_client, mock_validate):
        from app.db.supabase_client import test_connection as check
        client = MagicMock()
        self._chain(client).return_value = MagicMock(data=[{"version": "00003"}])
        mock_get_client.return_value = client

        result = check()
        assert result["status"] == "connected"
        assert result["schema"] == "00003"
        client.table.assert_called_with("schema_version")

    @patch("app.db.supabase_client.validate_supabase_config")
    @patch("app.db.supabase_client.get_service_client")
    def test_unmigrated_database(self, mock_get_client, mock_validate):
        from app.db.supabase_client import test_connection as check
        client = MagicMock()
        self._chain(client).side_effect = Exception(
            "{'code': 'PGRST205', 'message': 'Could not find the table public.schema_version'}"
        )
        mock_get_client.return_value = client

        assert check()["schema"] == "missing"
        print("  Unmigrated database still counts as connected")

    @patch("app.db.supabase_client.validate_supabase_config")
    @patch("app.db.supabase_client.get_service_client")
    def test_other_errors_propagate(self, mock_get_client, mock_validate):
        from app.db.supabase_client import test_connection as check
        client = MagicMock()
        self._chain(client).side_effect = Exception("Invalid API key")
        mock_get_client.return_value = client

        with pytest.raises(Exception, match="Invalid API key"):
            check()


# ---------------------------------------------------------------------------
# 3. Live Supabase (requires credentials and applied migrations)
# ---------------------------------------------------------------------------

@requires_supabase
class TestSupabaseConnection:
    """Verify that the Supabase clients can connect and query every table."""

    def test_anon_client_initializes(self):
        from app.db.supabase_client import get_supabase_client
        assert get_supabase_client() is not None
        print("  Anon client initialized successfully")

    def test_service_client_initializes(self):
        from app.db.supabase_client import get_service_client
        assert get_service_client() is not None
        print("  Service client initialized successfully")

    def test_connection_check(self):
        from app.db.supabase_client import test_connection as check
        result = check()
        assert result["status"] == "connected"
        print(f"  Schema version: {result['schema']}")

    @pytest.mark.parametrize("table", NIFYA_TABLES)
    def test_table_reachable(self, table):
        from app.db.supabase_client import get_service_client
        result = get_service_client().table(table).select("*").limit(1).execute()
        assert isinstance(result.data, list)

"""
Notifications API Tests

Tests for the notification feed and the service-only hooks:
- GET    /api/v1/notifications (pagination, unread, subscription filter)
- GET    /api/v1/notifications/stats and /activity
- GET    /api/v1/notifications/{id}
- POST   /api/v1/notifications/{id}/read and /read-all
- DELETE /api/v1/notifications/{id} and /delete-all
- POST   /api/v1/notifications (X-Service-Key)
- POST   /api/v1/notifications/email-sent (X-Service-Key)

Run with: pytest tests/test_notifications_api.py -v
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.core.security import get_current_user_id
from app.main import app

TEST_USER_ID = "test-user-123"
SERVICE_KEY = "svc-key-for-tests"
NOTIFICATION_ID = "11111111-2222-3333-4444-555555555555"
SUBSCRIPTION_ID = "aaaaaaaa-bbbb-cccc-dddd-eeeeeeeeeeee"


def _notification_row(**overrides):
    row = {
        "id": NOTIFICATION_ID,
        "user_id": TEST_USER_ID,
        "subscription_id": SUBSCRIPTION_ID,
        "title": "Nueva ayuda publicada",
        "content": '{"summary": "Convocatoria de subvenciones"}',
        "source_url": "https://boe.es/doc/1",
        "read": False,
        "read_at": None,
        "entity_type": "boe:document",
        "source": "boe",
        "data": {},
        "metadata": {},
        "email_sent": False,
        "email_sent_at": None,
        "created_at": "2026-10-15T09:00:00+00:00",
        "updated_at": "2026-10-15T09:00:00+00:00",
    }
    row.update(overrides)
    return row


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def authed():
    app.dependency_overrides[get_current_user_id] = lambda: TEST_USER_ID
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_current_user_id, None)


@pytest.fixture
def service_key():
    with patch("app.core.security.SERVICE_API_KEY", SERVICE_KEY):
        yield {"X-Service-Key": SERVICE_KEY}


# ===================================================================
# 1. Auth
# ===================================================================

class TestNotificationsAuth:
    """User endpoints require a Bearer token."""

    def test_list_requires_auth(self, client):
        resp = client.get("/api/v1/notifications")
        assert resp.status_code == 401
        assert resp.json()["error"] == "MISSING_HEADERS"
        print("  GET /notifications without token → 401")


# ===================================================================
# 2. Feed
# ===================================================================

class TestListNotifications:
    """GET /api/v1/notifications."""

    @patch("app.api.notifications.get_service_client")
    def test_list_returns_page(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        list_chain = mock_table.select.return_value.eq.return_value
        list_chain.order.return_value.range.return_value.execute.return_value = MagicMock(
            data=[_notification_row()], count=25
        )
        list_chain.eq.return_value.limit.return_value.execute.return_value = MagicMock(
            data=[{"id": NOTIFICATION_ID}], count=4
        )
        mock_get_client.return_value = mock_client

        resp = client.get("/api/v1/notifications?limit=10&page=2")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 25
        assert data["unread"] == 4
        assert data["page"] == 2
        assert data["limit"] == 10
        assert data["hasMore"] is True
        notification = data["notifications"][0]
        assert notification["id"] == NOTIFICATION_ID
        assert notification["content"] == {"summary": "Convocatoria de subvenciones"}
        assert notification["entityType"] == "boe:document"

        list_chain.order.return_value.range.assert_called_with(10, 19)
        print("  Page 2 of 25 notifications returned")

    @patch("app.api.notifications.get_service_client")
    def test_offset_takes_precedence(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        list_chain = mock_table.select.return_value.eq.return_value
        list_chain.order.return_value.range.return_value.execute.return_value = MagicMock(
            data=[], count=5
        )
        list_chain.eq.return_value.limit.return_value.execute.return_value = MagicMock(
            data=[], count=0
        )
        mock_get_client.return_value = mock_client

        resp = client.get("/api/v1/notifications?limit=5&page=3&offset=0")
        assert resp.status_code == 200
        assert resp.json()["hasMore"] is False
        list_chain.order.return_value.range.assert_called_with(0, 4)

    def test_invalid_subscription_filter(self, client, authed):
        resp = client.get("/api/v1/notifications?subscriptionId=not-a-uuid")
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    def test_limit_out_of_range(self, client, authed):
        resp = client.get("/api/v1/notifications?limit=500")
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    @patch("app.api.notifications.get_service_client")
    def test_database_error(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_client.table.side_effect = Exception("connection reset")
        mock_get_client.return_value = mock_client

        resp = client.get("/api/v1/notifications")
        assert resp.status_code == 500
        assert resp.json()["error"] == "NOTIFICATION_FETCH_ERROR"
        print("  Database failure → 500 NOTIFICATION_FETCH_ERROR")


class TestNotificationStats:
    """GET /stats and /activity."""

    @patch("app.api.notifications.get_service_client")
    def test_stats(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.select.return_value.eq.return_value.execute.return_value = MagicMock(
            data=[
                {"id": "1", "read": False, "entity_type": "boe:document"},
                {"id": "2", "read": True, "entity_type": "boe:document"},
                {"id": "3", "read": False, "entity_type": None},
            ]
        )
        mock_get_client.return_value = mock_client

        resp = client.get("/api/v1/notifications/stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 3
        assert data["unread"] == 2
        assert data["byType"] == {"boe:document": 2, "notification:generic": 1}

    @patch("app.api.notifications.get_service_client")
    def test_activity_shape(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.select.return_value.eq.return_value.gte.return_value.execute.return_value = (
            MagicMock(data=[])
        )
        mock_get_client.return_value = mock_client

        resp = client.get("/api/v1/notifications/activity")
        assert resp.status_code == 200
        assert resp.json() == {"activityByDay": [], "sources": []}


# ===================================================================
# 3. Single notification
# ===================================================================

class TestSingleNotification:
    """GET/POST read/DELETE on one notification."""

    @patch("app.api.notifications.get_service_client")
    def test_get_not_found(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.select.return_value.eq.return_value.eq.return_value.execute.return_value = (
            MagicMock(data=[])
        )
        mock_get_client.return_value = mock_client

        resp = client.get(f"/api/v1/notifications/{NOTIFICATION_ID}")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOTIFICATION_NOT_FOUND"

    def test_non_uuid_id_is_not_found(self, client, authed):
        resp = client.get("/api/v1/notifications/abc")
        assert resp.status_code == 404
        assert resp.json()["error"] == "NOTIFICATION_NOT_FOUND"

    @patch("app.api.notifications.get_service_client")
    def test_mark_read(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.select.return_value.eq.return_value.eq.return_value.execute.return_value = (
            MagicMock(data=[_notification_row()])
        )
        mock_table.update.return_value.eq.return_value.eq.return_value.execute.return_value = (
            MagicMock(data=[_notification_row(read=True, read_at="2026-10-16T10:00:00+00:00")])
        )
        mock_get_client.return_value = mock_client

        resp = client.post(f"/api/v1/notifications/{NOTIFICATION_ID}/read")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["notification"]["read"] is True
        update_payload = mock_table.update.call_args.args[0]
        assert update_payload["read"] is True
        assert "read_at" in update_payload
        print("  Notification marked read")

    @patch("app.api.notifications.get_service_client")
    def test_mark_read_is_idempotent(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        already_read = _notification_row(read=True, read_at="2026-10-14T08:00:00+00:00")
        mock_table.select.return_value.eq.return_value.eq.return_value.execute.return_value = (
            MagicMock(data=[already_read])
        )
        mock_get_client.return_value = mock_client

        resp = client.post(f"/api/v1/notifications/{NOTIFICATION_ID}/read")
        assert resp.status_code == 200
        assert resp.json()["notification"]["readAt"] == "2026-10-14T08:00:00+00:00"
        mock_table.update.assert_not_called()

    @patch("app.api.notifications.get_service_client")
    def test_delete(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.select.return_value.eq.return_value.eq.return_value.execute.return_value = (
            MagicMock(data=[_notification_row()])
        )
        mock_get_client.return_value = mock_client

        resp = client.delete(f"/api/v1/notifications/{NOTIFICATION_ID}")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "id": NOTIFICATION_ID}
        mock_table.delete.assert_called_once()


# ===================================================================
# 4. Bulk actions
# ===================================================================

class TestBulkActions:
    """POST /read-all and DELETE /delete-all."""

    @patch("app.api.notifications.get_service_client")
    def test_read_all(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.update.return_value.eq.return_value.eq.return_value.execute.return_value = (
            MagicMock(data=[{"id": "1"}, {"id": "2"}])
        )
        mock_get_client.return_value = mock_client

        resp = client.post("/api/v1/notifications/read-all")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "updated": 2}

    @patch("app.api.notifications.get_service_client")
    def test_read_all_for_subscription(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        chain = mock_table.update.return_value.eq.return_value.eq.return_value
        chain.eq.return_value.execute.return_value = MagicMock(data=[{"id": "1"}])
        mock_get_client.return_value = mock_client

        resp = client.post(f"/api/v1/notifications/read-all?subscriptionId={SUBSCRIPTION_ID}")
        assert resp.status_code == 200
        assert resp.json()["updated"] == 1
        chain.eq.assert_called_with("subscription_id", SUBSCRIPTION_ID)

    @patch("app.api.notifications.get_service_client")
    def test_delete_all(self, mock_get_client, client, authed):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.delete.return_value.eq.return_value.execute.return_value = MagicMock(
            data=[{"id": "1"}, {"id": "2"}, {"id": "3"}]
        )
        mock_get_client.return_value = mock_client

        resp = client.delete("/api/v1/notifications/delete-all")
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "deleted": 3}

    def test_delete_all_rejects_bad_subscription(self, client, authed):
        resp = client.delete("/api/v1/notifications/delete-all?subscriptionId=xyz")
        assert resp.status_code == 400


# ===================================================================
# 5. Service-only endpoints
# ===================================================================

class TestServiceEndpoints:
    """POST /notifications and /email-sent require X-Service-Key."""

    def test_create_requires_service_key(self, client, service_key):
        resp = client.post(
            "/api/v1/notifications",
            json={"userId": TEST_USER_ID, "title": "Hola"},
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

    def test_wrong_service_key(self, client, service_key):
        resp = client.post(
            "/api/v1/notifications",
            json={"userId": TEST_USER_ID, "title": "Hola"},
            headers={"X-Service-Key": "wrong"},
        )
        assert resp.status_code == 403

    @patch("app.services.notifications.publish_event", new_callable=AsyncMock)
    @patch("app.api.notifications.get_service_client")
    def test_create_notification_queues_email(
        self, mock_get_client, mock_publish, client, service_key
    ):
        mock_client = MagicMock()
        notifications_table = MagicMock()
        users_table = MagicMock()
        notifications_table.insert.return_value.execute.return_value = MagicMock(
            data=[_notification_row()]
        )
        users_table.select.return_value.eq.return_value.execute.return_value = MagicMock(
            data=[{
                "id": TEST_USER_ID,
                "email": "ana@example.com",
                "metadata": {"notifications": {"email": {"enabled": True}}},
            }]
        )

        def table_side_effect(name):
            return {"notifications": notifications_table, "users": users_table}[name]

        mock_client.table.side_effect = table_side_effect
        mock_get_client.return_value = mock_client
        mock_publish.return_value = "msg-1"

        resp = client.post(
            "/api/v1/notifications",
            json={
                "userId": TEST_USER_ID,
                "title": "Nueva ayuda publicada",
                "content": {"summary": "Convocatoria de subvenciones"},
                "subscriptionId": SUBSCRIPTION_ID,
                "entityType": "boe:document",
            },
            headers=service_key,
        )
        assert resp.status_code == 201
        assert resp.json()["notification"]["id"] == NOTIFICATION_ID

        inserted = notifications_table.insert.call_args.args[0]
        assert inserted["user_id"] == TEST_USER_ID
        assert inserted["content"] == '{"summary": "Convocatoria de subvenciones"}'
        mock_publish.assert_awaited_once()
        print("  Notification created and email queued")

    @patch("app.services.notifications.publish_event", new_callable=AsyncMock)
    @patch("app.api.notifications.get_service_client")
    def test_publish_failure_does_not_fail_create(
        self, mock_get_client, mock_publish, client, service_key
    ):
        mock_client = MagicMock()
        notifications_table = MagicMock()
        users_table = MagicMock()
        notifications_table.insert.return_value.execute.return_value = MagicMock(
            data=[_notification_row()]
        )
        users_table.select.return_value.eq.return_value.execute.return_value = MagicMock(
            data=[{
                "id": TEST_USER_ID,
                "email": "ana@example.com",
                "metadata": {"notifications": {"email": {"enabled": True}}},
            }]
        )
        mock_client.table.side_effect = lambda name: (
            notifications_table if name == "notifications" else users_table
        )
        mock_get_client.return_value = mock_client
        mock_publish.side_effect = RuntimeError("pubsub unavailable")

        resp = client.post(
            "/api/v1/notifications",
            json={"userId": TEST_USER_ID, "title": "Hola"},
            headers=service_key,
        )
        assert resp.status_code == 201

    @patch("app.services.notifications.publish_event", new_callable=AsyncMock)
    @patch("app.api.notifications.get_service_client")
    def test_user_lookup_failure_still_creates(
        self, mock_get_client, mock_publish, client, service_key
    ):
        mock_client = MagicMock()
        notifications_table = MagicMock()
        users_table = MagicMock()
        notifications_table.insert.return_value.execute.return_value = MagicMock(
            data=[_notification_row()]
        )
        users_table.select.return_value.eq.return_value.execute.side_effect = Exception("timeout")
        mock_client.table.side_effect = lambda name: (
            notifications_table if name == "notifications" else users_table
        )
        mock_get_client.return_value = mock_client

        resp = client.post(
            "/api/v1/notifications",
            json={"userId": TEST_USER_ID, "title": "Hola"},
            headers=service_key,
        )
        assert resp.status_code == 201
        assert resp.json()["notification"]["id"] == NOTIFICATION_ID
        notifications_table.insert.assert_called_once()
        mock_publish.assert_not_awaited()
        print("  User lookup failure → notification kept, email skipped")

    @patch("app.api.notifications.get_service_client")
    def test_create_insert_failure(self, mock_get_client, client, service_key):
        mock_client = MagicMock()
        mock_client.table.return_value.insert.return_value.execute.side_effect = Exception(
            "insert failed"
        )
        mock_get_client.return_value = mock_client

        resp = client.post(
            "/api/v1/notifications",
            json={"userId": TEST_USER_ID, "title": "Hola"},
            headers=service_key,
        )
        assert resp.status_code == 500
        assert resp.json()["error"] == "NOTIFICATION_CREATE_ERROR"

    @patch("app.api.notifications.get_service_client")
    def test_email_sent(self, mock_get_client, client, service_key):
        mock_client = MagicMock()
        mock_table = MagicMock()
        mock_client.table.return_value = mock_table
        mock_table.update.return_value.in_.return_value.execute.return_value = MagicMock(
            data=[{"id": NOTIFICATION_ID}]
        )
        mock_get_client.return_value = mock_client

        resp = client.post(
            "/api/v1/notifications/email-sent",
            json={"notificationId": NOTIFICATION_ID, "sentAt": "2026-10-16T07:00:00Z"},
            headers=service_key,
        )
        assert resp.status_code == 200
        assert resp.json() == {"updated": 1, "notificationIds": [NOTIFICATION_ID]}
        payload = mock_table.update.call_args.args[0]
        assert payload["email_sent"] is True
        assert payload["email_sent_at"].startswith("2026-10-16T07:00:00")
        mock_table.update.return_value.in_.assert_called_with("id", [NOTIFICATION_ID])

    def test_email_sent_requires_ids(self, client, service_key):
        resp = client.post(
            "/api/v1/notifications/email-sent",
            json={},
            headers=service_key,
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

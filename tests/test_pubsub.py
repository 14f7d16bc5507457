"""
Pub/Sub Publisher Tests

Tests for app.services.pubsub:
- Dev-mode mock publishing when Pub/Sub is not configured
- Production refuses to publish without configuration
- Real publishing goes through PublisherClient with JSON bodies
- emit_event swallows failures

Run with: pytest tests/test_pubsub.py -v
"""

import json
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from app.services import pubsub


@pytest.fixture(autouse=True)
def reset_publisher():
    pubsub._publisher = None
    pubsub._topic_paths.clear()
    yield
    pubsub._publisher = None
    pubsub._topic_paths.clear()


class TestEncodeMessage:
    """JSON encoding of payloads."""

    def test_compact_utf8_json(self):
        body = pubsub.encode_message({"title": "Convocatoria pública", "n": 1})
        assert isinstance(body, bytes)
        assert json.loads(body.decode("utf-8")) == {"title": "Convocatoria pública", "n": 1}
        assert b", " not in body
        assert b": " not in body

    def test_datetimes_are_stringified(self):
        when = datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc)
        decoded = json.loads(pubsub.encode_message({"at": when}))
        assert decoded["at"].startswith("2026-10-18 08:00:00")


class TestDevMode:
    """Pub/Sub disabled."""

    @pytest.mark.asyncio
    async def test_mock_id_outside_production(self):
        with patch("app.services.pubsub.is_pubsub_configured", return_value=False), \
             patch("app.services.pubsub.is_production", return_value=False):
            message_id = await pubsub.publish_event("subscription.created", {"id": "s-1"})
        assert message_id.startswith("dev-mock-")
        print(f"  Dev publish → {message_id}")

    @pytest.mark.asyncio
    async def test_production_raises(self):
        with patch("app.services.pubsub.is_pubsub_configured", return_value=False), \
             patch("app.services.pubsub.is_production", return_value=True):
            with pytest.raises(RuntimeError):
                await pubsub.publish_event("subscription.created", {"id": "s-1"})


class TestPublishing:
    """Pub/Sub enabled, PublisherClient mocked."""

    @pytest.mark.asyncio
    async def test_publish_returns_message_id(self):
        mock_publisher = MagicMock()
        mock_publisher.topic_path.return_value = "projects/nifya/topics/email-notifications-daily"
        mock_publisher.publish.return_value.result.return_value = "1234567"

        with patch("app.services.pubsub.is_pubsub_configured", return_value=True), \
             patch("app.services.pubsub.GOOGLE_CLOUD_PROJECT", "nifya"), \
             patch("app.services.pubsub.pubsub_v1.PublisherClient", return_value=mock_publisher):
            message_id = await pubsub.publish_event(
                "email-notifications-daily",
                {"userId": "u-1"},
                attributes={"attempt": 1},
            )

        assert message_id == "1234567"
        mock_publisher.topic_path.assert_called_once_with("nifya", "email-notifications-daily")
        args, kwargs = mock_publisher.publish.call_args
        assert args[0] == "projects/nifya/topics/email-notifications-daily"
        assert json.loads(args[1]) == {"userId": "u-1"}
        assert kwargs == {"attempt": "1"}
        print("  Message published with stringified attributes")

    @pytest.mark.asyncio
    async def test_full_topic_path_is_used_as_is(self):
        mock_publisher = MagicMock()
        mock_publisher.publish.return_value.result.return_value = "42"
        path = "projects/other/topics/events"

        with patch("app.services.pubsub.is_pubsub_configured", return_value=True), \
             patch("app.services.pubsub.pubsub_v1.PublisherClient", return_value=mock_publisher):
            await pubsub.publish_event(path, {})

        mock_publisher.topic_path.assert_not_called()
        assert mock_publisher.publish.call_args.args[0] == path

    @pytest.mark.asyncio
    async def test_publish_error_propagates(self):
        mock_publisher = MagicMock()
        mock_publisher.topic_path.return_value = "projects/nifya/topics/t"
        mock_publisher.publish.return_value.result.side_effect = TimeoutError("deadline")

        with patch("app.services.pubsub.is_pubsub_configured", return_value=True), \
             patch("app.services.pubsub.pubsub_v1.PublisherClient", return_value=mock_publisher):
            with pytest.raises(TimeoutError):
                await pubsub.publish_event("t", {})


class TestEmitEvent:
    """Best-effort domain events."""

    @pytest.mark.asyncio
    async def test_failure_returns_none(self):
        with patch("app.services.pubsub.is_pubsub_configured", return_value=False), \
             patch("app.services.pubsub.is_production", return_value=True):
            assert await pubsub.emit_event("subscription.deleted", {"id": "s-1"}) is None

    @pytest.mark.asyncio
    async def test_success_returns_id(self):
        with patch("app.services.pubsub.is_pubsub_configured", return_value=False), \
             patch("app.services.pubsub.is_production", return_value=False):
            message_id = await pubsub.emit_event("subscription.deleted", {"id": "s-1"})
        assert message_id.startswith("dev-mock-")

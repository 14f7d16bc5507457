"""
Pub/Sub Service — Publishes domain events and email jobs to Google Cloud Pub/Sub.

Messages are JSON-encoded UTF-8 bodies. The topic name doubles as the
event name (e.g. "subscription.created", "email-notifications-daily").

When Pub/Sub is not configured (PUBSUB_ENABLED unset or no
GOOGLE_CLOUD_PROJECT), development builds log the message and return a
"dev-mock-<ms>" ID so local flows keep working; production raises.
"""

import asyncio
import json
import logging
import time
from typing import Any

from google.cloud import pubsub_v1

from app.core.config import (
    GOOGLE_CLOUD_PROJECT,
    PUBSUB_PUBLISH_TIMEOUT_SECONDS,
    is_production,
    is_pubsub_configured,
)

logger = logging.getLogger(__name__)

_publisher: pubsub_v1.PublisherClient | None = None
_topic_paths: dict[str, str] = {}


def get_publisher() -> pubsub_v1.PublisherClient:
    """Return the shared PublisherClient, creating it on first use."""
    global _publisher
    if _publisher is None:
        _publisher = pubsub_v1.PublisherClient()
        logger.info("Pub/Sub publisher created for project %s", GOOGLE_CLOUD_PROJECT)
    return _publisher


def _topic_path(topic: str) -> str:
    if topic.startswith("projects/") and "/topics/" in topic:
        return topic
    if topic not in _topic_paths:
        _topic_paths[topic] = get_publisher().topic_path(GOOGLE_CLOUD_PROJECT, topic)
    return _topic_paths[topic]


def encode_message(data: dict[str, Any]) -> bytes:
    """JSON-encode a payload; datetimes and UUIDs are stringified."""
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")


def _publish_blocking(topic: str, body: bytes, attributes: dict[str, str]) -> str:
    future = get_publisher().publish(_topic_path(topic), body, **attributes)
    return str(future.result(timeout=PUBSUB_PUBLISH_TIMEOUT_SECONDS))


async def publish_event(
    topic: str,
    data: dict[str, Any],
    attributes: dict[str, Any] | None = None,
) -> str:
    """
    Publish one message and wait for the server-assigned message ID.

    Args:
        topic: Short topic name or full projects/<p>/topics/<t> path.
        data: JSON-serializable payload.
        attributes: Optional message attributes (values are stringified).

    Returns:
        The Pub/Sub message ID, or a dev-mock ID when publishing is disabled
        outside production.

    Raises:
        RuntimeError: Pub/Sub disabled in production.
        Exception: any publish/timeout error from the client library.
    """
    body = encode_message(data)
    attrs = {str(k): str(v) for k, v in (attributes or {}).items()}

    if not is_pubsub_configured():
        if is_production():
            raise RuntimeError(f"Pub/Sub is not configured; cannot publish to {topic}")
        message_id = f"dev-mock-{int(time.time() * 1000)}"
        logger.info(
            "Pub/Sub disabled, mock publish to %s (%d bytes, id=%s)",
            topic,
            len(body),
            message_id,
        )
        return message_id

    try:
        # future.result() blocks; run it off the event loop.
        message_id = await asyncio.to_thread(_publish_blocking, topic, body, attrs)
    except Exception as exc:
        logger.error("Failed to publish to %s: %s", topic, exc)
        raise

    logger.info("Published message %s to %s", message_id, topic)
    return message_id


async def emit_event(topic: str, data: dict[str, Any]) -> str | None:
    """
    Publish a best-effort domain event.

    Used after a database write has already succeeded: a publish failure
    is logged and the request still succeeds.
    """
    try:
        return await publish_event(topic, data)
    except Exception as exc:
        logger.warning("Event %s not published: %s", topic, exc)
        return None

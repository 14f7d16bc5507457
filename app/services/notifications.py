"""
Notification Service — Notification creation and email fan-out.

Creating a notification writes the row and then queues an email job on
Pub/Sub for the external email worker:

- users with email notifications disabled (or no address) get nothing;
- users who want instant notifications, and the TEST_EMAIL account, go
  to EMAIL_IMMEDIATE_TOPIC;
- everyone else goes to EMAIL_DAILY_TOPIC for the daily digest.

Email queueing never fails the request that created the notification.
"""

import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any

from app.core.config import EMAIL_DAILY_TOPIC, EMAIL_IMMEDIATE_TOPIC, TEST_EMAIL
from app.db.supabase_client import get_service_client
from app.services.pubsub import publish_event
from app.services.users import notification_address

logger = logging.getLogger(__name__)

SOURCE_COLORS = {
    "BOE": "#4f46e5",
    "DOGA": "#0ea5e9",
    "REAL-ESTATE": "#10b981",
    "REAL_ESTATE": "#10b981",
}
DEFAULT_SOURCE_COLOR = "#6b7280"


def _parse_json(value: Any) -> Any:
    """Decode JSON stored as text by older writers; anything else passes through."""
    if isinstance(value, str):
        stripped = value.strip()
        if stripped[:1] in ("{", "["):
            try:
                return json.loads(stripped)
            except ValueError:
                return value
    return value


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def serialize_notification(row: dict[str, Any]) -> dict[str, Any]:
    """Shape a notifications row for responses."""
    content = _parse_json(row.get("content"))
    return {
        "id": row["id"],
        "userId": row.get("user_id"),
        "subscriptionId": row.get("subscription_id"),
        "title": row.get("title") or "",
        "content": content if content is not None else "",
        "sourceUrl": row.get("source_url") or "",
        "read": bool(row.get("read", False)),
        "readAt": row.get("read_at"),
        "entityType": row.get("entity_type") or "notification:generic",
        "source": row.get("source"),
        "data": _parse_json(row.get("data")) or {},
        "metadata": _parse_json(row.get("metadata")) or {},
        "emailSent": bool(row.get("email_sent", False)),
        "emailSentAt": row.get("email_sent_at"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def _notification_kind(row: dict[str, Any]) -> str:
    metadata = _parse_json(row.get("metadata")) or {}
    if isinstance(metadata, dict):
        if metadata.get("source"):
            return str(metadata["source"])
        if metadata.get("type"):
            return str(metadata["type"])
    return row.get("source") or row.get("entity_type") or "generic"


def compute_stats(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Totals, unread count and per-type counts for a user's notifications."""
    by_type = Counter(row.get("entity_type") or "notification:generic" for row in rows)
    return {
        "total": len(rows),
        "unread": sum(1 for row in rows if not row.get("read")),
        "byType": dict(by_type),
    }


def compute_activity(
    rows: list[dict[str, Any]],
    days: int = 7,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Per-weekday counts and per-source counts over the last `days` days.

    activityByDay is ordered by first occurrence; sources by count,
    descending.
    """
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(days=days)

    recent = []
    for row in rows:
        created = _parse_timestamp(row.get("created_at"))
        if created is not None and created >= cutoff:
            recent.append((created, row))
    recent.sort(key=lambda item: item[0])

    by_day: dict[str, int] = {}
    for created, _ in recent:
        label = created.strftime("%a")
        by_day[label] = by_day.get(label, 0) + 1

    sources = Counter(_notification_kind(row) for _, row in recent)

    return {
        "activityByDay": [{"day": day, "count": count} for day, count in by_day.items()],
        "sources": [
            {
                "name": name,
                "count": count,
                "color": SOURCE_COLORS.get(name.upper(), DEFAULT_SOURCE_COLOR),
            }
            for name, count in sources.most_common()
        ],
    }


def _email_title(notification: dict[str, Any]) -> str:
    if notification.get("title"):
        return notification["title"]
    content = _parse_json(notification.get("content"))
    if isinstance(content, dict):
        if content.get("title"):
            return str(content["title"])
        if content.get("name"):
            return str(content["name"])
    return f"New {notification.get('entity_type') or 'notification'} notification"


async def queue_email_notification(
    notification: dict[str, Any],
    user_row: dict[str, Any] | None,
    correlation_id: str | None = None,
) -> str | None:
    """
    Publish the email job for a stored notification.

    Returns:
        The topic published to, or None when the user gets no email or
        publishing failed (failures are logged, not raised).
    """
    user_id = notification.get("user_id") or ""
    if not user_row:
        logger.warning("No user row for notification %s, skipping email", notification.get("id"))
        return None

    email_prefs = ((user_row.get("metadata") or {}).get("notifications") or {})
    if not (email_prefs.get("email") or {}).get("enabled", False):
        logger.debug("Email notifications disabled for user %s", user_id[:8])
        return None

    email = notification_address(user_row)
    if not email:
        logger.warning("Cannot send email notification: no address for user %s", user_id[:8])
        return None

    immediate = bool(email_prefs.get("instant")) or (bool(TEST_EMAIL) and email == TEST_EMAIL)
    topic = EMAIL_IMMEDIATE_TOPIC if immediate else EMAIL_DAILY_TOPIC

    now = datetime.now(timezone.utc).isoformat()
    payload = {
        "userId": user_id,
        "email": email,
        "notification": {
            "id": notification.get("id"),
            "type": notification.get("entity_type") or "notification:generic",
            "title": _email_title(notification),
            "content": _parse_json(notification.get("content")),
            "sourceUrl": notification.get("source_url"),
            "subscriptionId": notification.get("subscription_id"),
            "timestamp": now,
        },
        "timestamp": now,
        "correlationId": correlation_id or str(uuid.uuid4()),
    }

    try:
        await publish_event(topic, payload)
    except Exception as exc:
        logger.error(
            "Email notification %s for user %s not queued: %s",
            notification.get("id"),
            user_id[:8],
            exc,
        )
        return None

    logger.info(
        "Queued email for notification %s on %s (user %s)",
        notification.get("id"),
        topic,
        user_id[:8],
    )
    return topic


async def create_notification(
    user_id: str,
    title: str,
    content: Any = None,
    subscription_id: str | None = None,
    source_url: str | None = None,
    entity_type: str | None = None,
    source: str | None = None,
    data: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
    correlation_id: str | None = None,
    client=None,
) -> dict[str, Any]:
    """
    Insert a notification and queue its email.

    Raises:
        Exception: database errors from the insert propagate. Failures after
            the insert (user lookup, email publish) are logged only.
    """
    client = client or get_service_client()

    row = {
        "user_id": user_id,
        "subscription_id": subscription_id,
        "title": title,
        "content": content if isinstance(content, str) or content is None else json.dumps(content),
        "source_url": source_url,
        "entity_type": entity_type or "notification:generic",
        "source": source,
        "data": data or {},
        "metadata": metadata or {},
    }

    result = client.table("notifications").insert(row).execute()
    notification = result.data[0]
    logger.info("Created notification %s for user %s", notification["id"], user_id[:8])

    user_row = None
    try:
        user = client.table("users").select("id, email, metadata").eq("id", user_id).execute()
        user_row = user.data[0] if user.data else None
    except Exception as exc:
        logger.error(
            "Could not load user %s for notification %s email: %s",
            user_id[:8],
            notification["id"],
            exc,
        )
    await queue_email_notification(notification, user_row, correlation_id)
    return notification

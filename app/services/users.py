"""
User Service — User sync, metadata layout and profile shaping.

All user preferences live in users.metadata under one layout:

    {
      "profile": {"bio": "", "interests": []},
      "preferences": {"language": "es", "theme": "light"},
      "notifications": {
        "email": {"enabled": true, "useCustomEmail": false,
                  "customEmail": null, "digestTime": "08:00"},
        "instant": true,
        "frequency": "daily"
      },
      "emailVerified": false
    }

Updates are deep-merged into the stored document so a PATCH touching one
setting never erases the others.
"""

import copy
import logging
from datetime import datetime, timezone
from typing import Any

from app.db.supabase_client import get_service_client

logger = logging.getLogger(__name__)

DEFAULT_DIGEST_TIME = "08:00"


def default_user_metadata(email: str | None = None, email_verified: bool = False) -> dict[str, Any]:
    """Metadata document for a freshly created user."""
    return {
        "profile": {"bio": "", "interests": []},
        "preferences": {"language": "es", "theme": "light"},
        "notifications": {
            "email": {
                "enabled": bool(email),
                "useCustomEmail": False,
                "customEmail": None,
                "digestTime": DEFAULT_DIGEST_TIME,
            },
            "instant": True,
            "frequency": "daily",
        },
        "emailVerified": email_verified,
    }


def merge_metadata(base: dict[str, Any] | None, updates: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge updates into a copy of base.

    Nested dicts are merged key by key; any other value (including None
    and lists) replaces what was there.
    """
    merged = copy.deepcopy(base) if isinstance(base, dict) else {}
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_metadata(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _display_name(email: str | None, name: str | None) -> str:
    if name:
        return name
    if email:
        return email.split("@", 1)[0]
    return "User"


def get_user(user_id: str, client=None) -> dict[str, Any] | None:
    """Fetch one user row, or None."""
    client = client or get_service_client()
    result = client.table("users").select("*").eq("id", user_id).execute()
    return result.data[0] if result.data else None


def ensure_user(
    user_id: str,
    email: str | None,
    name: str | None = None,
    email_verified: bool = False,
    client=None,
) -> dict[str, Any]:
    """
    Return the user row, creating it on first sight.

    Existing rows are not overwritten, except that a newly verified email
    flips metadata.emailVerified.
    """
    client = client or get_service_client()
    existing = get_user(user_id, client)

    if existing:
        metadata = existing.get("metadata") or {}
        if email_verified and not metadata.get("emailVerified"):
            metadata = merge_metadata(metadata, {"emailVerified": True})
            client.table("users").update({"metadata": metadata}).eq("id", user_id).execute()
            existing["metadata"] = metadata
        return existing

    display_name = _display_name(email, name)
    first_name, _, last_name = display_name.partition(" ")
    row = {
        "id": user_id,
        "email": email or f"{user_id}@users.nifya.local",
        "display_name": display_name,
        "first_name": first_name,
        "last_name": last_name or None,
        "role": "user",
        "metadata": default_user_metadata(email, email_verified),
    }

    result = client.table("users").upsert(row, on_conflict="id").execute()
    logger.info("Created user %s", user_id[:8])
    return result.data[0] if result.data else row


def get_email_preferences(row: dict[str, Any]) -> dict[str, Any]:
    """Extract {email_notifications, notification_email, digest_time} from a user row."""
    email = ((row.get("metadata") or {}).get("notifications") or {}).get("email") or {}
    return {
        "email_notifications": bool(email.get("enabled", False)),
        "notification_email": email.get("customEmail"),
        "digest_time": email.get("digestTime") or DEFAULT_DIGEST_TIME,
    }


def email_preferences_patch(
    email_notifications: bool | None = None,
    notification_email: str | None = None,
    digest_time: str | None = None,
    clear_notification_email: bool = False,
) -> dict[str, Any]:
    """Build the metadata fragment for an email-preference update."""
    email: dict[str, Any] = {}
    if email_notifications is not None:
        email["enabled"] = email_notifications
    if notification_email is not None:
        email["customEmail"] = notification_email
        email["useCustomEmail"] = True
    elif clear_notification_email:
        email["customEmail"] = None
        email["useCustomEmail"] = False
    if digest_time is not None:
        email["digestTime"] = digest_time
    return {"notifications": {"email": email}} if email else {}


def notification_address(row: dict[str, Any]) -> str | None:
    """The address emails should go to: the custom one when enabled, else the account email."""
    email = ((row.get("metadata") or {}).get("notifications") or {}).get("email") or {}
    if email.get("useCustomEmail") and email.get("customEmail"):
        return email["customEmail"]
    return row.get("email")


def build_profile(row: dict[str, Any], counts: dict[str, Any] | None = None) -> dict[str, Any]:
    """Shape a user row plus activity counts into the profile response."""
    counts = counts or {}
    metadata = row.get("metadata") or {}
    profile = metadata.get("profile") or {}
    preferences = metadata.get("preferences") or {}
    notifications = metadata.get("notifications") or {}
    email = notifications.get("email") or {}

    return {
        "id": row["id"],
        "email": row.get("email"),
        "name": row.get("display_name") or _display_name(row.get("email"), None),
        "avatar": row.get("avatar_url"),
        "bio": profile.get("bio") or "",
        "theme": preferences.get("theme", "light"),
        "language": preferences.get("language", "es"),
        "emailNotifications": bool(email.get("enabled", False)),
        "notificationEmail": email.get("customEmail"),
        "emailFrequency": notifications.get("frequency", "daily"),
        "instantNotifications": bool(notifications.get("instant", False)),
        "lastLogin": row.get("updated_at") or datetime.now(timezone.utc).isoformat(),
        "emailVerified": bool(metadata.get("emailVerified", False)),
        "subscriptionCount": counts.get("subscriptions", 0),
        "notificationCount": counts.get("notifications", 0),
        "lastNotification": counts.get("last_notification"),
    }


def load_profile_counts(user_id: str, client=None) -> dict[str, Any]:
    """Count a user's subscriptions and notifications, plus the latest notification time."""
    client = client or get_service_client()
    subs = (
        client.table("subscriptions")
        .select("id", count="exact")
        .eq("user_id", user_id)
        .limit(1)
        .execute()
    )
    notifs = (
        client.table("notifications")
        .select("created_at", count="exact")
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    return {
        "subscriptions": subs.count or 0,
        "notifications": notifs.count or 0,
        "last_notification": notifs.data[0]["created_at"] if notifs.data else None,
    }

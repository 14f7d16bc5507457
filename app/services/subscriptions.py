"""
Subscription Service — Normalization and shaping for subscription data.

Clients send prompts, types and frequencies in several historical shapes
(a bare string, {"value": ...}, a list, "instant" instead of
"immediate"). Everything is normalized here before it reaches the
database, and rows are serialized back into one stable response shape.
"""

import json
import logging
from collections import Counter
from typing import Any

from fastapi import status

from app.core.errors import SUBSCRIPTION_ERRORS, AppError

logger = logging.getLogger(__name__)

MAX_PROMPTS = 3

FREQUENCIES = ("immediate", "daily", "weekly", "monthly")

_TYPE_ALIASES = {
    "boe": "boe",
    "doga": "doga",
    "real-estate": "real-estate",
    "real estate": "real-estate",
    "realestate": "real-estate",
    "inmobiliaria": "real-estate",
    "property": "real-estate",
}


def normalize_prompts(value: Any) -> list[str]:
    """
    Coerce any accepted prompt shape into a list of at most 3 strings.

    None -> []; "x" -> ["x"]; {"value": "x"} -> ["x"]; other dicts -> their
    string values; lists -> non-empty items as strings. JSON-encoded
    strings holding a list are decoded first.
    """
    if value is None:
        return []

    if isinstance(value, str):
        stripped = value.strip()
        if stripped.startswith("["):
            try:
                decoded = json.loads(stripped)
            except ValueError:
                decoded = None
            if isinstance(decoded, list):
                return normalize_prompts(decoded)
        return [stripped] if stripped else []

    if isinstance(value, dict):
        if "value" in value:
            return normalize_prompts(value["value"])
        items = [v for v in value.values() if isinstance(v, str)]
        return normalize_prompts(items)

    if isinstance(value, (list, tuple)):
        prompts = []
        for item in value:
            if item is None:
                continue
            if isinstance(item, dict) and "value" in item:
                item = item["value"]
            text = str(item).strip()
            if text:
                prompts.append(text)
        return prompts[:MAX_PROMPTS]

    text = str(value).strip()
    return [text] if text else []


def normalize_type(value: Any) -> str:
    """Map a free-form type name onto boe, doga, real-estate or custom."""
    if not value:
        return "custom"
    return _TYPE_ALIASES.get(str(value).strip().lower(), "custom")


def normalize_frequency(value: Any) -> str:
    """'instant' -> 'immediate'; known values pass through; anything else -> 'daily'."""
    if not value:
        return "daily"
    freq = str(value).strip().lower()
    if freq in ("instant", "realtime", "real-time"):
        return "immediate"
    return freq if freq in FREQUENCIES else "daily"


def resolve_type_id(client, type_name: str | None = None, type_id: str | None = None) -> str:
    """
    Pick the subscription_types.id a new subscription should use.

    Order: an explicit type_id that exists; a type whose id or name
    matches type_name (case-insensitive, aliases applied); the first
    system type.

    Raises:
        AppError(400): TYPE_NOT_FOUND when no type can be resolved.
    """
    if type_id:
        found = client.table("subscription_types").select("id").eq("id", type_id).execute()
        if found.data:
            return found.data[0]["id"]
        logger.info("Unknown subscription type id %s, falling back to name lookup", type_id)

    if type_name:
        candidates = {str(type_name).strip().lower(), normalize_type(type_name)}
        rows = client.table("subscription_types").select("id, name").execute().data or []
        for row in rows:
            if row["id"].lower() in candidates or (row.get("name") or "").lower() in candidates:
                return row["id"]

    system = (
        client.table("subscription_types")
        .select("id")
        .eq("is_system", True)
        .order("created_at")
        .limit(1)
        .execute()
    )
    if system.data:
        return system.data[0]["id"]

    raise AppError.from_catalog(
        SUBSCRIPTION_ERRORS["TYPE_NOT_FOUND"],
        status.HTTP_400_BAD_REQUEST,
        {"type": type_name, "typeId": type_id},
    )


def compute_stats(rows: list[dict[str, Any]]) -> dict[str, Any]:
    """Aggregate a user's subscriptions by status, source type and frequency."""
    active = sum(1 for row in rows if row.get("active"))
    by_source = Counter(_type_name(row) for row in rows)
    by_frequency = Counter(row.get("frequency") or "daily" for row in rows)
    return {
        "total": len(rows),
        "active": active,
        "inactive": len(rows) - active,
        "bySource": dict(by_source),
        "byFrequency": dict(by_frequency),
    }


def _type_name(row: dict[str, Any]) -> str:
    joined = row.get("subscription_types")
    if isinstance(joined, dict) and joined.get("name"):
        return joined["name"]
    return row.get("type_id") or "custom"


def serialize_subscription(row: dict[str, Any]) -> dict[str, Any]:
    """Shape a subscriptions row (optionally joined with its type) for responses."""
    joined = row.get("subscription_types") if isinstance(row.get("subscription_types"), dict) else {}
    return {
        "id": row["id"],
        "name": row.get("name"),
        "description": row.get("description") or "",
        "prompts": normalize_prompts(row.get("prompts")),
        "type": _type_name(row),
        "typeId": row.get("type_id"),
        "typeName": joined.get("display_name") or joined.get("name") or row.get("type_id"),
        "typeIcon": joined.get("icon"),
        "frequency": normalize_frequency(row.get("frequency")),
        "active": bool(row.get("active", True)),
        "logo": row.get("logo") or joined.get("logo_url"),
        "metadata": row.get("metadata") or {},
        "userId": row.get("user_id"),
        "createdAt": row.get("created_at"),
        "updatedAt": row.get("updated_at"),
    }


def serialize_type(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "name": row.get("name"),
        "displayName": row.get("display_name") or row.get("name"),
        "description": row.get("description") or "",
        "icon": row.get("icon"),
        "logo": row.get("logo_url"),
        "isSystem": bool(row.get("is_system", False)),
        "createdBy": row.get("created_by"),
        "metadata": row.get("metadata") or {},
        "createdAt": row.get("created_at"),
    }

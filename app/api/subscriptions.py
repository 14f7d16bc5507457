"""
Subscriptions API — Subscription CRUD, types, processing and sharing.

GET    /api/v1/subscriptions/stats — counts by status, source and frequency.
GET    /api/v1/subscriptions/types — all subscription types.
POST   /api/v1/subscriptions/types — create a custom type.
GET    /api/v1/subscriptions — filtered, paginated list.
POST   /api/v1/subscriptions — create.
GET    /api/v1/subscriptions/{id} — fetch one.
PATCH  /api/v1/subscriptions/{id} — partial update.
PATCH  /api/v1/subscriptions/{id}/toggle — activate/deactivate.
DELETE /api/v1/subscriptions/{id} — delete (idempotent).
POST   /api/v1/subscriptions/{id}/process — hand off to the worker (202).
GET    /api/v1/subscriptions/{id}/status — latest processing status.
POST   /api/v1/subscriptions/{id}/share — share with another user.
DELETE /api/v1/subscriptions/{id}/share — stop sharing.

Every handler filters by the caller's user_id; a subscription owned by
someone else is reported as not found.
"""

import logging
import math
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.errors import SUBSCRIPTION_ERRORS, USER_ERRORS, AppError
from app.core.security import get_current_user_id
from app.db.supabase_client import get_service_client
from app.models.subscriptions import (
    ShareRequest,
    SubscriptionCreateRequest,
    SubscriptionToggleRequest,
    SubscriptionTypeCreateRequest,
    SubscriptionUpdateRequest,
)
from app.services.pubsub import emit_event
from app.services.subscriptions import (
    compute_stats,
    normalize_frequency,
    resolve_type_id,
    serialize_subscription,
    serialize_type,
)
from app.services.worker import create_processing_record, dispatch_processing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])

SUBSCRIPTION_SELECT = "*, subscription_types(name, display_name, icon, logo_url)"

SORT_FIELDS = {
    "created_at": "created_at",
    "createdAt": "created_at",
    "updated_at": "updated_at",
    "updatedAt": "updated_at",
    "name": "name",
    "frequency": "frequency",
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _search_filter(search: str) -> str:
    """
    PostgREST or() filter matching name or description.

    Values are double-quoted so reserved characters (commas, parentheses,
    dots) in the search text stay literal.
    """
    term = search.strip().replace("%", "").replace("\\", "\\\\").replace('"', '\\"')
    return f'name.ilike."%{term}%",description.ilike."%{term}%"'


def _not_found(subscription_id: str) -> AppError:
    return AppError.from_catalog(
        SUBSCRIPTION_ERRORS["NOT_FOUND"],
        status.HTTP_404_NOT_FOUND,
        {"id": subscription_id},
    )


def _find_owned(client, subscription_id: str, user_id: str) -> dict[str, Any] | None:
    if not _is_uuid(subscription_id):
        return None
    try:
        result = (
            client.table("subscriptions")
            .select(SUBSCRIPTION_SELECT)
            .eq("id", subscription_id)
            .eq("user_id", user_id)
            .execute()
        )
    except Exception as exc:
        logger.error("Database error loading subscription %s: %s", subscription_id, exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["FETCH_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc
    return result.data[0] if result.data else None


def _get_owned(client, subscription_id: str, user_id: str) -> dict[str, Any]:
    row = _find_owned(client, subscription_id, user_id)
    if row is None:
        raise _not_found(subscription_id)
    return row


def _update_owned(client, subscription_id: str, user_id: str, update: dict[str, Any]) -> dict[str, Any]:
    try:
        client.table("subscriptions").update(update).eq("id", subscription_id).eq(
            "user_id", user_id
        ).execute()
    except Exception as exc:
        logger.error("Failed to update subscription %s: %s", subscription_id, exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["UPDATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc
    return _get_owned(client, subscription_id, user_id)


# ===================================================================
# Stats and types
# ===================================================================

@router.get("/stats")
async def get_subscription_stats(user_id: str = Depends(get_current_user_id)) -> dict:
    """Counts of the caller's subscriptions by status, source and frequency."""
    client = get_service_client()
    try:
        result = (
            client.table("subscriptions")
            .select("id, active, frequency, type_id, subscription_types(name)")
            .eq("user_id", user_id)
            .execute()
        )
    except Exception as exc:
        logger.error("Failed to load subscription stats for %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["FETCH_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc
    return compute_stats(result.data or [])


@router.get("/types")
async def list_subscription_types(user_id: str = Depends(get_current_user_id)) -> dict:
    """System types plus custom types created by the caller."""
    client = get_service_client()
    result = (
        client.table("subscription_types")
        .select("*")
        .or_(f"is_system.eq.true,created_by.eq.{user_id}")
        .order("is_system", desc=True)
        .order("name")
        .execute()
    )
    return {"types": [serialize_type(row) for row in result.data or []]}


def _slugify(name: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "custom"


@router.post("/types", status_code=status.HTTP_201_CREATED)
async def create_subscription_type(
    payload: SubscriptionTypeCreateRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Create a custom subscription type owned by the caller.

    Public types (isPublic=true) are also listed as templates.
    """
    client = get_service_client()
    row = {
        "id": f"{_slugify(payload.name)}-{uuid.uuid4().hex[:8]}",
        "name": payload.name,
        "display_name": payload.display_name or payload.name,
        "description": payload.description or "",
        "icon": payload.icon,
        "logo_url": payload.logo_url,
        "is_system": False,
        "created_by": user_id,
        "metadata": {
            "isPublic": payload.is_public,
            "prompts": payload.prompts,
            "frequency": payload.frequency,
        },
    }
    try:
        result = client.table("subscription_types").insert(row).execute()
    except Exception as exc:
        logger.error("Failed to create subscription type for %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["CREATE_ERROR"],
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to create subscription type",
        ) from exc

    logger.info("Subscription type %s created by %s", row["id"], user_id[:8])
    return {"type": serialize_type(result.data[0] if result.data else row)}


# ===================================================================
# List / create
# ===================================================================

@router.get("")
async def list_subscriptions(
    user_id: str = Depends(get_current_user_id),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    type: Optional[str] = Query(None, description="Subscription type id"),
    status_filter: Literal["all", "active", "inactive"] = Query("all", alias="status"),
    active: Optional[bool] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    frequency: Optional[str] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort: str = Query("created_at"),
    order: Literal["asc", "desc"] = Query("desc"),
) -> dict:
    """
    List the caller's subscriptions.

    active/isActive override status when given. Search matches name and
    description, case-insensitively.
    """
    client = get_service_client()
    query = (
        client.table("subscriptions")
        .select(SUBSCRIPTION_SELECT, count="exact")
        .eq("user_id", user_id)
    )

    if type:
        query = query.eq("type_id", type)

    active_filter = active if active is not None else is_active
    if active_filter is None and status_filter != "all":
        active_filter = status_filter == "active"
    if active_filter is not None:
        query = query.eq("active", active_filter)

    if frequency:
        query = query.eq("frequency", normalize_frequency(frequency))

    if search and search.strip():
        query = query.or_(_search_filter(search))

    offset = (page - 1) * limit
    try:
        result = (
            query.order(SORT_FIELDS.get(sort, "created_at"), desc=order == "desc")
            .range(offset, offset + limit - 1)
            .execute()
        )
    except Exception as exc:
        logger.error("Failed to list subscriptions for %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["FETCH_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    total = result.count or 0
    return {
        "subscriptions": [serialize_subscription(row) for row in result.data or []],
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


def insert_subscription(
    client,
    user_id: str,
    type_id: str,
    name: str,
    description: str,
    prompts: list[str],
    frequency: str,
    logo: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Insert a subscription plus its pending processing record; returns the joined row."""
    row = {
        "user_id": user_id,
        "type_id": type_id,
        "name": name,
        "description": description or "",
        "prompts": prompts,
        "frequency": frequency,
        "active": True,
        "logo": logo,
        "metadata": metadata or {},
    }
    try:
        result = client.table("subscriptions").insert(row).execute()
    except Exception as exc:
        logger.error("Failed to create subscription for %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["CREATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    created = result.data[0]
    try:
        create_processing_record(created["id"], client, frequency)
    except Exception as exc:
        logger.error(
            "Failed to create processing record for %s, removing subscription: %s",
            created["id"],
            exc,
        )
        try:
            client.table("subscriptions").delete().eq("id", created["id"]).execute()
        except Exception as cleanup_exc:
            logger.error("Could not remove subscription %s: %s", created["id"], cleanup_exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["CREATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    logger.info("Subscription %s created for user %s", created["id"], user_id[:8])
    return _find_owned(client, created["id"], user_id) or created


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_subscription(
    payload: SubscriptionCreateRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Create a subscription for the caller.

    Returns:
        201: {"subscription": {...}}
        400: Validation error or TYPE_NOT_FOUND.
    """
    client = get_service_client()
    type_id = resolve_type_id(client, payload.type, payload.type_id)

    created = insert_subscription(
        client,
        user_id,
        type_id,
        payload.name,
        payload.description or "",
        payload.prompts,
        payload.frequency,
        payload.logo,
        payload.metadata,
    )

    await emit_event(
        "subscription.created",
        {
            "userId": user_id,
            "subscriptionId": created["id"],
            "typeId": type_id,
            "prompts": payload.prompts,
            "frequency": payload.frequency,
            "timestamp": _now(),
        },
    )
    return {"subscription": serialize_subscription(created)}


# ===================================================================
# Single subscription
# ===================================================================

@router.get("/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    client = get_service_client()
    return {"subscription": serialize_subscription(_get_owned(client, subscription_id, user_id))}


@router.patch("/{subscription_id}")
async def update_subscription(
    subscription_id: str,
    payload: SubscriptionUpdateRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Partially update a subscription. metadata is merged, not replaced.

    Returns:
        200: {"subscription": {...}}
        404: Not found or not owned by the caller.
    """
    client = get_service_client()
    existing = _get_owned(client, subscription_id, user_id)
    fields = payload.model_dump(exclude_unset=True)

    update: dict[str, Any] = {}
    for key in ("name", "description", "prompts", "frequency", "active", "logo"):
        if key in fields and fields[key] is not None:
            update[key] = fields[key]
    if fields.get("metadata") is not None:
        update["metadata"] = {**(existing.get("metadata") or {}), **fields["metadata"]}
    if fields.get("type_id") or fields.get("type"):
        update["type_id"] = resolve_type_id(client, fields.get("type"), fields.get("type_id"))

    if not update:
        return {"subscription": serialize_subscription(existing)}

    row = _update_owned(client, subscription_id, user_id, update)
    await emit_event(
        "subscription.updated",
        {
            "userId": user_id,
            "subscriptionId": subscription_id,
            "changes": sorted(update),
            "timestamp": _now(),
        },
    )
    return {"subscription": serialize_subscription(row)}


@router.patch("/{subscription_id}/toggle")
async def toggle_subscription(
    subscription_id: str,
    payload: SubscriptionToggleRequest | None = None,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """Set `active` from the body, or flip it when no body is sent."""
    client = get_service_client()
    existing = _get_owned(client, subscription_id, user_id)

    if payload is not None and payload.active is not None:
        new_active = payload.active
    else:
        new_active = not bool(existing.get("active", True))

    row = _update_owned(client, subscription_id, user_id, {"active": new_active})
    await emit_event(
        "subscription.status_changed",
        {
            "userId": user_id,
            "subscriptionId": subscription_id,
            "active": new_active,
            "timestamp": _now(),
        },
    )
    return {
        "message": f"Subscription {'activated' if new_active else 'deactivated'}",
        "subscription": serialize_subscription(row),
    }


@router.delete("/{subscription_id}")
async def delete_subscription(
    subscription_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Delete a subscription.

    Deleting something that is already gone succeeds with
    alreadyRemoved=true, so client retries are safe.
    """
    client = get_service_client()
    existing = _find_owned(client, subscription_id, user_id)

    if existing is None:
        logger.info("Subscription %s already removed for %s", subscription_id, user_id[:8])
        return {
            "message": "Subscription already removed",
            "id": subscription_id,
            "alreadyRemoved": True,
        }

    try:
        client.table("subscriptions").delete().eq("id", subscription_id).eq(
            "user_id", user_id
        ).execute()
    except Exception as exc:
        logger.error("Failed to delete subscription %s: %s", subscription_id, exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["DELETE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    await emit_event(
        "subscription.deleted",
        {"userId": user_id, "subscriptionId": subscription_id, "timestamp": _now()},
    )
    logger.info("Subscription %s deleted by %s", subscription_id, user_id[:8])
    return {"message": "Subscription deleted", "id": subscription_id, "alreadyRemoved": False}


# ===================================================================
# Processing
# ===================================================================

@router.post("/{subscription_id}/process", status_code=status.HTTP_202_ACCEPTED)
async def process_subscription(
    subscription_id: str,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Queue a processing run. The worker is called after the response is sent.

    Returns:
        202: Accepted, with the processing record ID for status polling.
        404: Not found or not owned by the caller.
    """
    client = get_service_client()
    subscription = _get_owned(client, subscription_id, user_id)

    processing = create_processing_record(
        subscription_id, client, normalize_frequency(subscription.get("frequency"))
    )
    background_tasks.add_task(dispatch_processing, subscription, user_id, processing["id"])

    logger.info("Processing queued for subscription %s (%s)", subscription_id, processing["id"])
    return {
        "status": "success",
        "message": "Subscription processing request accepted",
        "subscription_id": subscription_id,
        "processing_id": processing["id"],
    }


@router.get("/{subscription_id}/status")
async def get_processing_status(
    subscription_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """Latest processing record for the subscription, or status "idle"."""
    client = get_service_client()
    _get_owned(client, subscription_id, user_id)

    result = (
        client.table("subscription_processing")
        .select("*")
        .eq("subscription_id", subscription_id)
        .order("created_at", desc=True)
        .limit(1)
        .execute()
    )
    if not result.data:
        return {"subscription_id": subscription_id, "status": "idle", "processing_id": None}

    record = result.data[0]
    return {
        "subscription_id": subscription_id,
        "processing_id": record["id"],
        "status": record.get("status", "pending"),
        "last_run_at": record.get("last_run_at"),
        "next_run_at": record.get("next_run_at"),
        "error": record.get("error"),
        "updated_at": record.get("updated_at"),
    }


# ===================================================================
# Sharing
# ===================================================================

def _share_target(client, email: str, user_id: str) -> dict[str, Any]:
    result = client.table("users").select("id, email").eq("email", email).execute()
    if not result.data:
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["SHARE_TARGET_NOT_FOUND"],
            status.HTTP_404_NOT_FOUND,
            {"email": email},
        )
    target = result.data[0]
    if target["id"] == user_id:
        raise AppError(
            "VALIDATION_ERROR",
            "You cannot share a subscription with yourself",
            status.HTTP_400_BAD_REQUEST,
        )
    return target


@router.post("/{subscription_id}/share")
async def share_subscription(
    subscription_id: str,
    payload: ShareRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Share a subscription with another registered user, by email.

    Sharing twice with the same user is a no-op.
    """
    client = get_service_client()
    _get_owned(client, subscription_id, user_id)
    target = _share_target(client, payload.email, user_id)

    share = {
        "subscription_id": subscription_id,
        "shared_by": user_id,
        "shared_with": target["id"],
        "message": payload.message,
    }
    try:
        result = (
            client.table("subscription_shares")
            .upsert(share, on_conflict="subscription_id,shared_by,shared_with")
            .execute()
        )
    except Exception as exc:
        logger.error("Failed to share subscription %s: %s", subscription_id, exc)
        raise AppError.from_catalog(
            SUBSCRIPTION_ERRORS["UPDATE_ERROR"],
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to share subscription",
        ) from exc

    await emit_event(
        "subscription.shared",
        {
            "userId": user_id,
            "subscriptionId": subscription_id,
            "sharedWith": target["id"],
            "message": payload.message,
            "timestamp": _now(),
        },
    )
    return {
        "message": "Subscription shared",
        "share": result.data[0] if result.data else share,
    }


@router.delete("/{subscription_id}/share")
async def unshare_subscription(
    subscription_id: str,
    payload: ShareRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """Stop sharing a subscription with a user."""
    client = get_service_client()
    _get_owned(client, subscription_id, user_id)

    target = client.table("users").select("id").eq("email", payload.email).execute()
    if not target.data:
        raise AppError.from_catalog(
            USER_ERRORS["NOT_FOUND"], status.HTTP_404_NOT_FOUND, {"email": payload.email}
        )
    target_id = target.data[0]["id"]

    result = (
        client.table("subscription_shares")
        .delete()
        .eq("subscription_id", subscription_id)
        .eq("shared_by", user_id)
        .eq("shared_with", target_id)
        .execute()
    )

    removed = bool(result.data)
    if removed:
        await emit_event(
            "subscription.unshared",
            {
                "userId": user_id,
                "subscriptionId": subscription_id,
                "sharedWith": target_id,
                "timestamp": _now(),
            },
        )
    return {
        "message": "Subscription unshared" if removed else "Subscription was not shared with this user",
        "removed": removed,
    }

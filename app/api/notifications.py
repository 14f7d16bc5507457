"""
Notifications API — The caller's notification feed, plus two service hooks.

GET    /api/v1/notifications — paginated list (unread / subscription filters).
GET    /api/v1/notifications/stats — total, unread and per-type counts.
GET    /api/v1/notifications/activity — per-day and per-source activity.
GET    /api/v1/notifications/{id} — one notification.
POST   /api/v1/notifications/{id}/read — mark one read.
POST   /api/v1/notifications/read-all — mark all (or one subscription's) read.
DELETE /api/v1/notifications/{id} — delete one.
DELETE /api/v1/notifications/delete-all — delete all (or one subscription's).

Service-only (X-Service-Key):
POST   /api/v1/notifications — create a notification and queue its email.
POST   /api/v1/notifications/email-sent — record that emails went out.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.errors import NOTIFICATION_ERRORS, AppError
from app.core.security import get_current_user_id, require_service_caller
from app.db.supabase_client import get_service_client
from app.models.notifications import (
    EmailSentRequest,
    EmailSentResponse,
    NotificationCreateRequest,
)
from app.services.notifications import (
    compute_activity,
    compute_stats,
    create_notification,
    serialize_notification,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _is_uuid(value: str | None) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _check_subscription_filter(subscription_id: Optional[str]) -> None:
    if subscription_id is not None and not _is_uuid(subscription_id):
        raise AppError(
            "VALIDATION_ERROR",
            "subscriptionId must be a UUID",
            status.HTTP_400_BAD_REQUEST,
            {"subscriptionId": subscription_id},
        )


def _fetch_error(exc: Exception, user_id: str) -> AppError:
    logger.error("Database error loading notifications for %s: %s", user_id[:8], exc)
    return AppError.from_catalog(
        NOTIFICATION_ERRORS["FETCH_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
    )


def _get_owned(client, notification_id: str, user_id: str) -> dict[str, Any]:
    if not _is_uuid(notification_id):
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["NOT_FOUND"], status.HTTP_404_NOT_FOUND, {"id": notification_id}
        )
    try:
        result = (
            client.table("notifications")
            .select("*")
            .eq("id", notification_id)
            .eq("user_id", user_id)
            .execute()
        )
    except Exception as exc:
        raise _fetch_error(exc, user_id) from exc

    if not result.data:
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["NOT_FOUND"], status.HTTP_404_NOT_FOUND, {"id": notification_id}
        )
    return result.data[0]


# ===================================================================
# Feed
# ===================================================================

@router.get("")
async def list_notifications(
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(10, ge=1, le=100),
    page: int = Query(1, ge=1),
    offset: Optional[int] = Query(None, ge=0),
    unread: bool = Query(False),
    subscription_id: Optional[str] = Query(None, alias="subscriptionId"),
) -> dict:
    """
    List the caller's notifications, newest first.

    `offset` takes precedence over `page` when both are sent.
    """
    _check_subscription_filter(subscription_id)
    client = get_service_client()
    start = offset if offset is not None else (page - 1) * limit

    query = (
        client.table("notifications")
        .select("*", count="exact")
        .eq("user_id", user_id)
    )
    if unread:
        query = query.eq("read", False)
    if subscription_id:
        query = query.eq("subscription_id", subscription_id)

    try:
        result = query.order("created_at", desc=True).range(start, start + limit - 1).execute()
        unread_result = (
            client.table("notifications")
            .select("id", count="exact")
            .eq("user_id", user_id)
            .eq("read", False)
            .limit(1)
            .execute()
        )
    except Exception as exc:
        raise _fetch_error(exc, user_id) from exc

    total = result.count or 0
    return {
        "notifications": [serialize_notification(row) for row in result.data or []],
        "total": total,
        "unread": unread_result.count or 0,
        "page": start // limit + 1,
        "limit": limit,
        "hasMore": start + limit < total,
    }


@router.get("/stats")
async def get_notification_stats(user_id: str = Depends(get_current_user_id)) -> dict:
    client = get_service_client()
    try:
        result = (
            client.table("notifications")
            .select("id, read, entity_type")
            .eq("user_id", user_id)
            .execute()
        )
    except Exception as exc:
        raise _fetch_error(exc, user_id) from exc
    return compute_stats(result.data or [])


@router.get("/activity")
async def get_notification_activity(
    user_id: str = Depends(get_current_user_id),
    days: int = Query(7, ge=1, le=90),
) -> dict:
    """Activity over the last `days` days, for the dashboard chart."""
    client = get_service_client()
    since = datetime.now(timezone.utc).timestamp() - days * 86400
    try:
        result = (
            client.table("notifications")
            .select("id, created_at, source, entity_type, metadata")
            .eq("user_id", user_id)
            .gte("created_at", datetime.fromtimestamp(since, timezone.utc).isoformat())
            .execute()
        )
    except Exception as exc:
        raise _fetch_error(exc, user_id) from exc
    return compute_activity(result.data or [], days)


# ===================================================================
# Bulk actions (declared before /{notification_id} routes)
# ===================================================================

@router.post("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    subscription_id: Optional[str] = Query(None, alias="subscriptionId"),
) -> dict:
    _check_subscription_filter(subscription_id)
    client = get_service_client()
    query = (
        client.table("notifications")
        .update({"read": True, "read_at": _now()})
        .eq("user_id", user_id)
        .eq("read", False)
    )
    if subscription_id:
        query = query.eq("subscription_id", subscription_id)

    try:
        result = query.execute()
    except Exception as exc:
        logger.error("Failed to mark notifications read for %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["UPDATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    updated = len(result.data or [])
    logger.info("Marked %d notifications read for %s", updated, user_id[:8])
    return {"success": True, "updated": updated}


@router.delete("/delete-all")
async def delete_all_notifications(
    user_id: str = Depends(get_current_user_id),
    subscription_id: Optional[str] = Query(None, alias="subscriptionId"),
) -> dict:
    _check_subscription_filter(subscription_id)
    client = get_service_client()
    query = client.table("notifications").delete().eq("user_id", user_id)
    if subscription_id:
        query = query.eq("subscription_id", subscription_id)

    try:
        result = query.execute()
    except Exception as exc:
        logger.error("Failed to delete notifications for %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["UPDATE_ERROR"],
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to delete notifications",
        ) from exc

    deleted = len(result.data or [])
    logger.info("Deleted %d notifications for %s", deleted, user_id[:8])
    return {"success": True, "deleted": deleted}


# ===================================================================
# Service-only endpoints
# ===================================================================

@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_service_caller)],
)
async def create_notification_endpoint(payload: NotificationCreateRequest) -> dict:
    """
    Create a notification on behalf of a backend service.

    The email job is queued on Pub/Sub after the insert; a publishing
    failure does not fail this request.

    Returns:
        201: {"notification": {...}}
        403: Missing or wrong X-Service-Key.
    """
    try:
        row = await create_notification(
            user_id=payload.user_id,
            title=payload.title,
            content=payload.content,
            subscription_id=payload.subscription_id,
            source_url=payload.source_url,
            entity_type=payload.entity_type,
            source=payload.source,
            data=payload.data,
            metadata=payload.metadata,
            correlation_id=payload.correlation_id,
            client=get_service_client(),
        )
    except AppError:
        raise
    except Exception as exc:
        logger.error("Failed to create notification for %s: %s", payload.user_id[:8], exc)
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["CREATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    return {"notification": serialize_notification(row)}


@router.post(
    "/email-sent",
    response_model=EmailSentResponse,
    dependencies=[Depends(require_service_caller)],
)
async def mark_email_sent(payload: EmailSentRequest) -> EmailSentResponse:
    """Record delivery of notification emails (called by the email service)."""
    client = get_service_client()
    sent_at = (payload.sent_at or datetime.now(timezone.utc)).isoformat()

    try:
        result = (
            client.table("notifications")
            .update({"email_sent": True, "email_sent_at": sent_at})
            .in_("id", payload.notification_ids)
            .execute()
        )
    except Exception as exc:
        logger.error("Failed to mark emails sent: %s", exc)
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["UPDATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    updated_ids = [row["id"] for row in result.data or []]
    logger.info("Marked %d notification emails as sent", len(updated_ids))
    return EmailSentResponse(updated=len(updated_ids), notificationIds=updated_ids)


# ===================================================================
# Single notification
# ===================================================================

@router.get("/{notification_id}")
async def get_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    client = get_service_client()
    return {"notification": serialize_notification(_get_owned(client, notification_id, user_id))}


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """Mark one notification read. Already-read notifications keep their read_at."""
    client = get_service_client()
    row = _get_owned(client, notification_id, user_id)

    if not row.get("read"):
        try:
            result = (
                client.table("notifications")
                .update({"read": True, "read_at": _now()})
                .eq("id", notification_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to mark notification %s read: %s", notification_id, exc)
            raise AppError.from_catalog(
                NOTIFICATION_ERRORS["UPDATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
            ) from exc
        if result.data:
            row = result.data[0]

    return {"success": True, "notification": serialize_notification(row)}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    client = get_service_client()
    _get_owned(client, notification_id, user_id)

    try:
        client.table("notifications").delete().eq("id", notification_id).eq(
            "user_id", user_id
        ).execute()
    except Exception as exc:
        logger.error("Failed to delete notification %s: %s", notification_id, exc)
        raise AppError.from_catalog(
            NOTIFICATION_ERRORS["UPDATE_ERROR"],
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to delete notification",
        ) from exc

    return {"success": True, "id": notification_id}

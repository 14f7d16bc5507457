"""
Users API — Profile, notification settings and email preferences.

GET    /api/v1/users/me — profile with subscription/notification counts.
PATCH  /api/v1/users/me — update name, avatar, bio, theme, language.
PATCH  /api/v1/users/me/notification-settings — email/instant settings.
GET    /api/v1/users/me/email-preferences — email preferences.
PATCH  /api/v1/users/me/email-preferences — update email preferences.
POST   /api/v1/users/me/email-preferences/test — queue a test email.
POST   /api/v1/users/sync — create the user row for the caller if missing.
DELETE /api/v1/users/me — delete the account and all its data.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, status

from app.core.errors import USER_ERRORS, AppError
from app.core.security import AuthenticatedUser, get_current_user, get_current_user_id
from app.db.supabase_client import get_service_client
from app.models.users import (
    AccountDeleteResponse,
    EmailPreferences,
    EmailPreferencesUpdate,
    NotificationSettingsRequest,
    ProfileUpdateRequest,
    TestEmailRequest,
    TestEmailResponse,
)
from app.services.pubsub import emit_event, publish_event
from app.services.users import (
    build_profile,
    email_preferences_patch,
    ensure_user,
    get_email_preferences,
    load_profile_counts,
    merge_metadata,
    notification_address,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def _load_user(client, user_id: str) -> dict[str, Any]:
    try:
        result = client.table("users").select("*").eq("id", user_id).execute()
    except Exception as exc:
        logger.error("Database error looking up user %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            USER_ERRORS["FETCH_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    if not result.data:
        raise AppError.from_catalog(
            USER_ERRORS["NOT_FOUND"], status.HTTP_404_NOT_FOUND, {"userId": user_id}
        )
    return result.data[0]


def _save_user(client, user_id: str, update: dict[str, Any]) -> dict[str, Any]:
    try:
        result = client.table("users").update(update).eq("id", user_id).execute()
    except Exception as exc:
        logger.error("Failed to update user %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            USER_ERRORS["UPDATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    if not result.data:
        raise AppError.from_catalog(USER_ERRORS["NOT_FOUND"], status.HTTP_404_NOT_FOUND)
    return result.data[0]


def _profile_response(client, row: dict[str, Any]) -> dict[str, Any]:
    try:
        counts = load_profile_counts(row["id"], client)
    except Exception as exc:
        # Counts are decorative; the profile itself loaded fine.
        logger.warning("Could not load profile counts for %s: %s", row["id"][:8], exc)
        counts = {}
    return {"profile": build_profile(row, counts)}


# ===================================================================
# Profile
# ===================================================================

@router.get("/me")
async def get_profile(user_id: str = Depends(get_current_user_id)) -> dict:
    """
    Return the authenticated user's profile.

    Returns:
        200: {"profile": {...}}
        401: Missing or invalid authentication token.
        404: User row not found.
    """
    client = get_service_client()
    row = _load_user(client, user_id)
    return _profile_response(client, row)


@router.patch("/me")
async def update_profile(
    payload: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Update profile fields. Only the fields present in the body change.

    Returns:
        200: {"profile": {...}} with the updated values.
        400: Validation error (name 2-100 chars, bio <= 500, theme, language).
        404: User row not found.
    """
    client = get_service_client()
    row = _load_user(client, user_id)
    fields = payload.model_dump(exclude_unset=True)

    update: dict[str, Any] = {}
    if "name" in fields:
        update["display_name"] = fields["name"]
    if "avatar" in fields:
        update["avatar_url"] = fields["avatar"]

    meta_updates: dict[str, Any] = {}
    if "bio" in fields:
        meta_updates["profile"] = {"bio": fields["bio"] or ""}
    prefs = {k: fields[k] for k in ("theme", "language") if fields.get(k) is not None}
    if prefs:
        meta_updates["preferences"] = prefs
    if meta_updates:
        update["metadata"] = merge_metadata(row.get("metadata"), meta_updates)

    if update:
        row = _save_user(client, user_id, update)
        logger.info("Profile updated for user %s (%s)", user_id[:8], ", ".join(sorted(fields)))

    return _profile_response(client, row)


@router.patch("/me/notification-settings")
async def update_notification_settings(
    payload: NotificationSettingsRequest,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Update notification settings.

    Sending notificationEmail=null switches back to the account email.

    Returns:
        200: {"profile": {...}}
        404: User row not found.
    """
    client = get_service_client()
    row = _load_user(client, user_id)
    fields = payload.model_dump(exclude_unset=True)

    notifications: dict[str, Any] = {}
    if "instantNotifications" in fields and fields["instantNotifications"] is not None:
        notifications["instant"] = fields["instantNotifications"]
    if fields.get("emailFrequency"):
        notifications["frequency"] = fields["emailFrequency"]

    email_patch = email_preferences_patch(
        email_notifications=fields.get("emailNotifications"),
        notification_email=fields.get("notificationEmail"),
        clear_notification_email="notificationEmail" in fields and fields["notificationEmail"] is None,
    )
    meta_updates = merge_metadata(email_patch, {"notifications": notifications}) if notifications else email_patch

    if meta_updates:
        row = _save_user(
            client, user_id, {"metadata": merge_metadata(row.get("metadata"), meta_updates)}
        )
        logger.info("Notification settings updated for user %s", user_id[:8])

    return _profile_response(client, row)


# ===================================================================
# Email preferences
# ===================================================================

@router.get("/me/email-preferences", response_model=EmailPreferences)
async def get_user_email_preferences(
    user_id: str = Depends(get_current_user_id),
) -> EmailPreferences:
    """Return the caller's email preferences."""
    client = get_service_client()
    row = _load_user(client, user_id)
    return EmailPreferences(**get_email_preferences(row))


@router.patch("/me/email-preferences")
async def update_email_preferences(
    payload: EmailPreferencesUpdate,
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """
    Update email preferences and announce the change on Pub/Sub.

    The user.email_preferences_updated event is best-effort: the update
    is already saved when it is published.

    Returns:
        200: {"message": ..., "preferences": {...}}
        400: Validation error (bad email, digest_time not HH:MM).
        404: User row not found.
    """
    client = get_service_client()
    row = _load_user(client, user_id)
    fields = payload.model_dump(exclude_unset=True)

    meta_updates = email_preferences_patch(
        email_notifications=fields.get("email_notifications"),
        notification_email=fields.get("notification_email"),
        digest_time=fields.get("digest_time"),
        clear_notification_email="notification_email" in fields
        and fields["notification_email"] is None,
    )
    if meta_updates:
        row = _save_user(
            client, user_id, {"metadata": merge_metadata(row.get("metadata"), meta_updates)}
        )

    preferences = get_email_preferences(row)
    await emit_event(
        "user.email_preferences_updated",
        {
            "userId": user_id,
            "preferences": preferences,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )
    logger.info("Email preferences updated for user %s", user_id[:8])
    return {"message": "Email preferences updated successfully", "preferences": preferences}


@router.post("/me/email-preferences/test", response_model=TestEmailResponse)
async def send_test_email(
    payload: TestEmailRequest | None = None,
    user_id: str = Depends(get_current_user_id),
) -> TestEmailResponse:
    """
    Queue a test email for the caller.

    The address is the one in the body, else the notification address
    from the preferences, else the account email.

    Returns:
        200: Test email queued.
        400: No address available.
        500: The email.test event could not be published.
    """
    client = get_service_client()
    row = _load_user(client, user_id)

    email = (payload.email if payload else None) or notification_address(row)
    if not email:
        raise AppError.from_catalog(USER_ERRORS["NO_EMAIL"], status.HTTP_400_BAD_REQUEST)

    try:
        message_id = await publish_event(
            "email.test",
            {
                "userId": user_id,
                "email": email,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
    except Exception as exc:
        raise AppError(
            "EMAIL_TEST_ERROR",
            "Failed to queue test email",
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        ) from exc

    logger.info("Test email queued for user %s", user_id[:8])
    return TestEmailResponse(message="Test email queued", email=email, messageId=message_id)


# ===================================================================
# Sync / delete
# ===================================================================

@router.post("/sync")
async def sync_user(user: AuthenticatedUser = Depends(get_current_user)) -> dict:
    """
    Make sure the caller has a users row, creating it from the token claims.

    Returns:
        200: {"success": true, "profile": {...}}
    """
    client = get_service_client()
    try:
        row = ensure_user(user.id, user.email, user.name, user.email_verified, client)
    except Exception as exc:
        logger.error("User sync failed for %s: %s", user.id[:8], exc)
        raise AppError.from_catalog(
            USER_ERRORS["UPDATE_ERROR"], status.HTTP_500_INTERNAL_SERVER_ERROR
        ) from exc

    return {"success": True, **_profile_response(client, row)}


@router.delete(
    "/me",
    status_code=status.HTTP_200_OK,
    response_model=AccountDeleteResponse,
)
async def delete_account(
    user_id: str = Depends(get_current_user_id),
) -> AccountDeleteResponse:
    """
    Permanently delete the caller's users row.

    Subscriptions, processing records, shares and notifications go with
    it through ON DELETE CASCADE.

    Returns:
        200: Account deleted.
        404: User row not found.
    """
    client = get_service_client()
    _load_user(client, user_id)

    try:
        client.table("users").delete().eq("id", user_id).execute()
    except Exception as exc:
        logger.error("Failed to delete user %s: %s", user_id[:8], exc)
        raise AppError.from_catalog(
            USER_ERRORS["UPDATE_ERROR"],
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Failed to delete account",
        ) from exc

    logger.info("Account deleted for user %s", user_id[:8])
    return AccountDeleteResponse()

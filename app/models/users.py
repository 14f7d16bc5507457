"""
User Models — Pydantic schemas for user profile and preference endpoints.

- PATCH /api/v1/users/me — profile update
- PATCH /api/v1/users/me/notification-settings — notification settings
- GET/PATCH /api/v1/users/me/email-preferences — email preferences
- POST /api/v1/users/me/email-preferences/test — test email
- DELETE /api/v1/users/me — account deletion
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_DIGEST_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def _validate_optional_email(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not _EMAIL_RE.match(v):
        raise ValueError("Invalid email address format")
    return v


class ProfileUpdateRequest(BaseModel):
    """
    Payload for PATCH /api/v1/users/me.

    Every field is optional; only the fields sent are changed.
    """

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=500)
    avatar: Optional[str] = Field(default=None, max_length=2048)
    theme: Optional[Literal["light", "dark", "system"]] = None
    language: Optional[Literal["es", "en", "ca"]] = None


class NotificationSettingsRequest(BaseModel):
    """
    Payload for PATCH /api/v1/users/me/notification-settings.

    emailFrequency only accepts 'daily': digests are sent once a day and
    instant delivery is controlled by instantNotifications.
    """

    emailNotifications: Optional[bool] = None
    notificationEmail: Optional[str] = Field(default=None, max_length=255)
    emailFrequency: Optional[Literal["daily"]] = None
    instantNotifications: Optional[bool] = None

    @field_validator("notificationEmail")
    @classmethod
    def validate_notification_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_optional_email(v)


class EmailPreferences(BaseModel):
    """Response from GET/PATCH /api/v1/users/me/email-preferences."""

    email_notifications: bool = False
    notification_email: Optional[str] = None
    digest_time: str = "08:00"


class EmailPreferencesUpdate(BaseModel):
    email_notifications: Optional[bool] = None
    notification_email: Optional[str] = Field(default=None, max_length=255)
    digest_time: Optional[str] = Field(default=None, description="HH:MM, 24-hour clock.")

    @field_validator("notification_email")
    @classmethod
    def validate_notification_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_optional_email(v)

    @field_validator("digest_time")
    @classmethod
    def validate_digest_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not _DIGEST_TIME_RE.match(v):
            raise ValueError("digest_time must be HH:MM (24-hour clock).")
        return v


class TestEmailRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        return _validate_optional_email(v)


class TestEmailResponse(BaseModel):
    message: str
    email: str
    messageId: str


class AccountDeleteResponse(BaseModel):
    """
    Response from DELETE /api/v1/users/me.

    Subscriptions, notifications and shares are removed by ON DELETE
    CASCADE on the users row.
    """

    status: str = Field(default="deleted")
    message: str = Field(
        default="Account and all associated data have been permanently deleted.",
    )

"""
Notification Models — Pydantic schemas for notification endpoints.

User-facing list/read/delete endpoints take only path and query
parameters. The two service-only endpoints take a body:

- POST /api/v1/notifications — create a notification (subscription worker)
- POST /api/v1/notifications/email-sent — mark emails delivered (email service)
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class NotificationCreateRequest(BaseModel):
    """
    Payload for POST /api/v1/notifications.

    content may be plain text or a structured object; objects are stored
    as JSON text and decoded again on read.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    title: str = Field(..., min_length=1, max_length=255)
    content: Any = None
    subscription_id: Optional[str] = Field(default=None, alias="subscriptionId")
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    entity_type: Optional[str] = Field(default=None, alias="entityType", max_length=255)
    source: Optional[str] = Field(default=None, max_length=50)
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    correlation_id: Optional[str] = Field(default=None, alias="correlationId")

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty.")
        return v


class EmailSentRequest(BaseModel):
    """
    Payload for POST /api/v1/notifications/email-sent.

    Accepts a single notificationId or a list of notificationIds.
    """

    model_config = ConfigDict(populate_by_name=True)

    notification_id: Optional[str] = Field(default=None, alias="notificationId")
    notification_ids: list[str] = Field(default_factory=list, alias="notificationIds")
    sent_at: Optional[datetime] = Field(default=None, alias="sentAt")

    @model_validator(mode="after")
    def require_ids(self) -> "EmailSentRequest":
        if self.notification_id and self.notification_id not in self.notification_ids:
            self.notification_ids.append(self.notification_id)
        if not self.notification_ids:
            raise ValueError("notificationId or notificationIds is required.")
        if len(self.notification_ids) > 500:
            raise ValueError("At most 500 notifications can be marked at once.")
        return self


class EmailSentResponse(BaseModel):
    updated: int
    notificationIds: list[str]

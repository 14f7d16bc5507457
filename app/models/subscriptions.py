"""
Subscription Models — Pydantic schemas for subscriptions, types, shares and templates.

Prompts, types and frequencies accept the loose shapes older clients
send and are normalized by app.services.subscriptions before validation
of the normalized value (at most 3 prompts).
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.services.subscriptions import (
    MAX_PROMPTS,
    normalize_frequency,
    normalize_prompts,
    normalize_type,
)


def _check_prompts(v: Any) -> list[str]:
    raw = normalize_prompts(v) if not isinstance(v, (list, tuple)) else [
        str(item).strip() for item in v if item is not None and str(item).strip()
    ]
    if len(raw) > MAX_PROMPTS:
        raise ValueError(f"A subscription can have at most {MAX_PROMPTS} prompts.")
    return normalize_prompts(raw)


class SubscriptionCreateRequest(BaseModel):
    """Payload for POST /api/v1/subscriptions."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default="", max_length=500)
    type: str = Field(default="custom", description="boe, doga, real-estate or custom.")
    type_id: Optional[str] = Field(default=None, alias="typeId")
    prompts: list[str] = Field(default_factory=list)
    frequency: str = Field(default="daily")
    logo: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name is required")
        return v

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type_field(cls, v: Any) -> str:
        return normalize_type(v)

    @field_validator("prompts", mode="before")
    @classmethod
    def normalize_prompts_field(cls, v: Any) -> list[str]:
        return _check_prompts(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency_field(cls, v: Any) -> str:
        return normalize_frequency(v)


class SubscriptionUpdateRequest(BaseModel):
    """Payload for PATCH /api/v1/subscriptions/{id}. Only sent fields change."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    type: Optional[str] = None
    type_id: Optional[str] = Field(default=None, alias="typeId")
    prompts: Optional[list[str]] = None
    frequency: Optional[str] = None
    active: Optional[bool] = None
    logo: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None

    @field_validator("prompts", mode="before")
    @classmethod
    def normalize_prompts_field(cls, v: Any) -> Optional[list[str]]:
        if v is None:
            return None
        return _check_prompts(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency_field(cls, v: Any) -> Optional[str]:
        return None if v is None else normalize_frequency(v)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type_field(cls, v: Any) -> Optional[str]:
        return None if v is None else normalize_type(v)


class SubscriptionToggleRequest(BaseModel):
    """Optional body for PATCH /{id}/toggle; without it the flag is flipped."""

    active: Optional[bool] = None


class SubscriptionTypeCreateRequest(BaseModel):
    """Payload for POST /api/v1/subscriptions/types."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100)
    display_name: Optional[str] = Field(default=None, alias="displayName", max_length=255)
    description: Optional[str] = Field(default="", max_length=500)
    icon: Optional[str] = Field(default=None, max_length=50)
    logo_url: Optional[str] = Field(default=None, alias="logoUrl", max_length=255)
    is_public: bool = Field(default=False, alias="isPublic")
    prompts: list[str] = Field(default_factory=list)
    frequency: str = "daily"

    @field_validator("prompts", mode="before")
    @classmethod
    def normalize_prompts_field(cls, v: Any) -> list[str]:
        return _check_prompts(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency_field(cls, v: Any) -> str:
        return normalize_frequency(v)


class ShareRequest(BaseModel):
    """Payload for POST/DELETE /api/v1/subscriptions/{id}/share."""

    email: str = Field(..., max_length=255)
    message: Optional[str] = Field(default=None, max_length=500)

    @field_validator("email")
    @classmethod
    def clean_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address format")
        return v


class TemplateSubscribeRequest(BaseModel):
    """Optional customization for POST /api/v1/templates/{id}/subscribe."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    prompts: Optional[list[str]] = None
    frequency: Optional[str] = None

    @field_validator("prompts", mode="before")
    @classmethod
    def normalize_prompts_field(cls, v: Any) -> Optional[list[str]]:
        if v is None:
            return None
        return _check_prompts(v)

    @field_validator("frequency", mode="before")
    @classmethod
    def normalize_frequency_field(cls, v: Any) -> Optional[str]:
        return None if v is None else normalize_frequency(v)

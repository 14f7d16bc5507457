"""
Auth Models — Pydantic schemas for /api/v1/auth.

- POST /api/v1/auth/refresh — exchange a refresh token (jwt provider)
- POST /api/v1/auth/login — email/password login (Firebase)
- POST /api/v1/auth/register — account creation (Firebase)
- POST /api/v1/auth/reset-password — password reset email (Firebase)
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _clean_email(v: str) -> str:
    v = v.strip().lower()
    if "@" not in v or v.startswith("@") or v.endswith("@"):
        raise ValueError("Invalid email address format")
    return v


class RefreshTokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    refresh_token: str = Field(..., alias="refreshToken", min_length=1)


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _clean_email(v)


class RegisterRequest(BaseModel):
    """Payload for POST /api/v1/auth/register."""

    email: str = Field(..., max_length=255)
    password: str = Field(
        ...,
        min_length=6,
        max_length=128,
        description="Firebase rejects passwords shorter than 6 characters.",
    )
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _clean_email(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return v.strip() or None


class PasswordResetRequest(BaseModel):
    email: str = Field(..., max_length=255)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _clean_email(v)


class TokenPairResponse(BaseModel):
    accessToken: str
    refreshToken: str
    expiresIn: int
    tokenType: str = "Bearer"


class FirebaseSessionResponse(BaseModel):
    """Tokens returned by the Firebase Identity Toolkit proxy."""

    idToken: str
    refreshToken: str
    expiresIn: int
    user: dict

from __future__ import annotations

import unicodedata
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "validation_error",
    "missing_tokens",
    "malformed_token",
    "invalid_credentials",
    "invalid_or_expired_code",
    "conflict",
    "upstream_error",
    "server_error",
})

_ZERO_WIDTH = '\u200b\u200c\u200d\ufeff'


def _normalize_email(value: Optional[str]) -> Optional[str]:
    """Strip, drop zero-width characters, NFKC-normalize and lowercase an email.

    Presence is not checked here; the flows report missing credentials with
    their own messages.
    """
    if value is None:
        return None
    cleaned = "".join(c for c in value.strip() if c not in _ZERO_WIDTH)
    return unicodedata.normalize("NFKC", cleaned).lower()


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


# Request bodies. Credential fields are optional; the flows reject missing values.


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=1024)

    @field_validator("email")
    @classmethod
    def _clean_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value)


class VerifyUserRequest(BaseModel):
    access_token: Optional[str] = Field(default=None, max_length=8192)
    refresh_token: Optional[str] = Field(default=None, max_length=2048)
    expires_at: Optional[Any] = None


class ForgotPasswordRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=254)

    @field_validator("email")
    @classmethod
    def _clean_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value)


class ExchangeResetCodeRequest(BaseModel):
    code: Optional[str] = Field(default=None, max_length=512)


class ResetPasswordRequest(BaseModel):
    password: Optional[str] = Field(default=None, max_length=1024)


class RegisterRequest(BaseModel):
    """Self-service sign-up; accepts camelCase name fields from browser clients."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=1024)
    first_name: Optional[str] = Field(default=None, alias="firstName", max_length=128)
    last_name: Optional[str] = Field(default=None, alias="lastName", max_length=128)
    role: Optional[str] = Field(default=None, max_length=32)

    @field_validator("email")
    @classmethod
    def _clean_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value)


class CourseUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: Optional[str] = Field(default=None, max_length=256)
    subtitle: Optional[str] = Field(default=None, max_length=512)
    description: Optional[str] = Field(default=None, max_length=20000)
    language: Optional[str] = Field(default=None, max_length=64)
    level: Optional[str] = Field(default=None, max_length=64)
    is_active: Optional[bool] = None
    thumbnail_url: Optional[str] = Field(default=None, max_length=2048)
    primary_category: Optional[str] = Field(default=None, max_length=128)
    sub_category: Optional[str] = Field(default=None, max_length=128)
    status: Optional[str] = Field(default=None, max_length=32)
    is_free: Optional[bool] = None
    price: Optional[float] = Field(default=None, ge=0)
    requirements: Optional[Any] = None
    expectations: Optional[Any] = None


class LessonUpdateRequest(BaseModel):
    """Only the media fields of a lesson are editable from the admin surface."""

    model_config = ConfigDict(extra="ignore")

    video_url: Optional[str] = Field(default=None, max_length=2048)
    duration: Optional[int] = Field(default=None, ge=0)


# Responses


class LoginResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: int
    user_id: str
    user: Optional[Dict[str, Any]] = None


class VerifyUserResponse(BaseModel):
    user_id: str
    committed: bool = True


class ProfileResponse(BaseModel):
    id: str
    role: Optional[str] = None
    organization_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)


class CourseResponse(BaseModel):
    id: str
    title: str
    instructor_id: Optional[str] = None
    organization_id: Optional[str] = None
    is_active: bool = True
    attributes: Dict[str, Any] = Field(default_factory=dict)


class LessonResponse(BaseModel):
    id: str
    course_id: str
    title: str = ""
    video_url: Optional[str] = None
    duration: Optional[int] = None


class DashboardResponse(BaseModel):
    courses_count: int = 0
    users_count: int = 0
    enrollments_count: int = 0
    organizations_count: int = 0
    lessons_count: int = 0

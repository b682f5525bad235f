from __future__ import annotations

import re
from enum import Enum

from pydantic import EmailStr, Field, field_validator

from ..settings import settings
from .common import SanitizedModel

STUDENT_ID_RE = re.compile(r"^[A-Z]{2,4}\d{4,8}$")
PHONE_RE = re.compile(r"^\+254[17]\d{8}$|^0[17]\d{8}$")

# Fields counted towards profile completeness.
PROFILE_FIELDS = ("first_name", "last_name", "email", "student_id", "phone", "course", "profile_image")


class UserRole(str, Enum):
    STUDENT = "student"
    CLUB_LEADER = "club_leader"
    ADMIN = "admin"


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


def check_campus_email(v: str) -> str:
    email = str(v or "").strip().lower()
    if len(email) > 100:
        raise ValueError("Email must be at most 100 characters")
    domain = str(settings.allowed_email_domain or "").strip().lower()
    if domain and not email.endswith(f"@{domain}"):
        raise ValueError(f"Email must be a @{domain} address")
    return email


def check_phone(v: str | None) -> str | None:
    if v is None or v == "":
        return None
    digits = re.sub(r"[\s\-()]", "", str(v))
    if not PHONE_RE.match(digits):
        raise ValueError("Phone must be a valid Kenyan number (+2547XXXXXXXX or 07XXXXXXXX)")
    return digits


class _UserFields(SanitizedModel):
    @field_validator("student_id", check_fields=False)
    @classmethod
    def _student_id(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.upper()
        if not STUDENT_ID_RE.match(v):
            raise ValueError("Student ID must be 2-4 letters followed by 4-8 digits (e.g. SIT1234567)")
        return v

    @field_validator("email", check_fields=False)
    @classmethod
    def _email(cls, v: str | None) -> str | None:
        return check_campus_email(v) if v is not None else v

    @field_validator("phone", check_fields=False)
    @classmethod
    def _phone(cls, v: str | None) -> str | None:
        return check_phone(v)


class RegisterRequest(_UserFields):
    raw_fields = frozenset({"password"})

    student_id: str = Field(..., min_length=8, max_length=20)
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=128)
    phone: str | None = None
    course: str | None = Field(default=None, max_length=100)
    year_of_study: int = Field(default=1, ge=1, le=6)
    profile_image: str | None = Field(default=None, max_length=500)


class AdminCreateUserRequest(RegisterRequest):
    role: UserRole = Field(default=UserRole.STUDENT, validate_default=True)
    status: UserStatus = Field(default=UserStatus.ACTIVE, validate_default=True)


class UpdateUserRequest(_UserFields):
    student_id: str | None = Field(default=None, min_length=8, max_length=20)
    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    email: EmailStr | None = None
    phone: str | None = None
    course: str | None = Field(default=None, max_length=100)
    year_of_study: int | None = Field(default=None, ge=1, le=6)
    profile_image: str | None = Field(default=None, max_length=500)
    # Admin-only
    role: UserRole | None = None
    status: UserStatus | None = None
    is_email_verified: bool | None = None


ADMIN_ONLY_USER_FIELDS = frozenset({"role", "status", "is_email_verified"})


class LoginRequest(SanitizedModel):
    raw_fields = frozenset({"password"})

    email: str = Field(..., min_length=3, max_length=100)
    password: str = Field(..., min_length=1, max_length=128)


class RefreshRequest(SanitizedModel):
    refresh_token: str = Field(..., min_length=32, max_length=128)


class LogoutRequest(SanitizedModel):
    refresh_token: str | None = Field(default=None, max_length=128)


class EmailRequest(SanitizedModel):
    email: EmailStr


class TokenRequest(SanitizedModel):
    token: str = Field(..., min_length=32, max_length=128)


class ResetPasswordRequest(SanitizedModel):
    raw_fields = frozenset({"password"})

    token: str = Field(..., min_length=32, max_length=128)
    password: str = Field(..., min_length=8, max_length=128)


class ChangePasswordRequest(SanitizedModel):
    raw_fields = frozenset({"old_password", "new_password"})

    old_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=8, max_length=128)

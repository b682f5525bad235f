from __future__ import annotations

import re
from enum import Enum

from pydantic import Field, field_validator

from .common import SanitizedModel, check_object_id, find_blocked_word, has_char_run, is_shouting
from .users import check_campus_email

CLUB_NAME_RE = re.compile(r"^[a-zA-Z0-9\s&\-']+$")
NAME_BLOCKED_WORDS = ("hate", "discrimination", "illegal", "scam", "fake")
DESCRIPTION_BLOCKED_WORDS = NAME_BLOCKED_WORDS + ("fraud",)
RESERVED_NAMES = ("admin", "system", "test", "usiu", "university")


class ClubCategory(str, Enum):
    ARTS_CULTURE = "Arts & Culture"
    ACADEMIC = "Academic"
    SPORTS = "Sports"
    TECHNOLOGY = "Technology"
    BUSINESS = "Business"
    COMMUNITY_SERVICE = "Community Service"
    RELIGIOUS = "Religious"
    PROFESSIONAL = "Professional"
    RECREATION = "Recreation"
    SPECIAL_INTEREST = "Special Interest"


class ClubStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


SORTABLE_FIELDS = ("name", "created_at", "members_count", "category")


class _ClubFields(SanitizedModel):
    markup_fields = frozenset({"description"})

    @field_validator("name", check_fields=False)
    @classmethod
    def _name(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = re.sub(r"\s+", " ", v)
        if not CLUB_NAME_RE.match(v):
            raise ValueError("Club name may only contain letters, numbers, spaces, &, - and '")
        if find_blocked_word(v, NAME_BLOCKED_WORDS):
            raise ValueError("Club name contains inappropriate content")
        if v.lower() in RESERVED_NAMES:
            raise ValueError("Club name is reserved")
        return v

    @field_validator("description", check_fields=False)
    @classmethod
    def _description(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if has_char_run(v, 21):
            raise ValueError("Description contains excessive repeated characters")
        if is_shouting(v, min_letters=50, ratio=0.5):
            raise ValueError("Description contains too many capital letters")
        if find_blocked_word(v, DESCRIPTION_BLOCKED_WORDS):
            raise ValueError("Description contains inappropriate content")
        return v

    @field_validator("contact_email", check_fields=False)
    @classmethod
    def _contact_email(cls, v: str | None) -> str | None:
        return check_campus_email(v) if v else None

    @field_validator("leader_id", check_fields=False)
    @classmethod
    def _leader_id(cls, v: str | None) -> str | None:
        return check_object_id(v, "leader_id")


class CreateClubRequest(_ClubFields):
    name: str = Field(..., min_length=3, max_length=100)
    description: str = Field(..., min_length=10, max_length=1000)
    category: ClubCategory
    logo: str | None = Field(default=None, max_length=500)
    contact_email: str | None = Field(default=None, max_length=100)
    leader_id: str
    status: ClubStatus = Field(default=ClubStatus.ACTIVE, validate_default=True)


class UpdateClubRequest(_ClubFields):
    name: str | None = Field(default=None, min_length=3, max_length=100)
    description: str | None = Field(default=None, min_length=10, max_length=1000)
    category: ClubCategory | None = None
    logo: str | None = Field(default=None, max_length=500)
    contact_email: str | None = Field(default=None, max_length=100)
    # Admin-only
    leader_id: str | None = None
    status: ClubStatus | None = None


ADMIN_ONLY_CLUB_FIELDS = frozenset({"leader_id", "status"})

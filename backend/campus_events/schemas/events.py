from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import Field, field_validator, model_validator

from .common import SanitizedModel, check_object_id, normalize_datetime

MAX_TAGS = 10
MAX_TAG_LEN = 200
MAX_GALLERY = 20


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


LIST_SORTS = ("date-asc", "date-desc", "title-asc", "title-desc", "featured", "popular", "recent")
DATE_FILTERS = ("today", "tomorrow", "this-week", "this-month", "upcoming", "past")


def check_event_dates(
    event_date: datetime | None,
    end_date: datetime | None,
    registration_deadline: datetime | None,
) -> None:
    """Cross-field date rules, shared by create (model) and update (merged doc)."""
    if event_date and end_date and end_date <= event_date:
        raise ValueError("end_date must be after event_date")
    if event_date and registration_deadline and registration_deadline > event_date:
        raise ValueError("registration_deadline must not be after event_date")


class _EventFields(SanitizedModel):
    markup_fields = frozenset({"title", "description", "location"})

    @field_validator("club_id", check_fields=False)
    @classmethod
    def _club_id(cls, v: str | None) -> str | None:
        return check_object_id(v, "club_id")

    @field_validator("event_date", "end_date", "registration_deadline", check_fields=False)
    @classmethod
    def _dates(cls, v: datetime | None) -> datetime | None:
        return normalize_datetime(v)

    @field_validator("tags", check_fields=False)
    @classmethod
    def _tags(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        out: list[str] = []
        for t in v:
            s = str(t or "").strip()
            if not s:
                continue
            if len(s) > MAX_TAG_LEN:
                raise ValueError(f"Each tag must be at most {MAX_TAG_LEN} characters")
            if s not in out:
                out.append(s)
        if len(out) > MAX_TAGS:
            raise ValueError(f"At most {MAX_TAGS} tags are allowed")
        return out

    @field_validator("gallery", check_fields=False)
    @classmethod
    def _gallery(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return v
        out = [str(u).strip() for u in v if str(u or "").strip()]
        if any(len(u) > 500 for u in out):
            raise ValueError("Gallery URLs must be at most 500 characters")
        return out

    @field_validator("social_media", check_fields=False)
    @classmethod
    def _social_media(cls, v: dict[str, Any] | None) -> dict[str, str] | None:
        if v is None:
            return v
        out: dict[str, str] = {}
        for k, url in v.items():
            key = str(k or "").strip().lower()[:40]
            val = str(url or "").strip()[:500]
            if key and val:
                out[key] = val
        return out


class CreateEventRequest(_EventFields):
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=2000)
    club_id: str
    event_date: datetime
    end_date: datetime | None = None
    location: str = Field(..., min_length=2, max_length=200)
    venue_capacity: int | None = Field(default=None, ge=0, le=50000)
    registration_required: bool = False
    registration_deadline: datetime | None = None
    registration_fee: float = Field(default=0, ge=0, le=10000)
    max_attendees: int = Field(default=0, ge=0, le=50000)
    banner_image: str | None = Field(default=None, max_length=500)
    gallery: list[str] = Field(default_factory=list, max_length=MAX_GALLERY)
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] = Field(default_factory=list)
    status: EventStatus = Field(default=EventStatus.DRAFT, validate_default=True)
    featured: bool = False
    social_media: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_dates(self):
        check_event_dates(self.event_date, self.end_date, self.registration_deadline)
        return self


class UpdateEventRequest(_EventFields):
    title: str | None = Field(default=None, min_length=3, max_length=200)
    description: str | None = Field(default=None, min_length=10, max_length=2000)
    club_id: str | None = None
    event_date: datetime | None = None
    end_date: datetime | None = None
    location: str | None = Field(default=None, min_length=2, max_length=200)
    venue_capacity: int | None = Field(default=None, ge=0, le=50000)
    registration_required: bool | None = None
    registration_deadline: datetime | None = None
    registration_fee: float | None = Field(default=None, ge=0, le=10000)
    max_attendees: int | None = Field(default=None, ge=0, le=50000)
    banner_image: str | None = Field(default=None, max_length=500)
    gallery: list[str] | None = Field(default=None, max_length=MAX_GALLERY)
    category: str | None = Field(default=None, max_length=100)
    tags: list[str] | None = None
    status: EventStatus | None = None
    featured: bool | None = None
    social_media: dict[str, str] | None = None

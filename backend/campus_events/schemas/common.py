"""
Shared request-model plumbing: input sanitization and content checks.

Every request model derives from `SanitizedModel`, which trims strings
(recursively through lists and dicts) before field validation runs. Fields
listed in `markup_fields` additionally have HTML tags stripped with bleach,
and fields in `raw_fields` (passwords) are passed through untouched.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, ClassVar, Iterable

import bleach
from bson import ObjectId
from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from ..db.mongo.documents import to_naive_utc


def _trim(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return [_trim(v) for v in value]
    if isinstance(value, dict):
        return {k: _trim(v) for k, v in value.items()}
    return value


def strip_markup(value: Any) -> Any:
    if isinstance(value, str):
        return bleach.clean(value, tags=[], strip=True).strip()
    if isinstance(value, list):
        return [strip_markup(v) for v in value]
    if isinstance(value, dict):
        return {k: strip_markup(v) for k, v in value.items()}
    return value


class SanitizedModel(BaseModel):
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    raw_fields: ClassVar[frozenset[str]] = frozenset()
    markup_fields: ClassVar[frozenset[str]] = frozenset()

    @field_validator("*", mode="before")
    @classmethod
    def _sanitize(cls, v: Any, info: ValidationInfo) -> Any:
        name = info.field_name or ""
        if name in cls.raw_fields:
            return v
        v = _trim(v)
        if name in cls.markup_fields:
            v = strip_markup(v)
        return v

    def changes(self) -> dict[str, Any]:
        """Fields the client actually sent (PATCH semantics)."""
        return self.model_dump(exclude_unset=True)


# ---- content checks ----

def find_blocked_word(text: str, words: Iterable[str]) -> str | None:
    low = str(text or "").lower()
    for w in words:
        if w in low:
            return w
    return None


def has_char_run(text: str, run: int) -> bool:
    """True when any character repeats `run` or more times in a row."""
    return re.search(rf"(.)\1{{{max(1, run - 1)},}}", str(text or "")) is not None


def is_shouting(text: str, *, min_letters: int, ratio: float) -> bool:
    letters = [c for c in str(text or "") if c.isalpha()]
    if len(letters) <= min_letters:
        return False
    upper = sum(1 for c in letters if c.isupper())
    return upper / len(letters) > ratio


def check_object_id(value: str | None, label: str) -> str | None:
    if value is None:
        return None
    if not ObjectId.is_valid(str(value)):
        raise ValueError(f"{label} must be a valid id")
    return str(value)


def normalize_datetime(value: datetime | None) -> datetime | None:
    return to_naive_utc(value)

from __future__ import annotations

from enum import Enum

from pydantic import Field, field_validator

from .common import SanitizedModel, check_object_id, find_blocked_word, has_char_run, is_shouting

COMMENT_BLOCKED_WORDS = ("spam", "scam", "fake", "fraud", "hack", "illegal")


class CommentStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class FlagReason(str, Enum):
    INAPPROPRIATE = "inappropriate"
    SPAM = "spam"
    HARASSMENT = "harassment"
    HATE_SPEECH = "hate_speech"
    MISINFORMATION = "misinformation"
    OTHER = "other"


# Moderation listing accepts the pseudo-status "flagged".
MODERATION_FILTERS = (*(s.value for s in CommentStatus), "flagged")


def check_comment_content(v: str) -> str:
    if find_blocked_word(v, COMMENT_BLOCKED_WORDS):
        raise ValueError("Comment contains inappropriate content")
    if has_char_run(v, 11):
        raise ValueError("Comment contains excessive repeated characters")
    if is_shouting(v, min_letters=20, ratio=0.7):
        raise ValueError("Comment contains too many capital letters")
    return v


class CreateCommentRequest(SanitizedModel):
    markup_fields = frozenset({"content"})

    event_id: str
    content: str = Field(..., min_length=1, max_length=1000)
    parent_comment_id: str | None = None

    @field_validator("event_id")
    @classmethod
    def _event_id(cls, v: str) -> str:
        return check_object_id(v, "event_id")

    @field_validator("parent_comment_id")
    @classmethod
    def _parent_id(cls, v: str | None) -> str | None:
        return check_object_id(v or None, "parent_comment_id")

    @field_validator("content")
    @classmethod
    def _content(cls, v: str) -> str:
        return check_comment_content(v)


class FlagCommentRequest(SanitizedModel):
    markup_fields = frozenset({"details"})

    reason: FlagReason = Field(default=FlagReason.INAPPROPRIATE, validate_default=True)
    details: str | None = Field(default=None, max_length=500)

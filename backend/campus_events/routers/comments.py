from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..auth.rbac import current_user, optional_user, require_roles
from ..auth.tokens import ROLE_ADMIN, ROLE_CLUB_LEADER, AuthUser
from ..db.mongo.pagination import page_request
from ..errors import BadRequest
from ..repositories import comments_repo
from ..schemas.comments import MODERATION_FILTERS, CreateCommentRequest, FlagCommentRequest
from ._responses import ok, paged

router = APIRouter(tags=["comments"])

_moderator = require_roles(ROLE_ADMIN, ROLE_CLUB_LEADER)

COMMENTS_PAGE_LIMIT = 50


def _moderation_items(items: list[dict]) -> list[dict]:
    return [comments_repo.to_public_comment(c, moderation=True) for c in items]


@router.post("", status_code=201)
def create_comment(body: CreateCommentRequest, request: Request):
    user = current_user(request)
    comment = comments_repo.create_comment(body.model_dump(), user=user)
    approved = comment["status"] == "approved"
    return ok(
        "Comment posted successfully" if approved else "Comment submitted for moderation",
        {"commentId": str(comment["_id"]), "comment": comments_repo.to_public_comment(comment)},
    )


@router.get("")
def moderation_list(
    page: int | None = None,
    limit: int | None = None,
    status: str | None = None,
    event_id: str | None = None,
    _: AuthUser = Depends(_moderator),
):
    if status and status not in MODERATION_FILTERS:
        raise BadRequest(
            f"status must be one of: {', '.join(MODERATION_FILTERS)}",
            error_type="invalid_status",
        )
    result = comments_repo.moderation_list(
        page=page_request(page, limit, default_limit=COMMENTS_PAGE_LIMIT),
        status=status,
        event_id=event_id,
    )
    return paged("Comments retrieved successfully", "comments", _moderation_items(result.items), result)


@router.get("/moderation/pending")
def pending(page: int | None = None, limit: int | None = None, _: AuthUser = Depends(_moderator)):
    result = comments_repo.pending(page=page_request(page, limit, default_limit=COMMENTS_PAGE_LIMIT))
    return paged("Pending comments retrieved successfully", "comments", _moderation_items(result.items), result)


@router.get("/moderation/flagged")
def flagged(page: int | None = None, limit: int | None = None, _: AuthUser = Depends(_moderator)):
    result = comments_repo.flagged(page=page_request(page, limit, default_limit=COMMENTS_PAGE_LIMIT))
    return paged("Flagged comments retrieved successfully", "comments", _moderation_items(result.items), result)


@router.get("/moderation/stats")
def moderation_stats(_: AuthUser = Depends(_moderator)):
    return ok("Comment statistics retrieved successfully", comments_repo.moderation_stats())


@router.get("/event/{event_id}")
def event_comments(event_id: str, request: Request, page: int | None = None, limit: int | None = None):
    result, threads = comments_repo.list_for_event(
        event_id,
        page=page_request(page, limit, default_limit=COMMENTS_PAGE_LIMIT),
        viewer=optional_user(request),
    )
    return paged("Comments retrieved successfully", "comments", threads, result)


@router.get("/{comment_id}")
def get_comment(comment_id: str, request: Request):
    viewer = optional_user(request)
    doc = comments_repo.get_visible_comment(comment_id, viewer)
    return ok(
        "Comment retrieved successfully",
        comments_repo.to_public_comment(doc, moderation=comments_repo.is_moderator(viewer)),
    )


@router.patch("/{comment_id}/approve")
def approve(comment_id: str, user: AuthUser = Depends(_moderator)):
    doc = comments_repo.approve(comment_id, moderator=user)
    return ok("Comment approved", comments_repo.to_public_comment(doc, moderation=True))


@router.patch("/{comment_id}/reject")
def reject(comment_id: str, user: AuthUser = Depends(_moderator)):
    doc = comments_repo.reject(comment_id, moderator=user)
    return ok("Comment rejected", comments_repo.to_public_comment(doc, moderation=True))


@router.post("/{comment_id}/flag")
def flag(comment_id: str, request: Request, body: FlagCommentRequest | None = None):
    user = current_user(request)
    body = body or FlagCommentRequest()
    doc = comments_repo.flag(comment_id, user=user, reason=body.reason, details=body.details)
    return ok(
        "Comment flagged for review",
        {"comment_id": str(doc["_id"]), "flag_count": len(doc.get("flags") or [])},
    )


@router.patch("/{comment_id}/unflag")
def unflag(comment_id: str, user: AuthUser = Depends(_moderator)):
    doc = comments_repo.unflag(comment_id, moderator=user)
    return ok("Comment flags cleared", comments_repo.to_public_comment(doc, moderation=True))


@router.delete("/{comment_id}")
def delete_comment(comment_id: str, request: Request):
    user = current_user(request)
    return ok("Comment deleted successfully", comments_repo.delete_comment(comment_id, user=user))

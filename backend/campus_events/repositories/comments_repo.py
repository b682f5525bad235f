from __future__ import annotations

from typing import Any

from bson import ObjectId

from ..auth.rbac import forbidden
from ..auth.tokens import ROLE_ADMIN, ROLE_CLUB_LEADER, AuthUser
from ..db.mongo.client import COMMENTS
from ..db.mongo.collection import MongoCollection, Page
from ..db.mongo.documents import parse_object_id, to_api, utc_now
from ..db.mongo.pagination import PageRequest
from ..errors import BadRequest, Conflict, NotFound
from ..observability.logging import get_logger
from . import events_repo, users_repo

log = get_logger("comments_repo")

MODERATOR_ROLES = (ROLE_ADMIN, ROLE_CLUB_LEADER)


def _comments() -> MongoCollection:
    return MongoCollection(COMMENTS)


def is_moderator(user: AuthUser | None) -> bool:
    return user is not None and user.role in MODERATOR_ROLES


def to_public_comment(doc: dict[str, Any] | None, *, moderation: bool = False) -> dict[str, Any] | None:
    if doc is None:
        return None
    # Who flagged what is visible to moderators only.
    out = to_api(doc, hidden=() if moderation else ("flags", "moderated_by"))
    out["flag_count"] = len(doc.get("flags") or [])
    if moderation:
        status = doc.get("status")
        out["moderation_info"] = {
            "requires_action": status == "pending" or bool(doc.get("flagged")),
            "is_approved": status == "approved",
            "is_flagged": bool(doc.get("flagged")),
        }
    return out


def _author_snapshot(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "full_name": users_repo.full_name(user),
        "profile_image": user.get("profile_image"),
        "role": user.get("role"),
    }


def get_comment(comment_id: str | ObjectId) -> dict[str, Any] | None:
    return _comments().get(parse_object_id(comment_id, entity="comment"))


def get_comment_required(comment_id: str | ObjectId) -> dict[str, Any]:
    doc = get_comment(comment_id)
    if not doc:
        raise NotFound("Comment not found", error_type="comment_not_found")
    return doc


def get_visible_comment(comment_id: str, viewer: AuthUser | None) -> dict[str, Any]:
    """Unapproved comments are only visible to their author and moderators.

    Comments on a draft event are hidden like the event itself.
    """
    doc = get_comment_required(comment_id)
    if is_moderator(viewer):
        return doc
    own = viewer is not None and str(doc.get("user_id")) == viewer.sub
    if doc.get("status") != "approved" and not own:
        raise NotFound("Comment not found", error_type="comment_not_found")
    event = events_repo.get_event(doc["event_id"]) if doc.get("event_id") else None
    if event and event.get("status") == "draft" and not events_repo.can_manage(viewer, event):
        raise NotFound("Comment not found", error_type="comment_not_found")
    return doc


def create_comment(data: dict[str, Any], *, user: AuthUser) -> dict[str, Any]:
    event = events_repo.get_visible_event(data["event_id"], user)

    parent_id: ObjectId | None = None
    if data.get("parent_comment_id"):
        parent = get_comment(data["parent_comment_id"])
        if not parent:
            raise NotFound("Parent comment not found", error_type="parent_not_found")
        if parent.get("event_id") != event["_id"]:
            raise BadRequest("Parent comment belongs to a different event", error_type="parent_event_mismatch")
        if parent.get("parent_comment_id"):
            raise BadRequest("Replies can only be one level deep", error_type="nested_reply")
        parent_id = parent["_id"]

    author = users_repo.get_user_required(user.sub)
    now = utc_now()
    auto_approve = user.role in MODERATOR_ROLES
    doc: dict[str, Any] = {
        "event_id": event["_id"],
        "user_id": author["_id"],
        "content": data["content"],
        "parent_comment_id": parent_id,
        "status": "approved" if auto_approve else "pending",
        "flagged": False,
        "flags": [],
        "moderated_by": author["_id"] if auto_approve else None,
        "moderated_at": now if auto_approve else None,
        "user": _author_snapshot(author),
        "created_at": now,
        "updated_at": now,
    }
    _comments().insert(doc)
    log.info(
        "comment_created",
        comment_id=str(doc["_id"]),
        event_id=str(event["_id"]),
        user_id=user.sub,
        status=doc["status"],
    )
    return doc


def list_for_event(
    event_id: str, *, page: PageRequest, viewer: AuthUser | None = None
) -> tuple[Page, list[dict[str, Any]]]:
    """Approved top-level comments newest first, each with its approved replies oldest first."""
    event = events_repo.get_visible_event(event_id, viewer)
    comments = _comments()
    result = comments.find_page(
        {"event_id": event["_id"], "status": "approved", "parent_comment_id": None},
        page=page,
        sort=[("created_at", -1), ("_id", -1)],
    )
    ids = [c["_id"] for c in result.items]
    replies: dict[ObjectId, list[dict[str, Any]]] = {}
    if ids:
        for r in comments.find(
            {"parent_comment_id": {"$in": ids}, "status": "approved"},
            sort=[("created_at", 1), ("_id", 1)],
        ):
            replies.setdefault(r["parent_comment_id"], []).append(r)

    threads = []
    for c in result.items:
        out = to_public_comment(c)
        out["replies"] = [to_public_comment(r) for r in replies.get(c["_id"], [])]
        out["reply_count"] = len(out["replies"])
        threads.append(out)
    return result, threads


# ---- moderation ----

def moderation_list(*, page: PageRequest, status: str | None = None, event_id: str | None = None) -> Page:
    query: dict[str, Any] = {}
    if status == "flagged":
        query["flagged"] = True
    elif status:
        query["status"] = status
    if event_id:
        query["event_id"] = parse_object_id(event_id, entity="event")
    return _comments().find_page(query, page=page, sort=[("created_at", -1), ("_id", -1)])


def pending(*, page: PageRequest) -> Page:
    return _comments().find_page({"status": "pending"}, page=page, sort=[("created_at", 1), ("_id", 1)])


def flagged(*, page: PageRequest) -> Page:
    return _comments().find_page({"flagged": True}, page=page, sort=[("updated_at", -1), ("_id", -1)])


def moderation_stats() -> dict[str, int]:
    comments = _comments()
    return {
        "total": comments.count({}),
        "approved": comments.count({"status": "approved"}),
        "pending": comments.count({"status": "pending"}),
        "rejected": comments.count({"status": "rejected"}),
        "flagged": comments.count({"flagged": True}),
    }


def _moderate(comment_id: str, status: str, *, moderator: AuthUser) -> dict[str, Any]:
    oid = parse_object_id(comment_id, entity="comment")
    now = utc_now()
    doc = _comments().update(
        {"_id": oid},
        {
            "$set": {
                "status": status,
                "moderated_by": parse_object_id(moderator.sub, entity="user"),
                "moderated_at": now,
                "updated_at": now,
            }
        },
    )
    if not doc:
        raise NotFound("Comment not found", error_type="comment_not_found")
    log.info("comment_moderated", comment_id=str(oid), status=status, moderator_id=moderator.sub)
    return doc


def approve(comment_id: str, *, moderator: AuthUser) -> dict[str, Any]:
    return _moderate(comment_id, "approved", moderator=moderator)


def reject(comment_id: str, *, moderator: AuthUser) -> dict[str, Any]:
    return _moderate(comment_id, "rejected", moderator=moderator)


def flag(comment_id: str, *, user: AuthUser, reason: str, details: str | None = None) -> dict[str, Any]:
    oid = parse_object_id(comment_id, entity="comment")
    uid = parse_object_id(user.sub, entity="user")
    now = utc_now()
    entry = {"user_id": uid, "reason": reason, "details": details, "flagged_at": now}
    # One flag per user, enforced by the filter.
    doc = _comments().update(
        {"_id": oid, "flags.user_id": {"$ne": uid}},
        {"$push": {"flags": entry}, "$set": {"flagged": True, "updated_at": now}},
    )
    if not doc:
        get_comment_required(oid)
        raise Conflict("You have already flagged this comment", error_type="already_flagged")
    log.info("comment_flagged", comment_id=str(oid), user_id=user.sub, reason=reason)
    return doc


def unflag(comment_id: str, *, moderator: AuthUser) -> dict[str, Any]:
    oid = parse_object_id(comment_id, entity="comment")
    now = utc_now()
    doc = _comments().update(
        {"_id": oid},
        {
            "$set": {
                "flagged": False,
                "flags": [],
                "moderated_by": parse_object_id(moderator.sub, entity="user"),
                "moderated_at": now,
                "updated_at": now,
            }
        },
    )
    if not doc:
        raise NotFound("Comment not found", error_type="comment_not_found")
    log.info("comment_unflagged", comment_id=str(oid), moderator_id=moderator.sub)
    return doc


def delete_comment(comment_id: str, *, user: AuthUser) -> dict[str, Any]:
    doc = get_comment_required(comment_id)
    if not is_moderator(user) and str(doc.get("user_id")) != user.sub:
        raise forbidden(user, list(MODERATOR_ROLES))

    comments = _comments()
    replies = comments.delete_many({"parent_comment_id": doc["_id"]})
    comments.delete(doc["_id"])
    log.info("comment_deleted", comment_id=str(doc["_id"]), user_id=user.sub, replies_deleted=replies)
    return {"comment_id": str(doc["_id"]), "replies_deleted": replies}

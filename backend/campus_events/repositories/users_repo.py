from __future__ import annotations

import re
from datetime import timedelta
from typing import Any

from bson import ObjectId

from ..auth.passwords import hash_password, verify_password
from ..auth.tokens import (
    ROLE_CLUB_LEADER,
    ROLE_STUDENT,
    RefreshToken,
    hash_opaque_token,
    new_one_time_token,
)
from ..db.mongo.client import CLUBS, COMMENTS, EVENTS, USERS
from ..db.mongo.collection import MongoCollection, Page
from ..db.mongo.documents import iso, parse_object_id, to_api, utc_now
from ..db.mongo.pagination import PageRequest
from ..errors import BadRequest, Conflict, NotFound
from ..observability.logging import get_logger
from ..schemas.users import PROFILE_FIELDS
from ..settings import settings

log = get_logger("users_repo")

# Never rendered to API clients.
PRIVATE_FIELDS = (
    "password",
    "refresh_token",
    "refresh_token_expires_at",
    "email_verification_token",
    "email_verification_expires_at",
    "password_reset_token",
    "password_reset_expires_at",
)


def _users() -> MongoCollection:
    return MongoCollection(USERS)


def to_public_user(doc: dict[str, Any] | None) -> dict[str, Any] | None:
    return to_api(doc, hidden=PRIVATE_FIELDS)


def display_role(role: str | None) -> str:
    return str(role or ROLE_STUDENT).replace("_", " ").capitalize()


def full_name(doc: dict[str, Any] | None) -> str:
    if not doc:
        return "Unknown User"
    return f"{doc.get('first_name') or 'Unknown'} {doc.get('last_name') or 'User'}".strip()


def profile_completeness(doc: dict[str, Any]) -> dict[str, Any]:
    missing = [f for f in PROFILE_FIELDS if not doc.get(f)]
    completed = len(PROFILE_FIELDS) - len(missing)
    return {
        "percentage": round(completed / len(PROFILE_FIELDS) * 100),
        "completed_fields": completed,
        "total_fields": len(PROFILE_FIELDS),
        "missing_fields": missing,
    }


def account_status(doc: dict[str, Any]) -> dict[str, Any]:
    return {
        "is_verified": bool(doc.get("is_email_verified")),
        "is_active": (doc.get("status") or "active") == "active",
        "member_since": iso(doc.get("created_at")),
        "last_login": iso(doc.get("last_login")),
    }


# ---- reads ----

def get_user(user_id: str | ObjectId) -> dict[str, Any] | None:
    return _users().get(parse_object_id(user_id, entity="user"))


def get_user_required(user_id: str | ObjectId) -> dict[str, Any]:
    doc = get_user(user_id)
    if not doc:
        raise NotFound("User not found", error_type="user_not_found")
    return doc


def find_by_email(email: str) -> dict[str, Any] | None:
    em = str(email or "").strip().lower()
    if not em:
        return None
    return _users().find_one({"email": em})


def get_users_by_ids(ids: list[ObjectId]) -> dict[ObjectId, dict[str, Any]]:
    if not ids:
        return {}
    docs = _users().find(
        {"_id": {"$in": list(set(ids))}},
        projection={"first_name": 1, "last_name": 1, "email": 1, "profile_image": 1, "role": 1},
    )
    return {d["_id"]: d for d in docs}


def list_users(
    *,
    page: PageRequest,
    role: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> Page:
    query: dict[str, Any] = {}
    if role:
        query["role"] = role
    if status:
        query["status"] = status
    if search:
        rx = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [
            {"first_name": rx},
            {"last_name": rx},
            {"email": rx},
            {"student_id": rx},
        ]
    return _users().find_page(query, page=page, sort=[("created_at", -1)])


# ---- writes ----

def _ensure_unique(*, email: str | None, student_id: str | None, exclude_id: ObjectId | None = None) -> None:
    users = _users()
    not_self: dict[str, Any] = {"_id": {"$ne": exclude_id}} if exclude_id else {}
    if email and users.find_one({"email": email, **not_self}):
        raise Conflict("A user with this email already exists", error_type="duplicate_email", field="email")
    if student_id and users.find_one({"student_id": student_id, **not_self}):
        raise Conflict(
            "A user with this student ID already exists",
            error_type="duplicate_student_id",
            field="student_id",
        )


def create_user(data: dict[str, Any], *, verified: bool = False) -> tuple[dict[str, Any], str | None]:
    """
    Insert a new user. Returns (document, raw_verification_token); the token
    is None for pre-verified accounts.
    """
    email = str(data["email"]).strip().lower()
    student_id = str(data["student_id"]).strip().upper()
    _ensure_unique(email=email, student_id=student_id)

    now = utc_now()
    doc: dict[str, Any] = {
        "student_id": student_id,
        "first_name": data["first_name"],
        "last_name": data["last_name"],
        "email": email,
        "password": hash_password(data["password"]),
        "phone": data.get("phone"),
        "course": data.get("course"),
        "year_of_study": int(data.get("year_of_study") or 1),
        "profile_image": data.get("profile_image"),
        "role": data.get("role") or ROLE_STUDENT,
        "status": data.get("status") or "active",
        "is_email_verified": bool(verified),
        "registered_events": [],
        "clubs_joined": [],
        "last_login": None,
        "created_at": now,
        "updated_at": now,
    }

    token: str | None = None
    if not verified:
        token = new_one_time_token()
        doc["email_verification_token"] = hash_opaque_token(token)
        doc["email_verification_expires_at"] = now + timedelta(seconds=int(settings.email_verification_ttl_seconds))

    _users().insert(doc)
    log.info("user_created", user_id=str(doc["_id"]), role=doc["role"], verified=bool(verified))
    return doc, token


def update_user(user_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    oid = parse_object_id(user_id, entity="user")
    get_user_required(oid)

    updates = {k: v for k, v in changes.items() if k not in PRIVATE_FIELDS}
    if "email" in updates and updates["email"]:
        updates["email"] = str(updates["email"]).strip().lower()
    if "student_id" in updates and updates["student_id"]:
        updates["student_id"] = str(updates["student_id"]).strip().upper()
    _ensure_unique(email=updates.get("email"), student_id=updates.get("student_id"), exclude_id=oid)

    updates["updated_at"] = utc_now()
    doc = _users().update({"_id": oid}, {"$set": updates})
    if not doc:
        raise NotFound("User not found", error_type="user_not_found")
    log.info("user_updated", user_id=str(oid), fields=sorted(k for k in updates if k != "updated_at"))
    return doc


def set_role(user_id: ObjectId, role: str) -> None:
    _users().update({"_id": user_id}, {"$set": {"role": role, "updated_at": utc_now()}})
    log.info("user_role_changed", user_id=str(user_id), role=role)


def promote_to_leader(user: dict[str, Any]) -> None:
    if user.get("role") == ROLE_STUDENT:
        set_role(user["_id"], ROLE_CLUB_LEADER)


def demote_if_not_leading(user_id: ObjectId, *, excluding_club: ObjectId | None = None) -> None:
    """Drop a club_leader back to student once they lead no remaining club."""
    user = _users().get(user_id)
    if not user or user.get("role") != ROLE_CLUB_LEADER:
        return
    query: dict[str, Any] = {"leader_id": user_id}
    if excluding_club is not None:
        query["_id"] = {"$ne": excluding_club}
    if MongoCollection(CLUBS).count(query) == 0:
        set_role(user_id, ROLE_STUDENT)


def delete_user(user_id: str) -> dict[str, Any]:
    oid = parse_object_id(user_id, entity="user")
    user = get_user_required(oid)

    events = MongoCollection(EVENTS)
    clubs = MongoCollection(CLUBS)
    created = events.find({"created_by": oid}, projection={"title": 1}, limit=5)
    led = clubs.find({"leader_id": oid}, projection={"name": 1}, limit=5)
    if created or led:
        deps: dict[str, Any] = {}
        if created:
            deps["events"] = {"count": events.count({"created_by": oid}), "sample_titles": [e.get("title") for e in created]}
        if led:
            deps["clubs"] = {"count": clubs.count({"leader_id": oid}), "sample_names": [c.get("name") for c in led]}
        raise BadRequest(
            "Cannot delete a user who still owns events or leads clubs",
            error_type="dependency_violation",
            dependencies=deps,
            suggestion="Delete or transfer ownership of associated events and clubs before deleting the user",
        )

    registrations = events.update_many(
        {"registered_users": oid},
        {"$pull": {"registered_users": oid}, "$inc": {"current_registrations": -1}},
    )
    memberships = clubs.update_many(
        {"members": oid},
        {"$pull": {"members": oid}, "$inc": {"members_count": -1}},
    )
    comments = MongoCollection(COMMENTS).delete_many({"user_id": oid})
    _users().delete(oid)
    log.info(
        "user_deleted",
        user_id=str(oid),
        event_registrations_cleaned=registrations,
        memberships_cleaned=memberships,
        comments_deleted=comments,
    )
    return {
        "user_id": str(oid),
        "email": user.get("email"),
        "event_registrations_cleaned": registrations,
        "club_memberships_cleaned": memberships,
        "comments_deleted": comments,
    }


# ---- sessions / tokens ----

def record_login(user_id: ObjectId, refresh: RefreshToken) -> None:
    now = utc_now()
    _users().update(
        {"_id": user_id},
        {
            "$set": {
                "last_login": now,
                "refresh_token": hash_opaque_token(refresh.token),
                "refresh_token_expires_at": refresh.expires_at,
                "updated_at": now,
            }
        },
    )


def find_by_refresh_token(token: str) -> dict[str, Any] | None:
    return _users().find_one({"refresh_token": hash_opaque_token(token)})


def rotate_refresh_token(user_id: ObjectId, old_token: str, new: RefreshToken) -> bool:
    # Conditional on the old hash so two concurrent refreshes cannot both win.
    doc = _users().update(
        {"_id": user_id, "refresh_token": hash_opaque_token(old_token)},
        {"$set": {"refresh_token": hash_opaque_token(new.token), "refresh_token_expires_at": new.expires_at}},
    )
    return doc is not None


def revoke_refresh_token(*, token: str | None = None, user_id: ObjectId | None = None) -> bool:
    if user_id is not None:
        query: dict[str, Any] = {"_id": user_id}
    elif token:
        query = {"refresh_token": hash_opaque_token(token)}
    else:
        return False
    doc = _users().update(query, {"$unset": {"refresh_token": "", "refresh_token_expires_at": ""}})
    return doc is not None


def issue_verification_token(user_id: ObjectId) -> str:
    token = new_one_time_token()
    _users().update(
        {"_id": user_id},
        {
            "$set": {
                "email_verification_token": hash_opaque_token(token),
                "email_verification_expires_at": utc_now()
                + timedelta(seconds=int(settings.email_verification_ttl_seconds)),
            }
        },
    )
    return token


def verify_email(token: str) -> str:
    """Returns one of: success, invalid_token, token_expired, already_verified."""
    user = _users().find_one({"email_verification_token": hash_opaque_token(token)})
    if not user:
        return "invalid_token"
    if user.get("is_email_verified"):
        return "already_verified"
    expires = user.get("email_verification_expires_at")
    if expires and expires < utc_now():
        return "token_expired"
    _users().update(
        {"_id": user["_id"]},
        {
            # The token hash stays so a replayed link reports already_verified.
            "$set": {"is_email_verified": True, "email_verified_at": utc_now(), "updated_at": utc_now()},
        },
    )
    log.info("user_email_verified", user_id=str(user["_id"]))
    return "success"


def issue_password_reset(user_id: ObjectId) -> str:
    token = new_one_time_token()
    _users().update(
        {"_id": user_id},
        {
            "$set": {
                "password_reset_token": hash_opaque_token(token),
                "password_reset_expires_at": utc_now() + timedelta(seconds=int(settings.password_reset_ttl_seconds)),
            }
        },
    )
    return token


def reset_password(token: str, new_password: str) -> bool:
    now = utc_now()
    # One-time: the token is consumed by the same atomic update.
    doc = _users().update(
        {"password_reset_token": hash_opaque_token(token), "password_reset_expires_at": {"$gt": now}},
        {
            "$set": {"password": hash_password(new_password), "updated_at": now},
            "$unset": {
                "password_reset_token": "",
                "password_reset_expires_at": "",
                "refresh_token": "",
                "refresh_token_expires_at": "",
            },
        },
    )
    if doc:
        log.info("user_password_reset", user_id=str(doc["_id"]))
    return doc is not None


def change_password(user_id: str, old_password: str, new_password: str) -> None:
    user = get_user_required(user_id)
    if not verify_password(old_password, user.get("password")):
        raise BadRequest("Current password is incorrect", error_type="invalid_current_password")
    if old_password == new_password:
        raise BadRequest("New password must be different from current password", error_type="password_unchanged")
    _users().update(
        {"_id": user["_id"]},
        {
            "$set": {"password": hash_password(new_password), "updated_at": utc_now()},
            "$unset": {"refresh_token": "", "refresh_token_expires_at": ""},
        },
    )
    log.info("user_password_changed", user_id=str(user["_id"]))


# ---- membership bookkeeping ----

def add_registered_event(user_id: ObjectId, event_id: ObjectId) -> None:
    _users().update({"_id": user_id}, {"$addToSet": {"registered_events": event_id}})


def remove_registered_event(user_id: ObjectId, event_id: ObjectId) -> None:
    _users().update({"_id": user_id}, {"$pull": {"registered_events": event_id}})


def add_joined_club(user_id: ObjectId, club_id: ObjectId) -> None:
    _users().update({"_id": user_id}, {"$addToSet": {"clubs_joined": club_id}})


def remove_joined_club(user_id: ObjectId, club_id: ObjectId) -> None:
    _users().update({"_id": user_id}, {"$pull": {"clubs_joined": club_id}})


def pull_event_everywhere(event_id: ObjectId) -> int:
    return _users().update_many({"registered_events": event_id}, {"$pull": {"registered_events": event_id}})


def pull_club_everywhere(club_id: ObjectId) -> int:
    return _users().update_many({"clubs_joined": club_id}, {"$pull": {"clubs_joined": club_id}})


# ---- activity ----

def activity_counts(user_id: ObjectId) -> dict[str, int]:
    events = MongoCollection(EVENTS)
    registered = events.count({"registered_users": user_id})
    created = events.count({"created_by": user_id})
    leading = MongoCollection(CLUBS).count({"leader_id": user_id})
    return {
        "events_registered": registered,
        "events_created": created,
        "clubs_leading": leading,
        "total_activities": registered + created + leading,
    }


def event_stats(user_id: ObjectId) -> dict[str, int]:
    events = MongoCollection(EVENTS)
    now = utc_now()
    live = {"registered_users": user_id, "status": {"$ne": "cancelled"}}
    return {
        "registered_events": events.count(live),
        "attended_events": events.count({**live, "event_date": {"$lt": now}}),
        "created_events": events.count({"created_by": user_id}),
        "upcoming_events": events.count({**live, "event_date": {"$gte": now}}),
    }

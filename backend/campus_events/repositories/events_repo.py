from __future__ import annotations

import math
import re
from datetime import datetime, timedelta
from typing import Any

from bson import ObjectId

from ..auth.rbac import forbidden
from ..auth.tokens import ROLE_ADMIN, ROLE_CLUB_LEADER, AuthUser
from ..db.mongo.client import COMMENTS, EVENTS
from ..db.mongo.collection import MongoCollection, Page
from ..db.mongo.documents import parse_object_id, to_api, utc_now
from ..db.mongo.pagination import PageRequest
from ..errors import BadRequest, Conflict, NotFound
from ..observability.logging import get_logger
from ..schemas.events import check_event_dates
from . import clubs_repo, users_repo

log = get_logger("events_repo")

# Maintained only through register/unregister.
SYSTEM_FIELDS = ("current_registrations", "registered_users", "created_by", "created_at")

_SORTS: dict[str, list[tuple[str, int]]] = {
    "date-asc": [("event_date", 1)],
    "date-desc": [("event_date", -1)],
    "title-asc": [("title", 1)],
    "title-desc": [("title", -1)],
    "featured": [("featured", -1), ("event_date", 1)],
    "popular": [("current_registrations", -1), ("event_date", 1)],
    "recent": [("created_at", -1)],
}


def _events() -> MongoCollection:
    return MongoCollection(EVENTS)


def to_public_event(
    doc: dict[str, Any] | None,
    *,
    clubs: dict[ObjectId, dict[str, Any]] | None = None,
) -> dict[str, Any] | None:
    if doc is None:
        return None
    out = to_api(doc, hidden=("registered_users",))
    if clubs is not None:
        club = clubs.get(doc.get("club_id")) or {}
        out["club_name"] = club.get("name")
    return out


def public_events(docs: list[dict[str, Any]]) -> list[dict[str, Any]]:
    clubs = clubs_repo.get_clubs_by_ids([d["club_id"] for d in docs if d.get("club_id")])
    return [to_public_event(d, clubs=clubs) for d in docs]


def get_event(event_id: str | ObjectId) -> dict[str, Any] | None:
    return _events().get(parse_object_id(event_id, entity="event"))


def get_event_required(event_id: str | ObjectId) -> dict[str, Any]:
    doc = get_event(event_id)
    if not doc:
        raise NotFound("Event not found", error_type="event_not_found")
    return doc


def get_visible_event(event_id: str | ObjectId, viewer: AuthUser | None) -> dict[str, Any]:
    """Like get_event_required, but drafts only exist for the people who can edit them."""
    event = get_event_required(event_id)
    if event.get("status") == "draft" and not can_manage(viewer, event):
        raise NotFound("Event not found", error_type="event_not_found")
    return event


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def date_range(name: str, *, now: datetime | None = None) -> dict[str, datetime] | None:
    now = now or utc_now()
    today = _start_of_day(now)
    if name == "today":
        return {"$gte": today, "$lt": today + timedelta(days=1)}
    if name == "tomorrow":
        return {"$gte": today + timedelta(days=1), "$lt": today + timedelta(days=2)}
    if name == "this-week":
        monday = today - timedelta(days=today.weekday())
        return {"$gte": monday, "$lt": monday + timedelta(weeks=1)}
    if name == "this-month":
        first = today.replace(day=1)
        nxt = first.replace(year=first.year + 1, month=1) if first.month == 12 else first.replace(month=first.month + 1)
        return {"$gte": first, "$lt": nxt}
    if name == "upcoming":
        return {"$gte": now}
    if name == "past":
        return {"$lt": now}
    return None


def list_events(
    *,
    page: PageRequest,
    search: str | None = None,
    club_id: str | None = None,
    category: str | None = None,
    status: str | None = None,
    date: str | None = None,
    sort: str | None = None,
) -> Page:
    now = utc_now()
    clauses: list[dict[str, Any]] = []
    if search:
        rx = {"$regex": re.escape(search), "$options": "i"}
        clauses.append({"$or": [{"title": rx}, {"description": rx}, {"location": rx}]})
    if club_id:
        clauses.append({"club_id": parse_object_id(club_id, entity="club")})
    if category:
        clauses.append({"category": {"$regex": f"^{re.escape(category)}$", "$options": "i"}})

    if not status:
        clauses.append({"status": {"$ne": "draft"}})
    elif status == "featured":
        clauses.append({"featured": True, "status": "published"})
    elif status == "registration-open":
        clauses.append({"status": "published", "registration_required": True})
        clauses.append({"$or": [{"registration_deadline": None}, {"registration_deadline": {"$gte": now}}]})
    else:
        clauses.append({"status": status})

    if date:
        rng = date_range(date, now=now)
        if rng:
            clauses.append({"event_date": rng})

    query: dict[str, Any] = {"$and": clauses} if clauses else {}
    order = _SORTS.get(sort or "date-asc", _SORTS["date-asc"])
    return _events().find_page(query, page=page, sort=[*order, ("_id", 1)])


def registration_status(event: dict[str, Any], user: AuthUser | None) -> dict[str, Any]:
    now = utc_now()
    max_attendees = int(event.get("max_attendees") or 0)
    current = int(event.get("current_registrations") or 0)
    deadline = event.get("registration_deadline")
    status: dict[str, Any] = {
        "is_full": bool(max_attendees and current >= max_attendees),
        "spots_remaining": max(0, max_attendees - current) if max_attendees else None,
        "deadline_passed": bool(deadline and deadline < now),
    }
    if user is not None:
        status["is_registered"] = _is_registered(event, user.sub)
    return status


def _is_registered(event: dict[str, Any], user_id: str) -> bool:
    return any(str(u) == str(user_id) for u in event.get("registered_users") or [])


# ---- permissions ----

def ensure_can_create(user: AuthUser, club: dict[str, Any]) -> None:
    if user.role == ROLE_ADMIN:
        return
    if str(club.get("leader_id")) != user.sub:
        raise forbidden(user, [ROLE_CLUB_LEADER, ROLE_ADMIN])


def can_manage(user: AuthUser | None, event: dict[str, Any]) -> bool:
    """Creator, leader of the hosting club, or admin."""
    if user is None:
        return False
    if user.role == ROLE_ADMIN or str(event.get("created_by")) == user.sub:
        return True
    club = clubs_repo.get_club(event["club_id"]) if event.get("club_id") else None
    return bool(club and str(club.get("leader_id")) == user.sub)


def ensure_can_manage(user: AuthUser, event: dict[str, Any]) -> None:
    if not can_manage(user, event):
        raise forbidden(user, [ROLE_CLUB_LEADER, ROLE_ADMIN])


# ---- writes ----

def create_event(data: dict[str, Any], *, user: AuthUser) -> dict[str, Any]:
    club = clubs_repo.get_club(data["club_id"])
    if not club:
        raise NotFound("Club not found", error_type="club_not_found")
    ensure_can_create(user, club)

    now = utc_now()
    doc = {k: v for k, v in data.items() if k not in SYSTEM_FIELDS}
    doc.update(
        {
            "club_id": club["_id"],
            "current_registrations": 0,
            "registered_users": [],
            "created_by": parse_object_id(user.sub, entity="user"),
            "created_at": now,
            "updated_at": now,
        }
    )
    _events().insert(doc)
    log.info("event_created", event_id=str(doc["_id"]), club_id=str(club["_id"]), user_id=user.sub)
    return doc


def update_event(event_id: str, changes: dict[str, Any], *, user: AuthUser) -> dict[str, Any]:
    event = get_event_required(event_id)
    ensure_can_manage(user, event)

    updates = {k: v for k, v in changes.items() if k not in SYSTEM_FIELDS}
    if updates.get("club_id"):
        club = clubs_repo.get_club(updates["club_id"])
        if not club:
            raise NotFound("Club not found", error_type="club_not_found")
        ensure_can_create(user, club)
        updates["club_id"] = club["_id"]

    merged = {**event, **updates}
    try:
        check_event_dates(merged.get("event_date"), merged.get("end_date"), merged.get("registration_deadline"))
    except ValueError as e:
        raise BadRequest(str(e), error_type="invalid_dates") from e

    max_attendees = updates.get("max_attendees")
    current = int(event.get("current_registrations") or 0)
    if max_attendees and max_attendees < current:
        raise _capacity_below(current)

    match: dict[str, Any] = {"_id": event["_id"]}
    if max_attendees:
        # Registrations may land between the read above and this write.
        match["current_registrations"] = {"$lte": max_attendees}
    updates["updated_at"] = utc_now()
    doc = _events().update(match, {"$set": updates})
    if not doc:
        fresh = get_event_required(str(event["_id"]))
        raise _capacity_below(int(fresh.get("current_registrations") or 0))
    log.info("event_updated", event_id=str(event["_id"]), fields=sorted(k for k in updates if k != "updated_at"))
    return doc


def _capacity_below(current: int) -> BadRequest:
    return BadRequest(
        "max_attendees cannot be lower than the current number of registrations",
        error_type="capacity_below_registrations",
        current_registrations=current,
    )


def delete_event(event_id: str, *, user: AuthUser) -> dict[str, Any]:
    event = get_event_required(event_id)
    ensure_can_manage(user, event)
    oid = event["_id"]

    comments = MongoCollection(COMMENTS).delete_many({"event_id": oid})
    registrations = users_repo.pull_event_everywhere(oid)
    _events().delete(oid)
    log.info("event_deleted", event_id=str(oid), comments_deleted=comments, registrations_cleaned=registrations)
    return {
        "event_id": str(oid),
        "title": event.get("title"),
        "comments_deleted": comments,
        "registrations_cleaned": registrations,
    }


def register(event_id: str, user_id: str) -> dict[str, Any]:
    event = get_event_required(event_id)
    uid = parse_object_id(user_id, entity="user")
    now = utc_now()

    if event.get("status") != "published":
        raise BadRequest("Event is not open for registration", error_type="event_not_published")
    deadline = event.get("registration_deadline")
    if deadline and deadline < now:
        raise BadRequest("The registration deadline has passed", error_type="registration_closed")
    if event.get("event_date") and event["event_date"] <= now:
        raise BadRequest("Cannot register for an event that has already started", error_type="event_started")
    if uid in (event.get("registered_users") or []):
        raise Conflict("You are already registered for this event.", error_type="already_registered")

    max_attendees = int(event.get("max_attendees") or 0)
    query: dict[str, Any] = {"_id": event["_id"], "status": "published", "registered_users": {"$ne": uid}}
    if max_attendees:
        # Capacity is enforced by the filter itself, not by the read above.
        query["max_attendees"] = max_attendees
        query["current_registrations"] = {"$lt": max_attendees}
    else:
        query["max_attendees"] = {"$in": [0, None]}

    doc = _events().update(
        query,
        {"$addToSet": {"registered_users": uid}, "$inc": {"current_registrations": 1}, "$set": {"updated_at": now}},
    )
    if not doc:
        fresh = get_event_required(event["_id"])
        if uid in (fresh.get("registered_users") or []):
            raise Conflict("You are already registered for this event.", error_type="already_registered")
        cap = int(fresh.get("max_attendees") or 0)
        if cap and int(fresh.get("current_registrations") or 0) >= cap:
            raise Conflict("Event registration is full. No more spots available.", error_type="event_full")
        raise BadRequest(
            "Failed to register for the event. Please try again.",
            error_type="registration_failed",
        )

    users_repo.add_registered_event(uid, doc["_id"])
    log.info("event_registered", event_id=str(doc["_id"]), user_id=str(uid))
    return doc


def unregister(event_id: str, user_id: str) -> dict[str, Any]:
    event = get_event_required(event_id)
    uid = parse_object_id(user_id, entity="user")
    if event.get("event_date") and event["event_date"] < utc_now():
        raise BadRequest("Cannot unregister from events that have already occurred", error_type="event_past")

    doc = _events().update(
        {"_id": event["_id"], "registered_users": uid, "current_registrations": {"$gt": 0}},
        {"$pull": {"registered_users": uid}, "$inc": {"current_registrations": -1}, "$set": {"updated_at": utc_now()}},
    )
    if not doc:
        raise BadRequest("You are not currently registered for this event", error_type="not_registered")
    users_repo.remove_registered_event(uid, doc["_id"])
    log.info("event_unregistered", event_id=str(doc["_id"]), user_id=str(uid))
    return doc


# ---- per-user listings ----

def registered_by(user_id: str, *, page: PageRequest) -> Page:
    uid = parse_object_id(user_id, entity="user")
    return _events().find_page({"registered_users": uid}, page=page, sort=[("event_date", 1), ("_id", 1)])


def created_by_user(user_id: str, *, page: PageRequest) -> Page:
    uid = parse_object_id(user_id, entity="user")
    return _events().find_page({"created_by": uid}, page=page, sort=[("created_at", -1), ("_id", -1)])


def history(user_id: str, *, page: PageRequest) -> Page:
    uid = parse_object_id(user_id, entity="user")
    return _events().find_page(
        {"registered_users": uid, "event_date": {"$lt": utc_now()}},
        page=page,
        sort=[("event_date", -1), ("_id", -1)],
    )


def timing_flags(event: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
    now = now or utc_now()
    start = event.get("event_date")
    if not start:
        return {"is_upcoming": False, "is_past": False, "is_today": False, "days_until_event": None, "can_unregister": False}
    upcoming = start > now
    return {
        "is_upcoming": upcoming,
        "is_past": start < now,
        "is_today": start.date() == now.date(),
        "days_until_event": max(0, math.ceil((start - now).total_seconds() / 86400)) if upcoming else 0,
        "can_unregister": upcoming and event.get("status") != "cancelled",
    }


def registration_metrics(event: dict[str, Any]) -> dict[str, Any]:
    current = int(event.get("current_registrations") or 0)
    cap = int(event.get("max_attendees") or 0)
    return {
        "registrations": current,
        "capacity": cap or None,
        "fill_rate": round(current / cap * 100, 1) if cap else None,
        "spots_remaining": max(0, cap - current) if cap else None,
    }


def creator_statistics(user_id: str) -> dict[str, int]:
    uid = parse_object_id(user_id, entity="user")
    rows = _events().aggregate(
        [
            {"$match": {"created_by": uid}},
            {"$group": {"_id": "$status", "count": {"$sum": 1}, "registrations": {"$sum": "$current_registrations"}}},
        ]
    )
    stats = {"total": 0, "published": 0, "draft": 0, "cancelled": 0, "completed": 0, "total_registrations": 0}
    for r in rows:
        if r["_id"] in stats:
            stats[r["_id"]] = int(r["count"])
        stats["total"] += int(r["count"])
        stats["total_registrations"] += int(r["registrations"] or 0)
    return stats

from __future__ import annotations

import re
from typing import Any

from bson import ObjectId

from ..db.mongo.client import CLUBS, EVENTS
from ..db.mongo.collection import MongoCollection, Page
from ..db.mongo.documents import is_object_id, parse_object_id, to_api, utc_now
from ..db.mongo.pagination import PageRequest
from ..errors import BadRequest, Conflict, NotFound
from ..observability.logging import get_logger
from ..schemas.clubs import SORTABLE_FIELDS
from . import users_repo

log = get_logger("clubs_repo")


def _clubs() -> MongoCollection:
    return MongoCollection(CLUBS)


def to_public_club(doc: dict[str, Any] | None, *, leaders: dict[ObjectId, dict[str, Any]] | None = None) -> dict[str, Any] | None:
    if doc is None:
        return None
    # Member ids are served by the membership endpoints, not inlined.
    out = to_api(doc, hidden=("members",))
    if leaders is not None:
        leader = leaders.get(doc.get("leader_id"))
        out["leader"] = (
            {"id": str(leader["_id"]), "name": users_repo.full_name(leader), "email": leader.get("email")}
            if leader
            else None
        )
    return out


def get_club(club_id: str | ObjectId) -> dict[str, Any] | None:
    return _clubs().get(parse_object_id(club_id, entity="club"))


def get_club_required(club_id: str | ObjectId) -> dict[str, Any]:
    doc = get_club(club_id)
    if not doc:
        raise NotFound("Club not found", error_type="club_not_found")
    return doc


def get_clubs_by_ids(ids: list[ObjectId]) -> dict[ObjectId, dict[str, Any]]:
    if not ids:
        return {}
    docs = _clubs().find({"_id": {"$in": list(set(ids))}}, projection={"name": 1, "category": 1, "logo": 1})
    return {d["_id"]: d for d in docs}


def leaders_for(clubs: list[dict[str, Any]]) -> dict[ObjectId, dict[str, Any]]:
    return users_repo.get_users_by_ids([c["leader_id"] for c in clubs if c.get("leader_id")])


def list_clubs(
    *,
    page: PageRequest,
    search: str | None = None,
    category: str | None = None,
    status: str | None = None,
    min_members: int | None = None,
    max_members: int | None = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
) -> Page:
    query: dict[str, Any] = {}
    if search:
        rx = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": rx}, {"description": rx}]
    if category:
        query["category"] = category
    if status:
        query["status"] = status
    members: dict[str, int] = {}
    if min_members is not None:
        members["$gte"] = int(min_members)
    if max_members is not None:
        members["$lte"] = int(max_members)
    if members:
        query["members_count"] = members

    field = sort_by if sort_by in SORTABLE_FIELDS else "created_at"
    direction = 1 if str(sort_order).lower() == "asc" else -1
    return _clubs().find_page(query, page=page, sort=[(field, direction), ("_id", direction)])


def _name_taken(name: str, *, exclude_id: ObjectId | None = None) -> bool:
    query: dict[str, Any] = {"name": {"$regex": f"^{re.escape(name)}$", "$options": "i"}}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return _clubs().find_one(query) is not None


def create_club(data: dict[str, Any], *, created_by: str) -> dict[str, Any]:
    if _name_taken(data["name"]):
        raise Conflict("A club with this name already exists", error_type="duplicate_name", field="name")

    leader = users_repo.get_user(data["leader_id"])
    if not leader:
        raise NotFound("Leader user not found", error_type="leader_not_found")

    now = utc_now()
    doc: dict[str, Any] = {
        "name": data["name"],
        "description": data["description"],
        "category": data["category"],
        "logo": data.get("logo"),
        "contact_email": data.get("contact_email"),
        "leader_id": leader["_id"],
        "members": [leader["_id"]],
        "members_count": 1,
        "status": data.get("status") or "active",
        "created_by": parse_object_id(created_by, entity="user"),
        "created_at": now,
        "updated_at": now,
    }
    _clubs().insert(doc)
    users_repo.add_joined_club(leader["_id"], doc["_id"])
    users_repo.promote_to_leader(leader)
    log.info("club_created", club_id=str(doc["_id"]), leader_id=str(leader["_id"]))
    return doc


def update_club(club_id: str, changes: dict[str, Any]) -> dict[str, Any]:
    club = get_club_required(club_id)
    oid = club["_id"]

    updates = dict(changes)
    if updates.get("name") and _name_taken(updates["name"], exclude_id=oid):
        raise Conflict("A club with this name already exists", error_type="duplicate_name", field="name")

    old_leader = club.get("leader_id")
    new_leader_doc: dict[str, Any] | None = None
    if updates.get("leader_id"):
        new_leader_doc = users_repo.get_user(updates["leader_id"])
        if not new_leader_doc:
            raise NotFound("Leader user not found", error_type="leader_not_found")
        updates["leader_id"] = new_leader_doc["_id"]
        if new_leader_doc["_id"] == old_leader:
            new_leader_doc = None

    set_doc = {k: v for k, v in updates.items() if v is not None or k in ("logo", "contact_email")}
    set_doc["updated_at"] = utc_now()
    update: dict[str, Any] = {"$set": set_doc}
    if new_leader_doc is not None:
        # A new leader is also a member.
        update["$addToSet"] = {"members": new_leader_doc["_id"]}
        if new_leader_doc["_id"] not in (club.get("members") or []):
            update["$inc"] = {"members_count": 1}

    doc = _clubs().update({"_id": oid}, update)
    if not doc:
        raise NotFound("Club not found", error_type="club_not_found")

    if new_leader_doc is not None:
        users_repo.add_joined_club(new_leader_doc["_id"], oid)
        users_repo.promote_to_leader(new_leader_doc)
        if old_leader:
            users_repo.demote_if_not_leading(old_leader)
        log.info(
            "club_leader_transferred",
            club_id=str(oid),
            old_leader_id=str(old_leader) if old_leader else None,
            new_leader_id=str(new_leader_doc["_id"]),
        )
    log.info("club_updated", club_id=str(oid), fields=sorted(k for k in set_doc if k != "updated_at"))
    return doc


def delete_club(club_id: str) -> dict[str, Any]:
    club = get_club_required(club_id)
    oid = club["_id"]

    events = MongoCollection(EVENTS).count({"club_id": oid})
    if events:
        raise BadRequest(
            "Cannot delete a club that still has events",
            error_type="dependency_violation",
            events_count=events,
            suggestion="Delete or move the club's events first",
        )

    _clubs().delete(oid)
    cleaned = users_repo.pull_club_everywhere(oid)
    if club.get("leader_id"):
        users_repo.demote_if_not_leading(club["leader_id"])
    log.info("club_deleted", club_id=str(oid), memberships_cleaned=cleaned)
    return {"club_id": str(oid), "name": club.get("name"), "memberships_cleaned": cleaned}


def join_club(club_id: str, user_id: str) -> dict[str, Any]:
    club = get_club_required(club_id)
    uid = parse_object_id(user_id, entity="user")
    if (club.get("status") or "active") != "active":
        raise BadRequest("Club is not accepting members", error_type="club_inactive")

    # Atomic: only matches when the user is not yet a member.
    doc = _clubs().update(
        {"_id": club["_id"], "members": {"$ne": uid}},
        {"$addToSet": {"members": uid}, "$inc": {"members_count": 1}},
    )
    if not doc:
        raise Conflict("You are already a member of this club", error_type="already_member")
    users_repo.add_joined_club(uid, club["_id"])
    log.info("club_joined", club_id=str(club["_id"]), user_id=str(uid))
    return doc


def leave_club(club_id: str, user_id: str) -> dict[str, Any]:
    club = get_club_required(club_id)
    uid = parse_object_id(user_id, entity="user")
    if club.get("leader_id") == uid:
        raise BadRequest(
            "The club leader cannot leave the club",
            error_type="leader_cannot_leave",
            suggestion="Transfer leadership before leaving",
        )

    doc = _clubs().update(
        {"_id": club["_id"], "members": uid, "members_count": {"$gt": 0}},
        {"$pull": {"members": uid}, "$inc": {"members_count": -1}},
    )
    if not doc:
        raise BadRequest("You are not a member of this club", error_type="not_member")
    users_repo.remove_joined_club(uid, club["_id"])
    log.info("club_left", club_id=str(club["_id"]), user_id=str(uid))
    return doc


def is_member(club: dict[str, Any], user_id: str | None) -> bool:
    if not is_object_id(user_id):
        return False
    return ObjectId(str(user_id)) in (club.get("members") or [])


def activity_metrics(club: dict[str, Any]) -> dict[str, Any]:
    events = MongoCollection(EVENTS)
    return {
        "total_events": events.count({"club_id": club["_id"]}),
        "upcoming_events": events.count(
            {"club_id": club["_id"], "event_date": {"$gte": utc_now()}, "status": "published"}
        ),
        "members_count": int(club.get("members_count") or 0),
    }


def category_stats() -> list[dict[str, Any]]:
    rows = _clubs().aggregate(
        [
            {"$match": {"status": "active"}},
            {"$group": {"_id": "$category", "clubs": {"$sum": 1}, "members": {"$sum": "$members_count"}}},
            {"$sort": {"clubs": -1, "_id": 1}},
        ]
    )
    return [{"category": r["_id"], "clubs": int(r["clubs"]), "members": int(r["members"])} for r in rows]

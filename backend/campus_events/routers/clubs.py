from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from ..auth.rbac import current_user, forbidden, optional_user, require_roles
from ..auth.tokens import ROLE_ADMIN, ROLE_CLUB_LEADER, AuthUser
from ..db.mongo.pagination import page_request
from ..errors import BadRequest
from ..repositories import clubs_repo
from ..schemas.clubs import ADMIN_ONLY_CLUB_FIELDS, ClubCategory, ClubStatus, CreateClubRequest, UpdateClubRequest
from ._responses import ok, paged

router = APIRouter(tags=["clubs"])

_admin = require_roles(ROLE_ADMIN)


@router.get("")
def list_clubs(
    page: int | None = None,
    limit: int | None = None,
    search: str | None = None,
    category: ClubCategory | None = None,
    status: ClubStatus | None = None,
    min_members: int | None = Query(default=None, ge=0),
    max_members: int | None = Query(default=None, ge=0),
    sort_by: str = "created_at",
    sort_order: str = "desc",
):
    req = page_request(page, limit)
    result = clubs_repo.list_clubs(
        page=req,
        search=(search or "").strip() or None,
        category=category.value if category else None,
        status=status.value if status else None,
        min_members=min_members,
        max_members=max_members,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    leaders = clubs_repo.leaders_for(result.items)
    return paged(
        "Clubs retrieved successfully",
        "clubs",
        [clubs_repo.to_public_club(c, leaders=leaders) for c in result.items],
        result,
    )


@router.get("/stats/categories")
def category_stats():
    return ok("Category statistics retrieved successfully", clubs_repo.category_stats())


@router.get("/{club_id}")
def get_club(club_id: str, request: Request):
    club = clubs_repo.get_club_required(club_id)
    data = clubs_repo.to_public_club(club, leaders=clubs_repo.leaders_for([club]))
    data["activity_metrics"] = clubs_repo.activity_metrics(club)
    viewer = optional_user(request)
    if viewer is not None:
        data["is_member"] = clubs_repo.is_member(club, viewer.sub)
    return ok("Club retrieved successfully", data)


@router.post("", status_code=201)
def create_club(body: CreateClubRequest, user: AuthUser = Depends(_admin)):
    club = clubs_repo.create_club(body.model_dump(), created_by=user.sub)
    return ok(
        "Club created successfully",
        {"clubId": str(club["_id"]), "club": clubs_repo.to_public_club(club, leaders=clubs_repo.leaders_for([club]))},
    )


@router.patch("/{club_id}")
def update_club(club_id: str, body: UpdateClubRequest, request: Request):
    user = current_user(request)
    club = clubs_repo.get_club_required(club_id)
    changes = body.changes()

    if not user.is_admin:
        if str(club.get("leader_id")) != user.sub:
            raise forbidden(user, [ROLE_ADMIN, ROLE_CLUB_LEADER])
        if ADMIN_ONLY_CLUB_FIELDS & changes.keys():
            raise forbidden(user, [ROLE_ADMIN])
    if not changes:
        raise BadRequest("No valid fields provided for update", error_type="empty_update")

    doc = clubs_repo.update_club(club_id, changes)
    return ok("Club updated successfully", clubs_repo.to_public_club(doc, leaders=clubs_repo.leaders_for([doc])))


@router.delete("/{club_id}")
def delete_club(club_id: str, _: AuthUser = Depends(_admin)):
    return ok("Club deleted successfully", clubs_repo.delete_club(club_id))


@router.post("/{club_id}/join")
def join_club(club_id: str, request: Request):
    user = current_user(request)
    club = clubs_repo.join_club(club_id, user.sub)
    return ok(
        "Successfully joined the club",
        {"club_id": str(club["_id"]), "name": club.get("name"), "members_count": club.get("members_count")},
    )


@router.post("/{club_id}/leave")
def leave_club(club_id: str, request: Request):
    user = current_user(request)
    club = clubs_repo.leave_club(club_id, user.sub)
    return ok(
        "Successfully left the club",
        {"club_id": str(club["_id"]), "name": club.get("name"), "members_count": club.get("members_count")},
    )

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from ..auth.rbac import current_user, ensure_self_or_admin, forbidden, require_roles
from ..auth.tokens import ROLE_ADMIN, AuthUser
from ..db.mongo.documents import parse_object_id
from ..db.mongo.pagination import page_request
from ..errors import BadRequest
from ..repositories import events_repo, users_repo
from ..schemas.users import ADMIN_ONLY_USER_FIELDS, AdminCreateUserRequest, UpdateUserRequest, UserRole, UserStatus
from ._responses import ok, paged

router = APIRouter(tags=["users"])

_admin = require_roles(ROLE_ADMIN)

# Optional profile fields a client may reset with null.
_CLEARABLE = frozenset({"phone", "course", "profile_image"})


@router.get("")
def list_users(
    page: int | None = None,
    limit: int | None = None,
    role: UserRole | None = None,
    status: UserStatus | None = None,
    search: str | None = None,
    _: AuthUser = Depends(_admin),
):
    req = page_request(page, limit, default_limit=50)
    result = users_repo.list_users(
        page=req,
        role=role.value if role else None,
        status=status.value if status else None,
        search=(search or "").strip() or None,
    )
    return paged("Users retrieved successfully", "users", [users_repo.to_public_user(u) for u in result.items], result)


@router.post("", status_code=201)
def create_user(body: AdminCreateUserRequest, _: AuthUser = Depends(_admin)):
    doc, _token = users_repo.create_user(body.model_dump(), verified=True)
    return ok("User created successfully", {"userId": str(doc["_id"]), "user": users_repo.to_public_user(doc)})


# /me/* must be registered before /{user_id}.

@router.get("/me/profile")
def my_profile(request: Request):
    user = current_user(request)
    doc = users_repo.get_user_required(user.sub)
    data = users_repo.to_public_user(doc)
    data["display_role"] = users_repo.display_role(doc.get("role"))
    data["statistics"] = users_repo.activity_counts(doc["_id"])
    data["profile_completeness"] = users_repo.profile_completeness(doc)
    data["account_status"] = users_repo.account_status(doc)
    return ok("Profile retrieved successfully", data)


@router.get("/me/events")
def my_events(request: Request, type: str = "registered", page: int | None = None, limit: int | None = None):
    user = current_user(request)
    req = page_request(page, limit)
    if type == "registered":
        result = events_repo.registered_by(user.sub, page=req)
    elif type == "created":
        result = events_repo.created_by_user(user.sub, page=req)
    else:
        raise BadRequest("type must be one of: registered, created", error_type="invalid_type")
    return paged("Events retrieved successfully", "events", events_repo.public_events(result.items), result, type=type)


@router.get("/me/stats")
def my_stats(request: Request):
    user = current_user(request)
    return ok("Statistics retrieved successfully", users_repo.event_stats(parse_object_id(user.sub, entity="user")))


@router.get("/{user_id}")
def get_user(user_id: str, request: Request):
    user = current_user(request)
    parse_object_id(user_id, entity="user")
    ensure_self_or_admin(user, user_id)
    doc = users_repo.get_user_required(user_id)
    data = users_repo.to_public_user(doc)
    data["display_role"] = users_repo.display_role(doc.get("role"))
    data["profile_completeness"] = users_repo.profile_completeness(doc)
    return ok("User retrieved successfully", data)


@router.patch("/{user_id}")
def update_user(user_id: str, body: UpdateUserRequest, request: Request):
    user = current_user(request)
    parse_object_id(user_id, entity="user")
    ensure_self_or_admin(user, user_id)

    changes = {k: v for k, v in body.changes().items() if v is not None or k in _CLEARABLE}
    if not user.is_admin and ADMIN_ONLY_USER_FIELDS & changes.keys():
        raise forbidden(user, [ROLE_ADMIN])
    if not changes:
        raise BadRequest("No valid fields provided for update", error_type="empty_update")

    doc = users_repo.update_user(user_id, changes)
    return ok("User updated successfully", users_repo.to_public_user(doc))


@router.delete("/{user_id}")
def delete_user(user_id: str, user: AuthUser = Depends(_admin)):
    if parse_object_id(user_id, entity="user") == parse_object_id(user.sub, entity="user"):
        raise BadRequest("You cannot delete your own account", error_type="self_delete")
    return ok("User deleted successfully", users_repo.delete_user(user_id))

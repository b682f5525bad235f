from __future__ import annotations

from typing import Callable

from fastapi import Request

from ..errors import Forbidden, Unauthorized
from .tokens import ROLE_ADMIN, AuthUser


def current_user(request: Request) -> AuthUser:
    user = getattr(request.state, "user", None)
    if not isinstance(user, AuthUser):
        raise Unauthorized("Unauthorized")
    return user


def optional_user(request: Request) -> AuthUser | None:
    user = getattr(request.state, "user", None)
    return user if isinstance(user, AuthUser) else None


def forbidden(user: AuthUser, required_roles: list[str] | None = None) -> Forbidden:
    return Forbidden(
        "Access forbidden: insufficient role",
        error_type="insufficient_role",
        required_roles=required_roles,
        user_role=user.role,
    )


def require_roles(*roles: str) -> Callable[[Request], AuthUser]:
    """FastAPI dependency factory: the caller must hold one of `roles`."""
    allowed = list(roles)

    def _dep(request: Request) -> AuthUser:
        user = current_user(request)
        if user.role not in allowed:
            raise forbidden(user, allowed)
        return user

    return _dep


def ensure_self_or_admin(user: AuthUser, user_id: str) -> None:
    if user.role == ROLE_ADMIN or user.sub == str(user_id):
        return
    raise forbidden(user, [ROLE_ADMIN])

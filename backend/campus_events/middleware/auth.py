from __future__ import annotations

import re

from fastapi import HTTPException, Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..auth.tokens import TokenError, verify_access_token
from ..observability.context import user_id_var
from ..observability.logging import get_logger
from ..problem_details import problem_response

_PUBLIC_AUTH_PATHS = {
    "/api/auth/register",
    "/api/auth/login",
    "/api/auth/refresh",
    "/api/auth/logout",
    "/api/auth/verify-email",
    "/api/auth/resend-verification",
    "/api/auth/forgot-password",
    "/api/auth/reset-password",
}

# Any single segment; malformed ids are rejected by the route with 400.
_ID = r"[^/]+"

# Read-only catalogue endpoints; a bearer token is still honoured if sent.
_PUBLIC_GET_PATTERNS = [
    re.compile(r"^/api/clubs$"),
    re.compile(r"^/api/clubs/stats/categories$"),
    re.compile(rf"^/api/clubs/{_ID}$"),
    re.compile(r"^/api/events$"),
    re.compile(rf"^/api/events/{_ID}$"),
    re.compile(rf"^/api/comments/event/{_ID}$"),
    re.compile(rf"^/api/comments/{_ID}$"),
]


def is_public_path(path: str, method: str = "GET") -> bool:
    # "GET /" health is public.
    if path == "/":
        return True

    if path in _PUBLIC_AUTH_PATHS:
        return True

    if method.upper() in ("GET", "HEAD"):
        return any(p.match(path) for p in _PUBLIC_GET_PATTERNS)

    return False


def _bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization")
    if not auth:
        raise HTTPException(status_code=401, detail="Authorization header missing")

    parts = str(auth).split()
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise HTTPException(status_code=401, detail="Invalid authorization header format")
    return parts[1].strip()


async def require_auth(request: Request):
    path = request.url.path
    method = request.method.upper()

    # Let CORS preflight through without auth.
    if method == "OPTIONS":
        return

    # Only enforce auth for API routes.
    if not path.startswith("/api/"):
        return

    if is_public_path(path, method):
        # Optional identity for public reads (e.g. "am I registered?").
        if request.headers.get("authorization"):
            try:
                request.state.user = verify_access_token(_bearer_token(request))
            except (HTTPException, TokenError):
                request.state.user = None
        return

    token = _bearer_token(request)
    try:
        user = verify_access_token(token)
    except TokenError as e:
        raise HTTPException(status_code=int(getattr(e, "status_code", 401)), detail=str(e))

    request.state.user = user


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Bearer-token enforcement as ASGI middleware.

    Added before CORSMiddleware so CORS wraps all responses (including auth
    failures) and preflight works.
    """

    async def dispatch(self, request: Request, call_next):
        log = get_logger("auth_middleware")
        try:
            await require_auth(request)
        except Exception as exc:
            status_code = int(getattr(exc, "status_code", 500) or 500)
            detail = getattr(exc, "detail", None)
            if status_code >= 500:
                log.exception(
                    "auth_middleware_error",
                    status_code=status_code,
                    path=request.url.path,
                )
            else:
                log.info(
                    "auth_middleware_denied",
                    status_code=status_code,
                    path=request.url.path,
                    reason=str(detail) if isinstance(detail, str) else None,
                )
            return problem_response(
                request=request,
                status_code=status_code,
                title="Unauthorized" if status_code == 401 else None,
                detail=str(detail) if isinstance(detail, str) else None,
                headers={"WWW-Authenticate": "Bearer"} if status_code == 401 else None,
            )

        user = getattr(request.state, "user", None)
        token = user_id_var.set(user.sub if user else None)
        try:
            return await call_next(request)
        finally:
            user_id_var.reset(token)

from __future__ import annotations

import hashlib
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from jose import ExpiredSignatureError, JWTError, jwt

from ..db.mongo.documents import utc_now
from ..settings import settings

ALGORITHM = "HS256"

ROLE_STUDENT = "student"
ROLE_CLUB_LEADER = "club_leader"
ROLE_ADMIN = "admin"
ROLES = (ROLE_STUDENT, ROLE_CLUB_LEADER, ROLE_ADMIN)


class TokenError(Exception):
    def __init__(self, message: str, *, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class AuthUser:
    sub: str
    email: str | None
    role: str
    claims: dict[str, Any]

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class RefreshToken:
    token: str
    expires_at: datetime


def create_access_token(*, user_id: str, email: str, role: str) -> str:
    now = int(time.time())
    claims = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "nbf": now,
        "exp": now + int(settings.access_token_ttl_seconds),
        "sub": str(user_id),
        "data": {"userId": str(user_id), "email": email, "role": role},
    }
    return jwt.encode(claims, settings.signing_secret, algorithm=ALGORITHM)


def new_refresh_token() -> RefreshToken:
    return RefreshToken(
        token=secrets.token_hex(32),
        expires_at=utc_now() + timedelta(seconds=int(settings.refresh_token_ttl_seconds)),
    )


def new_one_time_token() -> str:
    # Email verification and password reset links.
    return secrets.token_hex(32)


def hash_opaque_token(token: str) -> str:
    """
    Opaque tokens (refresh, verification, reset) are stored hashed and
    peppered with the signing secret; the raw value only leaves in responses
    and emails.
    """
    t = str(token or "").strip()
    if not t:
        raise ValueError("token is required")
    h = hashlib.sha256()
    h.update(settings.signing_secret.encode("utf-8"))
    h.update(b"\n")
    h.update(t.encode("utf-8"))
    return h.hexdigest()


def verify_access_token(token: str) -> AuthUser:
    if not token:
        raise TokenError("Invalid authorization header format")

    try:
        claims = jwt.decode(
            token,
            settings.signing_secret,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except ExpiredSignatureError as e:
        raise TokenError("Token has expired") from e
    except JWTError as e:
        raise TokenError("Invalid or expired token") from e

    data = claims.get("data") if isinstance(claims.get("data"), dict) else {}
    sub = str(claims.get("sub") or data.get("userId") or "").strip()
    if not sub:
        raise TokenError("Invalid or expired token")

    role = str(data.get("role") or ROLE_STUDENT)
    if role not in ROLES:
        raise TokenError("Invalid or expired token")

    email = data.get("email")
    return AuthUser(sub=sub, email=str(email) if email else None, role=role, claims=claims)

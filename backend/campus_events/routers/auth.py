from __future__ import annotations

from fastapi import APIRouter, Request

from ..auth.passwords import verify_password
from ..auth.rbac import current_user
from ..auth.tokens import create_access_token, new_refresh_token
from ..db.mongo.documents import utc_now
from ..errors import BadRequest, Forbidden, Unauthorized
from ..observability.logging import get_logger
from ..repositories import users_repo
from ..schemas.users import (
    ChangePasswordRequest,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenRequest,
)
from ..services import notifications
from ..settings import settings
from ._responses import ok

router = APIRouter(tags=["auth"])
log = get_logger("auth")

_VERIFY_ERRORS = {
    "invalid_token": "Invalid verification token",
    "token_expired": "Verification token has expired. Please request a new one.",
    "already_verified": "Email address is already verified",
}


def _token_payload(user: dict) -> dict:
    refresh = new_refresh_token()
    users_repo.record_login(user["_id"], refresh)
    return {
        "access_token": create_access_token(user_id=str(user["_id"]), email=user["email"], role=user["role"]),
        "refresh_token": refresh.token,
        "token_type": "Bearer",
        "token_expires_in": int(settings.access_token_ttl_seconds),
        "refresh_token_expires_in": int(settings.refresh_token_ttl_seconds),
        "user": {
            "id": str(user["_id"]),
            "email": user["email"],
            "role": user["role"],
            "first_name": user.get("first_name"),
            "last_name": user.get("last_name"),
            "student_id": user.get("student_id"),
        },
    }


@router.post("/register", status_code=201)
def register(body: RegisterRequest):
    needs_verification = bool(settings.require_email_verification)
    user, token = users_repo.create_user(body.model_dump(), verified=not needs_verification)
    if token:
        notifications.send_verification_email(to_email=user["email"], first_name=user["first_name"], token=token)
    log.info("auth_registered", user_id=str(user["_id"]))
    return ok(
        "Registration successful" + (". Please check your email to verify your account." if token else ""),
        {"userId": str(user["_id"]), "email_verification_required": token is not None},
    )


@router.post("/login")
def login(body: LoginRequest):
    user = users_repo.find_by_email(body.email)
    if not user or not verify_password(body.password, user.get("password")):
        log.info("auth_login_failed", reason="invalid_credentials")
        raise Unauthorized("Invalid email or password", error_type="invalid_credentials")

    status = user.get("status") or "active"
    if status != "active":
        raise Forbidden(f"Your account is {status}. Please contact support.", error_type=f"account_{status}")

    if settings.require_email_verification and not user.get("is_email_verified"):
        raise Forbidden(
            "Please verify your email address before logging in",
            error_type="email_not_verified",
            email=user["email"],
        )

    payload = _token_payload(user)
    log.info("auth_login", user_id=str(user["_id"]), role=user["role"])
    return ok("Login successful", payload)


@router.post("/refresh")
def refresh(body: RefreshRequest):
    user = users_repo.find_by_refresh_token(body.refresh_token)
    if not user:
        raise Unauthorized("Invalid refresh token", error_type="invalid_refresh_token")

    expires = user.get("refresh_token_expires_at")
    if not expires or expires < utc_now():
        users_repo.revoke_refresh_token(user_id=user["_id"])
        raise Unauthorized("Refresh token has expired. Please log in again.", error_type="refresh_token_expired")

    if (user.get("status") or "active") != "active":
        users_repo.revoke_refresh_token(user_id=user["_id"])
        raise Forbidden("Your account is not active", error_type=f"account_{user.get('status')}")

    new = new_refresh_token()
    if not users_repo.rotate_refresh_token(user["_id"], body.refresh_token, new):
        # Lost a race with a concurrent refresh of the same token.
        raise Unauthorized("Invalid refresh token", error_type="invalid_refresh_token")

    return ok(
        "Token refreshed successfully",
        {
            "access_token": create_access_token(user_id=str(user["_id"]), email=user["email"], role=user["role"]),
            "refresh_token": new.token,
            "token_type": "Bearer",
            "token_expires_in": int(settings.access_token_ttl_seconds),
            "refresh_token_expires_in": int(settings.refresh_token_ttl_seconds),
        },
    )


@router.post("/logout")
def logout(body: LogoutRequest | None = None):
    revoked = False
    if body is not None and body.refresh_token:
        revoked = users_repo.revoke_refresh_token(token=body.refresh_token)
    log.info("auth_logout", refresh_token_revoked=revoked)
    return ok("Logged out successfully", {"refresh_token_revoked": revoked})


@router.post("/verify-email")
def verify_email(body: TokenRequest):
    outcome = users_repo.verify_email(body.token)
    if outcome != "success":
        raise BadRequest(_VERIFY_ERRORS[outcome], error_type=outcome)
    return ok("Email verified successfully. You can now log in.")


_RESEND_MESSAGE = "If an account with that email exists, a verification email has been sent"


@router.post("/resend-verification")
def resend_verification(body: EmailRequest):
    user = users_repo.find_by_email(body.email)
    if not user:
        return ok(_RESEND_MESSAGE)
    if user.get("is_email_verified"):
        raise BadRequest("Email address is already verified", error_type="already_verified")
    token = users_repo.issue_verification_token(user["_id"])
    notifications.send_verification_email(to_email=user["email"], first_name=user.get("first_name") or "", token=token)
    return ok(_RESEND_MESSAGE)


_FORGOT_MESSAGE = "If an account with that email exists, a password reset link has been sent"


@router.post("/forgot-password")
def forgot_password(body: EmailRequest):
    user = users_repo.find_by_email(body.email)
    if user and (user.get("status") or "active") == "active":
        token = users_repo.issue_password_reset(user["_id"])
        notifications.send_password_reset_email(
            to_email=user["email"], first_name=user.get("first_name") or "", token=token
        )
    else:
        log.info("auth_forgot_password_ignored")
    return ok(_FORGOT_MESSAGE)


@router.post("/reset-password")
def reset_password(body: ResetPasswordRequest):
    if not users_repo.reset_password(body.token, body.password):
        raise BadRequest("Invalid or expired reset token", error_type="invalid_reset_token")
    return ok("Password has been reset successfully. You can now log in with your new password.")


@router.get("/me")
def me(request: Request):
    user = current_user(request)
    doc = users_repo.get_user_required(user.sub)
    return ok("User profile retrieved successfully", users_repo.to_public_user(doc))


@router.post("/change-password")
def change_password(request: Request, body: ChangePasswordRequest):
    user = current_user(request)
    users_repo.change_password(user.sub, body.old_password, body.new_password)
    return ok("Password changed successfully. Please log in again.")

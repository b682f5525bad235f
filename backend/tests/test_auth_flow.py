from __future__ import annotations

from datetime import timedelta

import pytest

from campus_events.auth.tokens import hash_opaque_token

REGISTRATION = {
    "student_id": "SCI123456",
    "first_name": "Amina",
    "last_name": "Otieno",
    "email": "amina.otieno@usiu.ac.ke",
    "password": "correct-horse",
    "phone": "+254712345678",
    "course": "Computer Science",
    "year_of_study": 2,
}


@pytest.fixture()
def sent_emails(monkeypatch):
    from campus_events.services import notifications

    sent: list[dict] = []

    def _fake_send(*, to_email, subject, text, kind=None):
        sent.append({"to": to_email, "subject": subject, "text": text, "kind": kind})
        return {"ok": True, "messageId": "m-1"}

    monkeypatch.setattr(notifications.settings, "email_enabled", True)
    monkeypatch.setattr(notifications, "send_text_email", _fake_send)
    return sent


def _token_from(email: dict) -> str:
    return email["text"].split("token=", 1)[1].split()[0]


def _register_and_verify(client, sent_emails) -> dict:
    r = client.post("/api/auth/register", json=REGISTRATION)
    assert r.status_code == 201
    r = client.post("/api/auth/verify-email", json={"token": _token_from(sent_emails[-1])})
    assert r.status_code == 200
    return r.json()


def test_register_requires_verification_before_login(client, db, sent_emails):
    r = client.post("/api/auth/register", json=REGISTRATION)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["email_verification_required"] is True
    assert len(sent_emails) == 1
    assert sent_emails[0]["kind"] == "email_verification"

    stored = db.users.find_one({"email": REGISTRATION["email"]})
    assert stored["password"] != REGISTRATION["password"]
    assert stored["role"] == "student"
    # Only the hash of the emailed token is kept.
    assert stored["email_verification_token"] == hash_opaque_token(_token_from(sent_emails[0]))

    r = client.post("/api/auth/login", json={"email": REGISTRATION["email"], "password": REGISTRATION["password"]})
    assert r.status_code == 403
    assert r.json()["extensions"]["error_type"] == "email_not_verified"


def test_register_rejects_other_domains_and_role(client):
    r = client.post("/api/auth/register", json={**REGISTRATION, "email": "someone@gmail.com"})
    assert r.status_code == 422

    r = client.post("/api/auth/register", json={**REGISTRATION, "role": "admin"})
    assert r.status_code == 422


def test_register_duplicate_email_is_409(client, sent_emails):
    assert client.post("/api/auth/register", json=REGISTRATION).status_code == 201
    r = client.post("/api/auth/register", json={**REGISTRATION, "student_id": "SCI654321"})
    assert r.status_code == 409
    assert r.json()["extensions"]["error_type"] == "duplicate_email"


def test_verify_email_outcomes(client, db, sent_emails):
    _register_and_verify(client, sent_emails)
    token = _token_from(sent_emails[0])

    r = client.post("/api/auth/verify-email", json={"token": "f" * 64})
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "invalid_token"

    r = client.post("/api/auth/verify-email", json={"token": token})
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "already_verified"


def test_verify_email_expired(client, db, sent_emails):
    client.post("/api/auth/register", json=REGISTRATION)
    db.users.update_one(
        {"email": REGISTRATION["email"]},
        {"$set": {"email_verification_expires_at": db.users.find_one()["created_at"] - timedelta(hours=2)}},
    )
    r = client.post("/api/auth/verify-email", json={"token": _token_from(sent_emails[0])})
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "token_expired"


def test_login_refresh_logout_cycle(client, db, sent_emails):
    _register_and_verify(client, sent_emails)

    r = client.post("/api/auth/login", json={"email": REGISTRATION["email"], "password": "wrong-password"})
    assert r.status_code == 401

    r = client.post("/api/auth/login", json={"email": REGISTRATION["email"].upper(), "password": REGISTRATION["password"]})
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["token_type"] == "Bearer"
    assert data["user"]["role"] == "student"
    assert "password" not in data["user"]
    first_refresh = data["refresh_token"]
    assert len(first_refresh) == 64

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
    assert me.status_code == 200
    profile = me.json()["data"]
    assert profile["email"] == REGISTRATION["email"]
    for secret in ("password", "refresh_token", "email_verification_token"):
        assert secret not in profile

    r = client.post("/api/auth/refresh", json={"refresh_token": first_refresh})
    assert r.status_code == 200
    second_refresh = r.json()["data"]["refresh_token"]
    assert second_refresh != first_refresh

    # Rotation invalidates the old token.
    r = client.post("/api/auth/refresh", json={"refresh_token": first_refresh})
    assert r.status_code == 401
    assert r.json()["extensions"]["error_type"] == "invalid_refresh_token"

    r = client.post("/api/auth/logout", json={"refresh_token": second_refresh})
    assert r.status_code == 200
    assert r.json()["data"]["refresh_token_revoked"] is True
    assert client.post("/api/auth/refresh", json={"refresh_token": second_refresh}).status_code == 401


def test_logout_without_body_is_ok(client):
    r = client.post("/api/auth/logout")
    assert r.status_code == 200


def test_expired_refresh_token(client, db, sent_emails):
    _register_and_verify(client, sent_emails)
    r = client.post("/api/auth/login", json={"email": REGISTRATION["email"], "password": REGISTRATION["password"]})
    token = r.json()["data"]["refresh_token"]
    user = db.users.find_one({"email": REGISTRATION["email"]})
    db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"refresh_token_expires_at": user["created_at"] - timedelta(days=1)}},
    )
    r = client.post("/api/auth/refresh", json={"refresh_token": token})
    assert r.status_code == 401
    assert r.json()["extensions"]["error_type"] == "refresh_token_expired"


def test_suspended_account_cannot_login(client, user_factory):
    user_factory(email="suspended@usiu.ac.ke", status="suspended")
    r = client.post("/api/auth/login", json={"email": "suspended@usiu.ac.ke", "password": "password123"})
    assert r.status_code == 403
    assert r.json()["extensions"]["error_type"] == "account_suspended"


def test_forgot_and_reset_password(client, sent_emails, user_factory):
    user_factory(email="forgetful@usiu.ac.ke")

    # Unknown addresses get the same answer.
    r = client.post("/api/auth/forgot-password", json={"email": "nobody@usiu.ac.ke"})
    assert r.status_code == 200
    assert sent_emails == []

    r = client.post("/api/auth/forgot-password", json={"email": "forgetful@usiu.ac.ke"})
    assert r.status_code == 200
    token = _token_from(sent_emails[-1])

    r = client.post("/api/auth/reset-password", json={"token": token, "password": "brand-new-pass"})
    assert r.status_code == 200

    # Single use.
    r = client.post("/api/auth/reset-password", json={"token": token, "password": "another-pass"})
    assert r.status_code == 400

    r = client.post("/api/auth/login", json={"email": "forgetful@usiu.ac.ke", "password": "brand-new-pass"})
    assert r.status_code == 200


def test_resend_verification(client, sent_emails, user_factory):
    client.post("/api/auth/register", json=REGISTRATION)
    r = client.post("/api/auth/resend-verification", json={"email": REGISTRATION["email"]})
    assert r.status_code == 200
    assert len(sent_emails) == 2

    user_factory(email="done@usiu.ac.ke")
    r = client.post("/api/auth/resend-verification", json={"email": "done@usiu.ac.ke"})
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "already_verified"


def test_change_password(client, student, headers_for):
    headers = headers_for(student)

    r = client.post(
        "/api/auth/change-password",
        json={"old_password": "nope-nope", "new_password": "whatever123"},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "invalid_current_password"

    r = client.post(
        "/api/auth/change-password",
        json={"old_password": "password123", "new_password": "password123"},
        headers=headers,
    )
    assert r.status_code == 400

    r = client.post(
        "/api/auth/change-password",
        json={"old_password": "password123", "new_password": "short"},
        headers=headers,
    )
    assert r.status_code == 422

    r = client.post(
        "/api/auth/change-password",
        json={"old_password": "password123", "new_password": "longer-password"},
        headers=headers,
    )
    assert r.status_code == 200
    r = client.post("/api/auth/login", json={"email": student["email"], "password": "longer-password"})
    assert r.status_code == 200

from __future__ import annotations

import time

import pytest
from jose import jwt
from pydantic import ValidationError

from campus_events.auth.tokens import (
    ALGORITHM,
    TokenError,
    create_access_token,
    hash_opaque_token,
    verify_access_token,
)
from campus_events.schemas.clubs import CreateClubRequest
from campus_events.schemas.comments import CreateCommentRequest, FlagCommentRequest
from campus_events.schemas.events import CreateEventRequest
from campus_events.schemas.users import RegisterRequest, check_phone
from campus_events.settings import settings


def _claims(**overrides):
    now = int(time.time())
    claims = {
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": now,
        "nbf": now,
        "exp": now + 60,
        "sub": "64b7f0c2a1b2c3d4e5f60718",
        "data": {"userId": "64b7f0c2a1b2c3d4e5f60718", "email": "a@usiu.ac.ke", "role": "student"},
    }
    claims.update(overrides)
    return claims


def test_access_token_round_trip():
    token = create_access_token(user_id="64b7f0c2a1b2c3d4e5f60718", email="a@usiu.ac.ke", role="admin")
    user = verify_access_token(token)
    assert user.sub == "64b7f0c2a1b2c3d4e5f60718"
    assert user.is_admin


def test_expired_token_is_rejected():
    token = jwt.encode(_claims(exp=int(time.time()) - 10), settings.signing_secret, algorithm=ALGORITHM)
    with pytest.raises(TokenError, match="expired"):
        verify_access_token(token)


@pytest.mark.parametrize(
    "token",
    [
        jwt.encode(_claims(), "some-other-secret", algorithm=ALGORITHM),
        jwt.encode(_claims(aud="someone-else"), settings.signing_secret, algorithm=ALGORITHM),
        jwt.encode(_claims(data={"role": "superuser"}), settings.signing_secret, algorithm=ALGORITHM),
        "not-a-jwt",
    ],
)
def test_bad_tokens_are_rejected(token):
    with pytest.raises(TokenError):
        verify_access_token(token)


def test_opaque_token_hash_is_stable_and_peppered():
    assert hash_opaque_token("abc") == hash_opaque_token(" abc ")
    assert hash_opaque_token("abc") != hash_opaque_token("abd")
    assert len(hash_opaque_token("abc")) == 64
    with pytest.raises(ValueError):
        hash_opaque_token("")


def test_tampered_bearer_is_401(client):
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid or expired token"

    r = client.get("/api/auth/me", headers={"Authorization": "Token abc"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid authorization header format"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("+254712345678", "+254712345678"),
        ("0712 345 678", "0712345678"),
        ("0112-345-678", "0112345678"),
        ("", None),
    ],
)
def test_phone_normalization(raw, expected):
    assert check_phone(raw) == expected


def test_phone_rejects_foreign_numbers():
    with pytest.raises(ValueError):
        check_phone("+14155550123")


def test_register_request_normalizes_fields():
    req = RegisterRequest(
        student_id=" sci123456 ",
        first_name="  Amina ",
        last_name="Otieno",
        email="Amina.Otieno@USIU.ac.ke",
        password="  spaces kept  ",
    )
    assert req.student_id == "SCI123456"
    assert req.first_name == "Amina"
    assert req.email == "amina.otieno@usiu.ac.ke"
    assert req.password == "  spaces kept  "


def test_register_request_rejects_bad_student_id():
    with pytest.raises(ValidationError):
        RegisterRequest(
            student_id="12345678",
            first_name="Amina",
            last_name="Otieno",
            email="amina@usiu.ac.ke",
            password="password123",
        )


def test_enum_defaults_are_plain_values():
    assert FlagCommentRequest().reason == "inappropriate"
    club = CreateClubRequest(
        name="Debate Society",
        description="Weekly debates on current affairs.",
        category="Academic",
        leader_id="64b7f0c2a1b2c3d4e5f60718",
    )
    assert club.status == "active"


def test_event_request_rejects_crossed_dates():
    with pytest.raises(ValidationError):
        CreateEventRequest(
            title="Sports Day",
            description="Track and field for everyone.",
            club_id="64b7f0c2a1b2c3d4e5f60718",
            event_date="2030-05-01T10:00:00Z",
            end_date="2030-05-01T09:00:00Z",
            location="Main Field",
        )


def test_event_request_stores_naive_utc():
    req = CreateEventRequest(
        title="Sports Day",
        description="Track and field for everyone.",
        club_id="64b7f0c2a1b2c3d4e5f60718",
        event_date="2030-05-01T13:00:00+03:00",
        location="Main Field",
    )
    assert req.event_date.tzinfo is None
    assert req.event_date.hour == 10
    assert req.status == "draft"


def test_comment_request_rejects_bad_ids():
    with pytest.raises(ValidationError):
        CreateCommentRequest(event_id="nope", content="Hello")


def test_non_json_body_is_415(client, student, headers_for):
    r = client.post(
        "/api/comments",
        content=b"event_id=1",
        headers={**headers_for(student), "Content-Type": "application/x-www-form-urlencoded"},
    )
    assert r.status_code == 415
    assert r.headers["content-type"].startswith("application/problem+json")


def test_malformed_json_is_400(client, student, headers_for):
    r = client.post(
        "/api/comments",
        content=b"{not json",
        headers={**headers_for(student), "Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid JSON body"

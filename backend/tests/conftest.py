from __future__ import annotations

import os
import sys
from pathlib import Path

import bcrypt
import mongomock
import pytest

# Ensure `backend/` is on sys.path so `import campus_events.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("EMAIL_ENABLED", "false")

_real_gensalt = bcrypt.gensalt


@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch):
    monkeypatch.setattr(bcrypt, "gensalt", lambda rounds=4, prefix=b"2b": _real_gensalt(rounds=4, prefix=prefix))


@pytest.fixture()
def db(monkeypatch):
    from campus_events.db.mongo import client as mongo_client

    database = mongomock.MongoClient()["campus_events_test"]
    monkeypatch.setattr(mongo_client, "get_database", lambda: database)
    return database


@pytest.fixture()
def client(db):
    from fastapi.testclient import TestClient

    from campus_events.main import create_app

    return TestClient(create_app())


def _make_user(*, role: str = "student", email: str | None = None, student_id: str | None = None, **extra):
    from campus_events.repositories import users_repo

    n = _make_user.counter = getattr(_make_user, "counter", 0) + 1
    data = {
        "student_id": student_id or f"STU{100000 + n}",
        "first_name": extra.pop("first_name", "Test"),
        "last_name": extra.pop("last_name", f"User{n}"),
        "email": email or f"user{n}@usiu.ac.ke",
        "password": extra.pop("password", "password123"),
        "role": role,
        **extra,
    }
    doc, _ = users_repo.create_user(data, verified=True)
    return doc


def _auth_headers(user: dict) -> dict[str, str]:
    from campus_events.auth.tokens import create_access_token

    token = create_access_token(user_id=str(user["_id"]), email=user["email"], role=user["role"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def user_factory(db):
    return _make_user


@pytest.fixture()
def headers_for():
    return _auth_headers


@pytest.fixture()
def student(db):
    return _make_user()


@pytest.fixture()
def admin(db):
    return _make_user(role="admin")


@pytest.fixture()
def club_factory(db, admin):
    from campus_events.repositories import clubs_repo

    def _make(leader: dict, **overrides):
        n = _make.counter = getattr(_make, "counter", 0) + 1
        data = {
            "name": overrides.pop("name", f"Chess Club {n}"),
            "description": overrides.pop("description", "A friendly club for chess players."),
            "category": overrides.pop("category", "Recreation"),
            "leader_id": str(leader["_id"]),
            **overrides,
        }
        return clubs_repo.create_club(data, created_by=str(admin["_id"]))

    return _make


@pytest.fixture()
def event_factory(db, admin):
    from datetime import timedelta

    from campus_events.db.mongo.documents import utc_now
    from campus_events.repositories import events_repo
    from campus_events.auth.tokens import AuthUser

    def _make(club: dict, *, creator: dict | None = None, **overrides):
        owner = creator or admin
        data = {
            "title": "Opening Night",
            "description": "An evening of games and snacks.",
            "club_id": str(club["_id"]),
            "event_date": utc_now() + timedelta(days=7),
            "location": "Main Hall",
            "max_attendees": 0,
            "status": "published",
            "featured": False,
            "registration_required": True,
            "tags": [],
            "gallery": [],
            "social_media": {},
            **overrides,
        }
        user = AuthUser(sub=str(owner["_id"]), email=owner["email"], role=owner["role"], claims={})
        return events_repo.create_event(data, user=user)

    return _make

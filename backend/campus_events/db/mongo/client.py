from __future__ import annotations

from functools import lru_cache

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.collation import Collation
from pymongo.collection import Collection
from pymongo.database import Database

from ...observability.logging import get_logger
from ...settings import settings

log = get_logger("mongo")

USERS = "users"
CLUBS = "clubs"
EVENTS = "events"
COMMENTS = "comments"


@lru_cache(maxsize=1)
def get_client() -> MongoClient:
    # Connection is lazy; the first operation triggers server selection.
    return MongoClient(
        settings.mongodb_uri,
        serverSelectionTimeoutMS=int(settings.mongodb_timeout_ms),
        connectTimeoutMS=int(settings.mongodb_timeout_ms),
        appname="campus-events-api",
    )


def get_database() -> Database:
    return get_client()[settings.mongodb_db]


def collection(name: str) -> Collection:
    return get_database()[name]


def ensure_indexes() -> None:
    """
    Create the indexes the API relies on for uniqueness and lookups.

    Called once at startup. Failures are logged so the API can still boot
    against a read-only or not-yet-reachable cluster.
    """
    try:
        db = get_database()
        users = db[USERS]
        users.create_index([("email", ASCENDING)], unique=True, name="uniq_email")
        users.create_index([("student_id", ASCENDING)], unique=True, name="uniq_student_id")
        users.create_index([("refresh_token", ASCENDING)], sparse=True, name="refresh_token")
        users.create_index(
            [("email_verification_token", ASCENDING)], sparse=True, name="email_verification_token"
        )
        users.create_index([("password_reset_token", ASCENDING)], sparse=True, name="password_reset_token")

        db[CLUBS].create_index(
            [("name", ASCENDING)],
            unique=True,
            name="uniq_name_ci",
            collation=Collation(locale="en", strength=2),
        )
        db[CLUBS].create_index([("leader_id", ASCENDING)], name="leader_id")

        db[EVENTS].create_index([("club_id", ASCENDING), ("event_date", ASCENDING)], name="club_date")
        db[EVENTS].create_index([("event_date", ASCENDING)], name="event_date")
        db[EVENTS].create_index([("registered_users", ASCENDING)], name="registered_users")
        db[EVENTS].create_index([("created_by", ASCENDING)], name="created_by")

        db[COMMENTS].create_index(
            [("event_id", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)],
            name="event_status_created",
        )
        db[COMMENTS].create_index([("parent_comment_id", ASCENDING)], name="parent_comment_id")
        log.info("mongo_indexes_ready", database=settings.mongodb_db)
    except Exception as e:  # noqa: BLE001
        log.warning("mongo_indexes_failed", database=settings.mongodb_db, error=str(e))

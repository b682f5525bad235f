from __future__ import annotations

from datetime import datetime, timedelta

from bson import ObjectId

from campus_events.db.mongo.documents import utc_now
from campus_events.repositories import events_repo


def _iso(dt) -> str:
    return dt.isoformat() + "Z"


def _event_payload(club: dict, **overrides) -> dict:
    start = utc_now() + timedelta(days=10)
    return {
        "title": "Hackathon 2025",
        "description": "Twenty-four hours of building things together.",
        "club_id": str(club["_id"]),
        "event_date": _iso(start),
        "end_date": _iso(start + timedelta(hours=24)),
        "location": "Innovation Lab",
        "max_attendees": 2,
        "status": "published",
        "tags": ["coding", "  ", "coding", "prizes"],
        **overrides,
    }


def test_club_leader_creates_event_for_own_club(client, user_factory, club_factory, headers_for):
    leader = user_factory()
    club = club_factory(leader)
    other_club = club_factory(user_factory())

    # Promoted in storage; the token still says "student".
    r = client.post("/api/events", json=_event_payload(club), headers=headers_for(leader))
    assert r.status_code == 201
    event = r.json()["data"]["event"]
    assert event["created_by"] == str(leader["_id"])
    assert event["current_registrations"] == 0
    assert event["tags"] == ["coding", "prizes"]
    assert "registered_users" not in event

    r = client.post("/api/events", json=_event_payload(other_club), headers=headers_for(leader))
    assert r.status_code == 403


def test_event_validation(client, admin, user_factory, club_factory, headers_for):
    club = club_factory(user_factory())
    start = utc_now() + timedelta(days=3)
    bad = [
        {"end_date": _iso(start - timedelta(days=10))},
        {"registration_deadline": _iso(start + timedelta(days=30))},
        {"max_attendees": -1},
        {"tags": [f"t{i}" for i in range(11)]},
        {"current_registrations": 5},
        {"status": "archived"},
    ]
    for override in bad:
        r = client.post("/api/events", json=_event_payload(club, **override), headers=headers_for(admin))
        assert r.status_code == 422, override

    r = client.post("/api/events", json=_event_payload({"_id": ObjectId()}), headers=headers_for(admin))
    assert r.status_code == 404


def test_list_events_hides_drafts_and_filters(client, user_factory, club_factory, event_factory):
    club = club_factory(user_factory(), name="Film Club")
    event_factory(club, title="Screening", category="Arts")
    event_factory(club, title="Secret Planning", status="draft")
    event_factory(club, title="Gala", featured=True, category="arts")
    event_factory(club, title="Old Show", event_date=utc_now() - timedelta(days=3))

    r = client.get("/api/events")
    assert r.status_code == 200
    data = r.json()["data"]
    titles = [e["title"] for e in data["events"]]
    assert "Secret Planning" not in titles
    assert titles[0] == "Old Show"
    assert data["pagination"]["limit"] == 12
    assert data["events"][0]["club_name"] == "Film Club"
    assert data["filters_applied"]["sort"] == "date-asc"

    r = client.get("/api/events", params={"status": "featured"})
    assert [e["title"] for e in r.json()["data"]["events"]] == ["Gala"]

    r = client.get("/api/events", params={"category": "ARTS", "sort": "title-asc"})
    assert [e["title"] for e in r.json()["data"]["events"]] == ["Gala", "Screening"]

    r = client.get("/api/events", params={"date": "past"})
    assert [e["title"] for e in r.json()["data"]["events"]] == ["Old Show"]

    r = client.get("/api/events", params={"search": "gala"})
    assert r.json()["data"]["pagination"]["total"] == 1


def test_event_details_registration_status(client, student, user_factory, club_factory, event_factory, headers_for):
    club = club_factory(user_factory(), logo="https://cdn.example/logo.png")
    event = event_factory(club, max_attendees=3)

    r = client.get(f"/api/events/{event['_id']}")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["club_logo"] == "https://cdn.example/logo.png"
    assert data["registration_status"] == {"is_full": False, "spots_remaining": 3, "deadline_passed": False}

    client.post(f"/api/events/{event['_id']}/register", headers=headers_for(student))
    r = client.get(f"/api/events/{event['_id']}", headers=headers_for(student))
    status = r.json()["data"]["registration_status"]
    assert status["is_registered"] is True
    assert status["spots_remaining"] == 2


def test_draft_details_hidden_from_public(client, student, admin, user_factory, club_factory, event_factory, headers_for):
    event = event_factory(club_factory(user_factory()), status="draft")
    assert client.get(f"/api/events/{event['_id']}").status_code == 404
    assert client.get(f"/api/events/{event['_id']}", headers=headers_for(student)).status_code == 404
    assert client.get(f"/api/events/{event['_id']}", headers=headers_for(admin)).status_code == 200


def test_registration_capacity_and_duplicates(client, db, user_factory, club_factory, event_factory, headers_for):
    event = event_factory(club_factory(user_factory()), max_attendees=2)
    url = f"/api/events/{event['_id']}"
    a, b, c = user_factory(), user_factory(), user_factory()

    assert client.post(f"{url}/register", headers=headers_for(a)).status_code == 200
    r = client.post(f"{url}/register", headers=headers_for(a))
    assert r.status_code == 409
    assert r.json()["extensions"]["error_type"] == "already_registered"

    assert client.post(f"{url}/register", headers=headers_for(b)).status_code == 200
    r = client.post(f"{url}/register", headers=headers_for(c))
    assert r.status_code == 409
    assert r.json()["extensions"]["error_type"] == "event_full"

    doc = db.events.find_one({"_id": event["_id"]})
    assert doc["current_registrations"] == len(doc["registered_users"]) == 2
    assert event["_id"] in db.users.find_one({"_id": a["_id"]})["registered_events"]


def test_registration_rules(client, student, user_factory, club_factory, event_factory, headers_for):
    club = club_factory(user_factory())
    headers = headers_for(student)

    draft = event_factory(club, status="draft")
    r = client.post(f"/api/events/{draft['_id']}/register", headers=headers)
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "event_not_published"

    closed = event_factory(club, registration_deadline=utc_now() - timedelta(hours=1))
    r = client.post(f"/api/events/{closed['_id']}/register", headers=headers)
    assert r.json()["extensions"]["error_type"] == "registration_closed"

    started = event_factory(club, event_date=utc_now() - timedelta(hours=1))
    r = client.post(f"/api/events/{started['_id']}/register", headers=headers)
    assert r.json()["extensions"]["error_type"] == "event_started"

    assert client.post(f"/api/events/{ObjectId()}/register", headers=headers).status_code == 404


def test_registration_sends_confirmation_best_effort(client, monkeypatch, student, user_factory, club_factory, event_factory, headers_for):
    from campus_events.services import notifications

    def _boom(**_kwargs):
        raise RuntimeError("SES is down")

    monkeypatch.setattr(notifications.settings, "email_enabled", True)
    monkeypatch.setattr(notifications, "send_text_email", _boom)

    event = event_factory(club_factory(user_factory()))
    r = client.post(f"/api/events/{event['_id']}/register", headers=headers_for(student))
    assert r.status_code == 200


def test_unregister(client, db, student, user_factory, club_factory, event_factory, headers_for):
    event = event_factory(club_factory(user_factory()))
    url = f"/api/events/{event['_id']}"
    headers = headers_for(student)

    r = client.post(f"{url}/unregister", headers=headers)
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "not_registered"

    client.post(f"{url}/register", headers=headers)
    r = client.post(f"{url}/unregister", headers=headers)
    assert r.status_code == 200
    assert r.json()["data"]["current_registrations"] == 0
    assert db.users.find_one({"_id": student["_id"]})["registered_events"] == []


def test_update_permissions_and_dates(client, student, user_factory, club_factory, event_factory, headers_for):
    leader = user_factory()
    event = event_factory(club_factory(leader))
    url = f"/api/events/{event['_id']}"

    assert client.patch(url, json={"title": "Hijacked"}, headers=headers_for(student)).status_code == 403

    r = client.patch(url, json={"title": "Renamed by leader"}, headers=headers_for(leader))
    assert r.status_code == 200
    assert r.json()["data"]["title"] == "Renamed by leader"

    # Checked against the stored event_date.
    r = client.patch(url, json={"end_date": _iso(utc_now())}, headers=headers_for(leader))
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "invalid_dates"

    r = client.patch(url, json={"current_registrations": 99}, headers=headers_for(leader))
    assert r.status_code == 422


def test_delete_event_cascades(client, db, admin, student, user_factory, club_factory, event_factory, headers_for):
    event = event_factory(club_factory(user_factory()))
    client.post(f"/api/events/{event['_id']}/register", headers=headers_for(student))
    client.post(
        "/api/comments",
        json={"event_id": str(event["_id"]), "content": "Looking forward to it"},
        headers=headers_for(student),
    )
    assert db.comments.count_documents({"event_id": event["_id"]}) == 1

    assert client.delete(f"/api/events/{event['_id']}", headers=headers_for(student)).status_code == 403
    r = client.delete(f"/api/events/{event['_id']}", headers=headers_for(admin))
    assert r.status_code == 200
    assert r.json()["data"]["comments_deleted"] == 1

    assert db.events.find_one({"_id": event["_id"]}) is None
    assert db.comments.count_documents({"event_id": event["_id"]}) == 0
    assert db.users.find_one({"_id": student["_id"]})["registered_events"] == []


def test_my_registered_created_and_history(client, db, student, user_factory, club_factory, event_factory, headers_for):
    leader = user_factory()
    club = club_factory(leader)
    upcoming = event_factory(club, creator=leader, max_attendees=4)
    past = event_factory(club, creator=leader, event_date=utc_now() - timedelta(days=2))

    client.post(f"/api/events/{upcoming['_id']}/register", headers=headers_for(student))
    # Past events cannot be registered for through the API.
    db.events.update_one(
        {"_id": past["_id"]},
        {"$push": {"registered_users": student["_id"]}, "$inc": {"current_registrations": 1}},
    )

    r = client.get("/api/events/me/registered", headers=headers_for(student))
    events = {e["id"]: e for e in r.json()["data"]["events"]}
    assert events[str(upcoming["_id"])]["is_upcoming"] is True
    assert events[str(upcoming["_id"])]["can_unregister"] is True
    assert events[str(past["_id"])]["is_past"] is True

    r = client.get("/api/events/me/history", headers=headers_for(student))
    assert [e["id"] for e in r.json()["data"]["events"]] == [str(past["_id"])]

    r = client.get("/api/events/me/created", headers=headers_for(leader))
    data = r.json()["data"]
    assert data["statistics"]["total"] == 2
    assert data["statistics"]["published"] == 2
    assert data["statistics"]["total_registrations"] == 2
    metrics = {e["id"]: e["registration_metrics"] for e in data["events"]}
    assert metrics[str(upcoming["_id"])] == {
        "registrations": 1,
        "capacity": 4,
        "fill_rate": 25.0,
        "spots_remaining": 3,
    }


def test_lowering_capacity_below_registrations_is_rejected(client, user_factory, club_factory, event_factory, headers_for):
    leader = user_factory()
    event = event_factory(club_factory(leader), max_attendees=3)
    url = f"/api/events/{event['_id']}"
    for _ in range(2):
        assert client.post(f"{url}/register", headers=headers_for(user_factory())).status_code == 200

    r = client.patch(url, json={"max_attendees": 1}, headers=headers_for(leader))
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "capacity_below_registrations"
    assert r.json()["extensions"]["current_registrations"] == 2

    r = client.patch(url, json={"max_attendees": 2}, headers=headers_for(leader))
    assert r.status_code == 200
    assert r.json()["data"]["max_attendees"] == 2

    # 0 means unlimited.
    assert client.patch(url, json={"max_attendees": 0}, headers=headers_for(leader)).status_code == 200


def test_capacity_update_rechecks_registrations_at_write_time(
    client, db, monkeypatch, user_factory, club_factory, event_factory, headers_for
):
    leader = user_factory()
    event = event_factory(club_factory(leader), max_attendees=5)
    url = f"/api/events/{event['_id']}"
    for _ in range(3):
        client.post(f"{url}/register", headers=headers_for(user_factory()))

    # The first read sees the event before those registrations landed.
    real_get = events_repo.get_event_required
    reads: list[str] = []

    def stale_first_read(event_id):
        doc = real_get(event_id)
        reads.append(str(event_id))
        return {**doc, "current_registrations": 0} if len(reads) == 1 else doc

    monkeypatch.setattr(events_repo, "get_event_required", stale_first_read)

    r = client.patch(url, json={"max_attendees": 2}, headers=headers_for(leader))
    assert r.status_code == 400
    assert r.json()["extensions"]["error_type"] == "capacity_below_registrations"
    assert r.json()["extensions"]["current_registrations"] == 3
    assert db.events.find_one({"_id": event["_id"]})["max_attendees"] == 5


def test_registration_open_filter(client, db, user_factory, club_factory, event_factory):
    club = club_factory(user_factory())
    event_factory(club, title="Open Anytime")
    event_factory(club, title="Open Until Friday", registration_deadline=utc_now() + timedelta(days=2))
    closed = event_factory(club, title="Deadline Passed")
    db.events.update_one({"_id": closed["_id"]}, {"$set": {"registration_deadline": utc_now() - timedelta(days=1)}})
    event_factory(club, title="Walk In", registration_required=False)
    event_factory(club, title="Not Yet Public", status="draft")

    r = client.get("/api/events", params={"status": "registration-open", "sort": "title-asc"})
    assert r.status_code == 200
    assert [e["title"] for e in r.json()["data"]["events"]] == ["Open Anytime", "Open Until Friday"]


def test_date_range_windows():
    now = datetime(2025, 12, 17, 15, 0)

    assert events_repo.date_range("today", now=now) == {
        "$gte": datetime(2025, 12, 17),
        "$lt": datetime(2025, 12, 18),
    }
    assert events_repo.date_range("tomorrow", now=now) == {
        "$gte": datetime(2025, 12, 18),
        "$lt": datetime(2025, 12, 19),
    }
    assert events_repo.date_range("this-week", now=now) == {
        "$gte": datetime(2025, 12, 15),
        "$lt": datetime(2025, 12, 22),
    }
    # December rolls over into January of the next year.
    assert events_repo.date_range("this-month", now=now) == {
        "$gte": datetime(2025, 12, 1),
        "$lt": datetime(2026, 1, 1),
    }
    assert events_repo.date_range("this-month", now=datetime(2025, 2, 10)) == {
        "$gte": datetime(2025, 2, 1),
        "$lt": datetime(2025, 3, 1),
    }
    assert events_repo.date_range("upcoming", now=now) == {"$gte": now}
    assert events_repo.date_range("past", now=now) == {"$lt": now}
    assert events_repo.date_range("next-decade", now=now) is None


def test_date_filter_upcoming_and_unknown(client, user_factory, club_factory, event_factory):
    club = club_factory(user_factory())
    event_factory(club, title="Next Week")
    event_factory(club, title="Last Week", event_date=utc_now() - timedelta(days=7))

    r = client.get("/api/events", params={"date": "upcoming"})
    assert [e["title"] for e in r.json()["data"]["events"]] == ["Next Week"]

    # Unknown windows do not filter.
    r = client.get("/api/events", params={"date": "someday"})
    assert r.json()["data"]["pagination"]["total"] == 2


def test_sort_variants(client, db, user_factory, club_factory, event_factory, headers_for):
    club = club_factory(user_factory())
    soon = event_factory(club, title="Alpha", event_date=utc_now() + timedelta(days=2))
    later = event_factory(club, title="Bravo", event_date=utc_now() + timedelta(days=5), featured=True)
    latest = event_factory(club, title="Charlie", event_date=utc_now() + timedelta(days=9))

    base = utc_now() - timedelta(days=30)
    for offset, doc in ((2, soon), (0, later), (1, latest)):
        db.events.update_one({"_id": doc["_id"]}, {"$set": {"created_at": base + timedelta(days=offset)}})
    for _ in range(2):
        client.post(f"/api/events/{latest['_id']}/register", headers=headers_for(user_factory()))
    client.post(f"/api/events/{later['_id']}/register", headers=headers_for(user_factory()))

    def titles(sort: str) -> list[str]:
        r = client.get("/api/events", params={"sort": sort})
        assert r.status_code == 200
        return [e["title"] for e in r.json()["data"]["events"]]

    assert titles("date-asc") == ["Alpha", "Bravo", "Charlie"]
    assert titles("date-desc") == ["Charlie", "Bravo", "Alpha"]
    assert titles("title-desc") == ["Charlie", "Bravo", "Alpha"]
    assert titles("featured") == ["Bravo", "Alpha", "Charlie"]
    assert titles("popular") == ["Charlie", "Bravo", "Alpha"]
    assert titles("recent") == ["Alpha", "Charlie", "Bravo"]
    # Unknown sort keys fall back to date order.
    assert titles("shuffle") == ["Alpha", "Bravo", "Charlie"]

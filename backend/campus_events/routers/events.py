from __future__ import annotations

from fastapi import APIRouter, Request

from ..auth.rbac import current_user, optional_user
from ..db.mongo.documents import utc_now
from ..db.mongo.pagination import page_request
from ..errors import BadRequest
from ..repositories import clubs_repo, events_repo, users_repo
from ..schemas.events import CreateEventRequest, UpdateEventRequest
from ..services import notifications
from ._responses import ok, paged

router = APIRouter(tags=["events"])

EVENTS_PAGE_LIMIT = 12


@router.get("")
def list_events(
    page: int | None = None,
    limit: int | None = None,
    search: str | None = None,
    club_id: str | None = None,
    category: str | None = None,
    status: str | None = None,
    date: str | None = None,
    sort: str | None = None,
):
    filters = {
        "search": (search or "").strip() or None,
        "club_id": (club_id or "").strip() or None,
        "category": (category or "").strip() or None,
        "status": (status or "").strip() or None,
        "date": (date or "").strip() or None,
        "sort": (sort or "").strip() or "date-asc",
    }
    req = page_request(page, limit, default_limit=EVENTS_PAGE_LIMIT)
    result = events_repo.list_events(page=req, **filters)
    return paged(
        "Events fetched successfully",
        "events",
        events_repo.public_events(result.items),
        result,
        filters_applied=filters,
    )


@router.post("", status_code=201)
def create_event(body: CreateEventRequest, request: Request):
    user = current_user(request)
    event = events_repo.create_event(body.model_dump(), user=user)
    return ok("Event created successfully", {"eventId": str(event["_id"]), "event": events_repo.to_public_event(event)})


# /me/* must be registered before /{event_id}.

@router.get("/me/registered")
def my_registered(request: Request, page: int | None = None, limit: int | None = None):
    user = current_user(request)
    result = events_repo.registered_by(user.sub, page=page_request(page, limit))
    now = utc_now()
    items = events_repo.public_events(result.items)
    for out, doc in zip(items, result.items):
        out.update(events_repo.timing_flags(doc, now=now))
    return paged("Registered events retrieved successfully", "events", items, result)


@router.get("/me/created")
def my_created(request: Request, page: int | None = None, limit: int | None = None):
    user = current_user(request)
    result = events_repo.created_by_user(user.sub, page=page_request(page, limit))
    items = events_repo.public_events(result.items)
    for out, doc in zip(items, result.items):
        out["registration_metrics"] = events_repo.registration_metrics(doc)
    return paged(
        "Created events retrieved successfully",
        "events",
        items,
        result,
        statistics=events_repo.creator_statistics(user.sub),
    )


@router.get("/me/history")
def my_history(request: Request, page: int | None = None, limit: int | None = None):
    user = current_user(request)
    result = events_repo.history(user.sub, page=page_request(page, limit))
    return paged("Event history retrieved successfully", "events", events_repo.public_events(result.items), result)


@router.get("/{event_id}")
def get_event(event_id: str, request: Request):
    viewer = optional_user(request)
    event = events_repo.get_visible_event(event_id, viewer)
    data = events_repo.to_public_event(event)
    club = clubs_repo.get_club(event["club_id"]) if event.get("club_id") else None
    data["club_name"] = (club or {}).get("name")
    data["club_category"] = (club or {}).get("category")
    data["club_logo"] = (club or {}).get("logo")
    data["registration_status"] = events_repo.registration_status(event, viewer)
    return ok("Event retrieved successfully", data)


@router.patch("/{event_id}")
def update_event(event_id: str, body: UpdateEventRequest, request: Request):
    user = current_user(request)
    changes = body.changes()
    if not changes:
        raise BadRequest("No valid fields provided for update", error_type="empty_update")
    event = events_repo.update_event(event_id, changes, user=user)
    return ok("Event updated successfully", events_repo.to_public_event(event))


@router.delete("/{event_id}")
def delete_event(event_id: str, request: Request):
    user = current_user(request)
    return ok("Event deleted successfully", events_repo.delete_event(event_id, user=user))


@router.post("/{event_id}/register")
def register(event_id: str, request: Request):
    user = current_user(request)
    event = events_repo.register(event_id, user.sub)

    attendee = users_repo.get_user(user.sub)
    if attendee and attendee.get("email"):
        notifications.send_registration_confirmation(
            to_email=attendee["email"], first_name=attendee.get("first_name") or "", event=event
        )

    return ok(
        "Successfully registered for the event",
        {
            "event_id": str(event["_id"]),
            "title": event.get("title"),
            "current_registrations": event.get("current_registrations"),
            "registration_status": events_repo.registration_status(event, user),
        },
    )


@router.post("/{event_id}/unregister")
def unregister(event_id: str, request: Request):
    user = current_user(request)
    event = events_repo.unregister(event_id, user.sub)
    return ok(
        "Successfully unregistered from event",
        {
            "event_id": str(event["_id"]),
            "title": event.get("title"),
            "current_registrations": event.get("current_registrations"),
        },
    )

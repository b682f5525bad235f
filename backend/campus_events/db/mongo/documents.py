"""Conversions between stored documents and API payloads."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Iterable

from bson import ObjectId
from bson.errors import InvalidId

from .errors import StoreValidation


def utc_now() -> datetime:
    # BSON dates carry no zone; we store naive UTC everywhere.
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def to_naive_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    dt = to_naive_utc(value)
    return dt.isoformat(timespec="seconds") + "Z" if dt else None


def parse_object_id(value: Any, *, entity: str = "resource") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    raw = str(value or "").strip()
    try:
        return ObjectId(raw)
    except (InvalidId, TypeError) as e:
        raise StoreValidation(message=f"Invalid {entity} id", key={"id": raw}) from e


def is_object_id(value: Any) -> bool:
    return ObjectId.is_valid(str(value or ""))


def _jsonable(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def to_api(doc: dict[str, Any] | None, *, hidden: Iterable[str] = ()) -> dict[str, Any] | None:
    """
    Render a stored document for API output: `_id` becomes `id`, ObjectIds
    become strings and datetimes ISO-8601 UTC. Keys in `hidden` are dropped.
    """
    if doc is None:
        return None
    drop = set(hidden)
    out: dict[str, Any] = {}
    if "_id" in doc:
        out["id"] = str(doc["_id"])
    for k, v in doc.items():
        if k == "_id" or k in drop:
            continue
        out[k] = _jsonable(v)
    return out

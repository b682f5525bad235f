from __future__ import annotations

from typing import Any

from ..db.mongo.collection import Page


def ok(message: str, data: Any = None) -> dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def paged(message: str, key: str, items: list[Any], page: Page, **extra: Any) -> dict[str, Any]:
    data: dict[str, Any] = {key: items, "pagination": page.meta()}
    data.update(extra)
    return ok(message, data)

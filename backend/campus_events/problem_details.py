"""
RFC7807 problem documents.

Every error leaves the API as `application/problem+json`. Alongside the
standard members the document carries `success: false` and `message`, so
clients can branch on the same keys they read from the success envelope.
Domain errors name themselves through `extensions.error_type`, which is also
reflected in the problem `type` URI.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.responses import ORJSONResponse

from .settings import get_settings

PROBLEM_JSON = "application/problem+json"
PROBLEM_TYPE_PREFIX = "urn:campus-events:problem:"


def _title_for(status_code: int) -> str:
    if status_code >= 500:
        return "Internal Server Error"
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Error"


def _type_for(extensions: dict[str, Any] | None) -> str:
    error_type = (extensions or {}).get("error_type")
    return f"{PROBLEM_TYPE_PREFIX}{error_type}" if error_type else "about:blank"


def problem_response(
    *,
    request: Request,
    status_code: int,
    title: str | None = None,
    detail: str | None = None,
    errors: list[dict[str, Any]] | None = None,
    extensions: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> ORJSONResponse:
    status_code = int(status_code)
    title = title or _title_for(status_code)
    if status_code >= 500 and get_settings().is_production:
        # Server-side failures never leak internals in production.
        detail = None

    body: dict[str, Any] = {
        "success": False,
        "type": _type_for(extensions),
        "title": title,
        "status": status_code,
        "message": str(detail) if detail else title,
        "instance": request.url.path,
    }
    if detail:
        body["detail"] = str(detail)

    request_id = getattr(request.state, "request_id", None) or request.headers.get("x-request-id")
    if request_id:
        body["requestId"] = str(request_id)
    if errors:
        body["errors"] = errors
    if extensions:
        # Kept in their own member so they cannot shadow the reserved keys.
        body["extensions"] = extensions

    return ORJSONResponse(status_code=status_code, content=body, media_type=PROBLEM_JSON, headers=headers)

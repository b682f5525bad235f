from __future__ import annotations

from typing import Any

from fastapi import Request
from starlette.responses import Response

from .problem_details import problem_response


class ApiError(Exception):
    """
    Domain-level failure raised by repositories and routers.

    Rendered as problem+json: `message` becomes `detail`, `error_type` and any
    extra keyword context land in `extensions`.
    """

    status_code = 400
    title: str | None = None

    def __init__(self, message: str, *, error_type: str | None = None, **extra: Any):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.extra = {k: v for k, v in extra.items() if v is not None}

    def extensions(self) -> dict[str, Any] | None:
        ext = dict(self.extra)
        if self.error_type:
            ext["error_type"] = self.error_type
        return ext or None


class BadRequest(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401
    title = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class ServiceUnavailable(ApiError):
    status_code = 503


def api_error_handler(request: Request, exc: ApiError) -> Response:
    return problem_response(
        request=request,
        status_code=exc.status_code,
        title=exc.title,
        detail=exc.message,
        extensions=exc.extensions(),
    )

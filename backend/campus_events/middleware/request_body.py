from __future__ import annotations

import orjson
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger
from ..problem_details import problem_response

_BODY_METHODS = {"POST", "PUT", "PATCH"}


def _is_json_content_type(value: str | None) -> bool:
    media = str(value or "").split(";", 1)[0].strip().lower()
    return media == "application/json" or (media.startswith("application/") and media.endswith("+json"))


class RequestBodyMiddleware(BaseHTTPMiddleware):
    """
    Gate request bodies before routing: API writes that carry a body must be
    JSON, and that JSON must parse. Empty bodies (e.g. POST .../join) pass.
    """

    async def dispatch(self, request: Request, call_next):
        method = request.method.upper()
        if method not in _BODY_METHODS or not request.url.path.startswith("/api/"):
            return await call_next(request)

        body = await request.body()
        if not body.strip():
            return await call_next(request)

        log = get_logger("request_body")
        if not _is_json_content_type(request.headers.get("content-type")):
            log.info("request_body_rejected", reason="unsupported_media_type", path=request.url.path)
            return problem_response(
                request=request,
                status_code=415,
                detail="Content-Type must be application/json",
            )

        try:
            orjson.loads(body)
        except orjson.JSONDecodeError:
            log.info("request_body_rejected", reason="invalid_json", path=request.url.path)
            return problem_response(request=request, status_code=400, detail="Invalid JSON body")

        return await call_next(request)

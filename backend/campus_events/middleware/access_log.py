from __future__ import annotations

import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..observability.logging import get_logger

# Requests slower than this are logged as "request_slow".
SLOW_REQUEST_MS = 1000.0


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One structured line per request; health checks can be excluded."""

    def __init__(self, app, *, exclude_paths: set[str] | None = None, slow_ms: float = SLOW_REQUEST_MS):
        super().__init__(app)
        self._exclude = frozenset(exclude_paths or ())
        self._slow_ms = float(slow_ms)
        self._log = get_logger("access")

    def _fields(self, request: Request) -> dict[str, object]:
        # Auth runs further in, so the principal is only on request.state.
        user = getattr(request.state, "user", None)
        client = request.client
        return {
            "http_method": request.method.upper(),
            "path": request.url.path,
            "client_ip": client.host if client else None,
            "user_id": getattr(user, "sub", None),
            "user_role": getattr(user, "role", None),
        }

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self._exclude:
            return await call_next(request)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._log.exception("request_error", duration_ms=_elapsed_ms(start), **self._fields(request))
            raise

        duration = _elapsed_ms(start)
        event = "request_slow" if duration >= self._slow_ms else "request"
        emit = self._log.warning if response.status_code >= 500 or event == "request_slow" else self._log.info
        emit(event, status_code=response.status_code, duration_ms=duration, **self._fields(request))
        return response

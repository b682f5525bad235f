from __future__ import annotations

from contextvars import ContextVar

# Set by RequestContextMiddleware and AuthMiddleware for the life of a request.
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


def get_request_id() -> str | None:
    return request_id_var.get()


def get_user_id() -> str | None:
    return user_id_var.get()


def request_context() -> dict[str, str]:
    ctx = {"request_id": get_request_id(), "user_id": get_user_id()}
    return {k: v for k, v in ctx.items() if v}

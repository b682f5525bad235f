from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .db.mongo.client import ensure_indexes
from .db.mongo.errors import StoreError
from .errors import ApiError, api_error_handler
from .middleware import AuthMiddleware, RequestBodyMiddleware, RequestContextMiddleware
from .middleware.access_log import AccessLogMiddleware
from .middleware.cors import build_allowed_origin_regex, build_allowed_origins
from .observability.context import request_context
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response
from .routers.auth import router as auth_router
from .routers.clubs import router as clubs_router
from .routers.comments import router as comments_router
from .routers.events import router as events_router
from .routers.health import router as health_router
from .routers.uploads import router as uploads_router
from .routers.users import router as users_router
from .settings import settings

API_VERSION = "1.0.0"


@asynccontextmanager
async def _lifespan(app: FastAPI):
    ensure_indexes()
    yield


def create_app() -> FastAPI:
    configure_logging(level=settings.log_level, json=settings.log_json)
    log = get_logger("startup")

    app = FastAPI(
        title="Campus Events API",
        version=API_VERSION,
        default_response_class=ORJSONResponse,
        # /api/clubs and /api/clubs/ are not aliases.
        redirect_slashes=False,
        lifespan=_lifespan,
    )
    log.info("app_starting", settings=settings.to_log_safe_dict())

    # Last added is outermost: RequestContext > CORS > AccessLog > RequestBody > Auth.
    app.add_middleware(AuthMiddleware)
    app.add_middleware(RequestBodyMiddleware)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=build_allowed_origins(frontend_url=settings.frontend_url, frontend_urls=settings.frontend_urls),
        allow_origin_regex=build_allowed_origin_regex(settings.allowed_email_domain),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With", "X-Request-Id"],
        expose_headers=["X-Request-Id"],
        max_age=3000,
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StoreError, _store_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(auth_router, prefix="/api/auth")
    app.include_router(users_router, prefix="/api/users")
    app.include_router(clubs_router, prefix="/api/clubs")
    app.include_router(events_router, prefix="/api/events")
    app.include_router(comments_router, prefix="/api/comments")
    app.include_router(uploads_router, prefix="/api/uploads")
    return app


def _store_error_handler(request: Request, exc: StoreError) -> Response:
    if exc.status_code >= 500:
        get_logger("storage").warning(
            "store_error",
            operation=exc.operation,
            collection=exc.collection,
            retryable=bool(exc.retryable),
            error=exc.message,
        )
    return problem_response(
        request=request,
        status_code=exc.status_code,
        title=exc.title,
        detail=exc.message or None,
        extensions=exc.extensions(),
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    detail = exc.detail
    extensions = detail if isinstance(detail, dict) else None
    message = detail.get("message") if isinstance(detail, dict) else detail
    message = str(message).strip() if message else None

    if exc.status_code == 404 and message in (None, "Not Found"):
        # Starlette's router miss.
        message = "Route not found"

    return problem_response(
        request=request,
        status_code=exc.status_code,
        detail=message,
        extensions=extensions,
        headers=exc.headers,
    )


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors = []
    for e in exc.errors():
        loc = list(e.get("loc") or ())
        errors.append(
            {
                "location": loc,
                "path": ".".join(str(part) for part in loc if part != "body"),
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    user = getattr(request.state, "user", None)
    fields = {**request_context(), "user_id": getattr(user, "sub", None)}
    get_logger("unhandled").exception(
        "unhandled_exception",
        http_method=request.method.upper(),
        path=request.url.path,
        **fields,
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) or None,
    )


app = create_app()

from __future__ import annotations

from fastapi import APIRouter, Request

from ..settings import settings

router = APIRouter(tags=["health"])

SERVICE_NAME = "Campus Events API"


def _endpoint_index(request: Request) -> list[str]:
    """`"<METHOD> <path>"` for every API operation in the app's OpenAPI document."""
    out: list[str] = []
    paths = (request.app.openapi() or {}).get("paths") or {}
    for path, operations in paths.items():
        if not str(path).startswith("/api/"):
            continue
        for method in sorted(operations or {}):
            out.append(f"{method.upper()} {path}")
    return out


@router.get("/")
def health(request: Request):
    return {
        "message": SERVICE_NAME,
        "version": request.app.version,
        "status": "running",
        "port": settings.port,
        "environment": settings.normalized_environment,
        "database": "configured" if str(settings.mongodb_uri or "").strip() else "missing",
        "endpoints": _endpoint_index(request),
    }

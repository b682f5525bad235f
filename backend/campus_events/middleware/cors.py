from __future__ import annotations


def build_allowed_origins(*, frontend_url: str | None, frontend_urls: str | None) -> list[str]:
    allowed: set[str] = {
        "http://localhost:3000",
        "http://localhost:5173",
    }

    for v in [frontend_url, frontend_urls]:
        if not v:
            continue
        for origin in [s.strip().rstrip("/") for s in str(v).split(",") if s.strip()]:
            allowed.add(origin)

    return sorted(allowed)


def build_allowed_origin_regex(allowed_email_domain: str) -> str:
    """
    Allow the university's own web properties (any subdomain, optional port)
    while keeping credentials enabled. Matches the registrable domain only,
    so "evilusiu.ac.ke" is rejected.
    """
    dom = str(allowed_email_domain or "").strip().lower().replace(".", r"\.")
    return rf"^https?://([a-z0-9-]+\.)*{dom}(:\d+)?$"

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from ...settings import settings


@dataclass(frozen=True, slots=True)
class PageRequest:
    page: int
    limit: int

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


def page_request(page: Any = None, limit: Any = None, *, default_limit: int | None = None) -> PageRequest:
    """Clamp raw query values: page >= 1, 1 <= limit <= MAX_PAGE_LIMIT."""
    max_limit = max(1, int(settings.max_page_limit or 100))
    fallback = int(default_limit or settings.default_page_limit or 20)
    try:
        p = int(page) if page is not None else 1
    except (TypeError, ValueError):
        p = 1
    try:
        lim = int(limit) if limit is not None else fallback
    except (TypeError, ValueError):
        lim = fallback
    return PageRequest(page=max(1, p), limit=max(1, min(max_limit, lim)))


def pagination_meta(*, total: int, page: int, limit: int) -> dict[str, Any]:
    total_pages = int(math.ceil(total / limit)) if limit > 0 else 0
    return {
        "total": int(total),
        "page": int(page),
        "limit": int(limit),
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar


@dataclass(slots=True)
class StoreError(Exception):
    """
    A failed document-store call, already classified.

    Each subclass carries the HTTP status it renders as, so the API layer
    needs no driver knowledge to answer with a problem document.
    """

    status_code: ClassVar[int] = 500
    title: ClassVar[str] = "Storage Error"

    message: str
    operation: str | None = None
    collection: str | None = None
    key: dict[str, Any] | None = None
    retryable: bool = False
    cause: Exception | None = None

    def __str__(self) -> str:
        return self.message

    def extensions(self) -> dict[str, Any] | None:
        ext: dict[str, Any] = {"operation": self.operation, "collection": self.collection}
        if self.status_code >= 500:
            ext["retryable"] = bool(self.retryable)
        ext = {k: v for k, v in ext.items() if v is not None}
        return ext or None


@dataclass(slots=True)
class StoreValidation(StoreError):
    # Bad ids and documents the server refuses.
    status_code: ClassVar[int] = 400
    title: ClassVar[str] = "Bad Request"


@dataclass(slots=True)
class StoreNotFound(StoreError):
    status_code: ClassVar[int] = 404
    title: ClassVar[str] = "Not Found"


@dataclass(slots=True)
class StoreConflict(StoreError):
    # Unique index violations (email, student_id, club name).
    status_code: ClassVar[int] = 409
    title: ClassVar[str] = "Conflict"


@dataclass(slots=True)
class StoreThrottled(StoreError):
    status_code: ClassVar[int] = 503
    title: ClassVar[str] = "Service Unavailable"


@dataclass(slots=True)
class StoreUnavailable(StoreError):
    status_code: ClassVar[int] = 503
    title: ClassVar[str] = "Service Unavailable"


@dataclass(slots=True)
class StoreInternal(StoreError):
    pass

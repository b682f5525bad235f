from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    OperationFailure,
    PyMongoError,
    ServerSelectionTimeoutError,
    WriteError,
)

from .errors import (
    StoreConflict,
    StoreError,
    StoreInternal,
    StoreThrottled,
    StoreUnavailable,
    StoreValidation,
)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 0.05
    max_delay_s: float = 1.0


# Server error codes that signal document validation failures.
_VALIDATION_CODES = {2, 9, 14, 121}
# Interrupted / exceeded time limit / write conflict.
_THROTTLE_CODES = {11600, 11602, 50, 112}


def _sleep_backoff(policy: RetryPolicy, attempt: int) -> None:
    # Full jitter exponential backoff.
    cap = policy.max_delay_s
    base = policy.base_delay_s
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    time.sleep(random.random() * exp)


def _map_pymongo_error(
    *,
    operation: str,
    collection: str | None,
    key: dict[str, Any] | None,
    exc: Exception,
) -> StoreError:
    if isinstance(exc, StoreError):
        return exc

    common: dict[str, Any] = {"operation": operation, "collection": collection, "key": key, "cause": exc}

    if isinstance(exc, DuplicateKeyError):
        return StoreConflict(message="Duplicate value for a unique field", retryable=False, **common)

    # ServerSelectionTimeoutError and NetworkTimeout are AutoReconnect/ConnectionFailure subclasses.
    if isinstance(exc, (ServerSelectionTimeoutError, NetworkTimeout, AutoReconnect, ConnectionFailure)):
        return StoreUnavailable(message="Database is unavailable", retryable=True, **common)

    if isinstance(exc, ExecutionTimeout):
        return StoreThrottled(message="Database operation timed out", retryable=False, **common)

    if isinstance(exc, (WriteError, OperationFailure)):
        code = int(getattr(exc, "code", 0) or 0)
        if code in _VALIDATION_CODES:
            return StoreValidation(message="Database rejected the document", retryable=False, **common)
        if code in _THROTTLE_CODES:
            return StoreThrottled(message="Database operation was interrupted", retryable=True, **common)
        return StoreInternal(message=f"Database operation failed (code {code})", retryable=False, **common)

    if isinstance(exc, PyMongoError):
        return StoreInternal(message="Database driver error", retryable=False, **common)

    return StoreInternal(message="Unexpected database error", retryable=False, **common)


def store_call(
    operation: str,
    fn: Callable[[], T],
    *,
    collection: str | None = None,
    key: dict[str, Any] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> T:
    policy = retry_policy or RetryPolicy()

    last_exc: StoreError | None = None
    for attempt in range(1, max(1, int(policy.max_attempts)) + 1):
        try:
            return fn()
        except StoreError:
            raise
        except Exception as e:  # noqa: BLE001
            mapped = _map_pymongo_error(operation=operation, collection=collection, key=key, exc=e)
            last_exc = mapped

            # Never retry validation/conflict errors.
            if not mapped.retryable:
                raise mapped from e

            if attempt >= policy.max_attempts:
                raise mapped from e

            _sleep_backoff(policy, attempt)

    if last_exc is not None:
        raise last_exc
    raise StoreInternal(message="Database request failed", operation=operation, collection=collection, key=key)

from __future__ import annotations

import logging
import sys

import structlog

from .context import request_context

# Third-party loggers that are chatty at INFO.
_QUIET_LOGGERS = ("pymongo", "botocore", "boto3", "urllib3")

_configured = False


def _add_request_context(_: logging.Logger, __: str, event_dict: dict) -> dict:
    for key, value in request_context().items():
        event_dict.setdefault(key, value)
    return event_dict


def configure_logging(*, level: str | int = "INFO", json: bool = True) -> None:
    """
    Route stdlib logging and structlog through a single stdout handler.

    Every record gets the request id and, once the caller is authenticated,
    the user id. `json=False` switches to structlog's console renderer for
    local development.
    """
    global _configured
    if _configured:
        return

    shared = [
        _add_request_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)

    # uvicorn keeps its own handlers unless told otherwise.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uv = logging.getLogger(name)
        uv.handlers = []
        uv.propagate = True
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_logger(name: str | None = None):
    return structlog.get_logger(name)

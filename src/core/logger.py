"""structlog configuration and context binding for request and workflow scope."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from src.core.config import get_settings


CONTEXT_KEYS = ("request_id", "organization_id", "workflow_id")

_CONFIGURED = False


def _ensure_context_keys(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    del logger, method_name
    for key in CONTEXT_KEYS:
        event_dict.setdefault(key, None)
    return event_dict


def configure_logging() -> None:
    """Emit one JSON object per line; idempotent."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _ensure_context_keys,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def bind_request_context(request_id: str, organization_id: str | None = None) -> None:
    structlog.contextvars.bind_contextvars(request_id=request_id, organization_id=organization_id)


@contextmanager
def bound_workflow_context(workflow_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``workflow_id``."""

    with structlog.contextvars.bound_contextvars(workflow_id=workflow_id):
        yield


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()

"""Sentry bootstrap and request scoping."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration

from src.core.config import get_settings
from src.core.logger import get_logger
from src.workflows.errors import InfrastructureError, WorkflowEngineError


_SENTRY_INITIALIZED = False


def drop_expected_workflow_errors(event: dict[str, Any], hint: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Keep rejected requests (4xx workflow errors) out of Sentry."""

    exc_info = hint.get("exc_info")
    if exc_info:
        exc = exc_info[1]
        if isinstance(exc, WorkflowEngineError) and not isinstance(exc, InfrastructureError):
            return None
    return event


def _call_sentry_init(**kwargs: Any) -> None:
    sentry_sdk.init(**kwargs)


def init_sentry() -> bool:
    """Initialize Sentry once when a DSN is configured."""

    global _SENTRY_INITIALIZED
    if _SENTRY_INITIALIZED:
        return True

    settings = get_settings()
    dsn = settings.sentry_dsn.strip()
    if not dsn:
        return False

    _call_sentry_init(
        dsn=dsn,
        environment=settings.env,
        release=f"{settings.app_name}@{settings.app_version}",
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
        integrations=[FastApiIntegration()],
        before_send=drop_expected_workflow_errors,
    )
    _SENTRY_INITIALIZED = True
    get_logger("intent.observability").info(
        "sentry_initialized",
        env=settings.env,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )
    return True


def is_sentry_initialized() -> bool:
    return _SENTRY_INITIALIZED


@contextmanager
def sentry_scope(*, organization_id: str | None = None, request_id: str | None = None):
    """Scope Sentry events to the current organization and request."""

    if not _SENTRY_INITIALIZED:
        yield
        return

    with sentry_sdk.isolation_scope() as scope:
        context_payload: dict[str, str] = {}
        if organization_id:
            scope.set_tag("organization_id", organization_id)
            context_payload["organization_id"] = organization_id
        if request_id:
            scope.set_tag("request_id", request_id)
            context_payload["request_id"] = request_id
        if context_payload:
            scope.set_context("intent_engine", context_payload)
        yield


def capture_exception(exc: BaseException) -> None:
    if not _SENTRY_INITIALIZED:
        return
    sentry_sdk.capture_exception(exc)


def reset_observability_for_tests() -> None:
    global _SENTRY_INITIALIZED
    _SENTRY_INITIALIZED = False

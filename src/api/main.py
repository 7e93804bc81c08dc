"""FastAPI application for the intent workflow engine."""

from __future__ import annotations

from time import perf_counter
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from src.auth.middleware import AUTH_CONTEXT_KEY, resolve_request_auth_context
from src.auth.router import router as auth_router
from src.core.config import get_settings
from src.core.logger import bind_request_context, clear_request_context, get_logger
from src.core.metrics import record_http_request, render_prometheus_metrics
from src.core.observability import capture_exception, init_sentry, sentry_scope
from src.organizations.router import router as organizations_router
from src.storage.db import load_models
from src.storage.db import test_connection as test_db_connection
from src.workflows.errors import InfrastructureError, WorkflowEngineError
from src.workflows.router import router as workflows_router


settings = get_settings()
logger = get_logger("intent.api")

app = FastAPI(title=settings.app_name, version=settings.app_version)


def _request_organization_id(request: Request) -> Optional[str]:
    auth_context = resolve_request_auth_context(request)
    setattr(request.state, AUTH_CONTEXT_KEY, auth_context)
    return auth_context.organization_id if auth_context is not None else None


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    started_at = perf_counter()
    request_id = request.headers.get("x-request-id") or str(uuid4())
    organization_id = _request_organization_id(request)
    bind_request_context(request_id=request_id, organization_id=organization_id)

    status_code = 500
    try:
        with sentry_scope(organization_id=organization_id, request_id=request_id):
            response = await call_next(request)
        status_code = response.status_code
    finally:
        if settings.metrics_enabled:
            record_http_request(
                method=request.method,
                path=request.url.path,
                status_code=status_code,
                duration_seconds=perf_counter() - started_at,
            )
        clear_request_context()

    response.headers["x-request-id"] = request_id
    return response


def register_error_handlers(application: FastAPI) -> None:
    """Render workflow errors as ``{error, message, details?}`` or a gate's locked payload."""

    @application.exception_handler(WorkflowEngineError)
    async def handle_workflow_error(request: Request, exc: WorkflowEngineError) -> JSONResponse:
        if isinstance(exc, InfrastructureError):
            logger.error(
                "workflow_infrastructure_error",
                path=request.url.path,
                message=exc.message,
                error=str(exc.__cause__) if exc.__cause__ is not None else None,
            )
            capture_exception(exc)
        else:
            logger.info("workflow_request_rejected", path=request.url.path, status_code=exc.status_code, error=exc.error)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


register_error_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    load_models()
    logger.info(
        "application_startup",
        env=settings.env,
        version=settings.app_version,
        sentry_enabled=init_sentry(),
        metrics_enabled=settings.metrics_enabled,
        generation_trigger_provider=settings.generation_trigger_provider,
        article_queue_max_units=settings.article_queue_max_units,
    )


@app.get("/health")
def health() -> JSONResponse:
    db_ok, db_error = test_db_connection()
    return JSONResponse(
        status_code=200 if db_ok else 503,
        content={
            "status": "ok" if db_ok else "degraded",
            "env": settings.env,
            "services": {
                "database": {"ok": db_ok, "error": db_error},
                "generation_trigger": {"provider": settings.generation_trigger_provider},
            },
        },
    )


@app.get("/version")
def version() -> dict[str, str]:
    return {"name": settings.app_name, "version": settings.app_version, "env": settings.env}


@app.get("/metrics")
def metrics() -> PlainTextResponse:
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled\n", status_code=404)
    return PlainTextResponse(
        render_prometheus_metrics(app_name=settings.app_name, app_version=settings.app_version, env=settings.env),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )


app.include_router(auth_router)
app.include_router(organizations_router)
app.include_router(workflows_router)

"""Intent workflow API routes."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.auth.dependencies import get_optional_auth_context
from src.auth.jwt import AuthContext
from src.core.config import get_settings
from src.schemas.workflows import (
    GenerationResultRequest,
    HumanApprovalRequest,
    SeedApprovalRequest,
    SubtopicApprovalRequest,
    WorkflowAdvanceRequest,
    WorkflowCreateRequest,
)
from src.storage.db import get_session
from src.storage.tenant import set_organization_context
from src.workflows.approvals import (
    ApprovalRequest,
    HumanApprovalProcessor,
    SeedApprovalProcessor,
    SubtopicApprovalProcessor,
    get_workflow_summary,
)
from src.workflows.audit import RequestMeta, audit_log_to_dict, count_audit_logs, list_audit_logs
from src.workflows.blocking import resolve_blocking_condition
from src.workflows.errors import AdminRequiredError, InfrastructureError, UnauthenticatedError
from src.workflows.gates import enforce_step_gates
from src.workflows.generation import GenerationTrigger, get_generation_trigger
from src.workflows.linking import ArticleWorkflowLinker, record_article_generation_result
from src.workflows.progress import get_workflow_article_progress
from src.workflows.queuing import ArticleQueuingProcessor
from src.workflows.service import (
    advance_workflow,
    create_workflow,
    get_workflow_for_organization,
    raise_if_blocked,
    workflow_to_dict,
)
from src.workflows.states import DECISION_APPROVED


router = APIRouter(prefix="/intent", tags=["intent-workflows"])

ARTICLE_QUEUING_STEP = "article-queuing"


def _resolve_client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def _request_meta(request: Request) -> RequestMeta:
    return RequestMeta(ip_address=_resolve_client_ip(request), user_agent=request.headers.get("user-agent"))


def _require_auth(auth: Optional[AuthContext], session: Session) -> AuthContext:
    if auth is None:
        raise UnauthenticatedError()
    set_organization_context(session, auth.organization_id)
    return auth


def _ok(data: Dict[str, Any]) -> Dict[str, Any]:
    return {"success": True, "data": data}


@router.post("/workflows", status_code=201)
def create_workflow_endpoint(
    payload: WorkflowCreateRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    workflow = create_workflow(
        session,
        organization_id=auth.organization_id,
        name=payload.name,
        created_by=auth.user_id,
        icp_document=payload.icp_document,
        competitor_urls=payload.competitor_urls,
        request_meta=_request_meta(request),
    )
    return _ok(workflow_to_dict(session, workflow))


@router.get("/workflows/{workflow_id}")
def get_workflow_endpoint(
    workflow_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    workflow = get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
    return _ok(workflow_to_dict(session, workflow))


@router.post("/workflows/{workflow_id}/advance")
def advance_workflow_endpoint(
    workflow_id: str,
    payload: WorkflowAdvanceRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    workflow = advance_workflow(
        session,
        workflow_id=workflow_id,
        auth=auth,
        from_stage=payload.from_stage,
        request_meta=_request_meta(request),
    )
    return _ok(workflow_to_dict(session, workflow))


@router.post("/workflows/{workflow_id}/steps/{step}/gate-check")
def gate_check_endpoint(
    workflow_id: str,
    step: str,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
    report = enforce_step_gates(
        session,
        workflow_id=workflow_id,
        attempted_step=step,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        request_meta=_request_meta(request),
    )
    raise_if_blocked(report)
    return _ok(report.to_dict())


@router.get("/workflows/{workflow_id}/blocking-condition")
def blocking_condition_endpoint(
    workflow_id: str,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    workflow = get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
    condition = resolve_blocking_condition(
        session,
        workflow=workflow,
        actor_id=auth.user_id,
        request_meta=_request_meta(request),
    )
    return _ok(
        {
            "workflow_id": workflow.id,
            "workflow_status": workflow.status,
            "blocked": condition is not None,
            "blocking_condition": condition.to_dict() if condition is not None else None,
        }
    )


@router.get("/workflows/{workflow_id}/article-progress")
def article_progress_endpoint(
    workflow_id: str,
    status: Optional[str] = Query(default=None, max_length=32),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    workflow = get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
    progress = get_workflow_article_progress(session, workflow=workflow, status=status, limit=limit, offset=offset)
    return _ok(progress.to_dict())


@router.post("/workflows/{workflow_id}/seed-approval")
def seed_approval_endpoint(
    workflow_id: str,
    payload: SeedApprovalRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    processor = SeedApprovalProcessor(session, request_meta=_request_meta(request))
    result = processor.process(
        workflow_id,
        ApprovalRequest(
            decision=payload.decision,
            feedback=payload.feedback,
            approved_item_ids=payload.approved_keyword_ids,
        ),
        auth=auth,
    )
    return _ok(result.to_dict())


@router.post("/keywords/{keyword_id}/subtopic-approval")
def subtopic_approval_endpoint(
    keyword_id: str,
    payload: SubtopicApprovalRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    processor = SubtopicApprovalProcessor(session, request_meta=_request_meta(request))
    result = processor.process(
        keyword_id,
        ApprovalRequest(decision=payload.decision, feedback=payload.feedback),
        auth=auth,
    )
    return _ok(result.to_dict())


@router.get("/workflows/{workflow_id}/human-approval")
def human_approval_summary_endpoint(
    workflow_id: str,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    return _ok(get_workflow_summary(session, workflow_id=workflow_id, auth=auth))


@router.post("/workflows/{workflow_id}/human-approval")
def human_approval_endpoint(
    workflow_id: str,
    payload: HumanApprovalRequest,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    meta = _request_meta(request)
    if payload.decision == DECISION_APPROVED:
        if not auth.is_admin:
            raise AdminRequiredError()
        get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
        report = enforce_step_gates(
            session,
            workflow_id=workflow_id,
            attempted_step=ARTICLE_QUEUING_STEP,
            organization_id=auth.organization_id,
            actor_id=auth.user_id,
            request_meta=meta,
        )
        raise_if_blocked(report)

    processor = HumanApprovalProcessor(session, request_meta=meta)
    result = processor.process(
        workflow_id,
        ApprovalRequest(
            decision=payload.decision,
            feedback=payload.feedback,
            reset_to_step=payload.reset_to_step,
        ),
        auth=auth,
    )
    return _ok(result.to_dict())


@router.post("/workflows/{workflow_id}/queue-articles")
def queue_articles_endpoint(
    workflow_id: str,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
    trigger: GenerationTrigger = Depends(get_generation_trigger),
):
    auth = _require_auth(auth, session)
    meta = _request_meta(request)
    get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
    report = enforce_step_gates(
        session,
        workflow_id=workflow_id,
        attempted_step=ARTICLE_QUEUING_STEP,
        organization_id=auth.organization_id,
        actor_id=auth.user_id,
        request_meta=meta,
    )
    raise_if_blocked(report)

    processor = ArticleQueuingProcessor(session, trigger=trigger, request_meta=meta)
    result = processor.queue(workflow_id, organization_id=auth.organization_id, actor_id=auth.user_id)
    if result.has_failures:
        return JSONResponse(
            status_code=207,
            content={
                "success": True,
                "warning": f"{len(result.errors)} article(s) failed to start generation",
                "data": result.to_dict(),
            },
        )
    return _ok(result.to_dict())


@router.post("/workflows/{workflow_id}/link-articles")
def link_articles_endpoint(
    workflow_id: str,
    request: Request,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    linker = ArticleWorkflowLinker(session, request_meta=_request_meta(request))
    result = linker.link(workflow_id, auth.user_id, organization_id=auth.organization_id)
    return _ok(result.to_dict())


@router.post("/articles/{article_id}/generation-result")
def generation_result_endpoint(
    article_id: str,
    payload: GenerationResultRequest,
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    article = record_article_generation_result(
        session,
        article_id=article_id,
        organization_id=auth.organization_id,
        status=payload.status,
        error=payload.error,
    )
    return _ok(
        {
            "article_id": article.id,
            "workflow_id": article.workflow_id,
            "status": article.status,
            "workflow_link_status": article.workflow_link_status,
        }
    )


@router.get("/workflows/{workflow_id}/audit-logs")
def audit_logs_endpoint(
    workflow_id: str,
    action: Optional[str] = Query(default=None, max_length=128),
    actor_id: Optional[str] = Query(default=None, max_length=64),
    limit: int = Query(default=50, ge=1),
    offset: int = Query(default=0, ge=0),
    auth: Optional[AuthContext] = Depends(get_optional_auth_context),
    session: Session = Depends(get_session),
) -> Dict[str, Any]:
    auth = _require_auth(auth, session)
    if not auth.is_admin:
        raise AdminRequiredError()
    get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)

    limit = min(limit, get_settings().audit_log_max_page_size)
    try:
        rows = list_audit_logs(
            session,
            organization_id=auth.organization_id,
            workflow_id=workflow_id,
            action=action,
            actor_id=actor_id,
            limit=limit,
            offset=offset,
        )
        total = count_audit_logs(
            session,
            organization_id=auth.organization_id,
            workflow_id=workflow_id,
            action=action,
            actor_id=actor_id,
        )
    except SQLAlchemyError as exc:
        session.rollback()
        raise InfrastructureError("Failed to load audit logs") from exc
    return _ok(
        {
            "items": [audit_log_to_dict(row) for row in rows],
            "total": total,
            "limit": limit,
            "offset": offset,
        }
    )

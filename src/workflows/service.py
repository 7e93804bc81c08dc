"""Intent workflow application services."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.auth.jwt import AuthContext
from src.core.logger import bound_workflow_context, get_logger
from src.storage.models import IntentWorkflow
from src.workflows.audit import AuditSink, DatabaseAuditSink, RequestMeta, build_event, log_and_ignore
from src.workflows.errors import (
    AccessDeniedError,
    InfrastructureError,
    InvalidRequestError,
    InvalidWorkflowStateError,
    UnauthenticatedError,
    WorkflowLockedError,
    WorkflowNotFoundError,
)
from src.workflows.gates import STATUS_NOT_FOUND, StepGateReport, enforce_step_gates
from src.workflows.stages import EXTERNALLY_ADVANCED_STAGES, WorkflowStage, next_stage, parse_status
from src.workflows.store import count_articles, get_workflow, json_dumps, json_load_dict, json_load_list, set_workflow_status


logger = get_logger("intent.workflows")

# Leaving these stages starts a gated step.
ADVANCE_GATES = {
    WorkflowStage.SEEDS: "longtail-expand",
    WorkflowStage.VALIDATION: "subtopic-generation",
}


def create_workflow(
    session: Session,
    *,
    organization_id: str,
    name: str,
    created_by: Optional[str],
    icp_document: Optional[Dict[str, Any]] = None,
    competitor_urls: Optional[List[str]] = None,
    audit_sink: Optional[AuditSink] = None,
    request_meta: Optional[RequestMeta] = None,
) -> IntentWorkflow:
    cleaned_name = name.strip()
    if not cleaned_name:
        raise InvalidRequestError("Workflow name is required")

    workflow = IntentWorkflow(
        organization_id=organization_id,
        name=cleaned_name,
        status=WorkflowStage.ICP.value,
        icp_document_json=json_dumps(icp_document or {}),
        competitor_urls_json=json_dumps(list(competitor_urls or [])),
        created_by_user_id=created_by,
    )
    session.add(workflow)
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise InfrastructureError("Failed to create workflow") from exc
    session.refresh(workflow)

    logger.info("workflow_created", workflow_id=workflow.id, organization_id=organization_id)
    log_and_ignore(
        audit_sink or DatabaseAuditSink(session),
        build_event(
            organization_id=organization_id,
            workflow_id=workflow.id,
            action="workflow.created",
            actor_id=created_by,
            details={"name": workflow.name, "status": workflow.status},
            request_meta=request_meta,
        ),
    )
    return workflow


def get_workflow_for_organization(session: Session, *, workflow_id: str, organization_id: str) -> IntentWorkflow:
    try:
        workflow = get_workflow(session, workflow_id=workflow_id)
    except SQLAlchemyError as exc:
        session.rollback()
        raise InfrastructureError("Failed to load workflow") from exc
    if workflow is None:
        raise WorkflowNotFoundError(details={"workflow_id": workflow_id})
    if workflow.organization_id != organization_id:
        raise AccessDeniedError("Access denied: workflow belongs to different organization")
    return workflow


def workflow_to_dict(session: Session, workflow: IntentWorkflow) -> Dict[str, Any]:
    stage = parse_status(workflow.status)
    return {
        "id": workflow.id,
        "organization_id": workflow.organization_id,
        "name": workflow.name,
        "status": workflow.status,
        "step_number": stage.step_number if stage else None,
        "step_label": stage.label if stage else None,
        "icp_document": json_load_dict(workflow.icp_document_json),
        "competitor_urls": json_load_list(workflow.competitor_urls_json),
        "created_by_user_id": workflow.created_by_user_id,
        "article_count": count_articles(session, workflow_id=workflow.id),
        "article_link_count": workflow.article_link_count,
        "article_linking_started_at": _isoformat(workflow.article_linking_started_at),
        "article_linking_completed_at": _isoformat(workflow.article_linking_completed_at),
        "created_at": _isoformat(workflow.created_at),
        "updated_at": _isoformat(workflow.updated_at),
    }


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def raise_if_blocked(report: StepGateReport) -> None:
    """Turn a blocking gate report into the matching API error."""

    blocking = report.blocking
    if blocking is None:
        return
    payload = blocking.error_payload or {"error": blocking.reason or "Workflow step locked"}
    if blocking.status == STATUS_NOT_FOUND:
        raise WorkflowNotFoundError(details={"workflow_id": payload.get("workflow_id")})
    raise WorkflowLockedError(payload)


def advance_workflow(
    session: Session,
    *,
    workflow_id: str,
    auth: Optional[AuthContext],
    from_stage: str,
    request_meta: Optional[RequestMeta] = None,
    audit_sink: Optional[AuditSink] = None,
) -> IntentWorkflow:
    """Record that an external step finished and move to the next stage.

    Only the data-producing stages (ICP through validation) are advanced this way;
    later stages move through approvals, queuing and linking.
    """

    if auth is None:
        raise UnauthenticatedError()
    expected = parse_status(from_stage)
    if expected is None:
        raise InvalidRequestError(f"Unknown workflow stage: {from_stage}")

    with bound_workflow_context(workflow_id):
        workflow = get_workflow_for_organization(session, workflow_id=workflow_id, organization_id=auth.organization_id)
        current = WorkflowStage.parse(workflow.status)
        if current is not expected:
            raise InvalidWorkflowStateError(
                f"Workflow is at {current.value}, not {expected.value}",
                details={"current_status": current.value, "from_stage": expected.value},
            )
        if current not in EXTERNALLY_ADVANCED_STAGES:
            raise InvalidWorkflowStateError(
                f"Stage {current.value} is completed through its own operation",
                details={"current_status": current.value},
            )

        attempted_step = ADVANCE_GATES.get(current)
        if attempted_step is not None:
            report = enforce_step_gates(
                session,
                workflow_id=workflow.id,
                attempted_step=attempted_step,
                organization_id=auth.organization_id,
                actor_id=auth.user_id,
                request_meta=request_meta,
                audit_sink=audit_sink,
            )
            raise_if_blocked(report)

        target = next_stage(current)
        try:
            set_workflow_status(session, workflow=workflow, status=target)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise InfrastructureError("Failed to advance workflow") from exc

        logger.info("workflow_stage_advanced", from_stage=current.value, to_stage=target.value)
        log_and_ignore(
            audit_sink or DatabaseAuditSink(session),
            build_event(
                organization_id=workflow.organization_id,
                workflow_id=workflow.id,
                action="workflow.stage.advanced",
                actor_id=auth.user_id,
                details={"from_stage": current.value, "to_stage": target.value},
                request_meta=request_meta,
            ),
        )
        return workflow

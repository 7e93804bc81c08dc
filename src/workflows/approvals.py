"""Approval processors for seed keywords, subtopics and the final human review.

All three share one algorithm: authorize an organization admin, load the workflow and
require the exact stage for the approval type, validate the decision, upsert the
``(workflow_id, approval_type)`` row, apply the stage or per-keyword change, commit,
then audit on a best-effort basis. Only the human review moves the workflow stage.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.auth.jwt import AuthContext
from src.core.logger import bound_workflow_context, get_logger
from src.core.metrics import record_approval
from src.storage.models import IntentApproval, IntentWorkflow, Keyword
from src.workflows.audit import AuditSink, DatabaseAuditSink, RequestMeta, build_event, log_and_ignore
from src.workflows.errors import (
    AccessDeniedError,
    AdminRequiredError,
    InfrastructureError,
    InvalidRequestError,
    InvalidWorkflowStateError,
    KeywordNotFoundError,
    UnauthenticatedError,
    WorkflowNotFoundError,
)
from src.workflows.stages import MAX_RESET_STEP, MIN_RESET_STEP, WorkflowStage, next_stage, stage_for_reset_step
from src.workflows.states import (
    APPROVAL_TYPE_HUMAN,
    APPROVAL_TYPE_SEED_KEYWORDS,
    APPROVAL_TYPE_SUBTOPICS,
    DECISION_APPROVED,
    DECISION_REJECTED,
    DECISIONS,
    KEYWORD_ARTICLE_NOT_STARTED,
    KEYWORD_ARTICLE_READY,
    KEYWORD_TYPE_LONGTAIL,
    KEYWORD_TYPE_SEED,
    SUBTOPICS_COMPLETE,
)
from src.workflows.store import (
    approved_items_of,
    get_approval,
    get_keyword,
    get_workflow,
    json_load_list,
    list_keywords,
    list_ready_keyword_ids,
    set_workflow_status,
    upsert_approval,
    utc_now,
)


logger = get_logger("intent.approvals")


@dataclass(frozen=True)
class ApprovalRequest:
    decision: str
    feedback: Optional[str] = None
    approved_item_ids: Optional[Sequence[str]] = None
    reset_to_step: Optional[int] = None


@dataclass(frozen=True)
class ApprovalResult:
    success: bool
    approval_id: str
    workflow_id: str
    decision: str
    new_workflow_status: str
    message: str
    keyword_id: Optional[str] = None
    article_status: Optional[str] = None
    reset_to_step: Optional[int] = None
    approved_items: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


class ApprovalProcessor:
    approval_type = ""
    expected_stage = WorkflowStage.COMPLETED
    audit_domain = ""
    operation_label = ""

    def __init__(
        self,
        session: Session,
        *,
        audit_sink: Optional[AuditSink] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> None:
        self._session = session
        self._audit_sink = audit_sink or DatabaseAuditSink(session)
        self._request_meta = request_meta

    def _authorize(self, auth: Optional[AuthContext]) -> AuthContext:
        if auth is None:
            raise UnauthenticatedError()
        if not auth.is_admin:
            raise AdminRequiredError()
        return auth

    def _check_ownership(self, workflow: Optional[IntentWorkflow], auth: AuthContext, workflow_id: str) -> IntentWorkflow:
        if workflow is None:
            raise WorkflowNotFoundError(details={"workflow_id": workflow_id})
        if workflow.organization_id != auth.organization_id:
            raise AccessDeniedError("Access denied: workflow belongs to different organization")
        return workflow

    def _check_stage(self, workflow: IntentWorkflow) -> WorkflowStage:
        stage = WorkflowStage.parse(workflow.status)
        if stage is not self.expected_stage:
            raise InvalidWorkflowStateError(
                f"Workflow must be at {self.expected_stage.value} for {self.operation_label}, "
                f"current state: {stage.value}",
                details={"required_status": self.expected_stage.value, "current_status": stage.value},
            )
        return stage

    @staticmethod
    def _check_decision(request: ApprovalRequest) -> str:
        if request.decision not in DECISIONS:
            raise InvalidRequestError("decision must be 'approved' or 'rejected'")
        return request.decision

    def _commit(self) -> None:
        try:
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            raise InfrastructureError(f"Failed to record {self.operation_label}") from exc

    def _infrastructure_failure(self, exc: SQLAlchemyError) -> InfrastructureError:
        try:
            self._session.rollback()
        except SQLAlchemyError:
            logger.warning("approval_session_rollback_failed", approval_type=self.approval_type)
        logger.error("approval_infrastructure_error", approval_type=self.approval_type, error=str(exc))
        return InfrastructureError(f"Failed to record {self.operation_label}")

    def _audit(
        self,
        *,
        workflow: IntentWorkflow,
        auth: AuthContext,
        decision: str,
        details: Dict[str, Any],
        entity_type: str = "workflow",
        entity_id: Optional[str] = None,
    ) -> None:
        record_approval(approval_type=self.approval_type, decision=decision)
        log_and_ignore(
            self._audit_sink,
            build_event(
                organization_id=workflow.organization_id,
                workflow_id=workflow.id,
                action=f"workflow.{self.audit_domain}.{decision}",
                actor_id=auth.user_id,
                details={"approval_type": self.approval_type, "decision": decision, **details},
                entity_type=entity_type,
                entity_id=entity_id,
                request_meta=self._request_meta,
            ),
        )


def _normalize_uuid_list(values: Sequence[str], *, field_name: str) -> List[str]:
    if isinstance(values, (str, bytes)) or not values:
        raise InvalidRequestError(f"{field_name} must be a non-empty list of keyword IDs")
    normalized: List[str] = []
    for value in values:
        try:
            item = str(uuid.UUID(str(value)))
        except ValueError:
            raise InvalidRequestError(f"{field_name} contains an invalid UUID: {value}") from None
        if item not in normalized:
            normalized.append(item)
    return normalized


class SeedApprovalProcessor(ApprovalProcessor):
    """Approves extracted seed keywords. The workflow stays at step_3_seeds."""

    approval_type = APPROVAL_TYPE_SEED_KEYWORDS
    expected_stage = WorkflowStage.SEEDS
    audit_domain = "seed_approval"
    operation_label = "seed approval"

    def process(self, workflow_id: str, request: ApprovalRequest, *, auth: Optional[AuthContext]) -> ApprovalResult:
        auth = self._authorize(auth)
        with bound_workflow_context(workflow_id):
            try:
                workflow = self._check_ownership(
                    get_workflow(self._session, workflow_id=workflow_id), auth, workflow_id
                )
                stage = self._check_stage(workflow)
                decision = self._check_decision(request)

                # A selection only means something on approval; rejections store none.
                approved_items = None
                if decision == DECISION_APPROVED and request.approved_item_ids is not None:
                    approved_items = _normalize_uuid_list(request.approved_item_ids, field_name="approved_keyword_ids")

                approval = upsert_approval(
                    self._session,
                    workflow_id=workflow.id,
                    approval_type=self.approval_type,
                    decision=decision,
                    approver_id=auth.user_id,
                    feedback=request.feedback,
                    approved_items=approved_items,
                )
                self._commit()
            except SQLAlchemyError as exc:
                raise self._infrastructure_failure(exc) from exc

            logger.info(
                "seed_approval_recorded",
                decision=decision,
                approved_items_count=len(approved_items) if approved_items is not None else None,
            )
            self._audit(
                workflow=workflow,
                auth=auth,
                decision=decision,
                details={
                    "feedback": request.feedback,
                    "approved_keyword_ids": approved_items,
                    "workflow_status": stage.value,
                },
            )

        return ApprovalResult(
            success=True,
            approval_id=approval.id,
            workflow_id=workflow.id,
            decision=decision,
            new_workflow_status=stage.value,
            message=f"Seed keywords {decision}",
            approved_items=approved_items,
        )


class SubtopicApprovalProcessor(ApprovalProcessor):
    """Approves one keyword's subtopics, flipping its article_status."""

    approval_type = APPROVAL_TYPE_SUBTOPICS
    expected_stage = WorkflowStage.SUBTOPICS
    audit_domain = "subtopic_approval"
    operation_label = "subtopic approval"

    def process(self, keyword_id: str, request: ApprovalRequest, *, auth: Optional[AuthContext]) -> ApprovalResult:
        auth = self._authorize(auth)
        try:
            keyword = get_keyword(self._session, keyword_id=keyword_id)
            if keyword is None:
                raise KeywordNotFoundError(details={"keyword_id": keyword_id})
            if keyword.organization_id != auth.organization_id:
                raise AccessDeniedError("Access denied: keyword belongs to different organization")

            with bound_workflow_context(keyword.workflow_id):
                workflow = self._check_ownership(
                    get_workflow(self._session, workflow_id=keyword.workflow_id), auth, keyword.workflow_id
                )
                stage = self._check_stage(workflow)
                decision = self._check_decision(request)
                self._check_subtopics(keyword)

                ready_ids = set(list_ready_keyword_ids(
                    self._session,
                    workflow_id=workflow.id,
                    ready_status=KEYWORD_ARTICLE_READY,
                ))
                if decision == DECISION_APPROVED:
                    ready_ids.add(keyword.id)
                else:
                    ready_ids.discard(keyword.id)
                approved_items = sorted(ready_ids)

                approval = upsert_approval(
                    self._session,
                    workflow_id=workflow.id,
                    approval_type=self.approval_type,
                    decision=decision,
                    approver_id=auth.user_id,
                    feedback=request.feedback,
                    approved_items=approved_items,
                )
                keyword.article_status = (
                    KEYWORD_ARTICLE_READY if decision == DECISION_APPROVED else KEYWORD_ARTICLE_NOT_STARTED
                )
                keyword.updated_at = utc_now()
                self._commit()
        except SQLAlchemyError as exc:
            raise self._infrastructure_failure(exc) from exc

        logger.info(
            "subtopic_approval_recorded",
            workflow_id=workflow.id,
            keyword_id=keyword.id,
            decision=decision,
            article_status=keyword.article_status,
        )
        self._audit(
            workflow=workflow,
            auth=auth,
            decision=decision,
            entity_type="keyword",
            entity_id=keyword.id,
            details={
                "keyword_id": keyword.id,
                "keyword": keyword.keyword,
                "feedback": request.feedback,
                "article_status": keyword.article_status,
                "approved_keyword_count": len(approved_items),
            },
        )

        verb = "approved" if decision == DECISION_APPROVED else "rejected"
        return ApprovalResult(
            success=True,
            approval_id=approval.id,
            workflow_id=workflow.id,
            decision=decision,
            new_workflow_status=stage.value,
            message=f"Subtopics {verb} for keyword '{keyword.keyword}'",
            keyword_id=keyword.id,
            article_status=keyword.article_status,
            approved_items=approved_items,
        )

    @staticmethod
    def _check_subtopics(keyword: Keyword) -> None:
        if keyword.subtopics_status != SUBTOPICS_COMPLETE:
            raise InvalidWorkflowStateError(
                f"Subtopics must be complete before approval, current status: {keyword.subtopics_status}",
                details={"keyword_id": keyword.id, "subtopics_status": keyword.subtopics_status},
            )
        if not json_load_list(keyword.subtopics_json):
            raise InvalidWorkflowStateError(
                "Keyword has no subtopics to approve",
                details={"keyword_id": keyword.id},
            )


class HumanApprovalProcessor(ApprovalProcessor):
    """Final human review of a workflow; the only processor that resets the stage."""

    approval_type = APPROVAL_TYPE_HUMAN
    expected_stage = WorkflowStage.SUBTOPICS
    audit_domain = "human_approval"
    operation_label = "human approval"

    def process(self, workflow_id: str, request: ApprovalRequest, *, auth: Optional[AuthContext]) -> ApprovalResult:
        auth = self._authorize(auth)
        with bound_workflow_context(workflow_id):
            try:
                workflow = self._check_ownership(
                    get_workflow(self._session, workflow_id=workflow_id), auth, workflow_id
                )
                previous_stage = self._check_stage(workflow)
                decision = self._check_decision(request)

                reset_to_step = None
                if decision == DECISION_REJECTED:
                    reset_to_step = request.reset_to_step
                    if reset_to_step is None:
                        raise InvalidRequestError("reset_to_step is required when rejecting a workflow")
                    try:
                        target = stage_for_reset_step(reset_to_step)
                    except ValueError:
                        raise InvalidRequestError(
                            f"reset_to_step must be between {MIN_RESET_STEP} and {MAX_RESET_STEP}"
                        ) from None
                else:
                    target = next_stage(previous_stage)

                approval = upsert_approval(
                    self._session,
                    workflow_id=workflow.id,
                    approval_type=self.approval_type,
                    decision=decision,
                    approver_id=auth.user_id,
                    feedback=request.feedback,
                    reset_to_step=reset_to_step,
                )
                set_workflow_status(self._session, workflow=workflow, status=target)
                self._commit()
            except SQLAlchemyError as exc:
                raise self._infrastructure_failure(exc) from exc

            logger.info(
                "human_approval_recorded",
                decision=decision,
                previous_status=previous_stage.value,
                new_status=target.value,
            )
            self._audit(
                workflow=workflow,
                auth=auth,
                decision=decision,
                details={
                    "feedback": request.feedback,
                    "reset_to_step": reset_to_step,
                    "previous_status": previous_stage.value,
                    "new_status": target.value,
                },
            )

        if decision == DECISION_APPROVED:
            message = "Workflow approved successfully"
        else:
            message = f"Workflow rejected and reset to step {reset_to_step}"
        return ApprovalResult(
            success=True,
            approval_id=approval.id,
            workflow_id=workflow.id,
            decision=decision,
            new_workflow_status=target.value,
            message=message,
            reset_to_step=reset_to_step,
        )


def _is_approved(approval: Optional[IntentApproval]) -> bool:
    return approval is not None and approval.decision == DECISION_APPROVED


def are_seeds_approved(session: Session, *, workflow_id: str) -> bool:
    return _is_approved(get_approval(session, workflow_id=workflow_id, approval_type=APPROVAL_TYPE_SEED_KEYWORDS))


def get_approved_seed_keyword_ids(session: Session, *, workflow_id: str) -> List[str]:
    """Seed keyword ids cleared for longtail expansion; every seed when none were singled out."""

    approval = get_approval(session, workflow_id=workflow_id, approval_type=APPROVAL_TYPE_SEED_KEYWORDS)
    if not _is_approved(approval):
        return []
    selected = approved_items_of(approval)
    if selected is not None:
        return selected
    return [keyword.id for keyword in list_keywords(session, workflow_id=workflow_id, keyword_type=KEYWORD_TYPE_SEED)]


def are_subtopics_approved(session: Session, *, keyword_id: str) -> bool:
    keyword = get_keyword(session, keyword_id=keyword_id)
    if keyword is None:
        return False
    return keyword.article_status == KEYWORD_ARTICLE_READY


def get_approved_keyword_ids(session: Session, *, workflow_id: str) -> List[str]:
    return list_ready_keyword_ids(session, workflow_id=workflow_id, ready_status=KEYWORD_ARTICLE_READY)


def _approval_to_dict(approval: Optional[IntentApproval]) -> Optional[Dict[str, Any]]:
    if approval is None:
        return None
    return {
        "id": approval.id,
        "approval_type": approval.approval_type,
        "decision": approval.decision,
        "approver_id": approval.approver_id,
        "feedback": approval.feedback,
        "approved_items": approved_items_of(approval),
        "reset_to_step": approval.reset_to_step,
        "updated_at": approval.updated_at.isoformat() if approval.updated_at else None,
    }


def get_human_approval_status(session: Session, *, workflow: IntentWorkflow) -> Dict[str, Any]:
    stage = WorkflowStage.parse(workflow.status)
    approval = get_approval(session, workflow_id=workflow.id, approval_type=APPROVAL_TYPE_HUMAN)
    return {
        "required": stage is HumanApprovalProcessor.expected_stage,
        "approval": _approval_to_dict(approval),
    }


def get_workflow_summary(session: Session, *, workflow_id: str, auth: Optional[AuthContext]) -> Dict[str, Any]:
    """Reviewer-facing snapshot of everything the human approval signs off on."""

    if auth is None:
        raise UnauthenticatedError()
    try:
        workflow = get_workflow(session, workflow_id=workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(details={"workflow_id": workflow_id})
        if workflow.organization_id != auth.organization_id:
            raise AccessDeniedError("Access denied: workflow belongs to different organization")

        stage = WorkflowStage.parse(workflow.status)
        keywords = list_keywords(session, workflow_id=workflow.id)
        approvals = {
            approval_type: _approval_to_dict(get_approval(session, workflow_id=workflow.id, approval_type=approval_type))
            for approval_type in (APPROVAL_TYPE_SEED_KEYWORDS, APPROVAL_TYPE_SUBTOPICS)
        }
        human_approval = get_human_approval_status(session, workflow=workflow)
    except SQLAlchemyError as exc:
        session.rollback()
        raise InfrastructureError("Failed to load workflow summary") from exc

    return {
        "workflow": {
            "id": workflow.id,
            "name": workflow.name,
            "status": stage.value,
            "step_number": stage.step_number,
            "step_label": stage.label,
            "organization_id": workflow.organization_id,
        },
        "keywords": {
            "seeds": sum(1 for keyword in keywords if keyword.keyword_type == KEYWORD_TYPE_SEED),
            "longtails": sum(1 for keyword in keywords if keyword.keyword_type == KEYWORD_TYPE_LONGTAIL),
            "subtopics_complete": sum(1 for keyword in keywords if keyword.subtopics_status == SUBTOPICS_COMPLETE),
            "approved_for_articles": sum(
                1 for keyword in keywords if keyword.article_status == KEYWORD_ARTICLE_READY
            ),
        },
        "approvals": approvals,
        "human_approval": human_approval,
        "human_approval_required": human_approval["required"],
    }

"""Stage gates for intent workflows.

A gate reads the workflow once and decides whether a step may run. Being blocked is
an ordinary result (``GateOutcome.DENIED``), never an exception. When the data store
cannot be read the gate fails open (``GateOutcome.ALLOWED_DUE_TO_ERROR``, status
``error``) so an infrastructure fault never freezes the pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple, Type

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.logger import get_logger
from src.core.metrics import record_gate_decision
from src.storage.models import IntentWorkflow
from src.workflows.audit import AuditSink, DatabaseAuditSink, RequestMeta, build_event, log_and_ignore
from src.workflows.errors import InvalidRequestError
from src.workflows.stages import WorkflowStage
from src.workflows.states import (
    APPROVAL_TYPE_SEED_KEYWORDS,
    APPROVAL_TYPE_SUBTOPICS,
    DECISION_APPROVED,
    DECISION_REJECTED,
)
from src.workflows.store import get_approval, get_workflow, utc_now


logger = get_logger("intent.gates")

STATUS_COMPLETE = "complete"
STATUS_NOT_COMPLETE = "not_complete"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"
STATUS_APPROVED = "approved"
STATUS_NOT_READY = "not_ready"
STATUS_NOT_APPROVED = "not_approved"
STATUS_REJECTED = "rejected"
STATUS_NOT_REQUIRED = "not_required"

DB_FAIL_OPEN_REASON = "Database error - failing open for availability"
UNEXPECTED_FAIL_OPEN_REASON = "Unexpected error - failing open for availability"


class GateOutcome(str, Enum):
    ALLOWED = "allowed"
    DENIED = "denied"
    ALLOWED_DUE_TO_ERROR = "allowed_due_to_error"


@dataclass(frozen=True)
class GateResult:
    outcome: GateOutcome
    status: str
    workflow_status: Optional[str] = None
    organization_id: Optional[str] = None
    reason: Optional[str] = None
    error_payload: Optional[Dict[str, Any]] = None
    missing_prerequisites: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def allowed(self) -> bool:
        return self.outcome is not GateOutcome.DENIED

    @property
    def enforcement_action(self) -> str:
        if self.status == STATUS_ERROR:
            return "error"
        return "allowed" if self.allowed else "blocked"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "allowed": self.allowed,
            "outcome": self.outcome.value,
            "status": self.status,
            "workflow_status": self.workflow_status,
        }
        if self.reason:
            payload["reason"] = self.reason
        if self.missing_prerequisites:
            payload["missing_prerequisites"] = list(self.missing_prerequisites)
        return payload


class WorkflowGate:
    """Base gate: fetch once, decide, fail open on infrastructure errors."""

    name = "gate"
    domain = "gate"
    status_field = "gate_status"
    protected_step = "unknown"

    def __init__(self, session: Session, *, audit_sink: Optional[AuditSink] = None) -> None:
        self._session = session
        self._audit_sink = audit_sink or DatabaseAuditSink(session)

    def validate(self, workflow_id: str, organization_id: Optional[str] = None) -> GateResult:
        try:
            workflow = get_workflow(self._session, workflow_id=workflow_id, organization_id=organization_id)
            if workflow is None:
                result = self._not_found(workflow_id)
            else:
                result = self._decide(workflow, WorkflowStage.parse(workflow.status))
        except SQLAlchemyError as exc:
            self._rollback_quietly()
            logger.warning("gate_fail_open", gate=self.name, workflow_id=workflow_id, error=str(exc))
            result = self._fail_open(DB_FAIL_OPEN_REASON)
        except Exception as exc:
            logger.warning(
                "gate_fail_open",
                gate=self.name,
                workflow_id=workflow_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            result = self._fail_open(UNEXPECTED_FAIL_OPEN_REASON)

        record_gate_decision(gate=self.name, outcome=result.outcome.value)
        return result

    def log_gate_enforcement(
        self,
        workflow_id: str,
        attempted_step: str,
        result: GateResult,
        *,
        actor_id: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> bool:
        """Emit one ``workflow.gate.<domain>_<action>`` audit event. Never raises."""

        try:
            organization_id = result.organization_id
            if organization_id is None:
                workflow = get_workflow(self._session, workflow_id=workflow_id)
                if workflow is None:
                    logger.info("gate_enforcement_log_skipped", gate=self.name, workflow_id=workflow_id)
                    return False
                organization_id = workflow.organization_id

            details: Dict[str, Any] = {
                "attempted_step": attempted_step,
                self.status_field: result.status,
                "workflow_status": result.workflow_status,
                "enforcement_action": result.enforcement_action,
            }
            if result.missing_prerequisites:
                details["missing_prerequisites"] = list(result.missing_prerequisites)
            if result.reason and result.outcome is not GateOutcome.ALLOWED:
                details["error_message"] = result.reason

            event = build_event(
                organization_id=organization_id,
                workflow_id=workflow_id,
                action=f"workflow.gate.{self.domain}_{result.enforcement_action}",
                actor_id=actor_id,
                details=details,
                request_meta=request_meta,
            )
            return log_and_ignore(self._audit_sink, event)
        except Exception as exc:
            self._rollback_quietly()
            logger.warning("gate_enforcement_log_failed", gate=self.name, workflow_id=workflow_id, error=str(exc))
            return False

    def _decide(self, workflow: IntentWorkflow, stage: WorkflowStage) -> GateResult:
        raise NotImplementedError

    def _rollback_quietly(self) -> None:
        try:
            self._session.rollback()
        except SQLAlchemyError as exc:
            logger.warning("gate_session_rollback_failed", gate=self.name, error=str(exc))

    def _allow(self, workflow: IntentWorkflow, stage: WorkflowStage, status: str) -> GateResult:
        return GateResult(
            outcome=GateOutcome.ALLOWED,
            status=status,
            workflow_status=stage.value,
            organization_id=workflow.organization_id,
        )

    def _deny(
        self,
        workflow: IntentWorkflow,
        stage: WorkflowStage,
        *,
        status: str,
        reason: str,
        required_action: str,
        missing: Sequence[str] = (),
        extra: Optional[Dict[str, Any]] = None,
    ) -> GateResult:
        payload: Dict[str, Any] = {
            "error": reason,
            "workflow_status": stage.value,
            self.status_field: status,
            "required_action": required_action,
            "current_step": self.protected_step,
            "blocked_at": utc_now().isoformat(),
        }
        if missing:
            payload["missing_prerequisites"] = list(missing)
        if extra:
            payload.update(extra)
        return GateResult(
            outcome=GateOutcome.DENIED,
            status=status,
            workflow_status=stage.value,
            organization_id=workflow.organization_id,
            reason=reason,
            error_payload=payload,
            missing_prerequisites=tuple(missing),
        )

    def _not_found(self, workflow_id: str) -> GateResult:
        return GateResult(
            outcome=GateOutcome.DENIED,
            status=STATUS_NOT_FOUND,
            reason="Workflow not found",
            error_payload={
                "error": "Workflow not found",
                "workflow_id": workflow_id,
                "required_action": "Provide valid workflow ID",
            },
        )

    def _fail_open(self, reason: str) -> GateResult:
        return GateResult(outcome=GateOutcome.ALLOWED_DUE_TO_ERROR, status=STATUS_ERROR, reason=reason)


class IcpGate(WorkflowGate):
    name = "icp"
    domain = "icp"
    status_field = "icp_status"
    protected_step = "competitor-analyze"

    def _decide(self, workflow: IntentWorkflow, stage: WorkflowStage) -> GateResult:
        if stage.is_past(WorkflowStage.ICP):
            return self._allow(workflow, stage, STATUS_COMPLETE)
        return self._deny(
            workflow,
            stage,
            status=STATUS_NOT_COMPLETE,
            reason="ICP definition required before competitor analysis",
            required_action="Complete ICP definition (step 1) before proceeding",
        )


class CompetitorGate(WorkflowGate):
    name = "competitor"
    domain = "competitors"
    status_field = "competitor_status"
    protected_step = "seed-extract"

    def _decide(self, workflow: IntentWorkflow, stage: WorkflowStage) -> GateResult:
        if stage.is_past(WorkflowStage.COMPETITORS):
            return self._allow(workflow, stage, STATUS_COMPLETE)
        return self._deny(
            workflow,
            stage,
            status=STATUS_NOT_COMPLETE,
            reason="Competitor analysis required before seed keywords",
            required_action="Complete competitor analysis (step 2) before proceeding",
        )


LONGTAIL_PREREQUISITE = "longtail expansion (step 4)"
CLUSTERING_PREREQUISITE = "topic clustering (step 6)"


class LongtailClusteringGate(WorkflowGate):
    name = "longtail_clustering"
    domain = "longtails"
    status_field = "prerequisites_status"
    protected_step = "subtopic-generation"

    def _decide(self, workflow: IntentWorkflow, stage: WorkflowStage) -> GateResult:
        longtail_complete = stage.is_past(WorkflowStage.LONGTAILS)
        clustering_complete = stage.is_past(WorkflowStage.CLUSTERING)
        if longtail_complete and clustering_complete:
            return self._allow(workflow, stage, STATUS_COMPLETE)

        missing = []
        if not longtail_complete:
            missing.append(LONGTAIL_PREREQUISITE)
        if not clustering_complete:
            missing.append(CLUSTERING_PREREQUISITE)
        return self._deny(
            workflow,
            stage,
            status=STATUS_NOT_COMPLETE,
            reason="Longtail expansion and clustering required before subtopic generation",
            required_action="Complete longtail expansion (step 4) and topic clustering (step 6) before proceeding",
            missing=missing,
            extra={
                "longtail_status": STATUS_COMPLETE if longtail_complete else STATUS_NOT_COMPLETE,
                "clustering_status": STATUS_COMPLETE if clustering_complete else STATUS_NOT_COMPLETE,
            },
        )


class _ApprovalGate(WorkflowGate):
    """Three-way gate around a review stage and its approval row."""

    approval_type = ""
    review_stage = WorkflowStage.COMPLETED
    not_ready_reason = ""
    not_ready_action = ""
    not_approved_reason = ""
    not_approved_action = ""
    rejected_reason = ""
    rejected_action = ""

    def _decide(self, workflow: IntentWorkflow, stage: WorkflowStage) -> GateResult:
        if stage.is_before(self.review_stage):
            return self._deny(
                workflow,
                stage,
                status=STATUS_NOT_READY,
                reason=self.not_ready_reason,
                required_action=self.not_ready_action,
            )
        if stage.is_past(self.review_stage):
            return self._allow(workflow, stage, STATUS_NOT_REQUIRED)

        approval = get_approval(self._session, workflow_id=workflow.id, approval_type=self.approval_type)
        if approval is None:
            return self._deny(
                workflow,
                stage,
                status=STATUS_NOT_APPROVED,
                reason=self.not_approved_reason,
                required_action=self.not_approved_action,
            )
        if approval.decision == DECISION_REJECTED:
            return self._deny(
                workflow,
                stage,
                status=STATUS_REJECTED,
                reason=self.rejected_reason,
                required_action=self.rejected_action,
            )
        if approval.decision == DECISION_APPROVED:
            return self._allow(workflow, stage, STATUS_APPROVED)
        raise ValueError(f"Unknown approval decision: {approval.decision!r}")


class SeedApprovalGate(_ApprovalGate):
    name = "seed_approval"
    domain = "seeds"
    status_field = "seed_approval_status"
    protected_step = "longtail-expand"
    approval_type = APPROVAL_TYPE_SEED_KEYWORDS
    review_stage = WorkflowStage.SEEDS
    not_ready_reason = "Seed keywords not yet extracted for approval"
    not_ready_action = "Complete seed keyword extraction (step 3) before proceeding"
    not_approved_reason = "Seed keywords must be approved before longtail expansion"
    not_approved_action = "Approve seed keywords via the seed approval endpoint"
    rejected_reason = "Seed keywords rejected - revision required"
    rejected_action = "Revise seed keywords and resubmit them for approval"


class SubtopicApprovalGate(_ApprovalGate):
    name = "subtopic_approval"
    domain = "subtopics"
    status_field = "subtopic_approval_status"
    protected_step = "article-queuing"
    approval_type = APPROVAL_TYPE_SUBTOPICS
    review_stage = WorkflowStage.SUBTOPICS
    not_ready_reason = "Subtopics not yet generated for approval"
    not_ready_action = "Complete subtopic generation before article generation"
    not_approved_reason = "Subtopics must be approved before article generation"
    not_approved_action = "Approve subtopics via keyword approval endpoints"
    rejected_reason = "Subtopics rejected - revision required"
    rejected_action = "Regenerate or revise subtopics before article generation"


STEP_GATES: Dict[str, Tuple[Type[WorkflowGate], ...]] = {
    gate.protected_step: (gate,)
    for gate in (IcpGate, CompetitorGate, SeedApprovalGate, LongtailClusteringGate, SubtopicApprovalGate)
}


@dataclass(frozen=True)
class StepGateReport:
    attempted_step: str
    results: Tuple[Tuple[str, GateResult], ...]
    blocking: Optional[GateResult] = None

    @property
    def allowed(self) -> bool:
        return self.blocking is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attempted_step": self.attempted_step,
            "allowed": self.allowed,
            "gates": [{"gate": name, **result.to_dict()} for name, result in self.results],
        }


def enforce_step_gates(
    session: Session,
    *,
    workflow_id: str,
    attempted_step: str,
    organization_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    request_meta: Optional[RequestMeta] = None,
    audit_sink: Optional[AuditSink] = None,
) -> StepGateReport:
    """Run and log every gate protecting ``attempted_step``; stop at the first denial."""

    gate_types = STEP_GATES.get(attempted_step)
    if gate_types is None:
        raise InvalidRequestError(
            f"Unknown workflow step: {attempted_step}",
            details={"known_steps": sorted(STEP_GATES)},
        )

    results = []
    for gate_type in gate_types:
        gate = gate_type(session, audit_sink=audit_sink)
        result = gate.validate(workflow_id, organization_id)
        gate.log_gate_enforcement(workflow_id, attempted_step, result, actor_id=actor_id, request_meta=request_meta)
        results.append((gate.name, result))
        if not result.allowed:
            return StepGateReport(attempted_step=attempted_step, results=tuple(results), blocking=result)
    return StepGateReport(attempted_step=attempted_step, results=tuple(results))

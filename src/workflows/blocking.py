"""Explain where a workflow is stuck and what unblocks it."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from src.core.logger import get_logger
from src.storage.models import IntentWorkflow
from src.workflows.audit import AuditSink, DatabaseAuditSink, RequestMeta, build_event, log_and_ignore
from src.workflows.gates import STEP_GATES, GateOutcome
from src.workflows.stages import WorkflowStage


logger = get_logger("intent.blocking")

# The gated step a workflow attempts next from each stage. Stages that are not listed
# have no gate ahead of them.
PENDING_STEP_BY_STAGE: Dict[WorkflowStage, str] = {
    WorkflowStage.ICP: "competitor-analyze",
    WorkflowStage.COMPETITORS: "seed-extract",
    WorkflowStage.SEEDS: "longtail-expand",
    WorkflowStage.LONGTAILS: "subtopic-generation",
    WorkflowStage.FILTERING: "subtopic-generation",
    WorkflowStage.CLUSTERING: "subtopic-generation",
    WorkflowStage.VALIDATION: "subtopic-generation",
    WorkflowStage.SUBTOPICS: "article-queuing",
}

ACTION_PATHS = {
    "longtail-expand": "seed-approval",
    "article-queuing": "human-approval",
}


@dataclass(frozen=True)
class BlockingCondition:
    blocked_at_step: str
    blocking_gate: str
    blocking_reason: str
    required_action: str
    action_link: str
    blocked_since: Optional[str]
    pending_step: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def action_link_for(workflow_id: str, pending_step: str) -> str:
    return f"/intent/workflows/{workflow_id}/{ACTION_PATHS.get(pending_step, 'advance')}"


def resolve_blocking_condition(
    session: Session,
    *,
    workflow: IntentWorkflow,
    actor_id: Optional[str] = None,
    request_meta: Optional[RequestMeta] = None,
    audit_sink: Optional[AuditSink] = None,
) -> Optional[BlockingCondition]:
    """Return the first gate denying the workflow's next step, or ``None`` when nothing blocks it.

    Gates that fail open count as not blocking. A blocking answer is audited as
    ``workflow.blocking_condition.queried``.
    """

    stage = WorkflowStage.parse(workflow.status)
    pending_step = PENDING_STEP_BY_STAGE.get(stage)
    if pending_step is None:
        return None

    for gate_type in STEP_GATES[pending_step]:
        result = gate_type(session, audit_sink=audit_sink).validate(workflow.id, workflow.organization_id)
        if result.outcome is not GateOutcome.DENIED:
            continue

        payload = result.error_payload or {}
        blocked_since = workflow.updated_at or workflow.created_at
        condition = BlockingCondition(
            blocked_at_step=stage.value,
            blocking_gate=gate_type.name,
            blocking_reason=result.reason or str(payload.get("error", "")),
            required_action=str(payload.get("required_action", "")),
            action_link=action_link_for(workflow.id, pending_step),
            blocked_since=blocked_since.isoformat() if blocked_since is not None else None,
            pending_step=pending_step,
        )
        logger.info("workflow_blocking_condition_resolved", gate=condition.blocking_gate, stage=stage.value)
        log_and_ignore(
            audit_sink or DatabaseAuditSink(session),
            build_event(
                organization_id=workflow.organization_id,
                workflow_id=workflow.id,
                action="workflow.blocking_condition.queried",
                actor_id=actor_id,
                details={
                    "blocked_at_step": condition.blocked_at_step,
                    "blocking_gate": condition.blocking_gate,
                    "blocking_reason": condition.blocking_reason,
                    "required_action": condition.required_action,
                },
                request_meta=request_meta,
            ),
        )
        return condition
    return None

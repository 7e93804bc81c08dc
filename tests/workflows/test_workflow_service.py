from __future__ import annotations

import pytest

from src.workflows.audit import MemoryAuditSink
from src.workflows.errors import (
    AccessDeniedError,
    InvalidRequestError,
    InvalidWorkflowStateError,
    UnauthenticatedError,
    WorkflowLockedError,
)
from src.workflows.service import advance_workflow, create_workflow, workflow_to_dict
from src.workflows.stages import WorkflowStage
from src.workflows.states import APPROVAL_TYPE_SEED_KEYWORDS
from tests.workflows.conftest import add_article, add_keyword, create_owner, create_workflow_at, record_decision


def test_create_workflow_starts_at_icp(session, owner) -> None:
    sink = MemoryAuditSink()
    workflow = create_workflow(
        session,
        organization_id=owner.organization_id,
        name="  Q3 onboarding cluster  ",
        created_by=owner.user_id,
        icp_document={"persona": "hr lead"},
        competitor_urls=["https://rival.example"],
        audit_sink=sink,
    )

    payload = workflow_to_dict(session, workflow)
    assert payload["name"] == "Q3 onboarding cluster"
    assert payload["status"] == "step_1_icp"
    assert payload["step_number"] == 1
    assert payload["icp_document"] == {"persona": "hr lead"}
    assert payload["competitor_urls"] == ["https://rival.example"]
    assert payload["article_count"] == 0
    assert [event.action for event in sink.events] == ["workflow.created"]


def test_create_workflow_requires_name(session, owner) -> None:
    with pytest.raises(InvalidRequestError):
        create_workflow(session, organization_id=owner.organization_id, name="   ", created_by=owner.user_id)


def test_workflow_dict_counts_articles(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.LINKING)
    add_article(session, workflow, add_keyword(session, workflow, "alpha"))

    assert workflow_to_dict(session, workflow)["article_count"] == 1


def test_advance_moves_one_stage(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.ICP)
    sink = MemoryAuditSink()

    advanced = advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_1_icp", audit_sink=sink)

    assert advanced.status == "step_2_competitors"
    assert sink.events[-1].action == "workflow.stage.advanced"
    assert sink.events[-1].details == {"from_stage": "step_1_icp", "to_stage": "step_2_competitors"}


def test_advance_rejects_stale_or_unknown_stage(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.COMPETITORS)

    with pytest.raises(InvalidWorkflowStateError, match="Workflow is at step_2_competitors, not step_1_icp"):
        advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_1_icp")
    with pytest.raises(InvalidRequestError):
        advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_0_draft")
    with pytest.raises(UnauthenticatedError):
        advance_workflow(session, workflow_id=workflow.id, auth=None, from_stage="step_2_competitors")


def test_advance_refuses_review_and_post_review_stages(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.SUBTOPICS)

    with pytest.raises(InvalidWorkflowStateError, match="completed through its own operation"):
        advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_8_subtopics")


def test_advance_past_seeds_requires_seed_approval(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.SEEDS)
    sink = MemoryAuditSink()

    with pytest.raises(WorkflowLockedError) as excinfo:
        advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_3_seeds", audit_sink=sink)
    assert excinfo.value.status_code == 423
    assert excinfo.value.to_payload()["seed_approval_status"] == "not_approved"
    assert [event.action for event in sink.events] == ["workflow.gate.seeds_blocked"]
    session.refresh(workflow)
    assert workflow.status == "step_3_seeds"

    record_decision(session, workflow, APPROVAL_TYPE_SEED_KEYWORDS)
    advanced = advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_3_seeds")
    assert advanced.status == "step_4_longtails"


def test_advance_from_validation_enters_subtopic_review(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.VALIDATION)

    advanced = advance_workflow(session, workflow_id=workflow.id, auth=owner, from_stage="step_7_validation")

    assert advanced.status == "step_8_subtopics"


def test_advance_refuses_other_organization(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.ICP)
    outsider = create_owner(session)

    with pytest.raises(AccessDeniedError):
        advance_workflow(session, workflow_id=workflow.id, auth=outsider, from_stage="step_1_icp")

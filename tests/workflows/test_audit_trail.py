from __future__ import annotations

from src.workflows.audit import (
    DatabaseAuditSink,
    MemoryAuditSink,
    RequestMeta,
    audit_log_to_dict,
    build_event,
    count_audit_logs,
    list_audit_logs,
    log_and_ignore,
)
from src.workflows.stages import WorkflowStage
from tests.workflows.conftest import create_owner, create_workflow_at


class ExplodingSink:
    def append(self, event) -> None:
        raise ConnectionError("audit database unreachable")


def test_build_event_defaults_actor_and_entity() -> None:
    event = build_event(organization_id="org-1", workflow_id="wf-1", action="workflow.created", actor_id=None, details={})
    assert event.actor_id == "system"
    assert event.entity_type == "workflow"
    assert event.entity_id == "wf-1"

    org_event = build_event(organization_id="org-1", workflow_id=None, action="organization.touched", actor_id="u-1", details={})
    assert org_event.entity_id == "org-1"


def test_log_and_ignore_reports_but_swallows_failures() -> None:
    event = build_event(organization_id="org-1", workflow_id="wf-1", action="workflow.created", actor_id="u-1", details={})

    assert log_and_ignore(ExplodingSink(), event) is False

    sink = MemoryAuditSink()
    assert log_and_ignore(sink, event) is True
    assert sink.events == [event]


def test_database_sink_persists_request_metadata(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.SEEDS)
    sink = DatabaseAuditSink(session)

    log_and_ignore(
        sink,
        build_event(
            organization_id=owner.organization_id,
            workflow_id=workflow.id,
            action="workflow.seed_approval.approved",
            actor_id=owner.user_id,
            details={"decision": "approved"},
            request_meta=RequestMeta(ip_address="203.0.113.9", user_agent="pytest-agent"),
        ),
    )

    rows = list_audit_logs(session, organization_id=owner.organization_id, workflow_id=workflow.id)
    assert len(rows) == 1
    payload = audit_log_to_dict(rows[0])
    assert payload["action"] == "workflow.seed_approval.approved"
    assert payload["details"] == {"decision": "approved"}
    assert payload["ip_address"] == "203.0.113.9"
    assert payload["user_agent"] == "pytest-agent"
    assert payload["actor_id"] == owner.user_id


def test_audit_queries_filter_and_stay_in_organization(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.SEEDS)
    outsider = create_owner(session)
    sink = DatabaseAuditSink(session)
    for action, actor in (
        ("workflow.created", owner.user_id),
        ("workflow.stage.advanced", owner.user_id),
        ("workflow.stage.advanced", None),
    ):
        log_and_ignore(
            sink,
            build_event(
                organization_id=owner.organization_id,
                workflow_id=workflow.id,
                action=action,
                actor_id=actor,
                details={},
            ),
        )
    log_and_ignore(
        sink,
        build_event(
            organization_id=outsider.organization_id,
            workflow_id=None,
            action="workflow.created",
            actor_id=outsider.user_id,
            details={},
        ),
    )

    assert count_audit_logs(session, organization_id=owner.organization_id) == 3
    assert count_audit_logs(session, organization_id=owner.organization_id, action="workflow.stage.advanced") == 2
    assert count_audit_logs(session, organization_id=owner.organization_id, actor_id="system") == 1
    assert count_audit_logs(session, organization_id=outsider.organization_id) == 1
    page = list_audit_logs(session, organization_id=owner.organization_id, limit=2, offset=0)
    assert len(page) == 2
    assert len(list_audit_logs(session, organization_id=owner.organization_id, limit=2, offset=2)) == 1

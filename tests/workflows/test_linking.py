from __future__ import annotations

import uuid

import pytest
from sqlalchemy.exc import OperationalError

from src.storage.models import Article
from src.workflows.audit import MemoryAuditSink
from src.workflows.errors import (
    AccessDeniedError,
    ArticleNotFoundError,
    InfrastructureError,
    InvalidRequestError,
    InvalidWorkflowStateError,
)
from src.workflows import linking as linking_module
from src.workflows.linking import ArticleWorkflowLinker, record_article_generation_result
from src.workflows.stages import WorkflowStage
from src.workflows.states import (
    ARTICLE_FAILED,
    ARTICLE_GENERATING,
    ARTICLE_PUBLISHED,
    LINK_FAILED,
    LINK_LINKED,
    LINK_LINKING,
)
from tests.workflows.conftest import add_article, add_keyword, create_owner, create_workflow_at


def _workflow_with_articles(session, owner, *keywords, **article_kwargs):
    workflow = create_workflow_at(session, owner, WorkflowStage.LINKING)
    articles = [add_article(session, workflow, add_keyword(session, workflow, keyword), **article_kwargs) for keyword in keywords]
    return workflow, articles


def test_linking_every_article_completes_the_workflow(session, owner) -> None:
    workflow, articles = _workflow_with_articles(session, owner, "alpha", "beta")
    sink = MemoryAuditSink()

    result = ArticleWorkflowLinker(session, audit_sink=sink).link(workflow.id, owner.user_id)

    assert result.linking_status == "completed"
    assert result.linked_articles == 2
    assert result.failed_articles == 0
    assert result.total_articles == 2
    assert result.workflow_status == "completed"
    for article in articles:
        session.refresh(article)
        assert article.workflow_link_status == LINK_LINKED
        assert article.linked_at is not None
    session.refresh(workflow)
    assert workflow.status == "completed"
    assert workflow.article_link_count == 2
    assert workflow.article_linking_started_at is not None
    assert workflow.article_linking_completed_at is not None
    actions = [event.action for event in sink.events]
    assert actions[0] == "workflow.article_linking.started"
    assert actions.count("workflow.article.linked") == 2
    assert actions[-1] == "workflow.article_linking.completed"


def test_one_failure_keeps_workflow_at_linking(session, owner, monkeypatch) -> None:
    workflow, (good, bad) = _workflow_with_articles(session, owner, "alpha", "beta")
    original = ArticleWorkflowLinker._set_link_status

    def flaky_set_link_status(self, article, link_status):
        if article.id == bad.id and link_status == LINK_LINKED:
            raise RuntimeError("cross-link index unavailable")
        return original(self, article, link_status)

    monkeypatch.setattr(ArticleWorkflowLinker, "_set_link_status", flaky_set_link_status)
    sink = MemoryAuditSink()
    result = ArticleWorkflowLinker(session, audit_sink=sink).link(workflow.id)

    assert result.linking_status == "completed_with_failures"
    assert result.linked_articles == 1
    assert result.failed_articles == 1
    assert result.details.linked_ids == (good.id,)
    assert result.details.failed_ids == (bad.id,)
    assert result.workflow_status == "step_10_linking"
    session.refresh(bad)
    assert bad.workflow_link_status == LINK_FAILED
    failure_events = [event for event in sink.events if event.action == "workflow.article.link_failed"]
    assert len(failure_events) == 1
    assert failure_events[0].entity_type == "article"
    assert failure_events[0].entity_id == bad.id
    assert failure_events[0].actor_id == "system"


def test_rerun_retries_failed_and_counts_already_linked(session, owner) -> None:
    workflow, (linked, failed) = _workflow_with_articles(session, owner, "alpha", "beta")
    linked.workflow_link_status = LINK_LINKED
    failed.workflow_link_status = LINK_FAILED
    session.commit()

    result = ArticleWorkflowLinker(session, audit_sink=MemoryAuditSink()).link(workflow.id)

    assert result.already_linked == 1
    assert result.linked_articles == 1
    assert result.details.linked_ids == (failed.id,)
    assert result.workflow_status == "completed"


def test_interrupted_linking_state_is_picked_up_again(session, owner) -> None:
    workflow, (stuck,) = _workflow_with_articles(session, owner, "alpha", link_status=LINK_LINKING)

    result = ArticleWorkflowLinker(session, audit_sink=MemoryAuditSink()).link(workflow.id)

    assert result.details.linked_ids == (stuck.id,)
    assert result.linking_status == "completed"


def test_articles_still_generating_are_skipped(session, owner) -> None:
    workflow, (done,) = _workflow_with_articles(session, owner, "alpha", status=ARTICLE_PUBLISHED)
    pending = add_article(session, workflow, add_keyword(session, workflow, "beta"), status=ARTICLE_GENERATING)

    result = ArticleWorkflowLinker(session, audit_sink=MemoryAuditSink()).link(workflow.id)

    assert result.details.linked_ids == (done.id,)
    assert result.details.skipped_ids == (pending.id,)
    assert result.total_articles == 2
    assert result.linking_status == "completed"
    assert result.workflow_status == "step_10_linking"


def test_linking_requires_linking_stage_and_ownership(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.ARTICLES)
    linker = ArticleWorkflowLinker(session, audit_sink=MemoryAuditSink())

    with pytest.raises(InvalidWorkflowStateError, match="step_10_linking for article linking"):
        linker.link(workflow.id)

    workflow.status = WorkflowStage.LINKING.value
    session.commit()
    outsider = create_owner(session)
    with pytest.raises(AccessDeniedError):
        linker.link(workflow.id, organization_id=outsider.organization_id)


def test_empty_workflow_completes_immediately(session, owner) -> None:
    workflow = create_workflow_at(session, owner, WorkflowStage.LINKING)

    result = ArticleWorkflowLinker(session, audit_sink=MemoryAuditSink()).link(workflow.id)

    assert result.total_articles == 0
    assert result.workflow_status == "completed"


def test_generation_result_updates_article(session, owner) -> None:
    workflow, (article,) = _workflow_with_articles(session, owner, "alpha", status=ARTICLE_GENERATING)

    updated = record_article_generation_result(
        session,
        article_id=article.id,
        organization_id=owner.organization_id,
        status=ARTICLE_FAILED,
        error="x" * 1200,
    )

    assert updated.status == ARTICLE_FAILED
    assert len(updated.generation_error) == 1000
    assert session.get(Article, article.id).status == ARTICLE_FAILED


def test_generation_result_validation(session, owner) -> None:
    workflow, (article,) = _workflow_with_articles(session, owner, "alpha", link_status=LINK_LINKED)
    outsider = create_owner(session)

    with pytest.raises(InvalidRequestError):
        record_article_generation_result(
            session, article_id=article.id, organization_id=owner.organization_id, status="linked"
        )
    with pytest.raises(ArticleNotFoundError):
        record_article_generation_result(
            session, article_id=str(uuid.uuid4()), organization_id=owner.organization_id, status=ARTICLE_FAILED
        )
    with pytest.raises(AccessDeniedError):
        record_article_generation_result(
            session, article_id=article.id, organization_id=outsider.organization_id, status=ARTICLE_FAILED
        )
    with pytest.raises(InvalidWorkflowStateError, match="already linked"):
        record_article_generation_result(
            session, article_id=article.id, organization_id=owner.organization_id, status=ARTICLE_FAILED
        )


def _connection_reset(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("connection reset"))


def test_article_load_failure_raises_infrastructure_error(session, owner, monkeypatch) -> None:
    workflow, _ = _workflow_with_articles(session, owner, "alpha")
    sink = MemoryAuditSink()
    monkeypatch.setattr(linking_module, "list_articles", _connection_reset)

    with pytest.raises(InfrastructureError):
        ArticleWorkflowLinker(session, audit_sink=sink).link(workflow.id, owner.user_id)

    assert sink.events == []
    session.refresh(workflow)
    assert workflow.status == "step_10_linking"


def test_final_write_failure_raises_and_audits(session, owner, monkeypatch) -> None:
    workflow, _ = _workflow_with_articles(session, owner, "alpha", "beta")
    sink = MemoryAuditSink()
    monkeypatch.setattr(linking_module, "set_workflow_status", _connection_reset)

    with pytest.raises(InfrastructureError):
        ArticleWorkflowLinker(session, audit_sink=sink).link(workflow.id, owner.user_id)

    assert sink.events[-1].action == "workflow.article_linking.failed"
    assert "connection reset" in sink.events[-1].details["error_message"]
    session.refresh(workflow)
    assert workflow.status == "step_10_linking"
    assert workflow.article_linking_completed_at is None

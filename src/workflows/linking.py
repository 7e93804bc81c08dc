"""Article linking: reconcile generated articles back into their workflow.

Every eligible article goes through ``not_linked -> linking -> linked``; a failure in
either phase marks that article ``failed`` without stopping the batch. An article left
in ``linking`` by an interrupted run is picked up again by the next run. The workflow
completes once every article of the workflow is linked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.logger import bound_workflow_context, get_logger
from src.core.metrics import record_article_link_failures, record_articles_linked
from src.storage.models import Article, IntentWorkflow
from src.workflows.audit import AuditSink, DatabaseAuditSink, RequestMeta, build_event, log_and_ignore
from src.workflows.errors import (
    AccessDeniedError,
    ArticleNotFoundError,
    InfrastructureError,
    InvalidRequestError,
    InvalidWorkflowStateError,
    WorkflowNotFoundError,
)
from src.workflows.stages import WorkflowStage
from src.workflows.states import (
    GENERATION_RESULT_STATUSES,
    LINK_FAILED,
    LINK_LINKED,
    LINK_LINKING,
    LINKABLE_ARTICLE_STATUSES,
    LINKING_COMPLETED,
    LINKING_COMPLETED_WITH_FAILURES,
)
from src.workflows.store import get_article, get_workflow, list_articles, set_workflow_status, utc_now


logger = get_logger("intent.linking")

LINKABLE_STAGES = (WorkflowStage.LINKING, WorkflowStage.COMPLETED)


@dataclass(frozen=True)
class LinkingDetails:
    linked_ids: Tuple[str, ...] = field(default_factory=tuple)
    failed_ids: Tuple[str, ...] = field(default_factory=tuple)
    skipped_ids: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class LinkingResult:
    workflow_id: str
    linking_status: str
    total_articles: int
    linked_articles: int
    already_linked: int
    failed_articles: int
    workflow_status: str
    processing_time_seconds: float
    details: LinkingDetails

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "linking_status": self.linking_status,
            "total_articles": self.total_articles,
            "linked_articles": self.linked_articles,
            "already_linked": self.already_linked,
            "failed_articles": self.failed_articles,
            "workflow_status": self.workflow_status,
            "processing_time_seconds": self.processing_time_seconds,
            "details": {
                "linked_ids": list(self.details.linked_ids),
                "failed_ids": list(self.details.failed_ids),
                "skipped_ids": list(self.details.skipped_ids),
            },
        }


class ArticleWorkflowLinker:
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

    def link(
        self,
        workflow_id: str,
        actor_id: Optional[str] = None,
        *,
        organization_id: Optional[str] = None,
    ) -> LinkingResult:
        with bound_workflow_context(workflow_id):
            started = perf_counter()
            try:
                workflow = self._load_workflow(workflow_id, organization_id)
                articles = list_articles(self._session, workflow_id=workflow.id)
            except SQLAlchemyError as exc:
                self._session.rollback()
                raise InfrastructureError("Failed to load workflow for article linking") from exc

            already_linked = [article.id for article in articles if article.workflow_link_status == LINK_LINKED]
            candidates = [
                article
                for article in articles
                if article.status in LINKABLE_ARTICLE_STATUSES and article.workflow_link_status != LINK_LINKED
            ]
            candidate_ids = {article.id for article in candidates}
            skipped_ids = [
                article.id
                for article in articles
                if article.id not in candidate_ids and article.workflow_link_status != LINK_LINKED
            ]
            total = len(articles)

            self._audit(
                workflow,
                actor_id,
                "workflow.article_linking.started",
                {"total_articles": total, "pending_articles": len(candidates), "already_linked": len(already_linked)},
            )

            linked_ids: List[str] = []
            failed_ids: List[str] = []
            try:
                if candidates:
                    workflow.article_linking_started_at = utc_now()
                    self._session.commit()

                for article in candidates:
                    if self._link_article(workflow, article, actor_id):
                        linked_ids.append(article.id)
                    else:
                        failed_ids.append(article.id)

                linked_total = len(linked_ids) + len(already_linked)
                workflow.article_link_count = linked_total
                if linked_total == total:
                    if WorkflowStage.parse(workflow.status) is not WorkflowStage.COMPLETED:
                        set_workflow_status(self._session, workflow=workflow, status=WorkflowStage.COMPLETED)
                    workflow.article_linking_completed_at = utc_now()
                self._session.commit()
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error("article_linking_failed", error=str(exc), linked=len(linked_ids))
                self._audit(
                    workflow,
                    actor_id,
                    "workflow.article_linking.failed",
                    {"error_message": str(exc), "linked_ids": linked_ids, "failed_ids": failed_ids},
                )
                raise InfrastructureError("Failed to link articles to workflow") from exc

            record_articles_linked(organization_id=workflow.organization_id, count=len(linked_ids))
            record_article_link_failures(organization_id=workflow.organization_id, count=len(failed_ids))

            result = LinkingResult(
                workflow_id=workflow.id,
                linking_status=LINKING_COMPLETED_WITH_FAILURES if failed_ids else LINKING_COMPLETED,
                total_articles=total,
                linked_articles=len(linked_ids),
                already_linked=len(already_linked),
                failed_articles=len(failed_ids),
                workflow_status=workflow.status,
                processing_time_seconds=round(perf_counter() - started, 3),
                details=LinkingDetails(
                    linked_ids=tuple(linked_ids),
                    failed_ids=tuple(failed_ids),
                    skipped_ids=tuple(skipped_ids),
                ),
            )
            logger.info(
                "articles_linked",
                linking_status=result.linking_status,
                linked=result.linked_articles,
                already_linked=result.already_linked,
                failed=result.failed_articles,
                total=result.total_articles,
            )
            self._audit(
                workflow,
                actor_id,
                "workflow.article_linking.completed",
                {
                    "linking_status": result.linking_status,
                    "total_articles": result.total_articles,
                    "linked_articles": result.linked_articles,
                    "already_linked": result.already_linked,
                    "failed_articles": result.failed_articles,
                    "workflow_status": result.workflow_status,
                },
            )
            return result

    def _load_workflow(self, workflow_id: str, organization_id: Optional[str]) -> IntentWorkflow:
        workflow = get_workflow(self._session, workflow_id=workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(details={"workflow_id": workflow_id})
        if organization_id is not None and workflow.organization_id != organization_id:
            raise AccessDeniedError("Access denied: workflow belongs to different organization")
        stage = WorkflowStage.parse(workflow.status)
        if stage not in LINKABLE_STAGES:
            raise InvalidWorkflowStateError(
                f"Workflow must be at {WorkflowStage.LINKING.value} for article linking, "
                f"current state: {stage.value}",
                details={"required_status": WorkflowStage.LINKING.value, "current_status": stage.value},
            )
        return workflow

    def _set_link_status(self, article: Article, link_status: str) -> None:
        article.workflow_link_status = link_status
        article.updated_at = utc_now()
        if link_status == LINK_LINKED:
            article.linked_at = article.updated_at
        self._session.commit()

    def _link_article(self, workflow: IntentWorkflow, article: Article, actor_id: Optional[str]) -> bool:
        article_id = article.id
        try:
            self._set_link_status(article, LINK_LINKING)
            self._set_link_status(article, LINK_LINKED)
        except Exception as exc:
            logger.warning("article_link_failed", article_id=article_id, error=str(exc))
            self._mark_failed(article, article_id)
            self._audit(
                workflow,
                actor_id,
                "workflow.article.link_failed",
                {"article_id": article_id, "error_message": str(exc)},
                entity_type="article",
                entity_id=article_id,
            )
            return False

        self._audit(
            workflow,
            actor_id,
            "workflow.article.linked",
            {"article_id": article_id, "keyword": article.keyword},
            entity_type="article",
            entity_id=article_id,
        )
        return True

    def _mark_failed(self, article: Article, article_id: str) -> None:
        try:
            self._session.rollback()
            article.workflow_link_status = LINK_FAILED
            article.updated_at = utc_now()
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.warning("article_link_failure_not_recorded", article_id=article_id, error=str(exc))

    def _audit(
        self,
        workflow: IntentWorkflow,
        actor_id: Optional[str],
        action: str,
        details: Dict[str, Any],
        *,
        entity_type: str = "workflow",
        entity_id: Optional[str] = None,
    ) -> None:
        log_and_ignore(
            self._audit_sink,
            build_event(
                organization_id=workflow.organization_id,
                workflow_id=workflow.id,
                action=action,
                actor_id=actor_id,
                details=details,
                entity_type=entity_type,
                entity_id=entity_id,
                request_meta=self._request_meta,
            ),
        )


def record_article_generation_result(
    session: Session,
    *,
    article_id: str,
    organization_id: str,
    status: str,
    error: Optional[str] = None,
) -> Article:
    """Completion callback from the generation pipeline."""

    if status not in GENERATION_RESULT_STATUSES:
        raise InvalidRequestError(
            f"status must be one of: {', '.join(sorted(GENERATION_RESULT_STATUSES))}",
        )
    try:
        article = get_article(session, article_id=article_id)
        if article is None:
            raise ArticleNotFoundError(details={"article_id": article_id})
        if article.organization_id != organization_id:
            raise AccessDeniedError("Access denied: article belongs to different organization")
        if article.workflow_link_status == LINK_LINKED:
            raise InvalidWorkflowStateError(
                "Article is already linked to its workflow",
                details={"article_id": article_id, "status": article.status},
            )

        article.status = status
        article.generation_error = error[:1000] if error else None
        article.updated_at = utc_now()
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        raise InfrastructureError("Failed to record article generation result") from exc

    logger.info("article_generation_result_recorded", article_id=article_id, status=status)
    return article

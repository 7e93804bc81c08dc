"""Article queuing: fan approved keywords out into article work-items.

Units are processed one at a time. Each unit gets at most one article per workflow
(``uq_articles_workflow_keyword``); an existing article is reused and never
re-dispatched. A failed dispatch marks that article ``planner_failed`` and is reported
in ``errors`` while the remaining units keep going. Once every unit has been attempted
the workflow moves on to article linking.
"""

from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from src.core.config import get_settings
from src.core.logger import bound_workflow_context, get_logger
from src.core.metrics import record_article_dispatch_failures, record_articles_queued
from src.storage.models import Article, IntentWorkflow, Keyword
from src.workflows.audit import AuditSink, DatabaseAuditSink, RequestMeta, build_event, log_and_ignore
from src.workflows.errors import (
    AccessDeniedError,
    InfrastructureError,
    InvalidWorkflowStateError,
    WorkflowNotFoundError,
)
from src.workflows.generation import GenerationRequest, GenerationTrigger, get_generation_trigger
from src.workflows.stages import WorkflowStage
from src.workflows.states import (
    ARTICLE_PLANNER_FAILED,
    ARTICLE_QUEUED,
    KEYWORD_ARTICLE_READY,
    LINK_NOT_LINKED,
    SUBTOPICS_COMPLETE,
)
from src.workflows.store import (
    find_article_for_keyword,
    get_workflow,
    json_dumps,
    json_load_dict,
    json_load_list,
    set_workflow_status,
    utc_now,
)


logger = get_logger("intent.queuing")

QUEUEABLE_STAGES = (WorkflowStage.ARTICLES, WorkflowStage.LINKING)
POST_QUEUING_STAGE = WorkflowStage.LINKING


@dataclass(frozen=True)
class QueuedArticle:
    article_id: str
    keyword_id: str
    keyword: str
    status: str
    reused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "article_id": self.article_id,
            "keyword_id": self.keyword_id,
            "keyword": self.keyword,
            "status": self.status,
            "reused": self.reused,
        }


@dataclass(frozen=True)
class QueueResult:
    workflow_id: str
    new_status: str
    articles_created: int
    articles: Tuple[QueuedArticle, ...]
    errors: Tuple[str, ...]
    failed_article_ids: Tuple[str, ...]

    @property
    def has_failures(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "new_status": self.new_status,
            "articles_created": self.articles_created,
            "articles": [article.to_dict() for article in self.articles],
            "errors": list(self.errors),
            "failed_article_ids": list(self.failed_article_ids),
        }


class _Batch:
    def __init__(self) -> None:
        self.articles: List[QueuedArticle] = []
        self.errors: List[str] = []
        self.failed_ids: List[str] = []
        self.inserted = 0


class ArticleQueuingProcessor:
    def __init__(
        self,
        session: Session,
        *,
        trigger: Optional[GenerationTrigger] = None,
        audit_sink: Optional[AuditSink] = None,
        request_meta: Optional[RequestMeta] = None,
        max_units: Optional[int] = None,
    ) -> None:
        self._session = session
        self._trigger = trigger or get_generation_trigger()
        self._audit_sink = audit_sink or DatabaseAuditSink(session)
        self._request_meta = request_meta
        self._max_units = max_units if max_units is not None else get_settings().article_queue_max_units

    def queue(
        self,
        workflow_id: str,
        *,
        organization_id: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> QueueResult:
        with bound_workflow_context(workflow_id):
            started = perf_counter()
            try:
                workflow = self._load_workflow(workflow_id, organization_id)
                stage = WorkflowStage.parse(workflow.status)
                units = self._approved_units(workflow)
            except SQLAlchemyError as exc:
                self._session.rollback()
                raise InfrastructureError("Failed to load workflow for article queuing") from exc

            if len(units) > self._max_units:
                raise InvalidWorkflowStateError(
                    f"Too many approved keywords: {len(units)} exceeds limit of "
                    f"{self._max_units} articles per workflow",
                    details={"approved_keywords": len(units), "limit": self._max_units},
                )

            self._audit(workflow, actor_id, "started", {"approved_keywords": len(units), "workflow_status": stage.value})

            batch = _Batch()
            try:
                icp_context = json_load_dict(workflow.icp_document_json)
                competitor_context = {"urls": json_load_list(workflow.competitor_urls_json)}
                for keyword in units:
                    self._queue_unit(workflow, keyword, batch, icp_context, competitor_context)

                if stage is not POST_QUEUING_STAGE:
                    set_workflow_status(self._session, workflow=workflow, status=POST_QUEUING_STAGE)
                    self._session.commit()
            except SQLAlchemyError as exc:
                self._session.rollback()
                logger.error("article_queuing_failed", error=str(exc), attempted=len(batch.articles))
                self._audit(
                    workflow,
                    actor_id,
                    "failed",
                    {"error_message": str(exc), "articles_queued": len(batch.articles)},
                )
                raise InfrastructureError("Failed to queue articles") from exc

            record_articles_queued(organization_id=workflow.organization_id, count=batch.inserted - len(batch.failed_ids))
            record_article_dispatch_failures(organization_id=workflow.organization_id, count=len(batch.failed_ids))

            result = QueueResult(
                workflow_id=workflow.id,
                new_status=POST_QUEUING_STAGE.value,
                articles_created=len(batch.articles),
                articles=tuple(batch.articles),
                errors=tuple(batch.errors),
                failed_article_ids=tuple(batch.failed_ids),
            )
            logger.info(
                "articles_queued",
                articles_created=result.articles_created,
                inserted=batch.inserted,
                failed=len(batch.failed_ids),
                duration_seconds=round(perf_counter() - started, 3),
            )
            self._audit(
                workflow,
                actor_id,
                "completed",
                {
                    "articles_created": result.articles_created,
                    "articles_inserted": batch.inserted,
                    "failed_article_ids": list(batch.failed_ids),
                    "new_status": result.new_status,
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
        if stage not in QUEUEABLE_STAGES:
            raise InvalidWorkflowStateError(
                f"Workflow must be at {WorkflowStage.ARTICLES.value} for article queuing, "
                f"current state: {stage.value}",
                details={"required_status": WorkflowStage.ARTICLES.value, "current_status": stage.value},
            )
        return workflow

    def _approved_units(self, workflow: IntentWorkflow) -> List[Keyword]:
        return list(
            self._session.scalars(
                select(Keyword)
                .where(
                    Keyword.workflow_id == workflow.id,
                    Keyword.article_status == KEYWORD_ARTICLE_READY,
                    Keyword.subtopics_status == SUBTOPICS_COMPLETE,
                )
                .order_by(Keyword.created_at, Keyword.id)
            ).all()
        )

    def _reuse(self, article: Article, batch: _Batch) -> None:
        batch.articles.append(
            QueuedArticle(
                article_id=article.id,
                keyword_id=article.keyword_id,
                keyword=article.keyword,
                status=article.status,
                reused=True,
            )
        )

    def _queue_unit(
        self,
        workflow: IntentWorkflow,
        keyword: Keyword,
        batch: _Batch,
        icp_context: Dict[str, Any],
        competitor_context: Dict[str, Any],
    ) -> None:
        existing = find_article_for_keyword(self._session, workflow_id=workflow.id, keyword_id=keyword.id)
        if existing is not None:
            self._reuse(existing, batch)
            return

        keyword_id = keyword.id
        article = Article(
            workflow_id=workflow.id,
            organization_id=workflow.organization_id,
            keyword_id=keyword_id,
            keyword=keyword.keyword,
            status=ARTICLE_QUEUED,
            workflow_link_status=LINK_NOT_LINKED,
            subtopics_json=keyword.subtopics_json,
            cluster_info_json=keyword.cluster_info_json,
            icp_context_json=json_dumps(icp_context),
            competitor_context_json=json_dumps(competitor_context),
        )
        self._session.add(article)
        try:
            self._session.commit()
        except IntegrityError:
            # A concurrent run queued this keyword first.
            self._session.rollback()
            existing = find_article_for_keyword(self._session, workflow_id=workflow.id, keyword_id=keyword_id)
            if existing is None:
                raise
            self._reuse(existing, batch)
            return
        batch.inserted += 1

        request = GenerationRequest(
            article_id=article.id,
            workflow_id=workflow.id,
            organization_id=workflow.organization_id,
            keyword_id=article.keyword_id,
            keyword=article.keyword,
            subtopics=json_load_list(article.subtopics_json),
            cluster_info=json_load_dict(article.cluster_info_json),
            icp_context=icp_context,
            competitor_context=competitor_context,
        )
        try:
            dispatch = self._trigger.start_generation(request)
        except Exception as exc:
            logger.warning("article_generation_dispatch_failed", article_id=article.id, error=str(exc))
            article.status = ARTICLE_PLANNER_FAILED
            article.generation_error = str(exc)[:1000]
            article.updated_at = utc_now()
            self._session.commit()
            batch.errors.append(f"Failed to trigger Planner Agent for article {article.id}: {exc}")
            batch.failed_ids.append(article.id)
            return

        logger.info("article_generation_dispatched", article_id=article.id, dispatch_id=dispatch.dispatch_id)
        batch.articles.append(
            QueuedArticle(
                article_id=article.id,
                keyword_id=article.keyword_id,
                keyword=article.keyword,
                status=article.status,
            )
        )

    def _audit(self, workflow: IntentWorkflow, actor_id: Optional[str], outcome: str, details: Dict[str, Any]) -> None:
        log_and_ignore(
            self._audit_sink,
            build_event(
                organization_id=workflow.organization_id,
                workflow_id=workflow.id,
                action=f"workflow.article_queuing.{outcome}",
                actor_id=actor_id,
                details=details,
                request_meta=self._request_meta,
            ),
        )

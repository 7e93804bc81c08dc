"""Read-only article generation progress for a workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.storage.models import Article, IntentWorkflow
from src.workflows.errors import InfrastructureError, InvalidRequestError
from src.workflows.states import ARTICLE_STATUSES, LINK_LINKED, LINKABLE_ARTICLE_STATUSES
from src.workflows.store import count_articles, count_articles_by_status, list_articles_page


@dataclass(frozen=True)
class WorkflowArticleProgress:
    workflow_id: str
    workflow_status: str
    total_articles: int
    generated_articles: int
    linked_articles: int
    progress_percent: float
    status_counts: Dict[str, int]
    status_filter: Optional[str] = None
    limit: int = 50
    offset: int = 0
    articles: Tuple[Dict[str, Any], ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "workflow_status": self.workflow_status,
            "total_articles": self.total_articles,
            "generated_articles": self.generated_articles,
            "linked_articles": self.linked_articles,
            "progress_percent": self.progress_percent,
            "summary": dict(self.status_counts),
            "status_filter": self.status_filter,
            "limit": self.limit,
            "offset": self.offset,
            "articles": list(self.articles),
        }


def _article_to_dict(article: Article) -> Dict[str, Any]:
    return {
        "article_id": article.id,
        "keyword_id": article.keyword_id,
        "keyword": article.keyword,
        "status": article.status,
        "workflow_link_status": article.workflow_link_status,
        "generation_error": article.generation_error,
        "created_at": article.created_at.isoformat() if article.created_at else None,
        "updated_at": article.updated_at.isoformat() if article.updated_at else None,
    }


def get_workflow_article_progress(
    session: Session,
    *,
    workflow: IntentWorkflow,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> WorkflowArticleProgress:
    """Count the workflow's articles per status and list one page of them.

    ``progress_percent`` is the share of articles whose generation finished
    (``completed`` or ``published``). ``status`` narrows the listed page only;
    the counts always cover the whole workflow.
    """

    if status is not None and status not in ARTICLE_STATUSES:
        raise InvalidRequestError(
            f"Unknown article status: {status}",
            details={"allowed_statuses": list(ARTICLE_STATUSES)},
        )

    try:
        by_status = count_articles_by_status(session, workflow_id=workflow.id)
        linked = count_articles(session, workflow_id=workflow.id, link_status=LINK_LINKED)
        page = list_articles_page(session, workflow_id=workflow.id, status=status, limit=limit, offset=offset)
    except SQLAlchemyError as exc:
        session.rollback()
        raise InfrastructureError("Failed to load article progress") from exc

    status_counts = {name: by_status.get(name, 0) for name in ARTICLE_STATUSES}
    total = sum(by_status.values())
    generated = sum(status_counts[name] for name in LINKABLE_ARTICLE_STATUSES)
    return WorkflowArticleProgress(
        workflow_id=workflow.id,
        workflow_status=workflow.status,
        total_articles=total,
        generated_articles=generated,
        linked_articles=linked,
        progress_percent=round(generated * 100.0 / total, 1) if total else 0.0,
        status_counts=status_counts,
        status_filter=status,
        limit=limit,
        offset=offset,
        articles=tuple(_article_to_dict(article) for article in page),
    )

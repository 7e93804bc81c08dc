"""Persistence helpers for workflows, approvals, keywords and articles."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.storage.models import Article, IntentApproval, IntentWorkflow, Keyword
from src.workflows.stages import WorkflowStage


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True)


def json_load_dict(payload: Optional[str]) -> Dict[str, Any]:
    try:
        loaded = json.loads(payload or "{}")
    except ValueError:
        return {}
    return loaded if isinstance(loaded, dict) else {}


def json_load_list(payload: Optional[str]) -> List[Any]:
    try:
        loaded = json.loads(payload or "[]")
    except ValueError:
        return []
    return loaded if isinstance(loaded, list) else []


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_workflow(
    session: Session,
    *,
    workflow_id: str,
    organization_id: Optional[str] = None,
) -> Optional[IntentWorkflow]:
    query = select(IntentWorkflow).where(IntentWorkflow.id == workflow_id)
    if organization_id is not None:
        query = query.where(IntentWorkflow.organization_id == organization_id)
    return session.scalar(query)


def set_workflow_status(session: Session, *, workflow: IntentWorkflow, status: WorkflowStage) -> None:
    """Move the authoritative stage pointer. Caller commits."""

    workflow.status = status.value
    workflow.updated_at = utc_now()


def get_approval(session: Session, *, workflow_id: str, approval_type: str) -> Optional[IntentApproval]:
    return session.scalar(
        select(IntentApproval).where(
            IntentApproval.workflow_id == workflow_id,
            IntentApproval.approval_type == approval_type,
        )
    )


def _apply_decision(
    approval: IntentApproval,
    *,
    decision: str,
    approver_id: str,
    feedback: Optional[str],
    approved_items: Optional[Sequence[str]],
    reset_to_step: Optional[int],
) -> None:
    approval.decision = decision
    approval.approver_id = approver_id
    approval.feedback = feedback
    approval.approved_items_json = json_dumps(list(approved_items)) if approved_items is not None else None
    approval.reset_to_step = reset_to_step
    approval.updated_at = utc_now()


def upsert_approval(
    session: Session,
    *,
    workflow_id: str,
    approval_type: str,
    decision: str,
    approver_id: str,
    feedback: Optional[str] = None,
    approved_items: Optional[Sequence[str]] = None,
    reset_to_step: Optional[int] = None,
) -> IntentApproval:
    """Record a decision for (workflow_id, approval_type); the latest write wins.

    Flushes but does not commit, so the caller can commit the decision together
    with the stage change it implies. Losing an insert race rolls the session back,
    so callers stage their other mutations after this call.
    """

    decision_fields = {
        "decision": decision,
        "approver_id": approver_id,
        "feedback": feedback,
        "approved_items": approved_items,
        "reset_to_step": reset_to_step,
    }

    existing = get_approval(session, workflow_id=workflow_id, approval_type=approval_type)
    if existing is not None:
        _apply_decision(existing, **decision_fields)
        session.flush()
        return existing

    approval = IntentApproval(workflow_id=workflow_id, approval_type=approval_type)
    _apply_decision(approval, **decision_fields)
    session.add(approval)
    try:
        session.flush()
    except IntegrityError:
        # Lost an insert race on uq_intent_approvals_workflow_type.
        session.rollback()
        existing = get_approval(session, workflow_id=workflow_id, approval_type=approval_type)
        if existing is None:
            raise
        _apply_decision(existing, **decision_fields)
        session.flush()
        return existing
    return approval


def approved_items_of(approval: Optional[IntentApproval]) -> Optional[List[str]]:
    if approval is None or approval.approved_items_json is None:
        return None
    return [str(item) for item in json_load_list(approval.approved_items_json)]


def get_keyword(session: Session, *, keyword_id: str) -> Optional[Keyword]:
    return session.scalar(select(Keyword).where(Keyword.id == keyword_id))


def list_keywords(session: Session, *, workflow_id: str, keyword_type: Optional[str] = None) -> List[Keyword]:
    query = select(Keyword).where(Keyword.workflow_id == workflow_id)
    if keyword_type is not None:
        query = query.where(Keyword.keyword_type == keyword_type)
    return list(session.scalars(query.order_by(Keyword.created_at, Keyword.keyword)).all())


def list_ready_keyword_ids(session: Session, *, workflow_id: str, ready_status: str) -> List[str]:
    return list(
        session.scalars(
            select(Keyword.id)
            .where(Keyword.workflow_id == workflow_id, Keyword.article_status == ready_status)
            .order_by(Keyword.id)
        ).all()
    )


def get_article(session: Session, *, article_id: str) -> Optional[Article]:
    return session.scalar(select(Article).where(Article.id == article_id))


def find_article_for_keyword(session: Session, *, workflow_id: str, keyword_id: str) -> Optional[Article]:
    return session.scalar(
        select(Article).where(Article.workflow_id == workflow_id, Article.keyword_id == keyword_id)
    )


def list_articles(session: Session, *, workflow_id: str) -> List[Article]:
    return list(
        session.scalars(
            select(Article).where(Article.workflow_id == workflow_id).order_by(Article.created_at, Article.id)
        ).all()
    )


def count_articles(session: Session, *, workflow_id: str, link_status: Optional[str] = None) -> int:
    query = select(func.count(Article.id)).where(Article.workflow_id == workflow_id)
    if link_status is not None:
        query = query.where(Article.workflow_link_status == link_status)
    return int(session.scalar(query) or 0)


def count_articles_by_status(session: Session, *, workflow_id: str) -> Dict[str, int]:
    rows = session.execute(
        select(Article.status, func.count(Article.id)).where(Article.workflow_id == workflow_id).group_by(Article.status)
    ).all()
    return {status: int(count) for status, count in rows}


def list_articles_page(
    session: Session,
    *,
    workflow_id: str,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Article]:
    query = select(Article).where(Article.workflow_id == workflow_id)
    if status is not None:
        query = query.where(Article.status == status)
    query = query.order_by(Article.created_at, Article.id).limit(limit).offset(offset)
    return list(session.scalars(query).all())

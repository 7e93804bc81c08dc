"""Best-effort audit trail for workflow actions.

Writes go through an ``AuditSink``. Callers never talk to a sink directly; they go
through ``log_and_ignore`` so an audit failure can never change the outcome of the
operation being described.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from src.core.logger import get_logger
from src.storage.models import IntentAuditLog
from src.workflows.store import json_dumps, json_load_dict


logger = get_logger("intent.audit")

SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class RequestMeta:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class AuditEvent:
    organization_id: str
    workflow_id: Optional[str]
    entity_type: str
    entity_id: str
    actor_id: str
    action: str
    details: Dict[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def build_event(
    *,
    organization_id: str,
    workflow_id: Optional[str],
    action: str,
    actor_id: Optional[str],
    details: Dict[str, Any],
    entity_type: str = "workflow",
    entity_id: Optional[str] = None,
    request_meta: Optional[RequestMeta] = None,
) -> AuditEvent:
    meta = request_meta or RequestMeta()
    return AuditEvent(
        organization_id=organization_id,
        workflow_id=workflow_id,
        entity_type=entity_type,
        entity_id=entity_id or workflow_id or organization_id,
        actor_id=actor_id or SYSTEM_ACTOR,
        action=action,
        details=details,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
    )


class AuditSink(Protocol):
    def append(self, event: AuditEvent) -> None:
        raise NotImplementedError


class DatabaseAuditSink:
    """Appends audit rows through the caller's session and commits them."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def append(self, event: AuditEvent) -> None:
        row = IntentAuditLog(
            organization_id=event.organization_id,
            workflow_id=event.workflow_id,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            actor_id=event.actor_id,
            action=event.action,
            details_json=json_dumps(event.details),
            ip_address=event.ip_address,
            user_agent=(event.user_agent or "")[:512] or None,
        )
        try:
            self._session.add(row)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise


class MemoryAuditSink:
    """Collects events in memory; used by local tooling and tests."""

    def __init__(self) -> None:
        self.events: List[AuditEvent] = []

    def append(self, event: AuditEvent) -> None:
        self.events.append(event)


def log_and_ignore(sink: AuditSink, event: AuditEvent) -> bool:
    try:
        sink.append(event)
    except Exception as exc:
        logger.warning(
            "audit_log_write_failed",
            action=event.action,
            workflow_id=event.workflow_id,
            entity_type=event.entity_type,
            error=str(exc),
        )
        return False
    return True


def _filtered(
    query,
    *,
    organization_id: str,
    workflow_id: Optional[str],
    action: Optional[str],
    actor_id: Optional[str],
    since: Optional[datetime],
):
    query = query.where(IntentAuditLog.organization_id == organization_id)
    if workflow_id:
        query = query.where(IntentAuditLog.workflow_id == workflow_id)
    if action:
        query = query.where(IntentAuditLog.action == action)
    if actor_id:
        query = query.where(IntentAuditLog.actor_id == actor_id)
    if since is not None:
        query = query.where(IntentAuditLog.created_at >= since)
    return query


def list_audit_logs(
    session: Session,
    *,
    organization_id: str,
    workflow_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_id: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[IntentAuditLog]:
    query = _filtered(
        select(IntentAuditLog),
        organization_id=organization_id,
        workflow_id=workflow_id,
        action=action,
        actor_id=actor_id,
        since=since,
    )
    query = query.order_by(IntentAuditLog.created_at.desc(), IntentAuditLog.id).limit(limit).offset(offset)
    return list(session.scalars(query).all())


def count_audit_logs(
    session: Session,
    *,
    organization_id: str,
    workflow_id: Optional[str] = None,
    action: Optional[str] = None,
    actor_id: Optional[str] = None,
    since: Optional[datetime] = None,
) -> int:
    query = _filtered(
        select(func.count(IntentAuditLog.id)),
        organization_id=organization_id,
        workflow_id=workflow_id,
        action=action,
        actor_id=actor_id,
        since=since,
    )
    return int(session.scalar(query) or 0)


def audit_log_to_dict(row: IntentAuditLog) -> Dict[str, Any]:
    return {
        "id": row.id,
        "organization_id": row.organization_id,
        "workflow_id": row.workflow_id,
        "entity_type": row.entity_type,
        "entity_id": row.entity_id,
        "actor_id": row.actor_id,
        "action": row.action,
        "details": json_load_dict(row.details_json),
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }

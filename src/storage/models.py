"""SQLAlchemy ORM models for organizations and intent workflows."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
import uuid

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.storage.db import Base
from src.workflows.stages import WorkflowStage


def _uuid() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    members: Mapped[list[OrganizationUser]] = relationship("OrganizationUser", back_populates="organization")


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)


class OrganizationUser(Base):
    __tablename__ = "organization_users"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_users_organization_user"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    role_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    organization: Mapped[Organization] = relationship("Organization", back_populates="members")


class IntentWorkflow(Base):
    __tablename__ = "intent_workflows"
    __table_args__ = (
        Index("ix_intent_workflows_organization_created_at", "organization_id", "created_at"),
        Index("ix_intent_workflows_organization_status", "organization_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=WorkflowStage.ICP.value)
    icp_document_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    competitor_urls_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    created_by_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    article_link_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    article_linking_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    article_linking_completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class IntentApproval(Base):
    __tablename__ = "intent_approvals"
    __table_args__ = (
        UniqueConstraint("workflow_id", "approval_type", name="uq_intent_approvals_workflow_type"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workflow_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("intent_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    approval_type: Mapped[str] = mapped_column(String(40), nullable=False)
    decision: Mapped[str] = mapped_column(String(16), nullable=False)
    approver_id: Mapped[str] = mapped_column(String(36), nullable=False)
    feedback: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_items_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reset_to_step: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Keyword(Base):
    __tablename__ = "keywords"
    __table_args__ = (
        Index("ix_keywords_workflow_article_status", "workflow_id", "article_status"),
        Index("ix_keywords_workflow_created_at", "workflow_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workflow_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("intent_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword: Mapped[str] = mapped_column(String(255), nullable=False)
    keyword_type: Mapped[str] = mapped_column(String(16), nullable=False, default="seed")
    parent_seed_keyword_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    search_volume: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    subtopics_status: Mapped[str] = mapped_column(String(16), nullable=False, default="not_started")
    subtopics_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    article_status: Mapped[str] = mapped_column(String(16), nullable=False, default="not_started")
    cluster_info_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (
        UniqueConstraint("workflow_id", "keyword_id", name="uq_articles_workflow_keyword"),
        Index("ix_articles_workflow_status", "workflow_id", "status"),
        Index("ix_articles_workflow_link_status", "workflow_id", "workflow_link_status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    workflow_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("intent_workflows.id", ondelete="CASCADE"),
        nullable=False,
    )
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("keywords.id", ondelete="CASCADE"),
        nullable=False,
    )
    keyword: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="queued")
    workflow_link_status: Mapped[str] = mapped_column(String(16), nullable=False, default="not_linked")
    linked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    subtopics_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    cluster_info_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    icp_context_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    competitor_context_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    generation_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )


class IntentAuditLog(Base):
    __tablename__ = "intent_audit_logs"
    __table_args__ = (
        Index("ix_intent_audit_logs_organization_created_at", "organization_id", "created_at"),
        Index("ix_intent_audit_logs_workflow_created_at", "workflow_id", "created_at"),
        Index("ix_intent_audit_logs_organization_action", "organization_id", "action"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    workflow_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(96), nullable=False)
    details_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional, Sequence
import uuid

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import src.api.main as api_main
from src.auth.jwt import AuthContext
from src.core.config import get_settings
from src.organizations.service import add_organization_member, create_organization_with_owner
from src.storage.db import Base, get_session, load_models
from src.storage.models import Article, IntentWorkflow, Keyword
from src.workflows.generation import MockGenerationTrigger, get_generation_trigger, reset_generation_trigger_cache
from src.workflows.stages import WorkflowStage
from src.workflows.states import (
    ARTICLE_COMPLETED,
    DECISION_APPROVED,
    KEYWORD_ARTICLE_NOT_STARTED,
    KEYWORD_TYPE_LONGTAIL,
    LINK_NOT_LINKED,
    SUBTOPICS_COMPLETE,
)
from src.workflows.store import json_dumps, upsert_approval


TEST_SECRET_KEY = "intent-engine-test-secret-key-0123456789"


def build_sqlite_session_factory() -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def create_owner(session: Session, *, name: Optional[str] = None) -> AuthContext:
    email = f"owner-{uuid.uuid4().hex[:8]}@intent.io"
    organization, user, role_name = create_organization_with_owner(
        session,
        organization_name=name or f"org-{uuid.uuid4().hex[:8]}",
        owner_email=email,
        owner_password="owner-pass-123",
    )
    return AuthContext(user_id=user.id, organization_id=organization.id, role=role_name, email=email)


def create_member(session: Session, *, organization_id: str, role: str = "member") -> AuthContext:
    email = f"{role}-{uuid.uuid4().hex[:8]}@intent.io"
    user, role_name = add_organization_member(
        session,
        organization_id=organization_id,
        email=email,
        password="member-pass-123",
        role_name=role,
    )
    return AuthContext(user_id=user.id, organization_id=organization_id, role=role_name, email=email)


def create_workflow_at(
    session: Session,
    auth: AuthContext,
    stage: WorkflowStage = WorkflowStage.ICP,
    *,
    name: str = "B2B onboarding content",
) -> IntentWorkflow:
    workflow = IntentWorkflow(
        organization_id=auth.organization_id,
        name=name,
        status=stage.value,
        icp_document_json=json_dumps({"persona": "ops lead"}),
        competitor_urls_json=json_dumps(["https://competitor.example"]),
        created_by_user_id=auth.user_id,
    )
    session.add(workflow)
    session.commit()
    return workflow


def add_keyword(
    session: Session,
    workflow: IntentWorkflow,
    keyword: str,
    *,
    keyword_type: str = KEYWORD_TYPE_LONGTAIL,
    subtopics_status: str = SUBTOPICS_COMPLETE,
    subtopics: Sequence[str] = ("what it is", "how to start"),
    article_status: str = KEYWORD_ARTICLE_NOT_STARTED,
) -> Keyword:
    row = Keyword(
        workflow_id=workflow.id,
        organization_id=workflow.organization_id,
        keyword=keyword,
        keyword_type=keyword_type,
        subtopics_status=subtopics_status,
        subtopics_json=json_dumps(list(subtopics)),
        article_status=article_status,
        cluster_info_json=json_dumps({"cluster": "onboarding"}),
    )
    session.add(row)
    session.commit()
    return row


def add_article(
    session: Session,
    workflow: IntentWorkflow,
    keyword: Keyword,
    *,
    status: str = ARTICLE_COMPLETED,
    link_status: str = LINK_NOT_LINKED,
) -> Article:
    article = Article(
        workflow_id=workflow.id,
        organization_id=workflow.organization_id,
        keyword_id=keyword.id,
        keyword=keyword.keyword,
        status=status,
        workflow_link_status=link_status,
    )
    session.add(article)
    session.commit()
    return article


def record_decision(
    session: Session,
    workflow: IntentWorkflow,
    approval_type: str,
    decision: str = DECISION_APPROVED,
    *,
    approver_id: str = "approver",
) -> None:
    upsert_approval(
        session,
        workflow_id=workflow.id,
        approval_type=approval_type,
        decision=decision,
        approver_id=approver_id,
    )
    session.commit()


@pytest.fixture
def session_factory() -> sessionmaker:
    return build_sqlite_session_factory()


@pytest.fixture
def session(session_factory: sessionmaker) -> Iterator[Session]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def owner(session: Session) -> AuthContext:
    return create_owner(session)


@dataclass
class IntentApiContext:
    client: TestClient
    session_factory: sessionmaker
    trigger: MockGenerationTrigger
    organization_id: str
    owner_token: str
    owner_email: str

    def headers(self, token: Optional[str] = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {token or self.owner_token}"}

    def login(self, email: str, password: str) -> str:
        response = self.client.post(
            "/auth/login",
            json={"email": email, "password": password, "organization_id": self.organization_id},
        )
        assert response.status_code == 200
        return response.json()["access_token"]


def create_intent_api_context(monkeypatch, *, trigger: Optional[MockGenerationTrigger] = None) -> IntentApiContext:
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET_KEY)
    get_settings.cache_clear()
    reset_generation_trigger_cache()

    session_factory = build_sqlite_session_factory()
    mock_trigger = trigger or MockGenerationTrigger()

    def override_get_session():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    api_main.app.dependency_overrides[get_generation_trigger] = lambda: mock_trigger

    client = TestClient(api_main.app)
    owner_email = f"owner-{uuid.uuid4().hex[:8]}@intent.io"
    create_response = client.post(
        "/organizations",
        json={
            "name": f"intent-{uuid.uuid4().hex[:8]}",
            "owner_email": owner_email,
            "owner_password": "owner-pass-123",
        },
    )
    assert create_response.status_code == 201
    organization_id = create_response.json()["organization_id"]

    context = IntentApiContext(
        client=client,
        session_factory=session_factory,
        trigger=mock_trigger,
        organization_id=organization_id,
        owner_token="",
        owner_email=owner_email,
    )
    context.owner_token = context.login(owner_email, "owner-pass-123")
    return context


def teardown_intent_api_context() -> None:
    api_main.app.dependency_overrides.clear()
    get_settings.cache_clear()
    reset_generation_trigger_cache()

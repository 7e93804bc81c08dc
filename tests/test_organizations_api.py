from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker

import src.api.main as api_main
from src.core.config import get_settings
from src.storage.db import Base, get_session, load_models


def _build_sqlite_session_factory():
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def _client(monkeypatch) -> TestClient:
    monkeypatch.setenv("SECRET_KEY", "organizations-test-secret-0123456789")
    get_settings.cache_clear()
    session_factory = _build_sqlite_session_factory()

    def override_get_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    api_main.app.dependency_overrides[get_session] = override_get_session
    return TestClient(api_main.app)


def _login(client: TestClient, email: str, password: str, organization_id: str):
    return client.post(
        "/auth/login",
        json={"email": email, "password": password, "organization_id": organization_id},
    )


def test_create_organization_login_and_read(monkeypatch) -> None:
    client = _client(monkeypatch)
    try:
        create_response = client.post(
            "/organizations",
            json={
                "name": "acme",
                "owner_email": "owner@acme.io",
                "owner_password": "supersecret123",
            },
        )
        assert create_response.status_code == 201
        organization_id = create_response.json()["organization_id"]
        assert create_response.json()["owner_role"] == "owner"

        login_response = _login(client, "owner@acme.io", "supersecret123", organization_id)
        assert login_response.status_code == 200
        token = login_response.json()["access_token"]

        organization_response = client.get(
            f"/organizations/{organization_id}",
            headers={"Authorization": f"Bearer {token}"},
        )
        assert organization_response.status_code == 200
        payload = organization_response.json()
        assert payload["id"] == organization_id
        assert payload["my_role"] == "owner"
        assert payload["name"] == "acme"

        duplicate = client.post(
            "/organizations",
            json={"name": "acme", "owner_email": "other@acme.io", "owner_password": "supersecret123"},
        )
        assert duplicate.status_code == 409
    finally:
        api_main.app.dependency_overrides.clear()
        get_settings.cache_clear()


def test_cross_organization_access_blocked(monkeypatch) -> None:
    client = _client(monkeypatch)
    try:
        org_alpha = client.post(
            "/organizations",
            json={"name": "organization-alpha", "owner_email": "alpha@intent.io", "owner_password": "alpha-secret-123"},
        ).json()["organization_id"]
        org_beta = client.post(
            "/organizations",
            json={"name": "organization-beta", "owner_email": "beta@intent.io", "owner_password": "beta-secret-123"},
        ).json()["organization_id"]

        token = _login(client, "alpha@intent.io", "alpha-secret-123", org_alpha).json()["access_token"]

        forbidden = client.get(f"/organizations/{org_beta}", headers={"Authorization": f"Bearer {token}"})
        assert forbidden.status_code == 403

        not_member = _login(client, "alpha@intent.io", "alpha-secret-123", org_beta)
        assert not_member.status_code == 403
    finally:
        api_main.app.dependency_overrides.clear()
        get_settings.cache_clear()


def test_members_get_their_assigned_role(monkeypatch) -> None:
    client = _client(monkeypatch)
    try:
        organization_id = client.post(
            "/organizations",
            json={"name": "organization-gamma", "owner_email": "gamma@intent.io", "owner_password": "gamma-secret-123"},
        ).json()["organization_id"]
        owner_token = _login(client, "gamma@intent.io", "gamma-secret-123", organization_id).json()["access_token"]

        added = client.post(
            f"/organizations/{organization_id}/members",
            headers={"Authorization": f"Bearer {owner_token}"},
            json={"email": "editor@intent.io", "password": "editor-secret-123", "role": "admin"},
        )
        assert added.status_code == 201
        assert added.json()["role"] == "admin"

        member_login = _login(client, "editor@intent.io", "editor-secret-123", organization_id)
        assert member_login.status_code == 200
        assert member_login.json()["role"] == "admin"

        anonymous = client.post(
            f"/organizations/{organization_id}/members",
            json={"email": "intruder@intent.io", "password": "intruder-secret-123"},
        )
        assert anonymous.status_code == 401
    finally:
        api_main.app.dependency_overrides.clear()
        get_settings.cache_clear()

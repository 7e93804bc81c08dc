from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException

from src.auth.jwt import AuthContext, create_access_token, decode_access_token
from src.core.config import get_settings


@pytest.fixture(autouse=True)
def _secret(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "token-test-secret-0123456789abcdef")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_token_round_trips_membership() -> None:
    context = AuthContext(user_id="user-1", organization_id="org-1", role="admin", email="admin@intent.io")

    token, expires_in = create_access_token(context)

    assert expires_in == get_settings().access_token_exp_minutes * 60
    decoded = decode_access_token(token)
    assert decoded == context
    assert decoded.is_admin is True


def test_token_from_another_issuer_is_rejected() -> None:
    settings = get_settings()
    foreign = jwt.encode(
        {
            "iss": "someone-else",
            "sub": "user-1",
            "organization_id": "org-1",
            "role": "owner",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )

    with pytest.raises(HTTPException) as excinfo:
        decode_access_token(foreign)
    assert excinfo.value.status_code == 401


def test_expired_or_incomplete_tokens_are_rejected() -> None:
    settings = get_settings()
    expired = jwt.encode(
        {
            "iss": settings.app_name,
            "sub": "user-1",
            "organization_id": "org-1",
            "role": "member",
            "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
        },
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    missing_role = jwt.encode(
        {
            "iss": settings.app_name,
            "sub": "user-1",
            "organization_id": "org-1",
            "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
        },
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )

    for token in (expired, missing_role):
        with pytest.raises(HTTPException):
            decode_access_token(token)

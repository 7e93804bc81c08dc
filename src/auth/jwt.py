"""Bearer tokens scoped to one organization membership."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import HTTPException, status

from src.core.config import get_settings
from src.workflows.states import ADMIN_ROLES


REQUIRED_CLAIMS = ["sub", "organization_id", "role", "exp", "iss"]


@dataclass(frozen=True)
class AuthContext:
    user_id: str
    organization_id: str
    role: str
    email: str

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def create_access_token(context: AuthContext) -> tuple[str, int]:
    """Return ``(token, expires_in_seconds)`` for a membership."""

    settings = get_settings()
    lifetime = timedelta(minutes=settings.access_token_exp_minutes)
    issued_at = datetime.now(timezone.utc)
    claims = {
        "iss": settings.app_name,
        "sub": context.user_id,
        "organization_id": context.organization_id,
        "role": context.role,
        "email": context.email,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, int(lifetime.total_seconds())


def decode_access_token(token: str) -> AuthContext:
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.app_name,
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token") from exc

    return AuthContext(
        user_id=str(claims["sub"]),
        organization_id=str(claims["organization_id"]),
        role=str(claims["role"]),
        email=str(claims.get("email") or ""),
    )

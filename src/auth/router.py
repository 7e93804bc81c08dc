"""Authentication API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from src.auth.jwt import AuthContext, create_access_token
from src.organizations.service import authenticate_organization_user
from src.schemas.auth import LoginRequest, TokenResponse
from src.storage.db import get_session
from src.storage.tenant import set_organization_context


router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, session: Session = Depends(get_session)) -> TokenResponse:
    set_organization_context(session, payload.organization_id)
    user, role_name = authenticate_organization_user(
        session,
        email=payload.email,
        password=payload.password,
        organization_id=payload.organization_id,
    )

    token, expires_in = create_access_token(
        AuthContext(
            user_id=user.id,
            organization_id=payload.organization_id,
            role=role_name,
            email=user.email,
        )
    )

    return TokenResponse(
        access_token=token,
        expires_in=expires_in,
        organization_id=payload.organization_id,
        role=role_name,
    )

"""Organization management API routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.auth.dependencies import require_admin, require_member
from src.auth.jwt import AuthContext
from src.organizations.service import (
    add_organization_member,
    create_organization_with_owner,
    get_organization_for_member,
)
from src.schemas.organization import (
    MemberAddRequest,
    MemberAddResponse,
    OrganizationCreateRequest,
    OrganizationCreateResponse,
    OrganizationResponse,
)
from src.storage.db import get_session
from src.storage.tenant import set_organization_context


router = APIRouter(prefix="/organizations", tags=["organizations"])


def _enforce_organization_scope(auth: AuthContext, organization_id: str) -> None:
    if auth.organization_id != organization_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Organization scope mismatch")


@router.post("", response_model=OrganizationCreateResponse, status_code=201)
def create_organization(
    payload: OrganizationCreateRequest,
    session: Session = Depends(get_session),
) -> OrganizationCreateResponse:
    organization, user, role_name = create_organization_with_owner(
        session,
        organization_name=payload.name,
        owner_email=payload.owner_email,
        owner_password=payload.owner_password,
    )
    return OrganizationCreateResponse(
        organization_id=organization.id,
        name=organization.name,
        owner_user_id=user.id,
        owner_role=role_name,
    )


@router.get("/{organization_id}", response_model=OrganizationResponse)
def get_organization(
    organization_id: str,
    auth: AuthContext = Depends(require_member),
    session: Session = Depends(get_session),
) -> OrganizationResponse:
    set_organization_context(session, organization_id)
    organization, role_name = get_organization_for_member(
        session=session,
        organization_id=organization_id,
        user_id=auth.user_id,
    )
    created_at = organization.created_at
    return OrganizationResponse(
        id=organization.id,
        name=organization.name,
        created_at=created_at.isoformat() if isinstance(created_at, datetime) else str(created_at),
        my_role=role_name,
    )


@router.post("/{organization_id}/members", response_model=MemberAddResponse, status_code=201)
def add_member(
    organization_id: str,
    payload: MemberAddRequest,
    auth: AuthContext = Depends(require_admin),
    session: Session = Depends(get_session),
) -> MemberAddResponse:
    _enforce_organization_scope(auth, organization_id)
    set_organization_context(session, organization_id)
    user, role_name = add_organization_member(
        session,
        organization_id=organization_id,
        email=payload.email,
        password=payload.password,
        role_name=payload.role,
    )
    return MemberAddResponse(organization_id=organization_id, user_id=user.id, role=role_name)

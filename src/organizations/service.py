"""Organization and membership application services."""

from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from src.storage.models import Organization, OrganizationUser, Role, User
from src.storage.security import hash_password, verify_password
from src.workflows.states import MEMBER_ROLES


def ensure_default_roles(session: Session) -> None:
    existing = set(session.scalars(select(Role.name)).all())
    missing = [Role(name=name) for name in MEMBER_ROLES if name not in existing]
    if missing:
        session.add_all(missing)
        session.commit()


def _role(session: Session, name: str) -> Role:
    ensure_default_roles(session)
    role = session.scalar(select(Role).where(Role.name == name))
    if role is None:  # pragma: no cover
        raise RuntimeError(f"Role {name} was not initialized")
    return role


def _get_or_create_user(session: Session, *, email: str, password: str) -> User:
    user = session.scalar(select(User).where(User.email == email))
    if user is None:
        user = User(email=email, password_hash=hash_password(password))
        session.add(user)
        session.flush()
    elif not verify_password(password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User email already exists with different credentials",
        )
    return user


def create_organization_with_owner(
    session: Session,
    *,
    organization_name: str,
    owner_email: str,
    owner_password: str,
) -> tuple[Organization, User, str]:
    existing = session.scalar(select(Organization).where(Organization.name == organization_name))
    if existing is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Organization name already exists",
        )

    owner_role = _role(session, "owner")
    user = _get_or_create_user(session, email=owner_email, password=owner_password)

    organization = Organization(name=organization_name)
    session.add(organization)
    session.flush()

    session.add(OrganizationUser(organization_id=organization.id, user_id=user.id, role_id=owner_role.id))
    session.commit()

    return organization, user, owner_role.name


def add_organization_member(
    session: Session,
    *,
    organization_id: str,
    email: str,
    password: str,
    role_name: str,
) -> tuple[User, str]:
    if role_name not in MEMBER_ROLES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown role")

    role = _role(session, role_name)
    user = _get_or_create_user(session, email=email, password=password)

    membership = session.scalar(
        select(OrganizationUser).where(
            OrganizationUser.organization_id == organization_id,
            OrganizationUser.user_id == user.id,
        )
    )
    if membership is None:
        session.add(OrganizationUser(organization_id=organization_id, user_id=user.id, role_id=role.id))
    else:
        membership.role_id = role.id
    session.commit()
    return user, role.name


def _membership_role(session: Session, *, organization_id: str, user_id: str) -> str | None:
    return session.scalar(
        select(Role.name)
        .join(OrganizationUser, OrganizationUser.role_id == Role.id)
        .where(OrganizationUser.organization_id == organization_id, OrganizationUser.user_id == user_id)
    )


def authenticate_organization_user(
    session: Session,
    *,
    email: str,
    password: str,
    organization_id: str,
) -> tuple[User, str]:
    user = session.scalar(select(User).where(User.email == email, User.is_active.is_(True)))
    if user is None or not verify_password(password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    role_name = _membership_role(session, organization_id=organization_id, user_id=user.id)
    if role_name is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is not a member of this organization",
        )
    return user, role_name


def get_organization_for_member(session: Session, organization_id: str, user_id: str) -> tuple[Organization, str]:
    organization = session.scalar(select(Organization).where(Organization.id == organization_id))
    if organization is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found")

    role_name = _membership_role(session, organization_id=organization_id, user_id=user_id)
    if role_name is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access this organization",
        )
    return organization, role_name

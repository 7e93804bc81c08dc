"""Route dependencies resolving the caller's organization role."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from src.auth.jwt import AuthContext
from src.auth.middleware import AUTH_CONTEXT_KEY
from src.workflows.states import ADMIN_ROLES, MEMBER_ROLES


def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, AUTH_CONTEXT_KEY, None)


def require_auth_context(auth: Optional[AuthContext] = Depends(get_optional_auth_context)) -> AuthContext:
    if auth is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return auth


def require_roles(roles: Iterable[str]) -> Callable[[AuthContext], AuthContext]:
    permitted = frozenset(roles)

    def dependency(auth: AuthContext = Depends(require_auth_context)) -> AuthContext:
        if auth.role not in permitted:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{auth.role}' cannot perform this action",
            )
        return auth

    return dependency


require_member = require_roles(MEMBER_ROLES)
require_admin = require_roles(ADMIN_ROLES)

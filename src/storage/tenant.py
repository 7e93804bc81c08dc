"""Organization scoping for PostgreSQL row-level security.

``app.current_organization_id`` is set with ``is_local => true`` so it only lives for
one transaction. The organization is therefore remembered on the session and
re-applied at the start of every transaction the session opens, including the ones
that follow an intermediate commit.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session, SessionTransaction

from src.storage.db import session_dialect


ORGANIZATION_SETTING = "app.current_organization_id"
ORGANIZATION_INFO_KEY = "current_organization_id"
RLS_DIALECTS = ("postgresql",)

_SET_ORGANIZATION = text("SELECT set_config(:setting, :organization_id, true)")


def _apply_organization_setting(connection: Connection, organization_id: str) -> None:
    connection.execute(_SET_ORGANIZATION, {"setting": ORGANIZATION_SETTING, "organization_id": organization_id})


@event.listens_for(Session, "after_begin")
def _reapply_organization_context(session: Session, transaction: SessionTransaction, connection: Connection) -> None:
    organization_id = session.info.get(ORGANIZATION_INFO_KEY)
    if organization_id is None or connection.dialect.name not in RLS_DIALECTS:
        return
    _apply_organization_setting(connection, organization_id)


def current_organization_id(session: Session) -> Optional[str]:
    return session.info.get(ORGANIZATION_INFO_KEY)


def set_organization_context(session: Session, organization_id: Optional[str]) -> None:
    """Scope this and every later transaction of ``session`` to one organization."""

    if organization_id:
        session.info[ORGANIZATION_INFO_KEY] = organization_id
    else:
        session.info.pop(ORGANIZATION_INFO_KEY, None)

    if session_dialect(session) not in RLS_DIALECTS or not session.in_transaction():
        # The next transaction picks the organization up in after_begin.
        return
    _apply_organization_setting(session.connection(), organization_id or "")

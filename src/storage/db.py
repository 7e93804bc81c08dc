"""Engine, session dependency and connectivity probe for the workflow store."""

from __future__ import annotations

from functools import lru_cache
from typing import Generator, Optional, Tuple

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from src.core.config import get_settings


Base = declarative_base()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    database_url = get_settings().database_url
    options: dict[str, object] = {"pool_pre_ping": True, "future": True}
    if database_url.startswith("sqlite"):
        # Request handlers and the test client share connections across threads.
        options["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **options)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return sessionmaker(bind=get_engine(), autoflush=False, autocommit=False, expire_on_commit=False)


def get_session() -> Generator[Session, None, None]:
    """Request-scoped session; anything left uncommitted by a failed request is rolled back."""

    session = get_session_factory()()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_dialect(session: Session) -> Optional[str]:
    bind = session.get_bind()
    return bind.dialect.name if bind is not None else None


def test_connection() -> Tuple[bool, Optional[str]]:
    engine = get_engine()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        return False, str(exc)
    return True, None


def load_models() -> None:
    """Register every mapped table on ``Base.metadata``."""

    import src.storage.models  # noqa: F401

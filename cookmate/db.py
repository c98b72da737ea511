from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .settings import settings


class Base(DeclarativeBase):
    pass


_engine = None
_SessionLocal = None


def init_engine(database_url: str | None = None):
    global _engine, _SessionLocal
    url = database_url or settings.database_url
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    _engine = create_engine(url, pool_pre_ping=True, connect_args=connect_args)
    _SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def get_engine():
    if _engine is None:
        init_engine()
    return _engine


def SessionLocal():
    if _SessionLocal is None:
        init_engine()
    return _SessionLocal


def create_tables():
    """Create missing tables directly from the ORM metadata.

    Only used for local bootstrapping (``AUTO_CREATE_TABLES=true``);
    deployed databases are managed by Alembic.
    """
    from . import models  # noqa: F401  (registers mappers)

    Base.metadata.create_all(bind=get_engine())


def get_db():
    db = SessionLocal()()
    try:
        yield db
    finally:
        db.close()

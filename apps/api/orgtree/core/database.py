from collections.abc import Generator
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from orgtree.core.config import get_settings


class Base(DeclarativeBase):
    pass


def _create_engine(database_url: str) -> Engine:
    options: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
        # In-memory SQLite only lives as long as its single connection.
        if ":memory:" in database_url:
            options["poolclass"] = StaticPool
    else:
        options["pool_pre_ping"] = True
    return create_engine(database_url, **options)


engine = _create_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

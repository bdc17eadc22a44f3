from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Generator

from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from stratus.config import get_settings


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url


def _build_engine(database_url: str):
    is_sqlite = database_url.startswith("sqlite")
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    # An in-memory database lives only as long as its single connection.
    poolclass = StaticPool if _is_sqlite_memory(database_url) else None
    return create_engine(
        database_url,
        echo=False,
        connect_args=connect_args,
        poolclass=poolclass,
    )


DATABASE_URL = get_settings().database_url
is_sqlite = DATABASE_URL.startswith("sqlite")
engine = _build_engine(DATABASE_URL)


def init_db(engine) -> None:
    # Ensure models are imported before creating tables.
    import stratus.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def session_factory() -> Session:
    """New session bound to the module engine; background tasks own the one they open."""
    return Session(engine)


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@contextmanager
def session_scope() -> Iterator[Session]:
    with Session(engine) as session:
        yield session

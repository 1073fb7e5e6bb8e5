from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .config import DATABASE_URL, SQL_ECHO


def _make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # sessions are opened from API worker threads
        connect_args["check_same_thread"] = False
    return create_engine(url, echo=SQL_ECHO, future=True, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
    expire_on_commit=False
)


class Base(DeclarativeBase):
    """Base ORM for every model."""
    pass


def configure_engine(url: str) -> Engine:
    """Rebinds the module engine and the session factory to another database."""
    global engine
    engine.dispose()
    engine = _make_engine(url)
    SessionLocal.configure(bind=engine)
    return engine


@contextmanager
def db_session() -> Iterator[Session]:
    """
    Session scope:
    - commit if the block succeeds
    - rollback on any exception
    - always close
    """
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

# app/db/session.py
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings


def make_engine(db_uri: str) -> Engine:
    if db_uri.startswith("sqlite"):
        return create_engine(
            db_uri,
            connect_args={"check_same_thread": False},
            echo=settings.DB_ECHO,
            future=True,
        )
    return create_engine(
        db_uri,
        pool_pre_ping=True,
        pool_recycle=280,
        pool_size=10,
        max_overflow=20,
        echo=settings.DB_ECHO,
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """
    One unit of work on `db`: commit when the block finishes,
    roll back everything on any exception and re-raise it.
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise

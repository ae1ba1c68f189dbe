"""Database engine and session management."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings


def _ensure_sqlite_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""

    parsed = urlparse(database_url)
    if parsed.scheme != "sqlite" or parsed.path in ("", ":memory:", "/:memory:"):
        return
    # sqlite:///./data/patients.db parses to "/./data/patients.db"
    raw_path = parsed.path[1:] if parsed.path.startswith("/.") else parsed.path
    Path(raw_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _create_engine() -> Engine:
    settings = get_settings()
    url = settings.database_url
    if not url.startswith("sqlite"):
        return create_engine(url, future=True, echo=settings.sql_echo, pool_pre_ping=True)

    _ensure_sqlite_directory(url)
    engine_kwargs: dict[str, object] = {
        "future": True,
        "echo": settings.sql_echo,
        "connect_args": {"check_same_thread": False},
    }
    if url.endswith(":memory:") or url == "sqlite://":
        engine_kwargs["poolclass"] = StaticPool
    return create_engine(url, **engine_kwargs)


engine: Engine = _create_engine()

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
    future=True,
    class_=Session,
)


def get_session() -> Iterator[Session]:
    """FastAPI dependency for acquiring a database session."""

    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a transactional scope for consumer workers and scripts."""

    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

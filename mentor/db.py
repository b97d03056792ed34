from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from mentor.models import Base, OnboardingStep

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal = None
_current_db_path: Path | None = None


def make_engine(url: str, **kwargs: Any) -> Engine:
    """Create an engine whose SQLite transactions support SAVEPOINT.

    pysqlite defers BEGIN on its own, which breaks nested transactions; the
    listeners hand transaction control back to SQLAlchemy.
    """
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {}).setdefault("check_same_thread", False)
    engine = create_engine(url, **kwargs)
    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN")

    return engine


def init_db(db_path: str | Path | None = None) -> None:
    global _engine, _SessionLocal, _current_db_path
    with _lock:
        if _engine is not None:
            _engine.dispose()
        if db_path is None:
            from mentor.config import get_settings
            db_path = get_settings().database_path
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        _engine = make_engine(f"sqlite:///{db_path}")
        Base.metadata.create_all(_engine)
        _SessionLocal = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
        _current_db_path = db_path
        with _SessionLocal() as session:
            seed_onboarding_steps(session)
            session.commit()


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()  # type: ignore[misc]


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Context manager providing a transactional session scope.

    Usage (CLI jobs, scripts, etc.)::

        with session_scope() as session:
            ...
    """
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def current_db_path() -> Path | None:
    return _current_db_path


def seed_onboarding_steps(session: Session) -> int:
    """Seed the default onboarding catalog if the table is empty. Returns rows added."""
    count = session.execute(select(func.count()).select_from(OnboardingStep)).scalar_one()
    if count:
        return 0
    from mentor.onboarding import DEFAULT_STEPS
    for spec in DEFAULT_STEPS:
        session.add(OnboardingStep(**spec))
    session.flush()
    return len(DEFAULT_STEPS)

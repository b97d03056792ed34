from __future__ import annotations

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mentor.config import get_settings
from mentor.db import make_engine, seed_onboarding_steps
from mentor.models import Base, Mentee

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = make_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def catalog_session(session: Session) -> Session:
    """Session whose database holds the default onboarding catalog."""
    seed_onboarding_steps(session)
    session.commit()
    return session


@pytest.fixture()
def mentee(session: Session) -> Mentee:
    m = Mentee(id="m1", name="Ana Souza", email="ana@example.com", whatsapp="+5511999990000")
    session.add(m)
    session.flush()
    return m


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point settings at a throwaway database and clear cached settings around each test."""
    monkeypatch.setenv("MENTOR_DB_PATH", str(tmp_path / "mentor.db"))
    for name in ("MENTOR_PUSH_ENDPOINT", "MENTOR_SIGNING_BONUS_XP", "MENTOR_DUE_TASK_INTERVAL_MINUTES",
                 "MENTOR_WARMING_TARGET_DAY"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()

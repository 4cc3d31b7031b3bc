from __future__ import annotations

import os
import tempfile

# Settings are read at import time; select the test profile before importing bulkmail
os.environ["APP_ENV"] = "test"
os.environ.setdefault("AUDIT_LOG_FILE", os.path.join(tempfile.gettempdir(), "bulkmail-test-audit.log"))

import datetime as dt  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from bulkmail.core.config import settings  # noqa: E402
from bulkmail.core.encryption import get_codec  # noqa: E402
from bulkmail.core.hashing import get_hasher  # noqa: E402
from bulkmail.db import session as db_session_module  # noqa: E402
from bulkmail.db.base_class import Base  # noqa: E402
from bulkmail.db.session import SessionLocal  # noqa: E402
from bulkmail.models.models import User, UserPlan, utcnow  # noqa: E402

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")

test_engine = create_engine(
    TEST_DATABASE_URL,
    future=True,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Ensure application code uses the test engine
settings.DATABASE_URL = TEST_DATABASE_URL  # type: ignore[attr-defined]
db_session_module.engine = test_engine  # type: ignore[assignment]
SessionLocal.configure(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_database_state():
    """Each test sees a fresh schema."""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    from bulkmail.api.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def codec():
    return get_codec()


@pytest.fixture
def hasher():
    return get_hasher()


@pytest.fixture
def make_user(db_session):
    """Factory for persisted users; FREE and created after the cutover by default."""

    def _make_user(plan: UserPlan = UserPlan.FREE, created_at: dt.datetime | None = None, email: str | None = None):
        user = User(plan=plan, created_at=created_at or utcnow(), email=email)
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def client():
    """FastAPI TestClient bound to the application."""
    from bulkmail.api.main import app

    return TestClient(app)

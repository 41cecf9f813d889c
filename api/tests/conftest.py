from __future__ import annotations

import os
import tempfile
from datetime import date
from pathlib import Path
from typing import Generator

# Configure the environment before the app modules read it at import time
_TEST_DB_DIR = tempfile.mkdtemp(prefix="page_analytics_tests_")
os.environ["PAGE_ANALYTICS_DATABASE_URL"] = f"sqlite:///{Path(_TEST_DB_DIR) / 'analytics.db'}"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-page-analytics-0123456789")
os.environ["PAGE_ANALYTICS_SKIP_MIGRATIONS"] = "1"
os.environ["PAGE_ANALYTICS_SAMPLING_RATE"] = "1"
os.environ["PAGE_ANALYTICS_EXCLUDED_PATHS"] = "/user/login\\n/jsonapi/*"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from page_analytics import models  # noqa: F401  (registers tables)
from page_analytics.auth import create_access_token
from page_analytics.db import Base, SessionLocal, engine
from page_analytics.main import app
from page_analytics.queue import ViewEventQueue
from page_analytics.services.daily_counters import DailyCounterStore
from page_analytics.settings import AnalyticsSettings

TODAY = date(2026, 10, 19)


class FakeClock:
    """Mutable epoch clock for lease tests."""

    def __init__(self, start: float = 1_760_000_000.0):
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


@pytest.fixture(autouse=True)
def reset_tables() -> Generator[None, None, None]:
    """Every test starts with empty tables."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Create a database session for testing."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def queue(db: Session, clock: FakeClock) -> ViewEventQueue:
    return ViewEventQueue(db, now=clock)


@pytest.fixture()
def store(db: Session) -> DailyCounterStore:
    return DailyCounterStore(db)


@pytest.fixture()
def settings() -> AnalyticsSettings:
    return AnalyticsSettings(sampling_rate=1, retention_days=365)


@pytest.fixture()
def client() -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    token = create_access_token("admin-1", roles=["administrator"])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def editor_headers() -> dict[str, str]:
    token = create_access_token("editor-1", roles=["editor"])
    return {"Authorization": f"Bearer {token}"}

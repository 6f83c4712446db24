import os
from datetime import date, datetime, time
from decimal import Decimal

# the app engine is built at import time; keep it off the production database
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from backend.app.api.deps import get_db
from backend.app.db.base import Base
from backend.app.db.models import models_v1  # noqa: F401
from backend.app.main import app
from backend.services.catalog import MaterialDefinition, create_material
from backend.services.notifications import ChangeNotifier

BUSINESS_DAY = date(2026, 3, 2)


class FixedClock:
    def __init__(self, day: date = BUSINESS_DAY, hhmm: str = "08:30"):
        self.day = day
        self.hhmm = hhmm

    def now(self) -> datetime:
        hour, minute = (int(p) for p in self.hhmm.split(":"))
        return datetime.combine(self.day, time(hour, minute))

    def today(self) -> date:
        return self.day

    def time_of_day(self) -> str:
        return self.hhmm


@pytest.fixture(scope="function")
def engine(tmp_path):
    """
    Throwaway SQLite file per test.

    The ledger commits inside its own unit of work, so the savepoint
    rollback trick does not apply; each test simply gets a new file.
    """
    eng = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db_session(session_factory) -> Session:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def events():
    return []


@pytest.fixture
def notifier(events):
    n = ChangeNotifier()
    n.subscribe(events.append)
    return n


@pytest.fixture
def make_material(db_session, clock):
    """Catalog material; quantity becomes its opening balance."""

    def _make(name="Steel plate 5mm", workshop="OG", quantity="0", unit="kg", **kwargs):
        return create_material(
            db_session,
            MaterialDefinition(
                name=name,
                unit=unit,
                workshop=workshop,
                quantity=Decimal(str(quantity)),
                **kwargs,
            ),
            clock=clock,
        )

    return _make


@pytest.fixture
def client(db_session):
    def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()

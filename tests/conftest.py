"""Pytest configuration and fixtures."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.dependencies import get_import_pipeline
from app.config import Settings
from app.database import Base, enable_sqlite_savepoints, get_db
from app.main import app
from app.models import Department, Hospital, ImportHistory
from app.services.import_pipeline import ImportPipeline
from app.services.import_policy import registry
from app.services.department_import import DepartmentImportPolicy
from app.services.import_sessions import InMemorySessionStore

from helpers import FakeClock, RecordingPublisher


@pytest.fixture
def history_engine():
    """In-memory database holding import job records."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def data_engine():
    """In-memory database holding business rows, with one hospital seeded."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)

    seed = sessionmaker(bind=engine)()
    seed.add(Hospital(id=1, code="HQ", name="Central Hospital"))
    seed.commit()
    seed.close()

    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(history_engine, data_engine):
    """Sessions routing job records and business rows to their own databases."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        binds={
            ImportHistory: history_engine,
            Department: data_engine,
            Hospital: data_engine,
        },
    )


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return Settings(import_session_ttl_minutes=30, import_default_batch_size=100)


@pytest.fixture
def session_store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def events():
    return RecordingPublisher()


@pytest.fixture
def build(session_factory, session_store, test_settings, events, clock):
    """Factory for pipelines around any policy, sharing the test databases."""

    def _build(policy=None):
        return ImportPipeline(
            policy or DepartmentImportPolicy(),
            session_store,
            session_factory=session_factory,
            data_session_factory=session_factory,
            settings=test_settings,
            events=events,
            clock=clock,
        )

    return _build


@pytest.fixture
def pipeline(build):
    return build()


@pytest.fixture
def count_departments(session_factory):
    """Count department rows through a short-lived session."""

    def _count() -> int:
        session = session_factory()
        try:
            return session.query(Department).count()
        finally:
            session.close()

    return _count


@pytest.fixture
def client(session_factory, session_store, test_settings, clock):
    """API client wired to the test databases and session store."""

    def override_get_db():
        try:
            session = session_factory()
            yield session
        finally:
            session.close()

    def override_get_import_pipeline(module: str):
        return ImportPipeline(
            registry.get(module),
            session_store,
            session_factory=session_factory,
            data_session_factory=session_factory,
            settings=test_settings,
            clock=clock,
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_import_pipeline] = override_get_import_pipeline

    yield TestClient(app)

    app.dependency_overrides.clear()

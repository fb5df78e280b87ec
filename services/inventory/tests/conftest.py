import os

# Settings are read once; point the module-level engine away from Postgres
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RUN_MIGRATIONS", "false")
os.environ.setdefault("INGESTER_ENABLED", "false")

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.application.service import InventoryService
from app.domain.models import Base
from app.infrastructure.locks import RedisLockCoordinator

@pytest.fixture
def engine(tmp_path):
    # file-backed so worker threads each get their own connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()

@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()

@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)

@pytest.fixture
def locks(redis_client):
    return RedisLockCoordinator(redis_client, lease_seconds=5.0, attempts=3, backoff_seconds=0.01)

@pytest.fixture
def make_service(session_factory, locks):
    """Each call returns a service on its own session, like one request or one event"""
    sessions = []

    def factory(locks=locks, publisher=None):
        session = session_factory()
        sessions.append(session)
        return InventoryService(session, locks, publisher)

    yield factory
    for session in sessions:
        session.close()

@pytest.fixture
def service(make_service):
    return make_service()

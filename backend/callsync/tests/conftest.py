import asyncio
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["DISTRIBUTED_LOCKS"] = "false"
os.environ["PROVIDER_PAGE_DELAY_SECONDS"] = "0"

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from callsync.core import database
from callsync.core.config import settings
from callsync.core.database import Base
from callsync.core.deps import get_http_client
from callsync.main import app
from callsync.services.locks import AccountLocks
from callsync.services.sync import SyncContext, build_provider
from callsync.tests.fakes import FakeProvider

SQLALCHEMY_DATABASE_URL = "sqlite://"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def config():
    return settings.model_copy(
        update={
            "provider_page_delay_seconds": 0.0,
            "provider_page_size": 100,
            "max_pages": 50,
            "sync_run_timeout_seconds": 30.0,
        }
    )


@pytest.fixture()
def provider(config):
    return FakeProvider(config)


@pytest.fixture()
def http(provider):
    client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    yield client
    asyncio.run(client.aclose())


@pytest.fixture()
def locks():
    return AccountLocks()


@pytest.fixture()
def make_context(db, http, config, locks):
    def factory(account_id, **overrides):
        run_config = config.model_copy(update=overrides) if overrides else config
        return SyncContext(
            account_id=account_id,
            db=db,
            provider=build_provider(db, http, run_config),
            config=run_config,
            locks=locks,
        )

    return factory


@pytest.fixture()
def client(http):
    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[get_http_client] = lambda: http
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()

"""Pytest configuration and fixtures for the domain activation tests."""
import os
import uuid

# Must be set before app.config is imported anywhere
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite://")
os.environ.setdefault("APP_ENV", "test")
os.environ["CLOUDFLARE_API_TOKEN"] = ""
os.environ["CLOUDFLARE_ACCOUNT_ID"] = ""
os.environ["NAMECOM_USERNAME"] = ""
os.environ["NAMECOM_API_TOKEN"] = ""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.crud import crud_domain_order
from app.db.base_class import Base
from app.services.domain_activation import DomainActivationService, OrderLockRegistry
from tests.fakes import FakeCertificateProvider, FakeDnsProvider

TENANT_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
OTHER_TENANT_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")


# --- Database ---

@pytest.fixture
def test_engine():
    """In-memory SQLite shared across sessions of one test."""
    import app.models  # noqa: F401

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_order(db):
    """Factory: insert a domain order in the given state."""
    def _make(domain: str = "foo.com", tenant_id: uuid.UUID = TENANT_ID, **fields):
        return crud_domain_order.create(db, tenant_id=tenant_id, domain=domain, **fields)
    return _make


# --- Providers & service ---

@pytest.fixture
def dns():
    return FakeDnsProvider()


@pytest.fixture
def certs():
    return FakeCertificateProvider()


@pytest.fixture
def service(db, dns, certs):
    return DomainActivationService(db, dns, certs, locks=OrderLockRegistry())


# --- HTTP client ---

@pytest.fixture
async def client(session_factory, dns, certs):
    """
    Async HTTP client against the FastAPI app with
    get_db and the provider dependencies overridden.
    """
    from app.main import app as fastapi_app
    from app.api import deps

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[deps.get_db] = _override_get_db
    fastapi_app.dependency_overrides[deps.get_dns_provider] = lambda: dns
    fastapi_app.dependency_overrides[deps.get_certificate_provider] = lambda: certs

    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def tenant_headers():
    return {"X-Tenant-ID": str(TENANT_ID)}

"""Pytest configuration and fixtures."""

import os

# Keep the app's own engine off the working directory during tests
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import timedelta
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stocktake.api.deps import get_ack_channel, get_workspace_registry
from stocktake.db.base import Base
from stocktake.db.session import get_db
from stocktake.main import app
# Import all models to ensure they're registered with Base.metadata
from stocktake.models import *
from stocktake.services.acknowledgment import AcknowledgmentChannel
from stocktake.services.count_workspace import WorkspaceRegistry

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def ack_channel() -> AcknowledgmentChannel:
    """A fresh acknowledgment channel per test."""
    return AcknowledgmentChannel(token="inventory_printed", timeout=timedelta(hours=1))


@pytest.fixture
def workspace_registry() -> WorkspaceRegistry:
    return WorkspaceRegistry(idle_timeout=timedelta(hours=4))


@pytest.fixture(scope="function")
def client(
    db_session: Session,
    ack_channel: AcknowledgmentChannel,
    workspace_registry: WorkspaceRegistry,
) -> Generator[TestClient, None, None]:
    """Create a test client with database and in-process state overrides."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ack_channel] = lambda: ack_channel
    app.dependency_overrides[get_workspace_registry] = lambda: workspace_registry
    # Disable rate limiting during tests to avoid flaky failures
    from stocktake.core.rate_limit import limiter
    limiter.enabled = False
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def tenant_headers() -> dict:
    return {"X-Tenant-ID": TENANT}


@pytest.fixture
def other_tenant_headers() -> dict:
    return {"X-Tenant-ID": OTHER_TENANT}


@pytest.fixture
def test_warehouse(db_session: Session) -> Warehouse:
    """Create a test warehouse."""
    warehouse = Warehouse(tenant_id=TENANT, name="Main Warehouse", code="MAIN", active=True)
    db_session.add(warehouse)
    db_session.commit()
    db_session.refresh(warehouse)
    return warehouse


@pytest.fixture
def second_warehouse(db_session: Session) -> Warehouse:
    warehouse = Warehouse(tenant_id=TENANT, name="Back Store", code="BACK", active=True)
    db_session.add(warehouse)
    db_session.commit()
    db_session.refresh(warehouse)
    return warehouse


@pytest.fixture
def stocked_products(db_session: Session, test_warehouse: Warehouse) -> dict:
    """Two products with stock in the main warehouse: P1=20, P2=5."""
    p1 = Product(tenant_id=TENANT, sku="P1", name="Olive Oil 1L", unit="pcs", stock=Decimal("0"), active=True)
    p2 = Product(tenant_id=TENANT, sku="P2", name="Sea Salt", unit="pcs", stock=Decimal("0"), active=True)
    db_session.add_all([p1, p2])
    db_session.flush()
    db_session.add_all([
        WarehouseStock(product_id=p1.id, warehouse_id=test_warehouse.id, quantity=Decimal("20")),
        WarehouseStock(product_id=p2.id, warehouse_id=test_warehouse.id, quantity=Decimal("5")),
    ])
    db_session.commit()
    db_session.refresh(p1)
    db_session.refresh(p2)
    return {"p1": p1, "p2": p2, "warehouse": test_warehouse}

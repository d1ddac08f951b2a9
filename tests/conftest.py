"""Pytest configuration: in-memory database, API client and seed helpers."""

import os

# Set test database URL BEFORE any imports from rentbook
# This ensures the module-level engine never touches a real database file
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from rentbook.api.app import app  # noqa: E402
from rentbook.api.payments import get_attachment_store  # noqa: E402
from rentbook.models import Base, RentRevision, Tenancy, TenancyStatus, Tenant, Unit  # noqa: E402
from rentbook.services import get_db  # noqa: E402
from rentbook.services.attachment_service import LocalAttachmentStore  # noqa: E402
from rentbook.services.billing_service import (  # noqa: E402
    BillingConfig,
    BillingEntry,
    BillingRequest,
)
from rentbook.services.reconciliation_service import lookup_cache  # noqa: E402


@pytest.fixture
def db_session():
    """Create test database session."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture(autouse=True)
def clear_lookup_cache():
    """Lookup maps are module-level; never let them leak between tests."""
    lookup_cache.clear()
    yield
    lookup_cache.clear()


@pytest.fixture
def attachment_store(tmp_path):
    return LocalAttachmentStore(tmp_path / "attachments")


@pytest.fixture
def client(db_session, attachment_store):
    """Create test client with database and attachment store overrides."""

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_attachment_store] = lambda: attachment_store
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_tenancy(db_session):
    """Factory creating a tenant, a unit and their tenancy."""

    def _make(
        full_name: str,
        wing: str = "A",
        unit_number: str = "101",
        grn_number: str | None = None,
        status: TenancyStatus = TenancyStatus.ACTIVE,
        rent_payable_day: str = "5",
        commencement_date: date | None = None,
        tenant: Tenant | None = None,
    ) -> Tenancy:
        if tenant is None:
            tenant = Tenant(full_name=full_name)
            db_session.add(tenant)
        unit = Unit(wing=wing, unit_number=unit_number, is_occupied=True)
        db_session.add(unit)
        db_session.flush()
        tenancy = Tenancy(
            tenant_id=tenant.id,
            unit_id=unit.id,
            grn_number=grn_number,
            status=status,
            rent_payable_day=rent_payable_day,
            commencement_date=commencement_date,
        )
        db_session.add(tenancy)
        db_session.commit()
        return tenancy

    return _make


@pytest.fixture
def add_revision(db_session):
    """Factory inserting a rent revision row directly."""

    def _add(tenancy_id: int, effective_month: str, amount, note: str = "", created_at=None) -> RentRevision:
        revision = RentRevision(
            tenancy_id=tenancy_id,
            effective_month=effective_month,
            rent_amount=Decimal(str(amount)),
            note=note,
            created_at=created_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        db_session.add(revision)
        db_session.commit()
        return revision

    return _add


@pytest.fixture
def wing_a(make_tenancy, add_revision):
    """Two active tenancies in wing A paying 5000 from 2024-01."""
    first = make_tenancy("Asha Rao", wing="A", unit_number="101", grn_number="GRN-101")
    second = make_tenancy("Vikram Shah", wing="A", unit_number="102", grn_number="GRN-102")
    add_revision(first.id, "2024-01", 5000)
    add_revision(second.id, "2024-01", 5000)
    return first, second


@pytest.fixture
def may_request(wing_a):
    """Billing run for wing A, 2024-05 (totals 5800 and 5700)."""
    first, second = wing_a
    return BillingRequest(
        month_key="2024-05",
        wing="A",
        config=BillingConfig(
            electricity_rate=10,
            sweeping_per_flat=50,
            motor_prev=1000,
            motor_new=1050,
        ),
        entries=[
            BillingEntry(tenancy_id=first.id, prev_reading=100, new_reading=150, included=True),
            BillingEntry(tenancy_id=second.id, prev_reading=120, new_reading=160, included=True),
        ],
    )

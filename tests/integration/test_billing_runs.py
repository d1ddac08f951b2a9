"""Integration tests for monthly billing runs against a real database session."""

import logging
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from rentbook.errors import InvalidInputError
from rentbook.models import (
    AuditLog,
    BillLine,
    Payment,
    TenancyStatus,
    TenantMonthlyReading,
    WingMonthConfig,
)
from rentbook.services.billing_service import (
    BillingConfig,
    BillingEntry,
    BillingRequest,
    BillingService,
)

D = Decimal

SNAPSHOT_FIELDS = (
    "id",
    "month_key",
    "tenancy_id",
    "rent_amount",
    "electricity_units",
    "electricity_amount",
    "motor_share_amount",
    "sweep_amount",
    "total_amount",
    "payable_date",
    "amount_paid",
    "is_paid",
)


def snapshot(db_session):
    """Stored bill lines as plain tuples, generation timestamp excluded."""
    bills = db_session.execute(select(BillLine).order_by(BillLine.id)).scalars().all()
    return [tuple(getattr(bill, field) for field in SNAPSHOT_FIELDS) for bill in bills]


def count(db_session, model):
    return db_session.execute(select(func.count()).select_from(model)).scalar_one()


def bill_of(db_session, tenancy_id, month_key="2024-05"):
    return db_session.execute(
        select(BillLine).where(BillLine.tenancy_id == tenancy_id, BillLine.month_key == month_key)
    ).scalar_one()


class TestBillingRun:
    """A single billing run for wing A, May 2024."""

    def test_bill_totals(self, db_session, wing_a, may_request):
        first, second = wing_a
        result = BillingService(db_session).generate_billing(may_request)

        assert result.unresolved == []
        assert len(result.bill_lines) == 2
        first_bill = bill_of(db_session, first.id)
        second_bill = bill_of(db_session, second.id)
        assert first_bill.electricity_amount == D("500.00")
        assert first_bill.motor_share_amount == D("250.00")
        assert first_bill.sweep_amount == D("50.00")
        assert first_bill.rent_amount == D("5000.00")
        assert first_bill.total_amount == D("5800.00")
        assert second_bill.total_amount == D("5700.00")
        assert first_bill.payable_date == "5"
        assert first_bill.is_paid is False

    def test_stores_config_readings_and_audit(self, db_session, may_request):
        result = BillingService(db_session).generate_billing(may_request, actor_id=7)

        config = result.wing_config
        assert config.month_key == "2024-05"
        assert config.electricity_rate == D("10.00")
        assert config.motor_units == D("50.00")
        assert count(db_session, TenantMonthlyReading) == 2

        audit = db_session.execute(select(AuditLog)).scalars().one()
        assert audit.entity_type == "billing_run"
        assert audit.action == "generate"
        assert audit.actor_id == 7
        assert audit.changes["bill_line_ids"] == [bill.id for bill in result.bill_lines]

    def test_rent_follows_revision_history(self, db_session, wing_a, add_revision, may_request):
        first, _ = wing_a
        add_revision(first.id, "2024-06", 6000)
        service = BillingService(db_session)

        service.generate_billing(may_request)
        service.generate_billing(may_request._replace(month_key="2024-06"))

        assert bill_of(db_session, first.id, "2024-05").rent_amount == D("5000.00")
        assert bill_of(db_session, first.id, "2024-06").rent_amount == D("6000.00")

    def test_override_rent(self, db_session, wing_a, may_request):
        first, _ = wing_a
        entries = list(may_request.entries)
        entries[0] = entries[0]._replace(override_rent="4,500")

        BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert bill_of(db_session, first.id).rent_amount == D("4500.00")
        reading = db_session.execute(
            select(TenantMonthlyReading).where(TenantMonthlyReading.tenancy_id == first.id)
        ).scalar_one()
        assert reading.override_rent == D("4500.00")

    def test_excluded_tenancy(self, db_session, wing_a, may_request):
        first, second = wing_a
        entries = list(may_request.entries)
        entries[1] = entries[1]._replace(included="false")

        BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        excluded = bill_of(db_session, second.id)
        assert excluded.total_amount == D("0.00")
        assert excluded.is_paid is True
        assert bill_of(db_session, first.id).motor_share_amount == D("500.00")

    def test_blank_config_counts_as_zero(self, db_session, wing_a, may_request):
        first, _ = wing_a
        BillingService(db_session).generate_billing(may_request._replace(config=BillingConfig()))

        bill = bill_of(db_session, first.id)
        assert bill.electricity_amount == D("0.00")
        assert bill.total_amount == D("5000.00")

    @pytest.mark.parametrize(
        "month,wing",
        [("", "A"), ("2024-05", ""), ("2024-13", "A"), ("May 2024", "A")],
    )
    def test_rejects_missing_or_malformed_keys(self, db_session, may_request, month, wing):
        with pytest.raises(InvalidInputError):
            BillingService(db_session).generate_billing(may_request._replace(month_key=month, wing=wing))
        assert count(db_session, BillLine) == 0
        assert count(db_session, WingMonthConfig) == 0

    def test_rejects_unparseable_reading(self, db_session, may_request):
        entries = [may_request.entries[0]._replace(new_reading="lots")]
        with pytest.raises(InvalidInputError, match="new_reading"):
            BillingService(db_session).generate_billing(may_request._replace(entries=entries))


class TestReruns:
    """Re-running a billing overwrites rather than duplicates."""

    def test_identical_rerun_is_idempotent(self, db_session, may_request):
        service = BillingService(db_session)
        service.generate_billing(may_request)
        before = snapshot(db_session)

        service.generate_billing(may_request)

        assert snapshot(db_session) == before
        assert count(db_session, BillLine) == 2
        assert count(db_session, TenantMonthlyReading) == 2
        assert count(db_session, WingMonthConfig) == 1

    def test_changed_rate_overwrites_in_place(self, db_session, wing_a, may_request):
        first, second = wing_a
        service = BillingService(db_session)
        service.generate_billing(may_request)
        ids = [row[0] for row in snapshot(db_session)]

        service.generate_billing(may_request._replace(config=may_request.config._replace(electricity_rate=12)))

        assert [row[0] for row in snapshot(db_session)] == ids
        assert bill_of(db_session, first.id).total_amount == D("5950.00")
        assert bill_of(db_session, second.id).total_amount == D("5830.00")
        config = db_session.execute(select(WingMonthConfig)).scalars().one()
        assert config.electricity_rate == D("12.00")

    def test_key_formatting_drift_addresses_same_rows(self, db_session, may_request):
        service = BillingService(db_session)
        service.generate_billing(may_request)
        before = snapshot(db_session)

        service.generate_billing(may_request._replace(month_key="2024-5", wing="a"))

        assert snapshot(db_session) == before
        assert count(db_session, WingMonthConfig) == 1
        assert count(db_session, TenantMonthlyReading) == 2

    def test_other_months_untouched(self, db_session, wing_a, may_request):
        service = BillingService(db_session)
        service.generate_billing(may_request)
        june = may_request._replace(
            month_key="2024-06",
            config=may_request.config._replace(electricity_rate=20),
        )

        service.generate_billing(june)

        assert bill_of(db_session, wing_a[0].id, "2024-05").total_amount == D("5800.00")
        assert count(db_session, BillLine) == 4

    def test_payments_survive_rerun(self, db_session, wing_a, may_request):
        first, _ = wing_a
        service = BillingService(db_session)
        service.generate_billing(may_request)
        bill = bill_of(db_session, first.id)
        db_session.add(Payment(bill_line_id=bill.id, amount=D("5800"), payment_date=date(2024, 5, 6)))
        db_session.commit()

        service.generate_billing(may_request)

        payment = db_session.execute(select(Payment)).scalars().one()
        assert payment.bill_line_id == bill.id
        assert bill.amount_paid == D("5800.00")
        assert bill.is_paid is True

    def test_rerun_with_higher_total_reopens_bill(self, db_session, wing_a, may_request):
        first, _ = wing_a
        service = BillingService(db_session)
        service.generate_billing(may_request)
        bill = bill_of(db_session, first.id)
        db_session.add(Payment(bill_line_id=bill.id, amount=D("5800"), payment_date=date(2024, 5, 6)))
        db_session.commit()

        service.generate_billing(may_request._replace(config=may_request.config._replace(electricity_rate=12)))

        assert bill.total_amount == D("5950.00")
        assert bill.amount_paid == D("5800.00")
        assert bill.is_paid is False


class TestEntryMatching:
    """How operator entries find their tenancy."""

    def test_unknown_and_other_wing_entries_are_reported(self, db_session, wing_a, make_tenancy, may_request):
        other_wing = make_tenancy("Meera Iyer", wing="B", unit_number="201")
        entries = list(may_request.entries) + [
            BillingEntry(tenancy_id=999, prev_reading=0, new_reading=10, included=True),
            BillingEntry(tenancy_id=other_wing.id, prev_reading=0, new_reading=10, included=True),
        ]

        result = BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert [(u.index, u.reason) for u in result.unresolved] == [
            (2, "no matching tenancy"),
            (3, "no tenancy in wing A"),
        ]
        assert len(result.bill_lines) == 2
        # Dropped entries do not share the motor cost
        assert bill_of(db_session, wing_a[0].id).motor_share_amount == D("250.00")

    def test_match_by_grn_key(self, db_session, wing_a, may_request):
        first, _ = wing_a
        entries = [BillingEntry(grn_key=" grn-101 ", prev_reading=100, new_reading=150, included=True)]

        result = BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert [bill.tenancy_id for bill in result.bill_lines] == [first.id]

    def test_tenancy_id_beats_grn_key(self, db_session, wing_a, may_request):
        first, second = wing_a
        entries = [
            BillingEntry(tenancy_id=second.id, grn_key="GRN-101", prev_reading=0, new_reading=10, included=True)
        ]

        result = BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert [bill.tenancy_id for bill in result.bill_lines] == [second.id]
        assert not db_session.execute(
            select(BillLine).where(BillLine.tenancy_id == first.id)
        ).scalars().all()

    def test_tenant_id_prefers_active_tenancy(self, db_session, make_tenancy, add_revision, may_request):
        old = make_tenancy("Ravi Kumar", unit_number="103", status=TenancyStatus.ENDED)
        current = make_tenancy("Ravi Kumar", unit_number="104", tenant=old.tenant)
        add_revision(current.id, "2024-01", 4000)
        entries = [BillingEntry(tenant_id=old.tenant_id, prev_reading=0, new_reading=10, included=True)]

        result = BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert [bill.tenancy_id for bill in result.bill_lines] == [current.id]

    def test_ended_tenancy_billed_when_no_active_one(self, db_session, make_tenancy, may_request):
        ended = make_tenancy("Ravi Kumar", unit_number="103", status=TenancyStatus.ENDED)
        entries = [BillingEntry(tenant_id=ended.tenant_id, prev_reading=0, new_reading=10, included=True)]

        result = BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert [bill.tenancy_id for bill in result.bill_lines] == [ended.id]
        assert result.bill_lines[0].rent_amount == D("0.00")

    def test_duplicate_tenancy_last_entry_wins(self, db_session, wing_a, may_request, caplog):
        first, _ = wing_a
        entries = [
            BillingEntry(tenancy_id=first.id, prev_reading=100, new_reading=150, included=True),
            BillingEntry(tenancy_id=first.id, prev_reading=100, new_reading=170, included=True),
        ]

        with caplog.at_level(logging.WARNING, logger="rentbook.services.billing_service"):
            result = BillingService(db_session).generate_billing(may_request._replace(entries=entries))

        assert len(result.bill_lines) == 1
        assert result.bill_lines[0].electricity_units == D("70.00")
        # The motor cost is split over distinct tenancies only
        assert result.bill_lines[0].motor_share_amount == D("500.00")
        assert "appears twice" in caplog.text


class TestBillingRecord:
    """Tests for BillingService.get_billing_record."""

    def test_record_of_saved_run(self, db_session, wing_a, may_request):
        service = BillingService(db_session)
        service.generate_billing(may_request)

        record = service.get_billing_record("2024-5", "a")

        assert record.month_key == "2024-05"
        assert record.month_label == "May 2024"
        assert record.wing == "A"
        assert record.has_config is True
        assert record.has_readings is True
        assert record.config.motor_new == D("1050.00")
        by_key = {tenant.tenant_key: tenant for tenant in record.tenants}
        assert set(by_key) == {"GRN-101", "GRN-102"}
        assert by_key["GRN-101"].tenant_name == "Asha Rao"
        assert by_key["GRN-101"].new_reading == D("150.00")
        assert by_key["GRN-101"].rent_amount == D("5000.00")
        assert by_key["GRN-101"].included is True

    def test_record_of_unbilled_month(self, db_session, wing_a):
        record = BillingService(db_session).get_billing_record("2024-07", "A")

        assert record.has_config is False
        assert record.has_readings is False
        assert record.config is None
        assert record.tenants == []

    def test_record_requires_valid_keys(self, db_session):
        with pytest.raises(InvalidInputError):
            BillingService(db_session).get_billing_record("2024-05", " ")

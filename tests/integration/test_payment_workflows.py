"""Integration tests for recording, editing and deleting payments."""

import base64
import logging
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import select

from rentbook.errors import AttachmentStorageError, InvalidInputError, NotFoundError
from rentbook.models import Attachment, AuditLog, BillLine, Payment
from rentbook.services.billing_service import BillingService
from rentbook.services.payment_service import PaymentService

D = Decimal

PROOF = "data:image/png;base64," + base64.b64encode(b"receipt").decode()


@pytest.fixture
def bills(db_session, wing_a, may_request):
    """May 2024 bills of wing A: 5800 for Asha Rao, 5700 for Vikram Shah."""
    BillingService(db_session).generate_billing(may_request)
    first, second = wing_a
    by_tenancy = {
        bill.tenancy_id: bill for bill in db_session.execute(select(BillLine)).scalars().all()
    }
    return by_tenancy[first.id], by_tenancy[second.id]


@pytest.fixture
def service(db_session, attachment_store):
    return PaymentService(db_session, attachment_store=attachment_store)


class TestRecordPayment:
    """Tests for PaymentService.record_payment."""

    def test_full_payment_settles_bill(self, service, bills):
        bill, _ = bills
        result = service.record_payment(5800, payment_date=date(2024, 5, 6), bill_line_id=bill.id, mode="upi")

        assert result.payment.id is not None
        assert result.payment.tenant_id == bill.tenancy.tenant_id
        assert result.bill.id == bill.id
        assert result.state.is_paid is True
        assert result.state.remaining == D("0.00")
        assert bill.amount_paid == D("5800.00")

    def test_partial_then_remaining(self, service, bills):
        bill, _ = bills
        first = service.record_payment("3,000", bill_line_id=bill.id)
        assert first.state.is_paid is False
        assert first.state.remaining == D("2800.00")

        second = service.record_payment(2800, bill_line_id=bill.id)
        assert second.state.is_paid is True
        assert bill.amount_paid == D("5800.00")

    def test_locates_bill_by_tenancy_and_month(self, service, bills, wing_a):
        _, bill = bills
        result = service.record_payment(5700, tenancy_id=wing_a[1].id, month_key="2024-5")

        assert result.payment.bill_line_id == bill.id
        assert result.state.is_paid is True

    def test_no_bill_for_month_records_unlinked_payment(self, service, bills, wing_a, caplog):
        with caplog.at_level(logging.WARNING, logger="rentbook.services.payment_service"):
            result = service.record_payment(1000, tenancy_id=wing_a[0].id, month_key="2024-09")

        assert result.payment.bill_line_id is None
        assert result.payment.tenant_id == wing_a[0].tenant_id
        assert result.bill is None
        assert result.state is None
        assert "payment recorded without a bill" in caplog.text

    def test_unknown_bill_raises(self, service, bills, db_session):
        with pytest.raises(NotFoundError):
            service.record_payment(100, bill_line_id=9999)
        assert db_session.execute(select(Payment)).scalars().all() == []

    @pytest.mark.parametrize("amount", [0, -5, "", None, "abc"])
    def test_amount_must_be_positive(self, service, bills, db_session, amount):
        bill, _ = bills
        with pytest.raises(InvalidInputError):
            service.record_payment(amount, bill_line_id=bill.id)
        assert db_session.execute(select(Payment)).scalars().all() == []

    def test_proof_is_stored(self, service, bills, attachment_store):
        bill, _ = bills
        result = service.record_payment(
            5800, bill_line_id=bill.id, reference="TX42", attachment_data_url=PROOF, attachment_name="r.png"
        )

        attachment = result.payment.attachment
        assert attachment.file_name == f"Asha_Rao_2024-05_{result.payment.id}.png"
        assert Path(attachment.file_path).read_bytes() == b"receipt"
        assert Path(attachment.file_path).parent == attachment_store.base_dir

    def test_storage_failure_does_not_block_payment(self, db_session, bills, caplog):
        class BrokenStore:
            def save(self, *args, **kwargs):
                raise AttachmentStorageError("disk full")

        bill, _ = bills
        service = PaymentService(db_session, attachment_store=BrokenStore())
        with caplog.at_level(logging.ERROR, logger="rentbook.services.payment_service"):
            result = service.record_payment(5800, bill_line_id=bill.id, attachment_data_url=PROOF)

        assert result.payment.id is not None
        assert result.payment.attachment_id is None
        assert result.state.is_paid is True
        assert "disk full" in caplog.text

    def test_proofs_with_same_reference_are_kept_apart(self, db_session, service, bills):
        bill, _ = bills
        first = service.record_payment(
            100, bill_line_id=bill.id, reference="CASH", attachment_data_url=PROOF
        ).payment
        second_proof = "data:image/png;base64," + base64.b64encode(b"second receipt").decode()
        second = service.record_payment(
            200, bill_line_id=bill.id, reference="CASH", attachment_data_url=second_proof
        ).payment

        first_path = Path(first.attachment.file_path)
        second_path = Path(second.attachment.file_path)
        assert first_path != second_path
        assert first_path.read_bytes() == b"receipt"
        assert second_path.read_bytes() == b"second receipt"

        service.delete_payment(second.id)

        assert not second_path.exists()
        assert first_path.read_bytes() == b"receipt"
        assert db_session.get(Attachment, first.attachment_id) is not None

    def test_audited(self, service, bills, db_session):
        bill, _ = bills
        result = service.record_payment(100, bill_line_id=bill.id, actor_id=3)

        audit = db_session.execute(
            select(AuditLog).where(AuditLog.entity_type == "payment")
        ).scalars().one()
        assert audit.entity_id == result.payment.id
        assert audit.action == "create"
        assert audit.actor_id == 3
        assert audit.changes["amount"] == "100"
        assert audit.changes["payment_date"] == result.payment.payment_date.isoformat()


class TestUpdatePayment:
    def test_amount_change_reconciles(self, service, bills):
        bill, _ = bills
        payment = service.record_payment(5800, bill_line_id=bill.id).payment

        result = service.update_payment(payment.id, amount=5000)

        assert result.state.is_paid is False
        assert bill.amount_paid == D("5000.00")

    def test_moving_payment_reconciles_both_bills(self, service, bills):
        first, second = bills
        payment = service.record_payment(5700, bill_line_id=first.id).payment

        service.update_payment(payment.id, bill_line_id=second.id)

        assert first.amount_paid == D("0.00")
        assert first.is_paid is False
        assert second.amount_paid == D("5700.00")
        assert second.is_paid is True
        assert payment.tenant_id == second.tenancy.tenant_id

    def test_new_proof_replaces_old_one(self, service, bills, db_session):
        bill, _ = bills
        payment = service.record_payment(100, bill_line_id=bill.id, attachment_data_url=PROOF).payment
        old_path = Path(payment.attachment.file_path)

        new_proof = "data:image/png;base64," + base64.b64encode(b"corrected").decode()
        result = service.update_payment(payment.id, attachment_data_url=new_proof)

        new_path = Path(result.payment.attachment.file_path)
        assert new_path != old_path
        assert new_path.read_bytes() == b"corrected"
        assert not old_path.exists()
        assert len(db_session.execute(select(Attachment)).scalars().all()) == 1

    def test_missing_payment(self, service):
        with pytest.raises(NotFoundError):
            service.update_payment(1234, amount=10)


class TestDeletePayment:
    def test_delete_reopens_bill(self, service, bills, db_session):
        bill, _ = bills
        keep = service.record_payment(3000, bill_line_id=bill.id).payment
        drop = service.record_payment(2800, bill_line_id=bill.id).payment
        assert bill.is_paid is True

        reconciled = service.delete_payment(drop.id)

        assert reconciled.id == bill.id
        assert bill.amount_paid == D("3000.00")
        assert bill.is_paid is False
        assert [p.id for p in service.list_payments(bill.id)] == [keep.id]

    def test_delete_removes_proof(self, service, bills, db_session):
        bill, _ = bills
        payment = service.record_payment(100, bill_line_id=bill.id, attachment_data_url=PROOF).payment
        file_path = Path(payment.attachment.file_path)
        assert file_path.exists()

        service.delete_payment(payment.id)

        assert not file_path.exists()
        assert db_session.execute(select(Attachment)).scalars().all() == []

    def test_delete_unlinked_payment(self, service, bills, wing_a):
        payment = service.record_payment(100, tenancy_id=wing_a[0].id, month_key="2023-01").payment
        assert service.delete_payment(payment.id) is None

    def test_missing_payment(self, service):
        with pytest.raises(NotFoundError):
            service.delete_payment(1234)


class TestDeleteBillLine:
    def test_payments_are_detached_not_deleted(self, service, bills, db_session):
        bill, _ = bills
        bill_id = bill.id
        payment = service.record_payment(5800, bill_line_id=bill_id).payment

        detached = service.delete_bill_line(bill_id)

        assert detached == [payment.id]
        assert db_session.get(BillLine, bill_id) is None
        stored = db_session.get(Payment, payment.id)
        assert stored is not None
        assert stored.bill_line_id is None
        assert stored.amount == D("5800.00")

    def test_missing_bill(self, service):
        with pytest.raises(NotFoundError):
            service.delete_bill_line(4321)

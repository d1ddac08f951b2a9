"""Payment service for recording and managing payments against bill lines.

Provides methods for:
- Recording payments (linked by bill line id, or by tenancy + month)
- Editing and deleting payments
- Deleting bill lines (payments are detached, not deleted)

Every change is followed by reconciliation of the affected bill lines so
their amount_paid/is_paid stay in line with the payments on record.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import List, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentbook.errors import AttachmentStorageError, InvalidInputError, NotFoundError
from rentbook.models.attachment import Attachment
from rentbook.models.bill_line import BillLine
from rentbook.models.payment import Payment
from rentbook.models.tenancy import Tenancy
from rentbook.services.attachment_service import LocalAttachmentStore
from rentbook.services.audit_service import AuditService
from rentbook.services.parsers import is_blank, normalize_month_key, parse_amount
from rentbook.services.reconciliation_service import (
    BillPaymentState,
    ReconciliationService,
    derive_bill_payment_state,
)

logger = logging.getLogger(__name__)


class PaymentResult(NamedTuple):
    """Saved payment with the bill it settles (None when unlinked)."""

    payment: Payment
    bill: Optional[BillLine]
    state: Optional[BillPaymentState]


class PaymentService:
    """Records payments and keeps bill payment status reconciled."""

    def __init__(self, db: Session, attachment_store: Optional[LocalAttachmentStore] = None):
        """Initialize payment service.

        Args:
            db: SQLAlchemy database session
            attachment_store: Storage for payment proofs (default: local directory)
        """
        self.db = db
        self.attachment_store = attachment_store or LocalAttachmentStore()
        self.reconciler = ReconciliationService(db)

    def _parse_positive_amount(self, amount) -> Decimal:
        try:
            value = parse_amount(amount)
        except ValueError as e:
            raise InvalidInputError(f"Invalid payment amount: {amount!r}") from e
        if value is None or value <= 0:
            raise InvalidInputError(f"Payment amount must be greater than 0, got {amount!r}")
        return value

    def _find_bill(
        self,
        bill_line_id: Optional[int],
        tenancy_id: Optional[int],
        month_key: Optional[str],
    ) -> Optional[BillLine]:
        if not is_blank(bill_line_id):
            bill = self.db.get(BillLine, bill_line_id)
            if bill is None:
                raise NotFoundError(f"Bill line {bill_line_id} not found")
            return bill
        if is_blank(tenancy_id) or is_blank(month_key):
            return None

        month = normalize_month_key(month_key)
        candidates = self.db.execute(
            select(BillLine).where(BillLine.tenancy_id == tenancy_id)
        ).scalars().all()
        return next((b for b in candidates if normalize_month_key(b.month_key) == month), None)

    def _tenant_id_for(self, bill: Optional[BillLine], tenancy_id: Optional[int]) -> Optional[int]:
        source_tenancy_id = bill.tenancy_id if bill is not None else tenancy_id
        if is_blank(source_tenancy_id):
            return None
        tenancy = self.db.get(Tenancy, source_tenancy_id)
        return tenancy.tenant_id if tenancy is not None else None

    def _store_attachment(
        self,
        data_url: str,
        file_name: str,
        bill: Optional[BillLine],
        payment_id: int,
    ) -> Optional[Attachment]:
        """Store the proof of a flushed payment, named after its id.

        Storage failures are logged and yield None.
        """
        tenant_name = ""
        month_key = ""
        if bill is not None:
            month_key = bill.month_key
            if bill.tenancy is not None and bill.tenancy.tenant is not None:
                tenant_name = bill.tenancy.tenant.full_name
        try:
            stored = self.attachment_store.save(
                data_url,
                tenant_name=tenant_name,
                month_key=month_key,
                payment_ref=str(payment_id),
                original_name=file_name,
            )
        except AttachmentStorageError as e:
            logger.error(f"Attachment storage failed, saving payment without proof: {e}")
            return None

        attachment = Attachment(
            file_name=stored.file_name,
            file_path=stored.file_path,
            content_type=stored.content_type,
        )
        self.db.add(attachment)
        self.db.flush()
        return attachment

    def _remove_attachment(self, attachment: Optional[Attachment], payment_id: int) -> None:
        if attachment is None:
            return
        try:
            self.attachment_store.delete(attachment.file_path)
        except AttachmentStorageError as e:
            logger.error(f"Could not remove proof of payment {payment_id}: {e}")
        self.db.delete(attachment)

    def _result(self, payment: Payment, bill_line_id: Optional[int]) -> PaymentResult:
        bill = self.db.get(BillLine, bill_line_id) if bill_line_id is not None else None
        state = derive_bill_payment_state(bill) if bill is not None else None
        return PaymentResult(payment=payment, bill=bill, state=state)

    def record_payment(
        self,
        amount,
        payment_date: Optional[date] = None,
        bill_line_id: Optional[int] = None,
        tenancy_id: Optional[int] = None,
        month_key: Optional[str] = None,
        tenant_id: Optional[int] = None,
        mode: str = "",
        reference: str = "",
        notes: str = "",
        attachment_data_url: Optional[str] = None,
        attachment_name: str = "",
        actor_id: Optional[int] = None,
    ) -> PaymentResult:
        """Record a payment and reconcile the bill it pays.

        Args:
            amount: Amount received, must be > 0
            payment_date: Date received (default: today)
            bill_line_id: Bill being paid
            tenancy_id: With month_key, locates the bill when bill_line_id is missing
            month_key: Billing month of the bill being paid
            tenant_id: Payer (default: the tenant of the bill's tenancy)
            mode: Payment mode ("cash", "upi", ...)
            reference: Transaction reference
            notes: Free-text notes
            attachment_data_url: Proof as a base64 data URL
            attachment_name: Client-side file name of the proof
            actor_id: Operator recording the payment, for the audit log

        Returns:
            PaymentResult with the payment and the reconciled bill

        Raises:
            InvalidInputError: Amount missing, unparseable or not positive
            NotFoundError: bill_line_id given but no such bill
        """
        value = self._parse_positive_amount(amount)
        bill = self._find_bill(bill_line_id, tenancy_id, month_key)
        if bill is None and not is_blank(tenancy_id) and not is_blank(month_key):
            logger.warning(
                f"No bill for tenancy {tenancy_id} in {normalize_month_key(month_key)}; "
                "payment recorded without a bill"
            )

        payment = Payment(
            bill_line_id=bill.id if bill is not None else None,
            tenant_id=tenant_id if not is_blank(tenant_id) else self._tenant_id_for(bill, tenancy_id),
            amount=value,
            mode=mode or "",
            reference=reference or "",
            notes=notes or "",
            payment_date=payment_date or date.today(),
        )
        self.db.add(payment)
        self.db.flush()

        if attachment_data_url:
            attachment = self._store_attachment(attachment_data_url, attachment_name, bill, payment.id)
            if attachment is not None:
                payment.attachment = attachment

        if payment.bill_line_id is not None:
            self.reconciler.update_bill_payment_status([payment.bill_line_id])

        AuditService.log(
            db=self.db,
            entity_type="payment",
            entity_id=payment.id,
            action="create",
            actor_id=actor_id,
            changes={
                "bill_line_id": payment.bill_line_id,
                "amount": value,
                "payment_date": payment.payment_date,
            },
        )
        self.db.commit()
        logger.info(
            f"Recorded payment {payment.id}: amount={value}, bill_line_id={payment.bill_line_id}"
        )
        return self._result(payment, payment.bill_line_id)

    def list_payments(self, bill_line_id: Optional[int] = None) -> List[Payment]:
        """List payments, newest first, optionally only those of one bill."""
        stmt = select(Payment)
        if bill_line_id is not None:
            stmt = stmt.where(Payment.bill_line_id == bill_line_id)
        stmt = stmt.order_by(Payment.created_at.desc(), Payment.id.desc())
        return list(self.db.execute(stmt).scalars().all())

    def update_payment(
        self,
        payment_id: int,
        amount=None,
        payment_date: Optional[date] = None,
        bill_line_id: Optional[int] = None,
        mode: Optional[str] = None,
        reference: Optional[str] = None,
        notes: Optional[str] = None,
        attachment_data_url: Optional[str] = None,
        attachment_name: str = "",
        actor_id: Optional[int] = None,
    ) -> PaymentResult:
        """Edit a payment. Arguments left as None keep their current value.

        When the payment moves to another bill, both bills are reconciled.

        Raises:
            NotFoundError: Payment or target bill does not exist
            InvalidInputError: New amount not positive
        """
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        old_bill_id = payment.bill_line_id
        changes = {}

        if amount is not None:
            payment.amount = self._parse_positive_amount(amount)
            changes["amount"] = payment.amount
        if payment_date is not None:
            payment.payment_date = payment_date
            changes["payment_date"] = payment_date
        if bill_line_id is not None and bill_line_id != old_bill_id:
            bill = self._find_bill(bill_line_id, None, None)
            payment.bill_line_id = bill.id
            payment.tenant_id = self._tenant_id_for(bill, None) or payment.tenant_id
            changes["bill_line_id"] = bill.id
        if mode is not None:
            payment.mode = mode
        if reference is not None:
            payment.reference = reference
        if notes is not None:
            payment.notes = notes
        if attachment_data_url:
            bill = self.db.get(BillLine, payment.bill_line_id) if payment.bill_line_id else None
            attachment = self._store_attachment(attachment_data_url, attachment_name, bill, payment.id)
            if attachment is not None:
                self._remove_attachment(payment.attachment, payment.id)
                payment.attachment = attachment
                changes["attachment_id"] = attachment.id

        self.db.flush()
        affected = [bid for bid in {old_bill_id, payment.bill_line_id} if bid is not None]
        self.reconciler.update_bill_payment_status(affected)

        AuditService.log(
            db=self.db,
            entity_type="payment",
            entity_id=payment.id,
            action="update",
            actor_id=actor_id,
            changes=changes,
        )
        self.db.commit()
        logger.info(f"Updated payment {payment.id}; reconciled bills {sorted(affected)}")
        return self._result(payment, payment.bill_line_id)

    def delete_payment(self, payment_id: int, actor_id: Optional[int] = None) -> Optional[BillLine]:
        """Delete a payment and reconcile the bill it paid.

        Returns:
            The reconciled bill line, or None if the payment was unlinked

        Raises:
            NotFoundError: Payment does not exist
        """
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")

        bill_line_id = payment.bill_line_id
        attachment = payment.attachment
        AuditService.log(
            db=self.db,
            entity_type="payment",
            entity_id=payment.id,
            action="delete",
            actor_id=actor_id,
            changes={"bill_line_id": bill_line_id, "amount": payment.amount},
        )
        self.db.delete(payment)
        self._remove_attachment(attachment, payment_id)
        self.db.flush()

        bill = None
        if bill_line_id is not None:
            reconciled = self.reconciler.update_bill_payment_status([bill_line_id])
            bill = reconciled[0] if reconciled else None
        self.db.commit()
        logger.info(f"Deleted payment {payment_id}; reconciled bill {bill_line_id}")
        return bill

    def delete_bill_line(self, bill_line_id: int, actor_id: Optional[int] = None) -> List[int]:
        """Delete a bill line; its payments are kept and detached.

        Returns:
            IDs of the detached payments

        Raises:
            NotFoundError: Bill line does not exist
        """
        bill = self.db.get(BillLine, bill_line_id)
        if bill is None:
            raise NotFoundError(f"Bill line {bill_line_id} not found")

        payments = self.db.execute(
            select(Payment).where(Payment.bill_line_id == bill_line_id)
        ).scalars().all()
        detached = []
        for payment in payments:
            payment.bill_line_id = None
            detached.append(payment.id)

        AuditService.log(
            db=self.db,
            entity_type="bill_line",
            entity_id=bill.id,
            action="delete",
            actor_id=actor_id,
            changes={
                "month_key": bill.month_key,
                "tenancy_id": bill.tenancy_id,
                "total_amount": bill.total_amount,
                "detached_payment_ids": detached,
            },
        )
        self.db.flush()
        self.db.delete(bill)
        self.db.commit()
        logger.info(f"Deleted bill line {bill_line_id}; detached payments {detached}")
        return detached


__all__ = ["PaymentResult", "PaymentService"]

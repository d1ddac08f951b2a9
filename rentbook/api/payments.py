"""Payment management API endpoints.

Handles:
- Payment recording (with optional proof as a base64 data URL)
- Payment edits and deletes
- Reconciliation of the affected bill after every change
"""

import logging
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from rentbook.errors import AppError
from rentbook.models.payment import Payment
from rentbook.services import get_db
from rentbook.services.attachment_service import LocalAttachmentStore
from rentbook.services.payment_service import PaymentResult, PaymentService
from rentbook.services.reconciliation_service import derive_bill_payment_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


def get_attachment_store() -> LocalAttachmentStore:
    """Attachment store dependency (overridden in tests)."""
    return LocalAttachmentStore()


class PaymentRequest(BaseModel):
    """Request schema for recording a payment.

    The bill is bill_line_id, or else the bill of tenancy_id in month_key.
    """

    amount: float | str | None = None
    payment_date: Optional[date] = None
    bill_line_id: int | None = None
    tenancy_id: int | None = None
    month_key: str | None = None
    tenant_id: int | None = None
    mode: str = ""
    reference: str = ""
    notes: str = ""
    attachment_data_url: str | None = None
    attachment_name: str = ""


class PaymentUpdateRequest(BaseModel):
    """Fields left out keep their current value."""

    amount: float | str | None = None
    payment_date: Optional[date] = None
    bill_line_id: int | None = None
    mode: str | None = None
    reference: str | None = None
    notes: str | None = None
    attachment_data_url: str | None = None
    attachment_name: str = ""


class PaymentResponse(BaseModel):
    id: int
    bill_line_id: int | None
    tenant_id: int | None
    amount: float
    mode: str
    reference: str
    notes: str
    payment_date: date
    attachment_id: int | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BillStatusResponse(BaseModel):
    """Payment status of a bill after reconciliation."""

    bill_line_id: int
    total_amount: float
    amount_paid: float
    is_paid: bool
    remaining_amount: float


class PaymentSaveResponse(BaseModel):
    payment: PaymentResponse
    bill: BillStatusResponse | None


class PaymentsResponse(BaseModel):
    payments: list[PaymentResponse]


class DeletePaymentResponse(BaseModel):
    ok: bool
    payment_id: int
    bill: BillStatusResponse | None


def _bill_status(bill, state=None) -> Optional[BillStatusResponse]:
    if bill is None:
        return None
    state = state or derive_bill_payment_state(bill)
    return BillStatusResponse(
        bill_line_id=bill.id,
        total_amount=float(state.total_amount),
        amount_paid=float(state.amount_paid),
        is_paid=state.is_paid,
        remaining_amount=float(state.remaining),
    )


def _save_response(result: PaymentResult) -> PaymentSaveResponse:
    return PaymentSaveResponse(
        payment=PaymentResponse.model_validate(result.payment),
        bill=_bill_status(result.bill, result.state),
    )


@router.get("", response_model=PaymentsResponse)
def list_payments(
    bill_line_id: int | None = Query(None, description="Only payments of this bill"),
    db: Session = Depends(get_db),  # noqa: B008
) -> PaymentsResponse:
    """List payments, newest first."""
    payments: list[Payment] = PaymentService(db).list_payments(bill_line_id=bill_line_id)
    return PaymentsResponse(payments=[PaymentResponse.model_validate(p) for p in payments])


@router.post("", response_model=PaymentSaveResponse)
def record_payment(
    request: PaymentRequest,
    db: Session = Depends(get_db),  # noqa: B008
    store: LocalAttachmentStore = Depends(get_attachment_store),  # noqa: B008
) -> PaymentSaveResponse:
    """Record a payment and reconcile its bill.

    Raises:
        400: Amount missing or not positive
        404: bill_line_id given but not found
        500: Server error
    """
    try:
        result = PaymentService(db, attachment_store=store).record_payment(
            amount=request.amount,
            payment_date=request.payment_date,
            bill_line_id=request.bill_line_id,
            tenancy_id=request.tenancy_id,
            month_key=request.month_key,
            tenant_id=request.tenant_id,
            mode=request.mode,
            reference=request.reference,
            notes=request.notes,
            attachment_data_url=request.attachment_data_url,
            attachment_name=request.attachment_name,
        )
        return _save_response(result)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error in POST /api/payments: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e


@router.put("/{payment_id}", response_model=PaymentSaveResponse)
def update_payment(
    payment_id: int,
    request: PaymentUpdateRequest,
    db: Session = Depends(get_db),  # noqa: B008
    store: LocalAttachmentStore = Depends(get_attachment_store),  # noqa: B008
) -> PaymentSaveResponse:
    """Edit a payment; both the old and the new bill are reconciled.

    Raises:
        400: New amount not positive
        404: Payment or target bill not found
        500: Server error
    """
    try:
        result = PaymentService(db, attachment_store=store).update_payment(
            payment_id,
            amount=request.amount,
            payment_date=request.payment_date,
            bill_line_id=request.bill_line_id,
            mode=request.mode,
            reference=request.reference,
            notes=request.notes,
            attachment_data_url=request.attachment_data_url,
            attachment_name=request.attachment_name,
        )
        return _save_response(result)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error in PUT /api/payments/{payment_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e


@router.delete("/{payment_id}", response_model=DeletePaymentResponse)
def delete_payment(
    payment_id: int,
    db: Session = Depends(get_db),  # noqa: B008
    store: LocalAttachmentStore = Depends(get_attachment_store),  # noqa: B008
) -> DeletePaymentResponse:
    """Delete a payment and reconcile its bill.

    Raises:
        404: Payment not found
    """
    bill = PaymentService(db, attachment_store=store).delete_payment(payment_id)
    return DeletePaymentResponse(ok=True, payment_id=payment_id, bill=_bill_status(bill))

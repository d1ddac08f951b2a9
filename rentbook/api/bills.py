"""Bill listing and bill line endpoints."""

import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from rentbook.errors import NotFoundError
from rentbook.services import get_db
from rentbook.services.payment_service import PaymentService
from rentbook.services.reconciliation_service import NotFound, ReconciliationService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bills", tags=["bills"])


class BillResponse(BaseModel):
    """Bill line with payment status and display labels."""

    bill_line_id: int
    tenancy_id: int
    month_key: str
    month_label: str
    wing: str
    unit_number: str
    tenant_key: str
    tenant_name: str
    rent_amount: float
    electricity_units: float
    electricity_amount: float
    motor_share_amount: float
    sweep_amount: float
    total_amount: float
    amount_paid: float
    remaining_amount: float
    is_paid: bool
    payable_date: str


class BillsResponse(BaseModel):
    bills: list[BillResponse]


class BillDetailsResponse(BaseModel):
    bill: BillResponse
    included: bool
    prev_reading: float | None
    new_reading: float | None
    electricity_rate: float | None
    sweeping_per_flat: float | None
    motor_prev: float | None
    motor_new: float | None


class CoverageItem(BaseModel):
    month_key: str
    wing: str


class CoverageResponse(BaseModel):
    coverage: list[CoverageItem]


class DeleteBillResponse(BaseModel):
    ok: bool
    bill_line_id: int
    detached_payment_ids: list[int]


@router.get("", response_model=BillsResponse)
def list_bills(
    status: str | None = Query(None, description="'paid', 'pending' or empty for all"),
    months_back: int = Query(0, ge=0, description="Only the last N months (0 = all)"),
    db: Session = Depends(get_db),  # noqa: B008
) -> BillsResponse:
    views = ReconciliationService(db).list_bills(status=status, months_back=months_back)
    return BillsResponse(bills=[BillResponse(**view._asdict()) for view in views])


@router.get("/coverage", response_model=CoverageResponse)
def coverage(db: Session = Depends(get_db)) -> CoverageResponse:  # noqa: B008
    """(month, wing) pairs that already have bills."""
    entries = ReconciliationService(db).coverage()
    return CoverageResponse(coverage=[CoverageItem(**entry._asdict()) for entry in entries])


@router.get("/{bill_line_id}", response_model=BillDetailsResponse)
def bill_details(bill_line_id: int, db: Session = Depends(get_db)) -> BillDetailsResponse:  # noqa: B008
    """Bill with the reading and wing configuration it was computed from.

    Raises:
        404: Bill not found
    """
    details = ReconciliationService(db).get_bill_details(bill_line_id)
    if isinstance(details, NotFound):
        raise NotFoundError(details.error)

    fields = details._asdict()
    fields["bill"] = BillResponse(**details.bill._asdict())
    return BillDetailsResponse(**fields)


@router.delete("/{bill_line_id}", response_model=DeleteBillResponse)
def delete_bill(bill_line_id: int, db: Session = Depends(get_db)) -> DeleteBillResponse:  # noqa: B008
    """Delete a bill line; its payments are kept but detached.

    Raises:
        404: Bill not found
    """
    detached = PaymentService(db).delete_bill_line(bill_line_id)
    return DeleteBillResponse(ok=True, bill_line_id=bill_line_id, detached_payment_ids=detached)

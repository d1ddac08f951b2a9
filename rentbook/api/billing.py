"""Billing run API endpoints."""

import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from rentbook.errors import AppError
from rentbook.services import get_db
from rentbook.services.billing_service import (
    BillingConfig,
    BillingEntry,
    BillingRequest,
    BillingService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/billing", tags=["billing"])

Amount = float | str | None


class BillingConfigBody(BaseModel):
    """Shared-cost configuration; blank values count as 0."""

    electricity_rate: Amount = None
    sweeping_per_flat: Amount = None
    motor_prev: Amount = None
    motor_new: Amount = None


class BillingEntryBody(BaseModel):
    tenancy_id: int | None = None
    tenant_id: int | None = None
    grn_key: str | None = None
    prev_reading: Amount = None
    new_reading: Amount = None
    included: bool | str = False
    override_rent: Amount = None
    notes: str = ""


class BillingRequestBody(BaseModel):
    month_key: str = ""
    wing: str = ""
    config: BillingConfigBody = Field(default_factory=BillingConfigBody)
    entries: list[BillingEntryBody] = Field(default_factory=list)


class BillLineResponse(BaseModel):
    """Stored bill line of a billing run."""

    id: int
    month_key: str
    tenancy_id: int
    rent_amount: float
    electricity_units: float
    electricity_amount: float
    motor_share_amount: float
    sweep_amount: float
    total_amount: float
    payable_date: str
    generated_at: datetime
    amount_paid: float | None
    is_paid: bool | None

    model_config = ConfigDict(from_attributes=True)


class WingConfigResponse(BaseModel):
    month_key: str
    wing: str
    electricity_rate: float
    sweeping_per_flat: float
    motor_prev: float
    motor_new: float
    motor_units: float

    model_config = ConfigDict(from_attributes=True)


class UnresolvedEntryResponse(BaseModel):
    index: int
    reason: str
    tenancy_id: int | None
    tenant_id: int | None
    grn_key: str | None


class BillingResponse(BaseModel):
    month_key: str
    wing: str
    wing_config: WingConfigResponse
    bill_lines: list[BillLineResponse]
    unresolved: list[UnresolvedEntryResponse]


class BillingRecordTenantResponse(BaseModel):
    tenancy_id: int
    tenant_key: str
    tenant_name: str
    unit_number: str
    floor: str
    meter_number: str
    prev_reading: float
    new_reading: float
    included: bool
    override_rent: float | None
    rent_amount: float | None
    payable_date: str


class BillingRecordResponse(BaseModel):
    month_key: str
    month_label: str
    wing: str
    has_config: bool
    has_readings: bool
    config: WingConfigResponse | None
    tenants: list[BillingRecordTenantResponse]


def _to_request(body: BillingRequestBody) -> BillingRequest:
    return BillingRequest(
        month_key=body.month_key,
        wing=body.wing,
        config=BillingConfig(**body.config.model_dump()),
        entries=[BillingEntry(**entry.model_dump()) for entry in body.entries],
    )


@router.post("", response_model=BillingResponse)
def generate_billing(
    body: BillingRequestBody,
    db: Session = Depends(get_db),  # noqa: B008
) -> BillingResponse:
    """Compute and store the bills of a wing for a month.

    Re-posting the same body is idempotent; a changed body overwrites the
    bills of every tenancy it names.

    Raises:
        400: Missing or malformed month/wing, unparseable numbers
        500: Server error
    """
    start_time = time.time()
    try:
        result = BillingService(db).generate_billing(_to_request(body))
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error in POST /api/billing: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e

    config = result.wing_config
    duration_ms = int((time.time() - start_time) * 1000)
    logger.debug(
        f"billing.generate: month={config.month_key} wing={config.wing} "
        f"bills={len(result.bill_lines)} duration_ms={duration_ms}"
    )
    return BillingResponse(
        month_key=config.month_key,
        wing=config.wing,
        wing_config=WingConfigResponse.model_validate(config),
        bill_lines=[BillLineResponse.model_validate(bill) for bill in result.bill_lines],
        unresolved=[
            UnresolvedEntryResponse(
                index=item.index,
                reason=item.reason,
                tenancy_id=item.entry.tenancy_id,
                tenant_id=item.entry.tenant_id,
                grn_key=item.entry.grn_key,
            )
            for item in result.unresolved
        ],
    )


@router.get("", response_model=BillingRecordResponse)
def get_billing_record(
    month: str = Query(..., description="Billing month, YYYY-MM"),
    wing: str = Query(..., description="Wing name"),
    db: Session = Depends(get_db),  # noqa: B008
) -> BillingRecordResponse:
    """Stored inputs of a billing run, for editing and re-running it."""
    record = BillingService(db).get_billing_record(month, wing)
    return BillingRecordResponse(
        month_key=record.month_key,
        month_label=record.month_label,
        wing=record.wing,
        has_config=record.has_config,
        has_readings=record.has_readings,
        config=WingConfigResponse.model_validate(record.config) if record.config else None,
        tenants=[BillingRecordTenantResponse(**tenant._asdict()) for tenant in record.tenants],
    )

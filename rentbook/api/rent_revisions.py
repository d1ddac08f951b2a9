"""Rent revision API endpoints."""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from rentbook.errors import AppError, InvalidInputError, NotFoundError
from rentbook.services import get_db
from rentbook.services.parsers import is_valid_month_key, normalize_month_key
from rentbook.services.rent_revision_service import RentRevisionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/rent-revisions", tags=["rent-revisions"])


class RentRevisionRequest(BaseModel):
    """Request schema for creating or overwriting a revision."""

    tenancy_id: int | None = None
    effective_month: str = ""
    rent_amount: float | str | None = None
    note: str = ""


class RentRevisionResponse(BaseModel):
    id: int
    tenancy_id: int
    effective_month: str
    rent_amount: float
    note: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RentRevisionsResponse(BaseModel):
    revisions: list[RentRevisionResponse]


class RentRevisionSaveResponse(BaseModel):
    revision: RentRevisionResponse
    revisions: list[RentRevisionResponse]  # Full history of the tenancy after the save


class EffectiveRentResponse(BaseModel):
    tenancy_id: int
    month_key: str
    rent_amount: float | None  # None when no revision starts on or before the month


class DeleteRevisionResponse(BaseModel):
    ok: bool
    revision_id: int


@router.get("/{tenancy_id}", response_model=RentRevisionsResponse)
def list_revisions(tenancy_id: int, db: Session = Depends(get_db)) -> RentRevisionsResponse:  # noqa: B008
    """List a tenancy's revisions, newest effective month first."""
    revisions = RentRevisionService(db).list_revisions(tenancy_id)
    return RentRevisionsResponse(
        revisions=[RentRevisionResponse.model_validate(r) for r in revisions]
    )


@router.get("/{tenancy_id}/effective", response_model=EffectiveRentResponse)
def effective_rent(
    tenancy_id: int,
    month: str = Query(..., description="Billing month, YYYY-MM"),
    db: Session = Depends(get_db),  # noqa: B008
) -> EffectiveRentResponse:
    """Resolve the rent in force for a tenancy in a month.

    Raises:
        400: Malformed month
    """
    month_key = normalize_month_key(month)
    if not is_valid_month_key(month_key):
        raise InvalidInputError(f"Invalid month key: {month!r}")
    rent = RentRevisionService(db).resolve_effective_rent(tenancy_id, month_key)
    return EffectiveRentResponse(
        tenancy_id=tenancy_id,
        month_key=month_key,
        rent_amount=float(rent) if rent is not None else None,
    )


@router.post("", response_model=RentRevisionSaveResponse)
def save_revision(
    request: RentRevisionRequest,
    db: Session = Depends(get_db),  # noqa: B008
) -> RentRevisionSaveResponse:
    """Create a revision, or overwrite the one for the same tenancy and month.

    Raises:
        400: Missing tenancy, malformed month or negative rent
        404: Tenancy not found
        500: Server error
    """
    service = RentRevisionService(db)
    try:
        revision = service.upsert_revision(
            tenancy_id=request.tenancy_id,
            effective_month=request.effective_month,
            rent_amount=request.rent_amount,
            note=request.note,
        )
        history = service.list_revisions(revision.tenancy_id)
    except AppError:
        raise
    except Exception as e:
        logger.error(f"Error in POST /api/rent-revisions: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Server error") from e

    return RentRevisionSaveResponse(
        revision=RentRevisionResponse.model_validate(revision),
        revisions=[RentRevisionResponse.model_validate(r) for r in history],
    )


@router.delete("/{revision_id}", response_model=DeleteRevisionResponse)
def delete_revision(revision_id: int, db: Session = Depends(get_db)) -> DeleteRevisionResponse:  # noqa: B008
    """Delete a revision.

    Raises:
        404: Revision not found
    """
    if not RentRevisionService(db).delete_revision(revision_id):
        raise NotFoundError(f"Rent revision {revision_id} not found")
    return DeleteRevisionResponse(ok=True, revision_id=revision_id)

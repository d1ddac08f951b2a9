"""Service for effective-dated rent revisions and rent resolution."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentbook.errors import InvalidInputError, NotFoundError
from rentbook.models.rent_revision import RentRevision
from rentbook.models.tenancy import Tenancy
from rentbook.services.audit_service import AuditService
from rentbook.services.parsers import is_valid_month_key, normalize_month_key, parse_amount

logger = logging.getLogger(__name__)

INITIAL_RENT_NOTE = "Initial rent"


def _created_timestamp(value: Optional[datetime]) -> float:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value is None:
        return 0.0
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def revision_sort_key(revision: RentRevision) -> tuple[str, float]:
    """Ordering key: effective month, then creation time."""
    return (
        normalize_month_key(revision.effective_month),
        _created_timestamp(revision.created_at),
    )


def sort_revisions(revisions: Iterable[RentRevision]) -> list[RentRevision]:
    """Sort newest effective month first, newest creation first within a month."""
    return sorted(revisions, key=revision_sort_key, reverse=True)


def pick_effective_revision(
    revisions: Iterable[RentRevision],
    as_of_month: str,
) -> Optional[RentRevision]:
    """Pick the revision in force for `as_of_month`.

    Among revisions with effective_month <= as_of_month, the one with the
    greatest effective_month wins; ties go to the greatest created_at.
    Month keys are zero-padded, so string comparison is chronological.

    Returns:
        Winning revision or None if no revision starts on or before the month
    """
    month = normalize_month_key(as_of_month)
    candidates = [
        rev for rev in revisions if normalize_month_key(rev.effective_month) <= month
    ]
    if not candidates:
        return None
    return max(candidates, key=revision_sort_key)


class RentRevisionService:
    """Maintains per-tenancy rent history and answers "what rent applies this month"."""

    def __init__(self, db: Session):
        self.db = db

    def list_revisions(self, tenancy_id: int) -> list[RentRevision]:
        """List all revisions of a tenancy in resolution order."""
        stmt = select(RentRevision).where(RentRevision.tenancy_id == tenancy_id)
        return sort_revisions(self.db.execute(stmt).scalars().all())

    def revisions_by_tenancy(self, tenancy_ids: Sequence[int]) -> dict[int, list[RentRevision]]:
        """Load revisions for many tenancies in one query.

        Used by billing runs so rent for a whole wing resolves without a
        query per tenancy.
        """
        if not tenancy_ids:
            return {}
        stmt = select(RentRevision).where(RentRevision.tenancy_id.in_(list(tenancy_ids)))
        grouped: dict[int, list[RentRevision]] = {tid: [] for tid in tenancy_ids}
        for revision in self.db.execute(stmt).scalars().all():
            grouped.setdefault(revision.tenancy_id, []).append(revision)
        return {tid: sort_revisions(revs) for tid, revs in grouped.items()}

    def resolve_effective_rent(self, tenancy_id: int, as_of_month: str) -> Optional[Decimal]:
        """Resolve the rent applying to a tenancy in `as_of_month`.

        Args:
            tenancy_id: Tenancy ID
            as_of_month: Month key, "YYYY-MM" (formatting drift tolerated)

        Returns:
            Rent amount, or None if no revision starts on or before the month.
            Callers fall back to a tenancy default or 0.
        """
        stmt = select(RentRevision).where(RentRevision.tenancy_id == tenancy_id)
        revision = pick_effective_revision(self.db.execute(stmt).scalars().all(), as_of_month)
        return revision.rent_amount if revision is not None else None

    def upsert_revision(
        self,
        tenancy_id: int,
        effective_month: str,
        rent_amount,
        note: str = "",
        created_at: Optional[datetime] = None,
        actor_id: int | None = None,
    ) -> RentRevision:
        """Create or overwrite the revision for (tenancy_id, effective_month).

        Args:
            tenancy_id: Tenancy the rent applies to
            effective_month: First month the rent applies, "YYYY-MM"
            rent_amount: Rent, a non-negative number
            note: Free-text note
            created_at: Creation time (default: now)
            actor_id: Operator performing the change, for the audit log

        Returns:
            The stored RentRevision

        Raises:
            InvalidInputError: Missing tenancy, malformed month or negative/NaN rent
            NotFoundError: Tenancy does not exist
        """
        if tenancy_id is None or tenancy_id == "":
            raise InvalidInputError("tenancy_id is required")

        month = normalize_month_key(effective_month)
        if not is_valid_month_key(month):
            raise InvalidInputError(f"Invalid effective month: {effective_month!r}")

        try:
            amount = parse_amount(rent_amount)
        except ValueError as e:
            raise InvalidInputError(f"Invalid rent amount: {rent_amount!r}") from e
        if amount is None or amount < 0:
            raise InvalidInputError(f"Invalid rent amount: {rent_amount!r}")

        if self.db.get(Tenancy, tenancy_id) is None:
            raise NotFoundError(f"Tenancy {tenancy_id} not found")

        created = created_at or datetime.now(timezone.utc)
        existing = self.db.execute(
            select(RentRevision).where(
                RentRevision.tenancy_id == tenancy_id,
                RentRevision.effective_month == month,
            )
        ).scalar_one_or_none()

        if existing is not None:
            existing.rent_amount = amount
            existing.note = note or ""
            existing.created_at = created
            revision = existing
            action = "update"
        else:
            revision = RentRevision(
                tenancy_id=tenancy_id,
                effective_month=month,
                rent_amount=amount,
                note=note or "",
                created_at=created,
            )
            self.db.add(revision)
            action = "create"

        self.db.flush()
        AuditService.log(
            db=self.db,
            entity_type="rent_revision",
            entity_id=revision.id,
            action=action,
            actor_id=actor_id,
            changes={
                "tenancy_id": tenancy_id,
                "effective_month": month,
                "rent_amount": amount,
            },
        )
        self.db.commit()

        logger.info(
            f"Rent revision {action}: tenancy_id={tenancy_id} effective_month={month} rent_amount={amount}"
        )
        return revision

    def delete_revision(self, revision_id: int, actor_id: int | None = None) -> bool:
        """Delete a revision (explicit admin action).

        Returns:
            True if a revision was deleted, False if none matched
        """
        revision = self.db.get(RentRevision, revision_id)
        if revision is None:
            return False

        AuditService.log(
            db=self.db,
            entity_type="rent_revision",
            entity_id=revision.id,
            action="delete",
            actor_id=actor_id,
            changes={
                "tenancy_id": revision.tenancy_id,
                "effective_month": revision.effective_month,
                "rent_amount": revision.rent_amount,
            },
        )
        self.db.delete(revision)
        self.db.commit()
        logger.info(f"Deleted rent revision {revision_id}")
        return True

    def record_tenancy_rent(
        self,
        tenancy: Tenancy,
        rent_amount,
        today: Optional[date] = None,
    ) -> Optional[RentRevision]:
        """Record the rent entered when a tenancy is saved or updated.

        The revision takes effect from the commencement month (or the current
        month). It is written only if that month has no revision yet or the
        amount changed; otherwise the existing row is left untouched.

        Returns:
            The written revision, or None if nothing changed
        """
        if rent_amount is None or rent_amount == "":
            return None

        month = normalize_month_key(tenancy.commencement_date or today or date.today())
        existing = self.list_revisions(tenancy.id)
        for_month = next((rev for rev in existing if rev.effective_month == month), None)

        try:
            amount = parse_amount(rent_amount)
        except ValueError as e:
            raise InvalidInputError(f"Invalid rent amount: {rent_amount!r}") from e

        if for_month is not None and for_month.rent_amount == amount:
            return None

        if for_month is not None:
            note = for_month.note
        else:
            note = INITIAL_RENT_NOTE if not existing else ""
        return self.upsert_revision(tenancy.id, month, amount, note=note)


__all__ = [
    "INITIAL_RENT_NOTE",
    "RentRevisionService",
    "pick_effective_revision",
    "revision_sort_key",
    "sort_revisions",
]

"""Idempotent persistence of billing runs.

A billing run for (month, wing) fully supersedes what an earlier run stored
for the same (month_key, tenancy_id) keys: the wing configuration, the
tenant readings and the bill lines. Each table is indexed by its composite
key and every incoming record overwrites its matching row in place (all
fields rewritten) or is inserted. Keys are compared after normalization, so
"2024-5" and "2024-05", or wing "A" and "a", address the same row.

Nothing here commits; the caller commits the whole run at once.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, NamedTuple, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentbook.models.bill_line import BillLine
from rentbook.models.tenant_monthly_reading import TenantMonthlyReading
from rentbook.models.wing_month_config import WingMonthConfig
from rentbook.services.allocation_service import BillLineDraft, WingCharges, round2
from rentbook.services.parsers import normalize_month_key, normalize_wing

logger = logging.getLogger(__name__)

BILL_LINE_FIELDS = (
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


class ReadingRecord(NamedTuple):
    """Tenant reading to persist for a month."""

    month_key: str
    tenancy_id: int
    prev_reading: Decimal
    new_reading: Decimal
    included: bool
    override_rent: Optional[Decimal] = None
    notes: str = ""


def month_tenancy_key(month_key: str, tenancy_id: int) -> tuple[str, int]:
    """Composite key of readings and bill lines."""
    return normalize_month_key(month_key), int(tenancy_id)


def month_wing_key(month_key: str, wing: str) -> tuple[str, str]:
    """Composite key of wing configurations."""
    return normalize_month_key(month_key), normalize_wing(wing)


class BillPersistence:
    """Writes billing-run output with overwrite-on-key semantics."""

    def __init__(self, db: Session):
        self.db = db

    def _index(self, model, month_key: str, tenancy_ids: Iterable[int]) -> dict:
        ids = list({int(tid) for tid in tenancy_ids})
        if not ids:
            return {}
        stmt = select(model).where(model.tenancy_id.in_(ids))
        index = {}
        for row in self.db.execute(stmt).scalars().all():
            key = month_tenancy_key(row.month_key, row.tenancy_id)
            if key[0] == month_key:
                index[key] = row
        return index

    def find_wing_config(self, month_key: str, wing: str) -> Optional[WingMonthConfig]:
        """Find the stored configuration for (month, wing), ignoring key formatting drift."""
        target = month_wing_key(month_key, wing)
        for row in self.db.execute(select(WingMonthConfig)).scalars().all():
            if month_wing_key(row.month_key, row.wing) == target:
                return row
        return None

    def upsert_wing_config(self, month_key: str, wing: str, charges: WingCharges) -> WingMonthConfig:
        """Store the wing configuration, replacing any row for the same (month, wing)."""
        month = normalize_month_key(month_key)
        row = self.find_wing_config(month, wing)
        if row is None:
            row = WingMonthConfig(month_key=month, wing=wing.strip())
            self.db.add(row)

        row.month_key = month
        row.wing = wing.strip()
        row.electricity_rate = round2(charges.electricity_rate)
        row.sweeping_per_flat = round2(charges.sweeping_per_flat)
        row.motor_prev = round2(charges.motor_prev)
        row.motor_new = round2(charges.motor_new)
        row.motor_units = round2(charges.motor_units)
        self.db.flush()
        return row

    def replace_readings(
        self,
        month_key: str,
        records: Sequence[ReadingRecord],
    ) -> list[TenantMonthlyReading]:
        """Store readings, each replacing the row with the same (month, tenancy)."""
        month = normalize_month_key(month_key)
        index = self._index(TenantMonthlyReading, month, (r.tenancy_id for r in records))

        stored = []
        for record in records:
            key = month_tenancy_key(month, record.tenancy_id)
            row = index.get(key)
            if row is None:
                row = TenantMonthlyReading(month_key=month, tenancy_id=record.tenancy_id)
                self.db.add(row)
                index[key] = row
            row.month_key = month
            row.prev_reading = round2(record.prev_reading)
            row.new_reading = round2(record.new_reading)
            row.included = record.included
            row.override_rent = (
                round2(record.override_rent) if record.override_rent is not None else None
            )
            row.notes = record.notes or ""
            stored.append(row)

        self.db.flush()
        return stored

    def replace_bill_lines(
        self,
        month_key: str,
        drafts: Sequence[BillLineDraft],
        generated_at: Optional[datetime] = None,
    ) -> list[BillLine]:
        """Store bill lines, each fully overwriting the row with the same (month, tenancy).

        Row ids are kept, so payments already linked to a bill stay linked;
        the caller reconciles those bills afterwards.
        """
        month = normalize_month_key(month_key)
        generated = generated_at or datetime.now(timezone.utc)
        index = self._index(BillLine, month, (d.tenancy_id for d in drafts))

        stored = []
        replaced = 0
        for draft in drafts:
            key = month_tenancy_key(month, draft.tenancy_id)
            row = index.get(key)
            if row is None:
                row = BillLine(month_key=month, tenancy_id=draft.tenancy_id)
                self.db.add(row)
                index[key] = row
            else:
                replaced += 1
            row.month_key = month
            for field in BILL_LINE_FIELDS:
                setattr(row, field, getattr(draft, field))
            row.generated_at = generated
            stored.append(row)

        self.db.flush()
        logger.debug(f"Stored {len(stored)} bill lines for {month} ({replaced} replaced)")
        return stored


__all__ = [
    "BILL_LINE_FIELDS",
    "BillPersistence",
    "ReadingRecord",
    "month_tenancy_key",
    "month_wing_key",
]

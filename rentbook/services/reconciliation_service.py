"""Payment reconciliation: paid/pending status of bill lines.

Two paths derive the same (amount_paid, is_paid, remaining) view of a bill:

- the server path (`derive_bill_payment_state`, `update_bill_payment_status`)
  works on stored BillLine rows and Payment rows;
- the client path (`summarize_bill_payments`) works on the plain JSON
  mappings the API hands out, for views rendered before stored status is
  available.

Given the same inputs both paths must agree. A bill counts as paid when
its total is zero or negative, or when the amount paid reaches the total
within half a cent.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping, NamedTuple, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from rentbook.config import settings
from rentbook.models.bill_line import BillLine
from rentbook.models.payment import Payment
from rentbook.models.tenancy import Tenancy, Tenant, Unit
from rentbook.models.tenant_monthly_reading import TenantMonthlyReading
from rentbook.models.wing_month_config import WingMonthConfig
from rentbook.services.allocation_service import round2
from rentbook.services.bill_persistence import BillPersistence, month_wing_key
from rentbook.services.cache import TtlCache
from rentbook.services.locale_service import format_month_label
from rentbook.services.parsers import (
    is_blank,
    month_index,
    normalize_month_key,
    parse_amount_or_zero,
    parse_boolean,
)
from rentbook.services.resolution import chain

logger = logging.getLogger(__name__)

PAID_TOLERANCE = Decimal("0.005")
ZERO = Decimal("0.00")


def is_settled(total_amount: Decimal, amount_paid: Decimal) -> bool:
    """Paid when nothing is owed or the payments cover the total (half-cent tolerance)."""
    return total_amount <= 0 or amount_paid + PAID_TOLERANCE >= total_amount


def remaining_amount(total_amount: Decimal, amount_paid: Decimal, is_paid: bool) -> Decimal:
    if is_paid:
        return ZERO
    return max(ZERO, round2(total_amount - amount_paid))


class BillPaymentState(NamedTuple):
    """Derived payment status of a bill line."""

    total_amount: Decimal
    amount_paid: Decimal
    is_paid: bool
    remaining: Decimal


class PaymentSummary(NamedTuple):
    """Client-side payment summary of a bill."""

    amount_paid: Decimal
    is_paid: bool
    remaining: Decimal
    receipt_count: int


def _sum_payments(payments: Iterable[Any]) -> Decimal:
    return round2(sum((parse_amount_or_zero(p.amount) for p in payments), Decimal(0)))


def _state(total: Decimal, paid: Decimal, is_paid: bool) -> BillPaymentState:
    return BillPaymentState(
        total_amount=total,
        amount_paid=paid,
        is_paid=is_paid,
        remaining=remaining_amount(total, paid, is_paid),
    )


# Server-side precedence chain; each step gets (bill, total, payments).


def _stored_status(bill, total: Decimal, payments) -> Optional[BillPaymentState]:
    if is_blank(bill.is_paid):
        return None
    is_paid = parse_boolean(bill.is_paid)
    if not is_blank(bill.amount_paid):
        paid = parse_amount_or_zero(bill.amount_paid)
    else:
        # Flag without an amount: paid means settled in full, unpaid means nothing received
        paid = max(total, ZERO) if is_paid else ZERO
    return _state(total, paid, is_paid)


def _zero_total(bill, total: Decimal, payments) -> Optional[BillPaymentState]:
    if total > 0:
        return None
    if not is_blank(bill.amount_paid):
        paid = parse_amount_or_zero(bill.amount_paid)
    else:
        paid = _sum_payments(payments)
    return _state(total, paid, True)


def _stored_amount(bill, total: Decimal, payments) -> Optional[BillPaymentState]:
    if is_blank(bill.amount_paid):
        return None
    paid = parse_amount_or_zero(bill.amount_paid)
    return _state(total, paid, is_settled(total, paid))


def _payment_sum(bill, total: Decimal, payments) -> Optional[BillPaymentState]:
    paid = _sum_payments(payments)
    return _state(total, paid, is_settled(total, paid))


resolve_payment_state = chain(_stored_status, _zero_total, _stored_amount, _payment_sum)


def derive_bill_payment_state(
    bill: BillLine,
    payments: Optional[Sequence[Payment]] = None,
) -> BillPaymentState:
    """Derive payment status of a bill line.

    Precedence:
    1. stored is_paid (with stored amount_paid when present) is authoritative
    2. total <= 0 means paid
    3. stored amount_paid: paid when amount_paid + 0.005 >= total
    4. otherwise sum the bill's payments and apply rule 3

    Args:
        bill: BillLine (or any object with total_amount/amount_paid/is_paid)
        payments: Payments of the bill; defaults to bill.payments

    Returns:
        BillPaymentState
    """
    total = parse_amount_or_zero(bill.total_amount)
    if payments is None:
        payments = getattr(bill, "payments", None) or []
    return resolve_payment_state(bill, total, payments)


def _field(record: Mapping[str, Any], camel: str, snake: str) -> Any:
    value = record.get(camel)
    if value is None:
        value = record.get(snake)
    return value


def _payment_bill_id(payment: Mapping[str, Any]) -> Any:
    return _field(payment, "billLineId", "bill_line_id")


def summarize_bill_payments(
    bill: Mapping[str, Any],
    payments: Sequence[Mapping[str, Any]] = (),
) -> PaymentSummary:
    """Client-side summary of a bill's payments.

    Works on plain mappings with camelCase or snake_case keys. Stored status
    fields (remainingAmount, amountPaid, isPaid) win when any is present;
    otherwise the payments referencing the bill are summed.

    Args:
        bill: Bill mapping (e.g. an item of GET /api/bills)
        payments: Payment mappings; only those referencing the bill count

    Returns:
        PaymentSummary
    """
    total = parse_amount_or_zero(_field(bill, "totalAmount", "total_amount"))
    remaining_raw = _field(bill, "remainingAmount", "remaining_amount")
    paid_raw = _field(bill, "amountPaid", "amount_paid")
    is_paid_raw = _field(bill, "isPaid", "is_paid")

    has_remaining = not is_blank(remaining_raw)
    has_paid = not is_blank(paid_raw)
    has_is_paid = not is_blank(is_paid_raw)

    if has_remaining or has_paid or has_is_paid:
        if has_paid:
            paid = parse_amount_or_zero(paid_raw)
        elif has_remaining:
            paid = max(ZERO, total - parse_amount_or_zero(remaining_raw))
        elif parse_boolean(is_paid_raw):
            # Same rule as the server: a bare paid flag settles the full total
            paid = max(ZERO, total)
        else:
            paid = ZERO
        is_paid = parse_boolean(is_paid_raw) if has_is_paid else is_settled(total, paid)
        if has_remaining:
            remaining = max(ZERO, parse_amount_or_zero(remaining_raw))
        else:
            remaining = remaining_amount(total, paid, is_paid)
        return PaymentSummary(amount_paid=paid, is_paid=is_paid, remaining=remaining, receipt_count=0)

    bill_id = _field(bill, "billLineId", "bill_line_id")
    if bill_id is None:
        bill_id = bill.get("id")
    matches = [p for p in payments if str(_payment_bill_id(p)) == str(bill_id)]
    paid = round2(sum((parse_amount_or_zero(p.get("amount")) for p in matches), Decimal(0)))
    is_paid = is_settled(total, paid)
    return PaymentSummary(
        amount_paid=paid,
        is_paid=is_paid,
        remaining=remaining_amount(total, paid, is_paid),
        receipt_count=len(matches),
    )


class TenancyRef(NamedTuple):
    tenant_id: int
    unit_id: int
    grn_number: str


class UnitRef(NamedTuple):
    wing: str
    unit_number: str


class BillView(NamedTuple):
    """Bill line joined with tenancy, tenant and unit labels."""

    bill_line_id: int
    tenancy_id: int
    month_key: str
    month_label: str
    wing: str
    unit_number: str
    tenant_key: str
    tenant_name: str
    rent_amount: Decimal
    electricity_units: Decimal
    electricity_amount: Decimal
    motor_share_amount: Decimal
    sweep_amount: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    remaining_amount: Decimal
    is_paid: bool
    payable_date: str


class BillDetails(NamedTuple):
    """Bill view plus the reading and wing configuration it was computed from."""

    bill: BillView
    included: bool
    prev_reading: Optional[Decimal]
    new_reading: Optional[Decimal]
    electricity_rate: Optional[Decimal]
    sweeping_per_flat: Optional[Decimal]
    motor_prev: Optional[Decimal]
    motor_new: Optional[Decimal]


class NotFound(NamedTuple):
    """Explicit failure result of a single-entity lookup."""

    error: str


class CoverageEntry(NamedTuple):
    month_key: str
    wing: str


# Shared by all requests; entries expire, they are never invalidated on write.
lookup_cache = TtlCache(ttl_seconds=settings.lookup_cache_ttl_seconds)


class ReconciliationService:
    """Keeps bill lines' payment status in line with recorded payments."""

    def __init__(
        self,
        db: Session,
        cache: Optional[TtlCache] = None,
        today: Optional[date] = None,
    ):
        self.db = db
        self.cache = cache if cache is not None else lookup_cache
        self.today = today

    def update_bill_payment_status(self, bill_line_ids) -> list[BillLine]:
        """Recompute and store amount_paid/is_paid for the given bill lines.

        amount_paid = round2(sum of payments), is_paid = total <= 0 or
        amount_paid + 0.005 >= total. Blank and unknown ids are skipped.
        Flushes but does not commit.

        Args:
            bill_line_ids: A bill line id or an iterable of ids

        Returns:
            Updated BillLine rows
        """
        if bill_line_ids is None:
            return []
        if isinstance(bill_line_ids, (int, str)):
            bill_line_ids = [bill_line_ids]
        ids = []
        for value in bill_line_ids:
            if is_blank(value):
                continue
            try:
                ids.append(int(value))
            except (TypeError, ValueError):
                logger.warning(f"Skipping malformed bill line id {value!r}")
        if not ids:
            return []

        bills = self.db.execute(select(BillLine).where(BillLine.id.in_(ids))).scalars().all()
        payments = self.db.execute(select(Payment).where(Payment.bill_line_id.in_(ids))).scalars().all()
        totals: dict[int, Decimal] = {bill_id: Decimal(0) for bill_id in ids}
        for payment in payments:
            totals[payment.bill_line_id] += parse_amount_or_zero(payment.amount)

        for bill in bills:
            total = parse_amount_or_zero(bill.total_amount)
            paid = round2(totals.get(bill.id, Decimal(0)))
            bill.amount_paid = paid
            bill.is_paid = is_settled(total, paid)
            logger.debug(f"Reconciled bill {bill.id}: total={total} paid={paid} is_paid={bill.is_paid}")

        self.db.flush()
        return list(bills)

    # Lookup maps (served from the TTL cache)

    def _tenancy_map(self) -> dict[int, TenancyRef]:
        def build():
            rows = self.db.execute(
                select(Tenancy.id, Tenancy.tenant_id, Tenancy.unit_id, Tenancy.grn_number)
            ).all()
            return {row[0]: TenancyRef(row[1], row[2], row[3] or "") for row in rows}

        return self.cache.get_or_build("lookup:tenancies", build)

    def _tenant_map(self) -> dict[int, str]:
        def build():
            rows = self.db.execute(select(Tenant.id, Tenant.full_name)).all()
            return {row[0]: row[1] or "" for row in rows}

        return self.cache.get_or_build("lookup:tenants", build)

    def _unit_map(self) -> dict[int, UnitRef]:
        def build():
            rows = self.db.execute(select(Unit.id, Unit.wing, Unit.unit_number)).all()
            return {row[0]: UnitRef(row[1] or "", row[2] or "") for row in rows}

        return self.cache.get_or_build("lookup:units", build)

    def _view(self, bill: BillLine) -> BillView:
        tenancy = self._tenancy_map().get(bill.tenancy_id)
        tenant_name = self._tenant_map().get(tenancy.tenant_id, "") if tenancy else ""
        unit = self._unit_map().get(tenancy.unit_id) if tenancy else None
        state = derive_bill_payment_state(bill)
        return BillView(
            bill_line_id=bill.id,
            tenancy_id=bill.tenancy_id,
            month_key=normalize_month_key(bill.month_key),
            month_label=format_month_label(bill.month_key),
            wing=unit.wing if unit else "",
            unit_number=unit.unit_number if unit else "",
            tenant_key=(tenancy.grn_number if tenancy else "") or tenant_name,
            tenant_name=tenant_name,
            rent_amount=bill.rent_amount,
            electricity_units=bill.electricity_units,
            electricity_amount=bill.electricity_amount,
            motor_share_amount=bill.motor_share_amount,
            sweep_amount=bill.sweep_amount,
            total_amount=state.total_amount,
            amount_paid=state.amount_paid,
            remaining_amount=state.remaining,
            is_paid=state.is_paid,
            payable_date=bill.payable_date or "",
        )

    def _within_recent_months(self, month_key: str, months_back: int) -> bool:
        if not months_back or months_back <= 0:
            return True
        index = month_index(month_key)
        if index is None:
            return True
        today = self.today or date.today()
        current = today.year * 12 + today.month - 1
        return index >= current - (months_back - 1)

    def list_bills(self, status: Optional[str] = None, months_back: int = 0) -> list[BillView]:
        """List bill views, optionally only paid or pending ones of recent months.

        Args:
            status: "paid", "pending", or anything else for all bills
            months_back: Keep only the last N months (0 keeps everything)

        Returns:
            BillView list, newest month first
        """
        wanted = (status or "").strip().lower()
        bills = self.db.execute(
            select(BillLine).order_by(BillLine.month_key.desc(), BillLine.id)
        ).scalars().all()

        views = []
        for bill in bills:
            if not self._within_recent_months(bill.month_key, months_back):
                continue
            view = self._view(bill)
            if wanted == "paid" and not view.is_paid:
                continue
            if wanted == "pending" and view.is_paid:
                continue
            views.append(view)
        return views

    def get_bill_details(self, bill_line_id: int) -> BillDetails | NotFound:
        """Fetch one bill with its reading and wing configuration.

        Returns:
            BillDetails, or NotFound when no bill has this id
        """
        if is_blank(bill_line_id):
            return NotFound(error="Missing billLineId")
        bill = self.db.get(BillLine, bill_line_id)
        if bill is None:
            return NotFound(error="Bill not found")

        view = self._view(bill)
        month = normalize_month_key(bill.month_key)
        reading = self.db.execute(
            select(TenantMonthlyReading).where(
                TenantMonthlyReading.tenancy_id == bill.tenancy_id,
                TenantMonthlyReading.month_key == month,
            )
        ).scalar_one_or_none()
        config = BillPersistence(self.db).find_wing_config(month, view.wing) if view.wing else None

        return BillDetails(
            bill=view,
            included=reading.included if reading else False,
            prev_reading=reading.prev_reading if reading else None,
            new_reading=reading.new_reading if reading else None,
            electricity_rate=config.electricity_rate if config else None,
            sweeping_per_flat=config.sweeping_per_flat if config else None,
            motor_prev=config.motor_prev if config else None,
            motor_new=config.motor_new if config else None,
        )

    def coverage(self) -> list[CoverageEntry]:
        """(month, wing) pairs that already have a billing run, newest first."""
        rows = self.db.execute(select(WingMonthConfig.month_key, WingMonthConfig.wing)).all()
        seen = set()
        entries = []
        for month_key, wing in rows:
            month = normalize_month_key(month_key)
            label = (wing or "").strip()
            if not month or not label:
                continue
            key = month_wing_key(month, label)
            if key in seen:
                continue
            seen.add(key)
            entries.append(CoverageEntry(month_key=month, wing=label))
        entries.sort(key=lambda entry: (entry.month_key, entry.wing), reverse=True)
        return entries


__all__ = [
    "BillDetails",
    "BillPaymentState",
    "BillView",
    "CoverageEntry",
    "NotFound",
    "PAID_TOLERANCE",
    "PaymentSummary",
    "ReconciliationService",
    "derive_bill_payment_state",
    "is_settled",
    "lookup_cache",
    "remaining_amount",
    "resolve_payment_state",
    "summarize_bill_payments",
]

"""Allocation engine for monthly bills of a wing.

Per wing and month:
- motor_units = motor_new - motor_prev (not clamped, may be negative)
- motor cost (motor_units x electricity_rate) is split equally across the
  included tenancies
- every included tenancy pays its own electricity, its motor share, the flat
  sweeping charge and its rent

Component amounts are rounded to 2 decimals; the bill total is rounded to
the nearest whole currency unit. Excluded tenancies get an all-zero bill
that is settled from the start (rent is still recorded for reference).
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, NamedTuple, Optional, Sequence

from rentbook.services.resolution import chain

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
UNIT = Decimal("1")
ZERO = Decimal("0.00")

RentLookup = Callable[[int, str], Optional[Decimal]]


def round2(value) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def round_to_nearest(value) -> Decimal:
    """Round to the nearest whole unit, kept with 2 decimal places ("5800.00")."""
    return Decimal(value).quantize(UNIT, rounding=ROUND_HALF_UP).quantize(CENT)


class WingCharges(NamedTuple):
    """Shared-cost configuration of a wing for one month."""

    electricity_rate: Decimal
    sweeping_per_flat: Decimal
    motor_prev: Decimal
    motor_new: Decimal

    @property
    def motor_units(self) -> Decimal:
        return self.motor_new - self.motor_prev


class AllocationEntry(NamedTuple):
    """A resolved tenancy with its readings for the month."""

    tenancy_id: int
    prev_reading: Decimal
    new_reading: Decimal
    included: bool
    override_rent: Optional[Decimal] = None
    payable_date: str = ""


class BillLineDraft(NamedTuple):
    """Computed bill line for one tenancy, before persistence."""

    month_key: str
    tenancy_id: int
    rent_amount: Decimal
    electricity_units: Decimal
    electricity_amount: Decimal
    motor_share_amount: Decimal
    sweep_amount: Decimal
    total_amount: Decimal
    payable_date: str
    amount_paid: Decimal
    is_paid: bool


def compute_motor_share(charges: WingCharges, included_count: int) -> Decimal:
    """Motor cost per included tenancy, 0 when nobody is included."""
    if included_count <= 0:
        return ZERO
    return round2(charges.motor_units * charges.electricity_rate / included_count)


def _override_rent(entry: AllocationEntry, month_key: str, lookup: RentLookup) -> Optional[Decimal]:
    return entry.override_rent


def _revision_rent(entry: AllocationEntry, month_key: str, lookup: RentLookup) -> Optional[Decimal]:
    return lookup(entry.tenancy_id, month_key)


def _no_rent(entry: AllocationEntry, month_key: str, lookup: RentLookup) -> Optional[Decimal]:
    return ZERO


# Operator override beats the revision history; no revision means no rent.
resolve_rent_amount = chain(_override_rent, _revision_rent, _no_rent)


class BillingAllocationEngine:
    """Computes one bill line per resolved tenancy of a wing/month."""

    def __init__(self, rent_lookup: Optional[RentLookup] = None):
        """Initialize allocation engine.

        Args:
            rent_lookup: Callable (tenancy_id, month_key) -> rent or None,
                consulted when an entry carries no override rent
        """
        self.rent_lookup: RentLookup = rent_lookup or (lambda tenancy_id, month_key: None)

    def compute_line(
        self,
        month_key: str,
        charges: WingCharges,
        entry: AllocationEntry,
        motor_per_tenant: Decimal,
    ) -> BillLineDraft:
        """Compute the bill line of a single tenancy.

        Args:
            month_key: Billing month, "YYYY-MM"
            charges: Wing configuration for the month
            entry: Tenancy readings and participation flag
            motor_per_tenant: Motor share already divided across included tenancies

        Returns:
            BillLineDraft with rounded components and whole-unit total
        """
        rent = round2(resolve_rent_amount(entry, month_key, self.rent_lookup))
        units = round2(max(entry.new_reading - entry.prev_reading, Decimal(0)))

        if entry.included:
            electricity_amount = round2(units * charges.electricity_rate)
            sweep_amount = round2(charges.sweeping_per_flat)
            motor_share = round2(motor_per_tenant)
            total = round_to_nearest(rent + electricity_amount + motor_share + sweep_amount)
        else:
            electricity_amount = sweep_amount = motor_share = total = ZERO

        return BillLineDraft(
            month_key=month_key,
            tenancy_id=entry.tenancy_id,
            rent_amount=rent,
            electricity_units=units,
            electricity_amount=electricity_amount,
            motor_share_amount=motor_share,
            sweep_amount=sweep_amount,
            total_amount=total,
            payable_date=entry.payable_date or "",
            amount_paid=ZERO,
            is_paid=total <= 0,
        )

    def allocate(
        self,
        month_key: str,
        charges: WingCharges,
        entries: Sequence[AllocationEntry],
    ) -> list[BillLineDraft]:
        """Allocate shared costs and compute bill lines for all entries.

        Args:
            month_key: Billing month, "YYYY-MM"
            charges: Wing configuration for the month
            entries: One entry per resolved tenancy

        Returns:
            Bill line drafts in entry order
        """
        if charges.motor_units < 0:
            logger.warning(
                f"Negative motor units for {month_key} "
                f"(motor_prev={charges.motor_prev}, motor_new={charges.motor_new}); "
                "motor share will be a credit"
            )

        included_count = sum(1 for entry in entries if entry.included)
        motor_per_tenant = compute_motor_share(charges, included_count)

        return [self.compute_line(month_key, charges, entry, motor_per_tenant) for entry in entries]


__all__ = [
    "AllocationEntry",
    "BillLineDraft",
    "BillingAllocationEngine",
    "RentLookup",
    "WingCharges",
    "compute_motor_share",
    "resolve_rent_amount",
    "round2",
    "round_to_nearest",
]

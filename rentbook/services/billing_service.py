"""Billing runs: match operator entries to tenancies, allocate and persist bills."""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, NamedTuple, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from rentbook.errors import InvalidInputError
from rentbook.models.bill_line import BillLine
from rentbook.models.payment import Payment
from rentbook.models.tenancy import Tenancy, TenancyStatus, Unit
from rentbook.models.tenant_monthly_reading import TenantMonthlyReading
from rentbook.models.wing_month_config import WingMonthConfig
from rentbook.services.allocation_service import (
    AllocationEntry,
    BillingAllocationEngine,
    WingCharges,
)
from rentbook.services.audit_service import AuditService
from rentbook.services.bill_persistence import BillPersistence, ReadingRecord
from rentbook.services.locale_service import format_month_label
from rentbook.services.parsers import (
    is_blank,
    is_valid_month_key,
    normalize_key,
    normalize_month_key,
    normalize_wing,
    parse_amount,
    parse_amount_or_zero,
    parse_boolean,
)
from rentbook.services.reconciliation_service import ReconciliationService
from rentbook.services.rent_revision_service import RentRevisionService, pick_effective_revision
from rentbook.services.resolution import chain

logger = logging.getLogger(__name__)


class BillingConfig(NamedTuple):
    """Shared-cost configuration as entered; blank fields count as 0."""

    electricity_rate: Any = None
    sweeping_per_flat: Any = None
    motor_prev: Any = None
    motor_new: Any = None


class BillingEntry(NamedTuple):
    """One operator-entered row of a billing run.

    The tenancy is found from tenancy_id, else tenant_id, else grn_key.
    """

    tenancy_id: Optional[int] = None
    tenant_id: Optional[int] = None
    grn_key: Optional[str] = None
    prev_reading: Any = None
    new_reading: Any = None
    included: Any = False
    override_rent: Any = None
    notes: str = ""


class BillingRequest(NamedTuple):
    month_key: str
    wing: str
    config: BillingConfig = BillingConfig()
    entries: Sequence[BillingEntry] = ()


class UnresolvedEntry(NamedTuple):
    """Entry dropped because it matched no tenancy of the wing."""

    index: int
    entry: BillingEntry
    reason: str


class BillingResult(NamedTuple):
    bill_lines: list[BillLine]
    wing_config: WingMonthConfig
    unresolved: list[UnresolvedEntry]


class BillingRecordTenant(NamedTuple):
    """Stored reading of a tenancy, as shown when reopening a billing run."""

    tenancy_id: int
    tenant_key: str
    tenant_name: str
    unit_number: str
    floor: str
    meter_number: str
    prev_reading: Decimal
    new_reading: Decimal
    included: bool
    override_rent: Optional[Decimal]
    rent_amount: Optional[Decimal]
    payable_date: str


class BillingRecord(NamedTuple):
    """Previously saved inputs of a (month, wing) billing run."""

    month_key: str
    month_label: str
    wing: str
    has_config: bool
    has_readings: bool
    config: Optional[WingMonthConfig]
    tenants: list[BillingRecordTenant]


class _ParsedEntry(NamedTuple):
    index: int
    entry: BillingEntry
    prev_reading: Decimal
    new_reading: Decimal
    included: bool
    override_rent: Optional[Decimal]


class TenancyIndex:
    """In-memory lookup of tenancies by id, tenant id and GRN key."""

    def __init__(self, tenancies: Sequence[Tenancy]):
        self.by_id: dict[int, Tenancy] = {}
        self.by_tenant: dict[int, list[Tenancy]] = {}
        self.by_grn: dict[str, list[Tenancy]] = {}
        for tenancy in tenancies:
            self.by_id[tenancy.id] = tenancy
            self.by_tenant.setdefault(tenancy.tenant_id, []).append(tenancy)
            grn = normalize_key(tenancy.grn_number)
            if grn:
                self.by_grn.setdefault(grn, []).append(tenancy)


def _by_tenancy_id(entry: BillingEntry, index: TenancyIndex) -> Optional[list[Tenancy]]:
    if is_blank(entry.tenancy_id):
        return None
    tenancy = index.by_id.get(_as_int(entry.tenancy_id))
    return [tenancy] if tenancy is not None else None


def _by_tenant_id(entry: BillingEntry, index: TenancyIndex) -> Optional[list[Tenancy]]:
    if is_blank(entry.tenant_id):
        return None
    return index.by_tenant.get(_as_int(entry.tenant_id)) or None


def _by_grn(entry: BillingEntry, index: TenancyIndex) -> Optional[list[Tenancy]]:
    key = normalize_key(entry.grn_key)
    if not key:
        return None
    return index.by_grn.get(key) or None


# Explicit tenancy id, then tenant id, then GRN key.
find_candidate_tenancies = chain(_by_tenancy_id, _by_tenant_id, _by_grn)


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _wing_matches(tenancy: Tenancy, wing: str) -> bool:
    return tenancy.unit is not None and normalize_wing(tenancy.unit.wing) == wing


def select_wing_tenancies(candidates: Sequence[Tenancy], wing: str) -> list[Tenancy]:
    """Keep candidates in the wing, preferring ACTIVE ones.

    Args:
        candidates: Tenancies matched by the entry's key
        wing: Normalized target wing

    Returns:
        ACTIVE tenancies of the wing if there are any, otherwise every
        tenancy of the wing regardless of status
    """
    in_wing = [t for t in candidates if _wing_matches(t, wing)]
    active = [t for t in in_wing if t.status == TenancyStatus.ACTIVE]
    return active or in_wing


def _parse_number(value, field: str, index: Optional[int] = None) -> Decimal:
    try:
        return parse_amount_or_zero(value)
    except ValueError as e:
        where = f" in entry {index}" if index is not None else ""
        raise InvalidInputError(f"Invalid {field}{where}: {value!r}") from e


class BillingService:
    """Runs the monthly billing of a wing."""

    def __init__(self, db: Session):
        self.db = db

    def _validate(self, request: BillingRequest) -> tuple[str, str, WingCharges, list[_ParsedEntry]]:
        if is_blank(request.month_key) or is_blank(request.wing):
            raise InvalidInputError("Missing month or wing")
        month = normalize_month_key(request.month_key)
        if not is_valid_month_key(month):
            raise InvalidInputError(f"Invalid month key: {request.month_key!r}")
        wing = str(request.wing).strip()

        config = request.config or BillingConfig()
        charges = WingCharges(
            electricity_rate=_parse_number(config.electricity_rate, "electricity_rate"),
            sweeping_per_flat=_parse_number(config.sweeping_per_flat, "sweeping_per_flat"),
            motor_prev=_parse_number(config.motor_prev, "motor_prev"),
            motor_new=_parse_number(config.motor_new, "motor_new"),
        )

        parsed = []
        for i, entry in enumerate(request.entries or ()):
            try:
                override = parse_amount(entry.override_rent)
            except ValueError as e:
                raise InvalidInputError(f"Invalid override_rent in entry {i}: {entry.override_rent!r}") from e
            parsed.append(
                _ParsedEntry(
                    index=i,
                    entry=entry,
                    prev_reading=_parse_number(entry.prev_reading, "prev_reading", i),
                    new_reading=_parse_number(entry.new_reading, "new_reading", i),
                    included=parse_boolean(entry.included),
                    override_rent=override,
                )
            )
        return month, wing, charges, parsed

    def _load_tenancies(self) -> TenancyIndex:
        stmt = select(Tenancy).options(joinedload(Tenancy.unit))
        return TenancyIndex(self.db.execute(stmt).scalars().unique().all())

    def _rent_lookup(self, tenancy_ids: Sequence[int]) -> Callable[[int, str], Optional[Decimal]]:
        revisions = RentRevisionService(self.db).revisions_by_tenancy(tenancy_ids)

        def lookup(tenancy_id: int, month_key: str) -> Optional[Decimal]:
            revision = pick_effective_revision(revisions.get(tenancy_id, []), month_key)
            return revision.rent_amount if revision is not None else None

        return lookup

    def generate_billing(
        self,
        request: BillingRequest,
        actor_id: int | None = None,
        generated_at: Optional[datetime] = None,
    ) -> BillingResult:
        """Compute and store the bills of a wing for a month.

        Re-running with the same inputs stores the same values under the same
        row ids; re-running with changed inputs overwrites the prior rows of
        every tenancy in the run.

        Args:
            request: Month, wing, shared-cost config and tenant entries
            actor_id: Operator running the billing, for the audit log
            generated_at: Generation timestamp (default: now)

        Returns:
            BillingResult with stored bill lines, wing config and dropped entries

        Raises:
            InvalidInputError: Missing/malformed month or wing, or unparseable numbers
        """
        month, wing, charges, parsed = self._validate(request)
        wing_key = normalize_wing(wing)
        index = self._load_tenancies()

        resolved: dict[int, tuple[Tenancy, _ParsedEntry]] = {}
        unresolved: list[UnresolvedEntry] = []
        for item in parsed:
            candidates = find_candidate_tenancies(item.entry, index) or []
            tenancies = select_wing_tenancies(candidates, wing_key)
            if not tenancies:
                reason = "no matching tenancy" if not candidates else f"no tenancy in wing {wing}"
                unresolved.append(UnresolvedEntry(index=item.index, entry=item.entry, reason=reason))
                logger.warning(
                    f"Dropping billing entry {item.index} for {month}/{wing}: {reason} "
                    f"(tenancy_id={item.entry.tenancy_id}, tenant_id={item.entry.tenant_id}, "
                    f"grn={item.entry.grn_key})"
                )
                continue
            for tenancy in tenancies:
                if tenancy.id in resolved:
                    logger.warning(
                        f"Tenancy {tenancy.id} appears twice in billing for {month}/{wing}; last entry wins"
                    )
                resolved[tenancy.id] = (tenancy, item)

        allocation_entries = [
            AllocationEntry(
                tenancy_id=tenancy.id,
                prev_reading=item.prev_reading,
                new_reading=item.new_reading,
                included=item.included,
                override_rent=item.override_rent,
                payable_date=tenancy.rent_payable_day or "",
            )
            for tenancy, item in resolved.values()
        ]
        engine = BillingAllocationEngine(rent_lookup=self._rent_lookup(list(resolved)))
        drafts = engine.allocate(month, charges, allocation_entries)

        persistence = BillPersistence(self.db)
        wing_config = persistence.upsert_wing_config(month, wing, charges)
        persistence.replace_readings(
            month,
            [
                ReadingRecord(
                    month_key=month,
                    tenancy_id=tenancy.id,
                    prev_reading=item.prev_reading,
                    new_reading=item.new_reading,
                    included=item.included,
                    override_rent=item.override_rent,
                    notes=item.entry.notes or "",
                )
                for tenancy, item in resolved.values()
            ],
        )
        bill_lines = persistence.replace_bill_lines(month, drafts, generated_at=generated_at)

        bill_ids = [bill.id for bill in bill_lines]
        paid_ids = []
        if bill_ids:
            paid_ids = list(
                self.db.execute(
                    select(Payment.bill_line_id).where(Payment.bill_line_id.in_(bill_ids)).distinct()
                ).scalars()
            )
        if paid_ids:
            ReconciliationService(self.db).update_bill_payment_status(paid_ids)

        AuditService.log(
            db=self.db,
            entity_type="billing_run",
            entity_id=wing_config.id,
            action="generate",
            actor_id=actor_id,
            changes={
                "month_key": month,
                "wing": wing,
                "bill_line_ids": bill_ids,
                "unresolved": len(unresolved),
            },
        )
        self.db.commit()

        included = sum(1 for entry in allocation_entries if entry.included)
        logger.info(
            f"Billing saved for {month}/{wing}: {len(bill_lines)} bill lines, {included} included, "
            f"{len(unresolved)} unresolved, {len(paid_ids)} reconciled"
        )
        return BillingResult(bill_lines=bill_lines, wing_config=wing_config, unresolved=unresolved)

    def get_billing_record(self, month_key: str, wing: str) -> BillingRecord:
        """Load the stored inputs of a (month, wing) run so it can be edited and re-run.

        Raises:
            InvalidInputError: Missing/malformed month or wing
        """
        if is_blank(month_key) or is_blank(wing):
            raise InvalidInputError("Missing month or wing")
        month = normalize_month_key(month_key)
        if not is_valid_month_key(month):
            raise InvalidInputError(f"Invalid month key: {month_key!r}")
        wing_label = str(wing).strip()
        wing_key = normalize_wing(wing_label)

        config = BillPersistence(self.db).find_wing_config(month, wing_label)

        tenancies = {
            tenancy.id: tenancy
            for tenancy in self.db.execute(
                select(Tenancy).join(Unit).options(joinedload(Tenancy.unit), joinedload(Tenancy.tenant))
            ).scalars().unique().all()
            if _wing_matches(tenancy, wing_key)
        }

        readings = []
        if tenancies:
            rows = self.db.execute(
                select(TenantMonthlyReading)
                .where(TenantMonthlyReading.tenancy_id.in_(list(tenancies)))
                .order_by(TenantMonthlyReading.id)
            ).scalars().all()
            readings = [row for row in rows if normalize_month_key(row.month_key) == month]

        lookup = self._rent_lookup([reading.tenancy_id for reading in readings])
        tenants = []
        for reading in readings:
            tenancy = tenancies[reading.tenancy_id]
            tenant_name = tenancy.tenant.full_name if tenancy.tenant else ""
            unit = tenancy.unit
            rent = reading.override_rent
            if rent is None:
                rent = lookup(tenancy.id, month)
            tenants.append(
                BillingRecordTenant(
                    tenancy_id=tenancy.id,
                    tenant_key=tenancy.grn_number or tenant_name,
                    tenant_name=tenant_name,
                    unit_number=unit.unit_number or "",
                    floor=unit.floor or "",
                    meter_number=unit.meter_number or "",
                    prev_reading=reading.prev_reading,
                    new_reading=reading.new_reading,
                    included=reading.included,
                    override_rent=reading.override_rent,
                    rent_amount=rent,
                    payable_date=tenancy.rent_payable_day or "",
                )
            )

        return BillingRecord(
            month_key=month,
            month_label=format_month_label(month),
            wing=config.wing if config is not None else wing_label,
            has_config=config is not None,
            has_readings=bool(readings),
            config=config,
            tenants=tenants,
        )


__all__ = [
    "BillingConfig",
    "BillingEntry",
    "BillingRecord",
    "BillingRecordTenant",
    "BillingRequest",
    "BillingResult",
    "BillingService",
    "TenancyIndex",
    "UnresolvedEntry",
    "find_candidate_tenancies",
    "select_wing_tenancies",
]

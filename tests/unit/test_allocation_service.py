"""Unit tests for the billing allocation engine (pure computation, no database)."""

import logging
from decimal import Decimal

import pytest

from rentbook.services.allocation_service import (
    AllocationEntry,
    BillingAllocationEngine,
    WingCharges,
    compute_motor_share,
    resolve_rent_amount,
    round2,
    round_to_nearest,
)

D = Decimal


@pytest.fixture
def may_charges():
    return WingCharges(
        electricity_rate=D("10"),
        sweeping_per_flat=D("50"),
        motor_prev=D("1000"),
        motor_new=D("1050"),
    )


def flat_rent(amount):
    return lambda tenancy_id, month_key: D(amount)


class TestRounding:
    def test_round2_half_up(self):
        assert round2(D("2.345")) == D("2.35")
        assert round2(D("2.344")) == D("2.34")
        assert round2(D("-2.345")) == D("-2.35")

    def test_round_to_nearest_keeps_two_places(self):
        assert round_to_nearest(D("5799.50")) == D("5800.00")
        assert round_to_nearest(D("5799.49")) == D("5799.00")
        assert str(round_to_nearest(D("5800"))) == "5800.00"


class TestMotorShare:
    def test_split_across_included(self, may_charges):
        assert compute_motor_share(may_charges, 2) == D("250.00")

    def test_nobody_included(self, may_charges):
        assert compute_motor_share(may_charges, 0) == D("0.00")

    def test_uneven_split_rounds(self):
        charges = WingCharges(D("7"), D("0"), D("0"), D("10"))
        assert compute_motor_share(charges, 3) == D("23.33")

    def test_negative_motor_units_not_clamped(self):
        charges = WingCharges(D("10"), D("0"), D("1050"), D("1000"))
        assert charges.motor_units == D("-50")
        assert compute_motor_share(charges, 2) == D("-250.00")


class TestRentResolution:
    def test_override_beats_revision(self):
        entry = AllocationEntry(1, D("0"), D("0"), True, override_rent=D("4500"))
        assert resolve_rent_amount(entry, "2024-05", flat_rent("5000")) == D("4500")

    def test_zero_override_is_still_an_override(self):
        entry = AllocationEntry(1, D("0"), D("0"), True, override_rent=D("0"))
        assert resolve_rent_amount(entry, "2024-05", flat_rent("5000")) == D("0")

    def test_revision_used_without_override(self):
        entry = AllocationEntry(1, D("0"), D("0"), True)
        assert resolve_rent_amount(entry, "2024-05", flat_rent("5000")) == D("5000")

    def test_no_revision_means_zero_rent(self):
        entry = AllocationEntry(1, D("0"), D("0"), True)
        assert resolve_rent_amount(entry, "2024-05", lambda tid, month: None) == D("0")


class TestAllocate:
    """Tests for BillingAllocationEngine.allocate."""

    def test_wing_a_may_scenario(self, may_charges):
        engine = BillingAllocationEngine(rent_lookup=flat_rent("5000"))
        first, second = engine.allocate(
            "2024-05",
            may_charges,
            [
                AllocationEntry(1, D("100"), D("150"), True, payable_date="5"),
                AllocationEntry(2, D("120"), D("160"), True, payable_date="5"),
            ],
        )

        assert first.electricity_units == D("50.00")
        assert first.electricity_amount == D("500.00")
        assert second.electricity_amount == D("400.00")
        assert first.motor_share_amount == second.motor_share_amount == D("250.00")
        assert first.sweep_amount == second.sweep_amount == D("50.00")
        assert first.rent_amount == second.rent_amount == D("5000.00")
        assert first.total_amount == D("5800.00")
        assert second.total_amount == D("5700.00")
        assert first.payable_date == "5"
        assert first.amount_paid == D("0.00")
        assert first.is_paid is False

    def test_total_is_rounded_sum_of_rounded_components(self):
        charges = WingCharges(D("7.35"), D("33.333"), D("0"), D("11"))
        engine = BillingAllocationEngine(rent_lookup=flat_rent("4999.99"))
        lines = engine.allocate(
            "2024-05",
            charges,
            [
                AllocationEntry(1, D("10.5"), D("47.25"), True),
                AllocationEntry(2, D("3"), D("4"), True),
                AllocationEntry(3, D("0"), D("9"), True),
            ],
        )
        for line in lines:
            for component in (
                line.rent_amount,
                line.electricity_amount,
                line.motor_share_amount,
                line.sweep_amount,
            ):
                assert component == round2(component)
            expected = round_to_nearest(
                line.rent_amount + line.electricity_amount + line.motor_share_amount + line.sweep_amount
            )
            assert line.total_amount == expected
            assert line.total_amount == line.total_amount.to_integral_value()

    def test_excluded_tenancy_pays_nothing(self, may_charges):
        engine = BillingAllocationEngine(rent_lookup=flat_rent("5000"))
        included, excluded = engine.allocate(
            "2024-05",
            may_charges,
            [
                AllocationEntry(1, D("100"), D("150"), True),
                AllocationEntry(2, D("120"), D("160"), False),
            ],
        )

        assert excluded.electricity_amount == D("0.00")
        assert excluded.motor_share_amount == D("0.00")
        assert excluded.sweep_amount == D("0.00")
        assert excluded.total_amount == D("0.00")
        assert excluded.is_paid is True
        # Kept for reference
        assert excluded.rent_amount == D("5000.00")
        assert excluded.electricity_units == D("40.00")
        # The whole motor cost lands on the single included tenancy
        assert included.motor_share_amount == D("500.00")

    def test_meter_rollback_gives_zero_units(self, may_charges):
        engine = BillingAllocationEngine()
        (line,) = engine.allocate("2024-05", may_charges, [AllocationEntry(1, D("150"), D("100"), True)])
        assert line.electricity_units == D("0.00")
        assert line.electricity_amount == D("0.00")

    @pytest.mark.parametrize("included_count", [1, 2, 3, 6, 7])
    def test_motor_share_sum_bound(self, included_count):
        charges = WingCharges(D("7.77"), D("0"), D("1000"), D("1013"))
        engine = BillingAllocationEngine()
        entries = [AllocationEntry(i, D("0"), D("0"), True) for i in range(included_count)]
        lines = engine.allocate("2024-05", charges, entries)

        total_share = sum(line.motor_share_amount for line in lines)
        expected = round2(charges.motor_units * charges.electricity_rate)
        assert abs(total_share - expected) <= D("0.01") * included_count

    def test_zero_total_is_paid_from_the_start(self):
        charges = WingCharges(D("0"), D("0"), D("0"), D("0"))
        engine = BillingAllocationEngine()
        (line,) = engine.allocate("2024-05", charges, [AllocationEntry(1, D("0"), D("0"), True)])
        assert line.total_amount == D("0.00")
        assert line.is_paid is True

    def test_negative_motor_units_logged(self, caplog):
        charges = WingCharges(D("10"), D("0"), D("1050"), D("1000"))
        engine = BillingAllocationEngine(rent_lookup=flat_rent("5000"))
        with caplog.at_level(logging.WARNING, logger="rentbook.services.allocation_service"):
            (line,) = engine.allocate("2024-05", charges, [AllocationEntry(1, D("0"), D("0"), True)])

        assert "Negative motor units" in caplog.text
        assert line.motor_share_amount == D("-500.00")
        assert line.total_amount == D("4500.00")

    def test_identical_inputs_identical_output(self, may_charges):
        engine = BillingAllocationEngine(rent_lookup=flat_rent("5000"))
        entries = [AllocationEntry(1, D("100"), D("150"), True), AllocationEntry(2, D("120"), D("160"), True)]
        assert engine.allocate("2024-05", may_charges, entries) == engine.allocate(
            "2024-05", may_charges, entries
        )

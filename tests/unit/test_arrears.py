"""Unit tests for the arrears evaluator and late-fee policy"""

import pytest
from datetime import date, timedelta
from decimal import Decimal
from society_billing.domain.arrears import compute_late_fee, evaluate, is_overdue
from society_billing.domain.models import InvoiceState, InvoiceStatus, LateFeePolicy, LateFeeType

DUE = date(2024, 1, 10)


def per_day(max_cap: str | None = None) -> LateFeePolicy:
    return LateFeePolicy(
        fee_type=LateFeeType.PER_DAY,
        amount=Decimal("50"),
        grace_period_days=5,
        max_cap=Decimal(max_cap) if max_cap is not None else None,
    )


def state(total: str = "10000", paid: str = "0", status: InvoiceStatus = InvoiceStatus.PENDING, **kwargs) -> InvoiceState:
    return InvoiceState(
        total_amount=Decimal(total),
        paid_amount=Decimal(paid),
        due_date=DUE,
        status=status,
        **kwargs,
    )


def test_per_day_fee_after_grace():
    """50/day, grace 5, 12 days overdue -> 50 x 7 = 350"""
    assert compute_late_fee(per_day(), Decimal("10000"), 12) == Decimal("350.00")


@pytest.mark.parametrize("days", [0, 1, 5])
def test_no_fee_within_grace(days: int):
    assert compute_late_fee(per_day(), Decimal("10000"), days) == Decimal("0")


def test_percentage_fee_is_flat_percentage():
    """2% of 10,000 -> 200 however long overdue"""
    policy = LateFeePolicy(fee_type=LateFeeType.PERCENTAGE, amount=Decimal("2"))

    assert compute_late_fee(policy, Decimal("10000"), 3) == Decimal("200.00")
    assert compute_late_fee(policy, Decimal("10000"), 300) == Decimal("200.00")


def test_fixed_fee_is_one_time():
    policy = LateFeePolicy(fee_type=LateFeeType.FIXED, amount=Decimal("250"), grace_period_days=3)

    assert compute_late_fee(policy, Decimal("10000"), 4) == Decimal("250.00")
    assert compute_late_fee(policy, Decimal("10000"), 90) == Decimal("250.00")


def test_max_cap_limits_fee():
    """PER_DAY computes 900 (23 days), cap 500 -> 500"""
    assert compute_late_fee(per_day(), Decimal("10000"), 23) == Decimal("900.00")
    assert compute_late_fee(per_day(max_cap="500"), Decimal("10000"), 23) == Decimal("500.00")


def test_inactive_policy_accrues_nothing():
    policy = per_day()
    policy.is_active = False

    assert compute_late_fee(policy, Decimal("10000"), 40) == Decimal("0")
    assert compute_late_fee(None, Decimal("10000"), 40) == Decimal("0")


def test_overdue_only_after_due_date_and_while_open():
    assert not is_overdue(state(), DUE)
    assert is_overdue(state(), DUE + timedelta(days=1))
    assert is_overdue(state(status=InvoiceStatus.PARTIALLY_PAID, paid="100"), DUE + timedelta(days=1))
    assert not is_overdue(state(status=InvoiceStatus.PAID, paid="10000"), DUE + timedelta(days=30))


def test_evaluate_reports_days_and_status():
    result = evaluate(state(), DUE + timedelta(days=12), per_day())

    assert result.is_overdue
    assert result.overdue_days == 12
    assert result.chargeable_days == 7
    assert result.computed_fee == Decimal("350.00")
    assert result.late_fee_accrued == Decimal("350.00")
    assert result.fee_increased
    assert result.status == InvoiceStatus.OVERDUE


def test_partially_paid_invoice_keeps_status_and_uses_unpaid_principal():
    policy = LateFeePolicy(fee_type=LateFeeType.PERCENTAGE, amount=Decimal("2"))
    result = evaluate(
        state(total="10000", paid="4000", status=InvoiceStatus.PARTIALLY_PAID),
        DUE + timedelta(days=20),
        policy,
    )

    assert result.status == InvoiceStatus.PARTIALLY_PAID
    assert result.computed_fee == Decimal("120.00")


def test_evaluation_is_idempotent():
    as_of = DUE + timedelta(days=12)
    first = evaluate(state(), as_of, per_day())
    again = evaluate(state(late_fee_accrued=first.late_fee_accrued), as_of, per_day())

    assert again.late_fee_accrued == first.late_fee_accrued
    assert not again.fee_increased


def test_accrued_fee_never_decreases():
    """A cheaper policy later on leaves the accrued fee alone"""
    cheaper = LateFeePolicy(fee_type=LateFeeType.FIXED, amount=Decimal("100"))
    result = evaluate(state(late_fee_accrued=Decimal("350")), DUE + timedelta(days=12), cheaper)

    assert result.computed_fee == Decimal("100.00")
    assert result.late_fee_accrued == Decimal("350.00")
    assert not result.fee_increased


def test_waived_amount_is_netted_off():
    as_of = DUE + timedelta(days=12)
    waived = state(late_fee_accrued=Decimal("0"), late_fee_waived=Decimal("350"))

    assert evaluate(waived, as_of, per_day()).late_fee_accrued == Decimal("0.00")
    # Fee keeps growing past the waived amount
    later = evaluate(waived, as_of + timedelta(days=2), per_day())
    assert later.late_fee_accrued == Decimal("100.00")


def test_not_overdue_before_due_date():
    result = evaluate(state(), DUE, per_day())

    assert not result.is_overdue
    assert result.overdue_days == 0
    assert result.late_fee_accrued == Decimal("0")
    assert result.status == InvoiceStatus.PENDING

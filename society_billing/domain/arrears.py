"""Arrears evaluator - overdue detection and late-fee policy"""

from datetime import date
from decimal import Decimal
from typing import Optional

from society_billing.domain.models import (
    OPEN_STATUSES,
    ArrearsStatus,
    InvoiceState,
    InvoiceStatus,
    LateFeePolicy,
    LateFeeType,
)
from society_billing.utils.date_utils import days_between
from society_billing.utils.money import ZERO, to_money


def compute_late_fee(policy: Optional[LateFeePolicy], principal: Decimal, overdue_days: int) -> Decimal:
    """
    Late fee owed for an invoice overdue by overdue_days.

    Nothing accrues while the policy is inactive or within the grace period.

    - FIXED:      flat amount, once, however long overdue
    - PERCENTAGE: principal x amount / 100 (amount is percent points, 2 = 2%)
    - PER_DAY:    amount x days past the grace period

    max_cap, when set, is an absolute ceiling on the result.

    Example:
        PER_DAY 50, grace 5, 12 days overdue -> 50 x 7 = 350.00
    """
    if policy is None or not policy.is_active:
        return ZERO
    if overdue_days <= policy.grace_period_days:
        return ZERO

    if policy.fee_type == LateFeeType.FIXED:
        fee = policy.amount
    elif policy.fee_type == LateFeeType.PERCENTAGE:
        fee = principal * policy.amount / Decimal(100)
    elif policy.fee_type == LateFeeType.PER_DAY:
        fee = policy.amount * (overdue_days - policy.grace_period_days)
    else:
        raise ValueError(f"Unknown late fee type: {policy.fee_type}")

    if policy.max_cap is not None:
        fee = min(fee, policy.max_cap)

    return to_money(max(fee, ZERO))


def is_overdue(state: InvoiceState, as_of: date) -> bool:
    return as_of > state.due_date and state.status in OPEN_STATUSES


def evaluate(state: InvoiceState, as_of: date, policy: Optional[LateFeePolicy]) -> ArrearsStatus:
    """
    Evaluate an invoice as of a date.

    The fee is recomputed from scratch on every call, so repeated evaluation with
    the same inputs gives the same answer. The accrued fee only ever moves up:
    a lower computed fee (e.g. after a policy change) leaves the accrued value
    alone. Waived amounts are netted off before comparing.
    """
    overdue = is_overdue(state, as_of)
    overdue_days = max(0, days_between(state.due_date, as_of)) if overdue else 0

    computed_fee = compute_late_fee(policy, state.balance, overdue_days) if overdue else ZERO
    chargeable_days = max(0, overdue_days - policy.grace_period_days) if overdue and policy else 0

    net_fee = max(ZERO, computed_fee - state.late_fee_waived)
    accrued = max(state.late_fee_accrued, net_fee)

    status = state.status
    if overdue and state.paid_amount == 0:
        status = InvoiceStatus.OVERDUE

    return ArrearsStatus(
        is_overdue=overdue,
        overdue_days=overdue_days,
        chargeable_days=chargeable_days,
        computed_fee=computed_fee,
        late_fee_accrued=to_money(accrued),
        fee_increased=accrued > state.late_fee_accrued,
        status=status,
    )

"""Defaulter classification - aging buckets, severity and collections views"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from society_billing.domain.exceptions import ValidationError
from society_billing.domain.models import (
    BucketSummary,
    DefaulterFilters,
    DefaulterRecord,
    DefaulterStats,
    OpenInvoice,
    Severity,
    Unit,
)
from society_billing.utils.date_utils import days_between
from society_billing.utils.money import ZERO, sum_money

# (label, min_days, max_days, severity); max_days None means unbounded
AGING_BUCKETS: Tuple[Tuple[str, int, Optional[int], Severity], ...] = (
    ("0-30", 0, 30, Severity.LOW),
    ("31-60", 31, 60, Severity.MEDIUM),
    ("61-90", 61, 90, Severity.HIGH),
    ("90+", 91, None, Severity.CRITICAL),
)

BUCKET_LABELS = tuple(label for label, _, _, _ in AGING_BUCKETS)


def determine_bucket(due_days: int) -> Tuple[str, Severity]:
    """
    Map days since the oldest open due date to an aging bucket.

    - 0-30:  low
    - 31-60: medium
    - 61-90: high
    - 91+:   critical

    Returns: (bucket_label, severity)
    """
    if due_days <= 30:
        return "0-30", Severity.LOW
    elif due_days <= 60:
        return "31-60", Severity.MEDIUM
    elif due_days <= 90:
        return "61-90", Severity.HIGH
    else:
        return "90+", Severity.CRITICAL


def classify(
    unit: Unit,
    open_invoices: Iterable[OpenInvoice],
    as_of: date,
    reminder_count: int = 0,
    last_reminder_at: Optional[datetime] = None,
    last_payment: Optional[Tuple[date, Decimal]] = None,
) -> Optional[DefaulterRecord]:
    """
    Fold a unit's overdue invoices into one arrears record.

    Returns None when nothing is overdue as of the given date. Amounts sum over
    every overdue invoice; due_days comes from the oldest one and ignores any
    grace period.
    """
    overdue = [inv for inv in open_invoices if as_of > inv.due_date and inv.balance > 0]
    if not overdue:
        return None

    oldest_due = min(inv.due_date for inv in overdue)
    due_days = days_between(oldest_due, as_of)
    bucket, severity = determine_bucket(due_days)

    return DefaulterRecord(
        unit_id=unit.id,
        unit_number=unit.number,
        block=unit.block,
        owner_name=unit.owner_name,
        phone=unit.phone,
        outstanding_amount=sum_money(inv.balance for inv in overdue),
        calculated_late_fees=sum_money(inv.late_fee_accrued for inv in overdue),
        due_days=due_days,
        due_since=oldest_due,
        bucket=bucket,
        severity=severity,
        overdue_invoice_count=len(overdue),
        reminder_count=reminder_count,
        last_reminder_at=last_reminder_at,
        last_payment_date=last_payment[0] if last_payment else None,
        last_payment_amount=last_payment[1] if last_payment else None,
    )


def _matches(record: DefaulterRecord, filters: DefaulterFilters) -> bool:
    if filters.block and record.block.lower() != filters.block.lower():
        return False
    if filters.due_days_bucket and record.bucket != filters.due_days_bucket:
        return False
    # Amount bounds are inclusive on both ends
    if filters.min_amount is not None and record.outstanding_amount < filters.min_amount:
        return False
    if filters.max_amount is not None and record.outstanding_amount > filters.max_amount:
        return False
    if filters.search_text:
        needle = filters.search_text.strip().lower()
        haystack = " ".join(
            part for part in (record.unit_number, record.block, record.owner_name, record.phone) if part
        ).lower()
        if needle not in haystack:
            return False
    return True


def filter_defaulters(records: Iterable[DefaulterRecord], filters: Optional[DefaulterFilters] = None) -> List[DefaulterRecord]:
    """
    Apply filters and order oldest arrears first.

    Ties on due_days fall back to larger outstanding amount, then unit id.
    """
    filters = filters or DefaulterFilters()
    if filters.due_days_bucket and filters.due_days_bucket not in BUCKET_LABELS:
        raise ValidationError(f"Unknown due-days bucket {filters.due_days_bucket!r}")
    if (
        filters.min_amount is not None
        and filters.max_amount is not None
        and filters.min_amount > filters.max_amount
    ):
        raise ValidationError("min_amount cannot exceed max_amount")

    selected = [r for r in records if _matches(r, filters)]
    return sorted(selected, key=lambda r: (-r.due_days, -r.outstanding_amount, r.unit_id))


def summarize(records: Sequence[DefaulterRecord]) -> DefaulterStats:
    """Aggregate totals and per-bucket breakdown"""
    buckets = {label: BucketSummary(count=0, amount=ZERO) for label in BUCKET_LABELS}
    for record in records:
        summary = buckets[record.bucket]
        summary.count += 1
        summary.amount += record.outstanding_amount

    return DefaulterStats(
        total_outstanding=sum_money(r.outstanding_amount for r in records),
        total_late_fees=sum_money(r.calculated_late_fees for r in records),
        total_defaulters=len(records),
        overdue_invoice_count=sum(r.overdue_invoice_count for r in records),
        buckets=buckets,
    )

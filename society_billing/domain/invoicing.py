"""Invoice computation - turns a unit and the society's rules into line items"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional

from society_billing.domain.exceptions import ConfigurationError, ValidationError
from society_billing.domain.models import (
    BillingPeriod,
    CalculationMode,
    ChargeHead,
    ChargeMethod,
    ChargeSelection,
    InvoiceDraft,
    LineItem,
    MaintenanceRule,
    Unit,
)
from society_billing.domain.rules import active_charge_heads, resolve_maintenance_rule
from society_billing.utils.date_utils import clamp_day
from society_billing.utils.money import sum_money, to_money

logger = logging.getLogger(__name__)

MAINTENANCE_LINE = "MAINTENANCE"
CHARGE_LINE = "CHARGE"


def calculate_base_amount(rule: MaintenanceRule, unit: Unit) -> Decimal:
    """
    Base maintenance for a unit under a rule.

    FLAT: the rule amount.
    AREA: rate_per_area x unit.area, rounded half-up to paise.

    Example:
        rate 2.5, area 1000 -> 2500.00
    """
    if rule.mode == CalculationMode.FLAT:
        return to_money(rule.amount)

    if unit.area is None or unit.area <= 0:
        raise ConfigurationError(
            f"Unit {unit.id} has no area but rule {rule.id} is area-based"
        )
    return to_money(rule.rate_per_area * unit.area)


def build_charge_lines(
    charges: Iterable[ChargeHead],
    selection: ChargeSelection,
    warnings: Optional[List[str]] = None,
) -> List[LineItem]:
    """
    Line items for the society's active charge heads.

    - Non-optional FIXED heads are always billed at their default amount.
    - Optional FIXED heads are billed only when listed in selection.optional_ids.
    - VARIABLE heads are billed only with an override amount; without one they
      are skipped and a warning is recorded, never billed as zero.
    """
    if warnings is None:
        warnings = []

    active = active_charge_heads(charges)
    by_id = {c.id: c for c in active}

    for charge_id, amount in selection.overrides.items():
        charge = by_id.get(charge_id)
        if charge is None:
            raise ValidationError(f"Override for unknown or inactive charge {charge_id}")
        if charge.method != ChargeMethod.VARIABLE:
            raise ValidationError(f"Charge {charge.name!r} is FIXED and does not accept an override")
        if amount is None or amount <= 0:
            raise ValidationError(f"Override for charge {charge.name!r} must be > 0")

    for charge_id in selection.optional_ids:
        if charge_id not in by_id:
            raise ValidationError(f"Unknown or inactive optional charge {charge_id}")

    lines: List[LineItem] = []
    for charge in active:
        if charge.method == ChargeMethod.VARIABLE:
            if charge.id not in selection.overrides:
                message = f"Variable charge {charge.name!r} skipped: no amount supplied"
                logger.warning(message, extra={"charge_id": charge.id})
                warnings.append(message)
                continue
            amount = to_money(selection.overrides[charge.id])
        else:
            if charge.is_optional and charge.id not in selection.optional_ids:
                continue
            amount = to_money(charge.default_amount)

        lines.append(
            LineItem(
                kind=CHARGE_LINE,
                description=charge.name,
                amount=amount,
                source_id=charge.id,
                source_snapshot={
                    "method": charge.method.value,
                    "default_amount": str(charge.default_amount),
                    "is_optional": charge.is_optional,
                },
            )
        )

    return lines


def calculate_due_date(period: BillingPeriod, due_day: int):
    """Due date falls on due_day of the billing month, clamped to month end"""
    return clamp_day(period.year, period.month, due_day)


def compute_invoice(
    unit: Unit,
    period: BillingPeriod,
    rules: Iterable[MaintenanceRule],
    charges: Iterable[ChargeHead],
    due_day: int,
    selection: Optional[ChargeSelection] = None,
) -> InvoiceDraft:
    """
    Main entry point: evaluate the rule store for one unit and period.

    The resolved rule and charge values are snapshotted onto each line item so
    later configuration edits never change what was billed.

    Raises:
        ConfigurationError: No rule resolves for the unit type, or an area rule
            applies to a unit without area
        ValidationError: Charge overrides do not match the charge master
    """
    selection = selection or ChargeSelection()
    rule = resolve_maintenance_rule(rules, unit.unit_type)
    base_amount = calculate_base_amount(rule, unit)

    line_items = [
        LineItem(
            kind=MAINTENANCE_LINE,
            description=f"Maintenance ({rule.unit_type}, {rule.mode.value})",
            amount=base_amount,
            source_id=rule.id,
            source_snapshot={
                "unit_type": rule.unit_type,
                "mode": rule.mode.value,
                "amount": str(rule.amount) if rule.amount is not None else None,
                "rate_per_area": str(rule.rate_per_area) if rule.rate_per_area is not None else None,
                "area": str(unit.area) if unit.area is not None else None,
            },
        )
    ]

    warnings: List[str] = []
    line_items.extend(build_charge_lines(charges, selection, warnings))

    return InvoiceDraft(
        unit_id=unit.id,
        billing_period=period,
        due_date=calculate_due_date(period, due_day),
        line_items=line_items,
        total_amount=sum_money(item.amount for item in line_items),
        maintenance_rule_id=rule.id,
        warnings=warnings,
    )

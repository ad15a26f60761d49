"""Unit tests for invoice computation"""

import pytest
from datetime import date
from decimal import Decimal
from society_billing.domain.exceptions import ConfigurationError, ValidationError
from society_billing.domain.invoicing import (
    CHARGE_LINE,
    MAINTENANCE_LINE,
    calculate_base_amount,
    calculate_due_date,
    compute_invoice,
)
from society_billing.domain.models import (
    BillingPeriod,
    CalculationMode,
    ChargeHead,
    ChargeMethod,
    ChargeSelection,
    MaintenanceRule,
    Unit,
)
from society_billing.utils.money import to_money

PERIOD = BillingPeriod(2024, 1)


@pytest.fixture
def unit() -> Unit:
    return Unit(id=7, society_id=1, block="A", number="101", unit_type="2BHK", area=Decimal("1000"))


@pytest.fixture
def rules() -> list[MaintenanceRule]:
    return [
        MaintenanceRule(id=1, unit_type="ALL", mode=CalculationMode.AREA, rate_per_area=Decimal("2.5")),
        MaintenanceRule(id=2, unit_type="VILLA", mode=CalculationMode.FLAT, amount=Decimal("8000")),
    ]


@pytest.fixture
def charges() -> list[ChargeHead]:
    return [
        ChargeHead(id=10, name="Water", default_amount=Decimal("200")),
        ChargeHead(id=11, name="Parking", default_amount=Decimal("500"), is_optional=True),
        ChargeHead(id=12, name="Festival fund", default_amount=Decimal("0"), method=ChargeMethod.VARIABLE),
        ChargeHead(id=13, name="Gym", default_amount=Decimal("300"), is_active=False),
    ]


def test_area_base_amount(unit: Unit, rules: list[MaintenanceRule]):
    """rate 2.5 x area 1000 -> 2500.00"""
    assert calculate_base_amount(rules[0], unit) == Decimal("2500.00")


def test_area_base_amount_rounds_half_up():
    unit = Unit(id=1, society_id=1, block="A", number="1", unit_type="2BHK", area=Decimal("1.5"))
    rule = MaintenanceRule(id=1, unit_type="ALL", mode=CalculationMode.AREA, rate_per_area=Decimal("1.01"))

    # 1.515 -> 1.52 (half-up, not banker's rounding)
    assert calculate_base_amount(rule, unit) == Decimal("1.52")


def test_to_money_rounds_half_up():
    assert to_money(Decimal("2.675")) == Decimal("2.68")
    assert to_money(Decimal("2.665")) == Decimal("2.67")
    assert to_money(2.675) == Decimal("2.68")


def test_area_rule_without_unit_area_is_configuration_error(rules: list[MaintenanceRule]):
    unit = Unit(id=1, society_id=1, block="A", number="1", unit_type="2BHK", area=None)

    with pytest.raises(ConfigurationError):
        calculate_base_amount(rules[0], unit)


def test_invoice_total_equals_sum_of_line_items(unit, rules, charges):
    draft = compute_invoice(unit, PERIOD, rules, charges, due_day=10)

    assert [item.kind for item in draft.line_items] == [MAINTENANCE_LINE, CHARGE_LINE]
    assert [item.amount for item in draft.line_items] == [Decimal("2500.00"), Decimal("200.00")]
    assert draft.total_amount == sum(item.amount for item in draft.line_items)
    assert draft.total_amount == Decimal("2700.00")
    assert draft.maintenance_rule_id == 1
    assert draft.due_date == date(2024, 1, 10)


def test_line_items_snapshot_source_rule(unit, rules, charges):
    draft = compute_invoice(unit, PERIOD, rules, charges, due_day=10)
    maintenance = draft.line_items[0]

    assert maintenance.source_id == 1
    assert maintenance.source_snapshot["mode"] == "AREA"
    assert maintenance.source_snapshot["rate_per_area"] == "2.5"
    assert maintenance.source_snapshot["area"] == "1000"


def test_variable_charge_without_override_is_skipped_with_warning(unit, rules, charges):
    draft = compute_invoice(unit, PERIOD, rules, charges, due_day=10)

    assert all(item.source_id != 12 for item in draft.line_items)
    assert len(draft.warnings) == 1
    assert "Festival fund" in draft.warnings[0]


def test_variable_override_and_optional_charge(unit, rules, charges):
    selection = ChargeSelection(overrides={12: Decimal("750")}, optional_ids={11})
    draft = compute_invoice(unit, PERIOD, rules, charges, due_day=10, selection=selection)

    amounts = {item.source_id: item.amount for item in draft.line_items if item.kind == CHARGE_LINE}
    assert amounts == {10: Decimal("200.00"), 11: Decimal("500.00"), 12: Decimal("750.00")}
    assert draft.total_amount == Decimal("3950.00")
    assert draft.warnings == []


def test_inactive_charge_is_excluded(unit, rules, charges):
    draft = compute_invoice(unit, PERIOD, rules, charges, due_day=10)

    assert all(item.source_id != 13 for item in draft.line_items)


@pytest.mark.parametrize(
    "selection",
    [
        ChargeSelection(overrides={10: Decimal("250")}),  # FIXED head
        ChargeSelection(overrides={12: Decimal("0")}),  # non-positive amount
        ChargeSelection(overrides={99: Decimal("100")}),  # unknown head
        ChargeSelection(optional_ids={13}),  # inactive head
    ],
)
def test_invalid_charge_selection_is_rejected(unit, rules, charges, selection):
    with pytest.raises(ValidationError):
        compute_invoice(unit, PERIOD, rules, charges, due_day=10, selection=selection)


def test_missing_rule_fails_generation(charges):
    unit = Unit(id=1, society_id=1, block="A", number="1", unit_type="SHOP", area=Decimal("100"))
    rules = [MaintenanceRule(id=2, unit_type="VILLA", mode=CalculationMode.FLAT, amount=Decimal("8000"))]

    with pytest.raises(ConfigurationError):
        compute_invoice(unit, PERIOD, rules, charges, due_day=10)


def test_due_date_is_clamped_to_month_end():
    assert calculate_due_date(BillingPeriod(2024, 2), 28) == date(2024, 2, 28)
    assert calculate_due_date(BillingPeriod(2023, 2), 31) == date(2023, 2, 28)


def test_billing_period_parsing():
    assert BillingPeriod.parse("2024-03") == BillingPeriod(2024, 3)
    assert str(BillingPeriod(2024, 3)) == "2024-03"

    with pytest.raises(ValueError):
        BillingPeriod.parse("2024-13")

    with pytest.raises(ValueError):
        BillingPeriod.parse("March 2024")

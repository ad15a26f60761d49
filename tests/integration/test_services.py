"""Integration tests for billing services against the test database"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy.orm import Session
from society_billing.domain import models as domain
from society_billing.domain.exceptions import (
    ConfigurationError,
    DuplicateInvoiceError,
    DuplicateReminderError,
    InvoiceStateError,
    NotFoundError,
    OverpaymentError,
    ValidationError,
)
from society_billing.infrastructure.database.models import EscalationEvent, Invoice
from society_billing.infrastructure.database.repositories import InvoiceRepository
from society_billing.services.arrears import ArrearsService
from society_billing.services.defaulters import DefaulterService
from society_billing.services.escalation import EscalationService
from society_billing.services.invoicing import InvoiceService, make_invoice_no
from society_billing.services.rule_store import RuleStoreService
from tests.conftest import JANUARY, JANUARY_DUE, NOW, SOCIETY_ID, SeededSociety, add_unit


def generate(db: Session, unit_id: int, period: domain.BillingPeriod = JANUARY, **kwargs) -> Invoice:
    invoice = InvoiceService(db).generate_invoice(SOCIETY_ID, unit_id, period, NOW, **kwargs).invoice
    db.commit()
    return invoice


def test_generate_invoice(db: Session, society: SeededSociety):
    result = InvoiceService(db).generate_invoice(SOCIETY_ID, society.flat_unit, JANUARY, NOW)
    db.commit()
    invoice = result.invoice

    assert invoice.invoice_no == f"INV-1-202401-{society.flat_unit}"
    assert invoice.status == "PENDING"
    assert invoice.due_date == JANUARY_DUE
    assert invoice.total_amount == Decimal("3200.00")
    assert invoice.maintenance_rule_id == society.flat_rule
    assert [item.description for item in invoice.line_items] == ["Maintenance (2BHK, FLAT)", "Water"]
    assert invoice.total_amount == sum(item.amount for item in invoice.line_items)
    # Festival fund is VARIABLE and no amount was given
    assert len(result.warnings) == 1


def test_area_rule_fallback(db: Session, society: SeededSociety):
    invoice = generate(db, society.area_unit)

    # 2.5 x 1500 + water 200
    assert invoice.total_amount == Decimal("3950.00")
    assert invoice.maintenance_rule_id == society.area_rule


def test_generation_with_charge_selection(db: Session, society: SeededSociety):
    selection = domain.ChargeSelection(
        overrides={society.festival_charge: Decimal("1000")},
        optional_ids={society.parking_charge},
    )
    invoice = generate(db, society.flat_unit, selection=selection)

    assert invoice.total_amount == Decimal("4700.00")
    assert [item.source_id for item in invoice.line_items[1:]] == [
        society.water_charge,
        society.parking_charge,
        society.festival_charge,
    ]


def test_duplicate_generation_is_rejected(db: Session, society: SeededSociety):
    generate(db, society.flat_unit)

    with pytest.raises(DuplicateInvoiceError):
        InvoiceService(db).generate_invoice(SOCIETY_ID, society.flat_unit, JANUARY, NOW)

    assert db.query(Invoice).filter(Invoice.unit_id == society.flat_unit).count() == 1


def test_concurrent_insert_loser_gets_duplicate_error(db: Session, society: SeededSociety):
    winner = generate(db, society.flat_unit)
    draft = domain.InvoiceDraft(
        unit_id=society.flat_unit,
        billing_period=JANUARY,
        due_date=JANUARY_DUE,
        line_items=[domain.LineItem(kind="MAINTENANCE", description="Maintenance", amount=Decimal("3000"))],
        total_amount=Decimal("3000"),
        maintenance_rule_id=society.flat_rule,
    )

    # Skips the find_live check, as a racing generator would
    with pytest.raises(DuplicateInvoiceError):
        InvoiceRepository(db).create_invoice(
            SOCIETY_ID, draft, make_invoice_no(SOCIETY_ID, society.flat_unit, JANUARY, 1)
        )

    # Savepoint rollback leaves the session usable
    db.commit()
    assert db.query(Invoice).filter(Invoice.unit_id == society.flat_unit).count() == 1
    assert db.query(Invoice).one().id == winner.id


def test_unknown_unit_is_not_found(db: Session, society: SeededSociety):
    with pytest.raises(NotFoundError):
        InvoiceService(db).generate_invoice(SOCIETY_ID, 9999, JANUARY, NOW)

    # Units of another society are invisible
    with pytest.raises(NotFoundError):
        InvoiceService(db).generate_invoice(2, society.flat_unit, JANUARY, NOW)


def test_rule_edit_does_not_touch_existing_invoices(db: Session, society: SeededSociety):
    january = generate(db, society.flat_unit)

    RuleStoreService(db).update_rule(SOCIETY_ID, society.flat_rule, {"amount": Decimal("3500")})
    db.commit()
    february = generate(db, society.flat_unit, domain.BillingPeriod(2024, 2))

    db.refresh(january)
    assert january.total_amount == Decimal("3200.00")
    assert Decimal(january.line_items[0].source_snapshot["amount"]) == Decimal("3000")
    assert february.total_amount == Decimal("3700.00")


def test_deleted_rule_and_charge_are_excluded(db: Session, society: SeededSociety):
    rule_store = RuleStoreService(db)
    rule_store.delete_rule(SOCIETY_ID, society.flat_rule, NOW)
    rule_store.delete_charge(SOCIETY_ID, society.water_charge, NOW)
    db.commit()

    invoice = generate(db, society.flat_unit)

    # 2BHK now falls back to ALL area rule: 2.5 x 1000
    assert invoice.total_amount == Decimal("2500.00")
    assert invoice.maintenance_rule_id == society.area_rule
    assert [r.id for r in rule_store.maintenance_rules(SOCIETY_ID)] == [society.area_rule]


def test_missing_rule_is_configuration_error(db: Session, society: SeededSociety):
    RuleStoreService(db).update_rule(SOCIETY_ID, society.area_rule, {"is_active": False})
    db.commit()

    with pytest.raises(ConfigurationError):
        InvoiceService(db).generate_invoice(SOCIETY_ID, society.shop_unit, JANUARY, NOW)


def test_rule_store_validation(db: Session, society: SeededSociety):
    rule_store = RuleStoreService(db)

    with pytest.raises(ValidationError):
        rule_store.create_rule(
            SOCIETY_ID,
            domain.MaintenanceRule(id=0, unit_type="2BHK", mode=domain.CalculationMode.FLAT, amount=Decimal("4000")),
        )
    with pytest.raises(ValidationError):
        rule_store.update_rule(SOCIETY_ID, society.area_rule, {"rate_per_area": Decimal("0")})
    with pytest.raises(ValidationError):
        rule_store.update_due_day(SOCIETY_ID, 31)


def test_payments_settle_invoice(db: Session, society: SeededSociety):
    """1000 invoice: 400 then 600 -> PARTIALLY_PAID then PAID; a third payment is rejected"""
    RuleStoreService(db).delete_charge(SOCIETY_ID, society.water_charge, NOW)
    db.commit()
    invoice = generate(db, society.shop_unit)
    assert invoice.total_amount == Decimal("1000.00")

    service = EscalationService(db)
    invoice = service.record_payment(SOCIETY_ID, invoice.id, Decimal("400"), "UPI", date(2024, 1, 5), NOW)
    assert invoice.status == "PARTIALLY_PAID"
    assert invoice.paid_amount == Decimal("400.00")

    invoice = service.record_payment(SOCIETY_ID, invoice.id, Decimal("600"), "CASH", date(2024, 1, 8), NOW)
    assert invoice.status == "PAID"
    db.commit()

    with pytest.raises(OverpaymentError):
        service.record_payment(SOCIETY_ID, invoice.id, Decimal("1"), "CASH", date(2024, 1, 9), NOW)

    events = service.history(society.shop_unit)
    assert [e.kind for e in events] == ["MARKED_PAID"]
    assert len(invoice.payments) == 2


def test_overpayment_applies_nothing(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)

    with pytest.raises(OverpaymentError):
        EscalationService(db).record_payment(SOCIETY_ID, invoice.id, Decimal("3200.01"), "UPI", JANUARY_DUE, NOW)

    db.refresh(invoice)
    assert invoice.paid_amount == Decimal("0.00")
    assert invoice.status == "PENDING"


def test_arrears_evaluation_is_idempotent(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    arrears = ArrearsService(db)
    as_of = JANUARY_DUE + timedelta(days=12)

    _, first, increase = arrears.evaluate_invoice(SOCIETY_ID, invoice.id, as_of)
    assert increase == Decimal("350.00")
    assert first.status == domain.InvoiceStatus.OVERDUE

    _, again, increase = arrears.evaluate_invoice(SOCIETY_ID, invoice.id, as_of)
    db.commit()
    assert increase == Decimal("0.00")
    assert invoice.late_fee_accrued == Decimal("350.00")
    assert invoice.status == "OVERDUE"


def test_config_change_only_affects_future_evaluations(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    as_of = JANUARY_DUE + timedelta(days=12)
    ArrearsService(db).evaluate_invoice(SOCIETY_ID, invoice.id, as_of)
    db.commit()

    RuleStoreService(db).update_late_fee_config(
        SOCIETY_ID,
        domain.LateFeePolicy(fee_type=domain.LateFeeType.PER_DAY, amount=Decimal("100"), grace_period_days=5),
    )
    db.commit()
    db.refresh(invoice)
    assert invoice.late_fee_accrued == Decimal("350.00")

    ArrearsService(db).evaluate_invoice(SOCIETY_ID, invoice.id, as_of)
    db.commit()
    assert invoice.late_fee_accrued == Decimal("700.00")


def test_apply_late_fee_logs_only_increases(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    service = EscalationService(db)
    as_of = JANUARY_DUE + timedelta(days=12)

    event = service.apply_late_fee(SOCIETY_ID, invoice.id, as_of, NOW, operator="admin")
    assert event.kind == "LATE_FEE_APPLIED"
    assert event.amount == Decimal("350.00")

    assert service.apply_late_fee(SOCIETY_ID, invoice.id, as_of, NOW) is None
    db.commit()
    assert db.query(EscalationEvent).count() == 1


def test_apply_late_fee_requires_active_policy(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    RuleStoreService(db).update_late_fee_config(
        SOCIETY_ID,
        domain.LateFeePolicy(fee_type=domain.LateFeeType.FIXED, amount=Decimal("100"), is_active=False),
    )
    db.commit()

    with pytest.raises(ConfigurationError):
        EscalationService(db).apply_late_fee(SOCIETY_ID, invoice.id, JANUARY_DUE + timedelta(days=30), NOW)


def test_waiver_reduces_fee_and_is_not_reaccrued(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    service = EscalationService(db)
    as_of = JANUARY_DUE + timedelta(days=12)
    service.apply_late_fee(SOCIETY_ID, invoice.id, as_of, NOW)

    event = service.waive_late_fee(SOCIETY_ID, invoice.id, Decimal("100"), NOW, reason="first offence")
    db.commit()
    assert event.kind == "LATE_FEE_WAIVED"
    assert invoice.late_fee_accrued == Decimal("250.00")
    assert invoice.late_fee_waived == Decimal("100.00")

    assert service.apply_late_fee(SOCIETY_ID, invoice.id, as_of, NOW) is None
    assert invoice.late_fee_accrued == Decimal("250.00")

    with pytest.raises(ValidationError):
        service.waive_late_fee(SOCIETY_ID, invoice.id, Decimal("300"), NOW)


def test_same_day_reminder_is_rejected(db: Session, society: SeededSociety):
    service = EscalationService(db)
    service.record_reminder(SOCIETY_ID, society.flat_unit, domain.ReminderMethod.SMS, NOW, operator="admin")
    db.commit()

    with pytest.raises(DuplicateReminderError):
        service.record_reminder(SOCIETY_ID, society.flat_unit, domain.ReminderMethod.EMAIL, NOW + timedelta(hours=2))

    next_day = datetime(2024, 3, 21, 8, 0, tzinfo=timezone.utc)
    event = service.record_reminder(SOCIETY_ID, society.flat_unit, domain.ReminderMethod.CALL, next_day)
    assert event.method == "CALL"

    # Other units are unaffected
    service.record_reminder(SOCIETY_ID, society.area_unit, domain.ReminderMethod.SMS, NOW)


def test_regenerate_voids_and_replaces(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    EscalationService(db).apply_late_fee(SOCIETY_ID, invoice.id, JANUARY_DUE + timedelta(days=12), NOW)
    RuleStoreService(db).update_rule(SOCIETY_ID, society.flat_rule, {"amount": Decimal("3500")})
    db.commit()

    replacement = InvoiceService(db).regenerate_invoice(SOCIETY_ID, invoice.id, NOW).invoice
    db.commit()
    db.refresh(invoice)

    assert invoice.status == "VOID"
    assert invoice.superseded_by_id == replacement.id
    assert invoice.total_amount == Decimal("3200.00")
    assert replacement.invoice_no == make_invoice_no(SOCIETY_ID, society.flat_unit, JANUARY, 1)
    assert replacement.total_amount == Decimal("3700.00")
    assert replacement.late_fee_accrued == Decimal("350.00")

    with pytest.raises(InvoiceStateError):
        InvoiceService(db).regenerate_invoice(SOCIETY_ID, invoice.id, NOW)
    with pytest.raises(DuplicateInvoiceError):
        InvoiceService(db).generate_invoice(SOCIETY_ID, society.flat_unit, JANUARY, NOW)


def test_paid_invoice_cannot_be_regenerated(db: Session, society: SeededSociety):
    invoice = generate(db, society.flat_unit)
    EscalationService(db).record_payment(SOCIETY_ID, invoice.id, Decimal("100"), "UPI", JANUARY_DUE, NOW)
    db.commit()

    with pytest.raises(InvoiceStateError):
        InvoiceService(db).regenerate_invoice(SOCIETY_ID, invoice.id, NOW)


def test_defaulter_records(db: Session, society: SeededSociety):
    for unit_id in (society.flat_unit, society.area_unit, society.shop_unit):
        generate(db, unit_id)
    february = generate(db, society.shop_unit, domain.BillingPeriod(2024, 2))
    late = add_unit(db, "C", "301", "2BHK", area="900", owner_name="Late Joiner")
    generate(db, late, domain.BillingPeriod(2024, 2))

    escalation = EscalationService(db)
    invoice_ids = {i.unit_id: i.id for i in db.query(Invoice).filter(Invoice.billing_period == "2024-01")}
    escalation.record_payment(SOCIETY_ID, invoice_ids[society.area_unit], Decimal("3950"), "UPI", date(2024, 1, 9), NOW)
    escalation.record_payment(SOCIETY_ID, invoice_ids[society.flat_unit], Decimal("1200"), "UPI", date(2024, 2, 1), NOW)
    db.commit()

    as_of = date(2024, 2, 24)
    records = DefaulterService(db).list(SOCIETY_ID, as_of)

    # Area unit paid in full; flat unit 45 days (Jan 10); shop 45 days with Jan + Feb open
    assert [r.unit_id for r in records] == [society.shop_unit, society.flat_unit, late]
    shop, flat, joiner = records
    assert shop.outstanding_amount == Decimal("2400.00")
    assert shop.overdue_invoice_count == 2
    assert shop.bucket == "31-60"
    assert shop.severity == domain.Severity.MEDIUM
    assert flat.outstanding_amount == Decimal("2000.00")
    assert flat.last_payment_date == date(2024, 2, 1)
    assert flat.last_payment_amount == Decimal("1200.00")
    assert joiner.due_days == 14
    assert joiner.severity == domain.Severity.LOW
    assert february.due_date == date(2024, 2, 10)

    stats = DefaulterService(db).stats(SOCIETY_ID, as_of)
    assert stats.total_defaulters == 3
    assert stats.overdue_invoice_count == 4
    assert stats.total_outstanding == Decimal("7600.00")

"""Data access layer for billing entities"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from society_billing.domain import models as domain
from society_billing.domain.exceptions import DuplicateInvoiceError, NotFoundError
from society_billing.infrastructure.database.models import (
    BillingException,
    ChargeHead,
    EscalationEvent,
    Invoice,
    InvoiceLineItem,
    InvoicePayment,
    LateFeeConfig,
    MaintenanceRule,
    SocietyBillingSettings,
    Unit,
)
from society_billing.utils.date_utils import as_utc

ZERO = Decimal("0.00")
OPEN_STATUS_VALUES = [s.value for s in domain.OPEN_STATUSES]


def unit_to_domain(row: Unit) -> domain.Unit:
    return domain.Unit(
        id=row.id,
        society_id=row.society_id,
        block=row.block,
        number=row.number,
        unit_type=row.unit_type,
        area=row.area,
        owner_name=row.owner_name,
        phone=row.phone,
    )


def rule_to_domain(row: MaintenanceRule) -> domain.MaintenanceRule:
    return domain.MaintenanceRule(
        id=row.id,
        unit_type=row.unit_type,
        mode=domain.CalculationMode(row.mode),
        amount=row.amount,
        rate_per_area=row.rate_per_area,
        is_active=row.is_active,
    )


def charge_to_domain(row: ChargeHead) -> domain.ChargeHead:
    return domain.ChargeHead(
        id=row.id,
        name=row.name,
        default_amount=row.default_amount,
        method=domain.ChargeMethod(row.method),
        is_optional=row.is_optional,
        is_active=row.is_active,
    )


def policy_to_domain(row: Optional[LateFeeConfig]) -> Optional[domain.LateFeePolicy]:
    if row is None:
        return None
    return domain.LateFeePolicy(
        fee_type=domain.LateFeeType(row.fee_type),
        amount=row.amount,
        grace_period_days=row.grace_period_days,
        max_cap=row.max_cap,
        is_active=row.is_active,
    )


def invoice_state(row: Invoice) -> domain.InvoiceState:
    return domain.InvoiceState(
        total_amount=row.total_amount,
        paid_amount=row.paid_amount,
        due_date=row.due_date,
        status=domain.InvoiceStatus(row.status),
        late_fee_accrued=row.late_fee_accrued,
        late_fee_waived=row.late_fee_waived,
    )


def open_invoice(row: Invoice) -> domain.OpenInvoice:
    return domain.OpenInvoice(
        invoice_id=row.id,
        billing_period=row.billing_period,
        due_date=row.due_date,
        balance=row.total_amount - row.paid_amount,
        late_fee_accrued=row.late_fee_accrued,
    )


class UnitRepository:
    """Repository for units (read-only here, the directory owns them)"""

    def __init__(self, db: Session):
        self.db = db

    def get(self, society_id: int, unit_id: int) -> Unit:
        unit = (
            self.db.query(Unit)
            .filter(Unit.society_id == society_id, Unit.id == unit_id)
            .first()
        )
        if unit is None:
            raise NotFoundError(f"Unit {unit_id} not found")
        return unit

    def list_for_society(self, society_id: int, block: Optional[str] = None) -> List[Unit]:
        query = self.db.query(Unit).filter(Unit.society_id == society_id)
        if block:
            query = query.filter(Unit.block == block)
        return query.order_by(Unit.id).all()

    def list_society_ids(self) -> List[int]:
        return [row[0] for row in self.db.query(Unit.society_id).distinct().order_by(Unit.society_id)]


class RuleRepository:
    """Repository for the rule store: maintenance rules, charge master, late-fee config"""

    def __init__(self, db: Session):
        self.db = db

    # Maintenance rules

    def list_rules(self, society_id: int) -> List[MaintenanceRule]:
        return (
            self.db.query(MaintenanceRule)
            .filter(MaintenanceRule.society_id == society_id, MaintenanceRule.deleted_at.is_(None))
            .order_by(MaintenanceRule.id)
            .all()
        )

    def get_rule(self, society_id: int, rule_id: int) -> MaintenanceRule:
        rule = (
            self.db.query(MaintenanceRule)
            .filter(
                MaintenanceRule.society_id == society_id,
                MaintenanceRule.id == rule_id,
                MaintenanceRule.deleted_at.is_(None),
            )
            .first()
        )
        if rule is None:
            raise NotFoundError(f"Maintenance rule {rule_id} not found")
        return rule

    def save_rule(self, society_id: int, rule: domain.MaintenanceRule, row: Optional[MaintenanceRule] = None) -> MaintenanceRule:
        if row is None:
            row = MaintenanceRule(society_id=society_id)
            self.db.add(row)
        row.unit_type = rule.unit_type
        row.mode = rule.mode.value
        row.amount = rule.amount
        row.rate_per_area = rule.rate_per_area
        row.is_active = rule.is_active
        self.db.flush()
        return row

    def delete_rule(self, row: MaintenanceRule, at: datetime) -> None:
        row.is_active = False
        row.deleted_at = at
        self.db.flush()

    # Charge master

    def list_charges(self, society_id: int) -> List[ChargeHead]:
        return (
            self.db.query(ChargeHead)
            .filter(ChargeHead.society_id == society_id, ChargeHead.deleted_at.is_(None))
            .order_by(ChargeHead.id)
            .all()
        )

    def get_charge(self, society_id: int, charge_id: int) -> ChargeHead:
        charge = (
            self.db.query(ChargeHead)
            .filter(
                ChargeHead.society_id == society_id,
                ChargeHead.id == charge_id,
                ChargeHead.deleted_at.is_(None),
            )
            .first()
        )
        if charge is None:
            raise NotFoundError(f"Charge {charge_id} not found")
        return charge

    def save_charge(self, society_id: int, charge: domain.ChargeHead, row: Optional[ChargeHead] = None) -> ChargeHead:
        if row is None:
            row = ChargeHead(society_id=society_id)
            self.db.add(row)
        row.name = charge.name
        row.default_amount = charge.default_amount
        row.method = charge.method.value
        row.is_optional = charge.is_optional
        row.is_active = charge.is_active
        self.db.flush()
        return row

    def delete_charge(self, row: ChargeHead, at: datetime) -> None:
        row.is_active = False
        row.deleted_at = at
        self.db.flush()

    # Late fee config

    def get_late_fee_config(self, society_id: int) -> Optional[LateFeeConfig]:
        return self.db.query(LateFeeConfig).filter(LateFeeConfig.society_id == society_id).first()

    def save_late_fee_config(self, society_id: int, policy: domain.LateFeePolicy) -> LateFeeConfig:
        row = self.get_late_fee_config(society_id)
        if row is None:
            row = LateFeeConfig(society_id=society_id)
            self.db.add(row)
        row.fee_type = policy.fee_type.value
        row.amount = policy.amount
        row.grace_period_days = policy.grace_period_days
        row.max_cap = policy.max_cap
        row.is_active = policy.is_active
        self.db.flush()
        return row

    # Society settings

    def get_settings(self, society_id: int) -> Optional[SocietyBillingSettings]:
        return self.db.get(SocietyBillingSettings, society_id)

    def get_or_create_settings(self, society_id: int, default_due_day: int) -> SocietyBillingSettings:
        row = self.get_settings(society_id)
        if row is None:
            row = SocietyBillingSettings(society_id=society_id, due_day=default_due_day)
            self.db.add(row)
            self.db.flush()
        return row

    def list_finalized_society_ids(self) -> List[int]:
        rows = (
            self.db.query(SocietyBillingSettings.society_id)
            .filter(SocietyBillingSettings.finalized_at.isnot(None))
            .order_by(SocietyBillingSettings.society_id)
        )
        return [row[0] for row in rows]


class InvoiceRepository:
    """Repository for invoices, line items and payments"""

    def __init__(self, db: Session):
        self.db = db

    def create_invoice(
        self,
        society_id: int,
        draft: domain.InvoiceDraft,
        invoice_no: str,
        revision: int = 0,
    ) -> Invoice:
        """
        Persist a computed invoice.

        The (unit_id, live_period) unique constraint serializes concurrent
        generation; the loser gets DuplicateInvoiceError.
        """
        period = str(draft.billing_period)
        db_invoice = Invoice(
            society_id=society_id,
            unit_id=draft.unit_id,
            invoice_no=invoice_no,
            billing_period=period,
            live_period=period,
            revision=revision,
            due_date=draft.due_date,
            status=domain.InvoiceStatus.PENDING.value,
            total_amount=draft.total_amount,
            paid_amount=ZERO,
            late_fee_accrued=ZERO,
            late_fee_waived=ZERO,
            maintenance_rule_id=draft.maintenance_rule_id,
        )
        for position, item in enumerate(draft.line_items):
            db_invoice.line_items.append(
                InvoiceLineItem(
                    position=position,
                    kind=item.kind,
                    description=item.description,
                    amount=item.amount,
                    source_id=item.source_id,
                    source_snapshot=item.source_snapshot,
                )
            )

        try:
            with self.db.begin_nested():
                self.db.add(db_invoice)
                self.db.flush()
        except IntegrityError as e:
            raise DuplicateInvoiceError(
                f"Invoice already exists for unit {draft.unit_id} and period {period}"
            ) from e
        return db_invoice

    def get(self, society_id: int, invoice_id: int, for_update: bool = False) -> Invoice:
        query = self.db.query(Invoice).filter(Invoice.society_id == society_id, Invoice.id == invoice_id)
        if for_update:
            query = query.with_for_update()
        invoice = query.first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")
        return invoice

    def find_live(self, unit_id: int, billing_period: str) -> Optional[Invoice]:
        return (
            self.db.query(Invoice)
            .filter(Invoice.unit_id == unit_id, Invoice.live_period == billing_period)
            .first()
        )

    def count_revisions(self, unit_id: int, billing_period: str) -> int:
        return (
            self.db.query(func.count(Invoice.id))
            .filter(Invoice.unit_id == unit_id, Invoice.billing_period == billing_period)
            .scalar()
        )

    def list_open_for_unit(self, unit_id: int, for_update: bool = False) -> List[Invoice]:
        query = (
            self.db.query(Invoice)
            .filter(Invoice.unit_id == unit_id, Invoice.status.in_(OPEN_STATUS_VALUES))
            .order_by(Invoice.due_date, Invoice.id)
        )
        if for_update:
            query = query.with_for_update()
        return query.all()

    def list_open_for_society(self, society_id: int, as_of: Optional[date] = None) -> List[Invoice]:
        """Open invoices; with as_of, only those already past due"""
        query = self.db.query(Invoice).filter(
            Invoice.society_id == society_id,
            Invoice.status.in_(OPEN_STATUS_VALUES),
        )
        if as_of is not None:
            query = query.filter(Invoice.due_date < as_of)
        return query.order_by(Invoice.unit_id, Invoice.due_date).all()

    def list_open_invoice_ids(self, society_id: int) -> List[Tuple[int, int]]:
        """(unit_id, invoice_id) pairs for every open invoice"""
        rows = (
            self.db.query(Invoice.unit_id, Invoice.id)
            .filter(Invoice.society_id == society_id, Invoice.status.in_(OPEN_STATUS_VALUES))
            .order_by(Invoice.unit_id, Invoice.id)
        )
        return [(unit_id, invoice_id) for unit_id, invoice_id in rows]

    def list_invoices(
        self,
        society_id: int,
        status: Optional[str] = None,
        block: Optional[str] = None,
        search: Optional[str] = None,
        billing_period: Optional[str] = None,
        limit: int = 200,
    ) -> List[Invoice]:
        query = self.db.query(Invoice).join(Unit).filter(Invoice.society_id == society_id)
        if status:
            query = query.filter(Invoice.status == status)
        if block:
            query = query.filter(Unit.block == block)
        if billing_period:
            query = query.filter(Invoice.billing_period == billing_period)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(
                func.lower(Invoice.invoice_no).like(pattern)
                | func.lower(Unit.number).like(pattern)
                | func.lower(func.coalesce(Unit.owner_name, "")).like(pattern)
            )
        return query.order_by(Invoice.due_date.desc(), Invoice.id.desc()).limit(limit).all()

    def add_payment(
        self,
        invoice: Invoice,
        amount: Decimal,
        method: str,
        paid_on: date,
        recorded_by: Optional[str],
    ) -> InvoicePayment:
        payment = InvoicePayment(
            invoice_id=invoice.id,
            unit_id=invoice.unit_id,
            amount=amount,
            method=method,
            paid_on=paid_on,
            recorded_by=recorded_by,
        )
        invoice.payments.append(payment)
        self.db.flush()
        return payment

    def last_payments(self, society_id: int) -> Dict[int, Tuple[date, Decimal]]:
        """Most recent payment per unit"""
        rows = (
            self.db.query(InvoicePayment)
            .join(Invoice, InvoicePayment.invoice_id == Invoice.id)
            .filter(Invoice.society_id == society_id)
            .order_by(InvoicePayment.unit_id, InvoicePayment.paid_on, InvoicePayment.id)
            .all()
        )
        latest: Dict[int, Tuple[date, Decimal]] = {}
        for payment in rows:
            latest[payment.unit_id] = (payment.paid_on, payment.amount)
        return latest

    def status_totals(self, society_id: int) -> List[Tuple[str, int, Decimal, Decimal]]:
        """(status, count, total_amount, paid_amount) for live invoices"""
        rows = (
            self.db.query(
                Invoice.status,
                func.count(Invoice.id),
                func.coalesce(func.sum(Invoice.total_amount), 0),
                func.coalesce(func.sum(Invoice.paid_amount), 0),
            )
            .filter(Invoice.society_id == society_id, Invoice.status != domain.InvoiceStatus.VOID.value)
            .group_by(Invoice.status)
            .all()
        )
        return [(status, count, Decimal(str(total)), Decimal(str(paid))) for status, count, total, paid in rows]


class EscalationRepository:
    """Append-only escalation ledger"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        society_id: int,
        unit_id: int,
        kind: domain.EscalationKind,
        occurred_at: datetime,
        invoice_id: Optional[int] = None,
        method: Optional[str] = None,
        amount: Optional[Decimal] = None,
        note: Optional[str] = None,
        operator: Optional[str] = None,
    ) -> EscalationEvent:
        event = EscalationEvent(
            society_id=society_id,
            unit_id=unit_id,
            invoice_id=invoice_id,
            kind=kind.value,
            method=method,
            amount=amount,
            note=note,
            operator=operator,
            occurred_at=occurred_at,
        )
        self.db.add(event)
        self.db.flush()
        return event

    def list_for_unit(self, unit_id: int, kind: Optional[domain.EscalationKind] = None) -> List[EscalationEvent]:
        query = self.db.query(EscalationEvent).filter(EscalationEvent.unit_id == unit_id)
        if kind is not None:
            query = query.filter(EscalationEvent.kind == kind.value)
        return query.order_by(EscalationEvent.occurred_at.desc(), EscalationEvent.id.desc()).all()

    def reminder_sent_on(self, unit_id: int, day: date) -> bool:
        """Same-day check on stored UTC timestamps"""
        reminders = self.list_for_unit(unit_id, domain.EscalationKind.REMINDER_SENT)
        return any(as_utc(event.occurred_at).date() == day for event in reminders)

    def reminder_summary(self, society_id: int) -> Dict[int, Tuple[int, datetime]]:
        """unit_id -> (reminder count, last reminder time)"""
        rows = (
            self.db.query(
                EscalationEvent.unit_id,
                func.count(EscalationEvent.id),
                func.max(EscalationEvent.occurred_at),
            )
            .filter(
                EscalationEvent.society_id == society_id,
                EscalationEvent.kind == domain.EscalationKind.REMINDER_SENT.value,
            )
            .group_by(EscalationEvent.unit_id)
            .all()
        )
        return {unit_id: (count, last) for unit_id, count, last in rows}


class BillingExceptionRepository:
    """Units that could not be billed, surfaced to the admin"""

    def __init__(self, db: Session):
        self.db = db

    def record(self, society_id: int, unit_id: int, billing_period: str, error_type: str, message: str) -> BillingException:
        existing = (
            self.db.query(BillingException)
            .filter(
                BillingException.unit_id == unit_id,
                BillingException.billing_period == billing_period,
                BillingException.resolved_at.is_(None),
            )
            .first()
        )
        if existing is not None:
            existing.error_type = error_type
            existing.message = message
            self.db.flush()
            return existing

        row = BillingException(
            society_id=society_id,
            unit_id=unit_id,
            billing_period=billing_period,
            error_type=error_type,
            message=message,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def resolve(self, unit_id: int, billing_period: str, at: datetime) -> int:
        rows = (
            self.db.query(BillingException)
            .filter(
                BillingException.unit_id == unit_id,
                BillingException.billing_period == billing_period,
                BillingException.resolved_at.is_(None),
            )
            .all()
        )
        for row in rows:
            row.resolved_at = at
        self.db.flush()
        return len(rows)

    def list_open(self, society_id: int) -> List[BillingException]:
        return (
            self.db.query(BillingException)
            .filter(BillingException.society_id == society_id, BillingException.resolved_at.is_(None))
            .order_by(BillingException.created_at.desc(), BillingException.id.desc())
            .all()
        )

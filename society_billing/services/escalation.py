"""Escalation ledger service - reminders, late fees, waivers and payments"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from society_billing.domain import models as domain
from society_billing.domain.exceptions import (
    DuplicateReminderError,
    InvoiceStateError,
    OverpaymentError,
    ValidationError,
)
from society_billing.domain.rules import require_active_policy
from society_billing.infrastructure.database.models import EscalationEvent, Invoice
from society_billing.infrastructure.database.repositories import (
    EscalationRepository,
    InvoiceRepository,
    UnitRepository,
)
from society_billing.infrastructure.observability.metrics import payment_counter, record_payment, reminder_counter
from society_billing.services.arrears import ArrearsService
from society_billing.utils.date_utils import as_utc
from society_billing.utils.money import to_money

logger = logging.getLogger(__name__)


class EscalationService:
    """Operator actions on defaulting units, each appended to the ledger"""

    def __init__(self, db: Session):
        self.db = db
        self.units = UnitRepository(db)
        self.invoices = InvoiceRepository(db)
        self.events = EscalationRepository(db)
        self.arrears = ArrearsService(db)

    def record_reminder(
        self,
        society_id: int,
        unit_id: int,
        method: domain.ReminderMethod,
        at: datetime,
        operator: Optional[str] = None,
        note: Optional[str] = None,
    ) -> EscalationEvent:
        """
        Log a reminder sent to a unit.

        Raises:
            DuplicateReminderError: The unit already got a reminder the same (UTC) day
        """
        self.units.get(society_id, unit_id)
        at = as_utc(at)
        if self.events.reminder_sent_on(unit_id, at.date()):
            raise DuplicateReminderError(f"Reminder already sent to unit {unit_id} on {at.date().isoformat()}")

        event = self.events.append(
            society_id,
            unit_id,
            domain.EscalationKind.REMINDER_SENT,
            occurred_at=at,
            method=method.value,
            note=note,
            operator=operator,
        )
        reminder_counter.labels(method=method.value).inc()
        return event

    def apply_late_fee(
        self,
        society_id: int,
        invoice_id: int,
        as_of: date,
        at: datetime,
        operator: Optional[str] = None,
    ) -> Optional[EscalationEvent]:
        """
        Evaluate one invoice and log the accrual.

        Returns the LATE_FEE_APPLIED event, or None when the accrued fee did not
        change (repeated application on the same day is a no-op).

        Raises:
            ConfigurationError: Society has no active late-fee configuration
        """
        policy = require_active_policy(self.arrears.rule_store.get_late_fee_config(society_id))
        invoice, arrears, increase = self.arrears.evaluate_invoice(society_id, invoice_id, as_of, policy)
        return self._log_fee(society_id, invoice, arrears, increase, at, operator)

    def apply_late_fees_for_unit(
        self,
        society_id: int,
        unit_id: int,
        as_of: date,
        at: datetime,
        operator: Optional[str] = None,
        require_policy: bool = True,
    ) -> List[Invoice]:
        """
        Evaluate every open invoice of a unit.

        With require_policy=False a missing or inactive policy only refreshes
        overdue statuses, which is what the nightly job wants.
        """
        self.units.get(society_id, unit_id)
        policy = self.arrears.rule_store.get_late_fee_config(society_id)
        if require_policy:
            policy = require_active_policy(policy)

        updated = []
        for invoice in self.invoices.list_open_for_unit(unit_id, for_update=True):
            invoice, arrears, increase = self.arrears.apply(invoice, as_of, policy)
            self._log_fee(society_id, invoice, arrears, increase, at, operator)
            updated.append(invoice)
        return updated

    def _log_fee(self, society_id, invoice, arrears, increase, at, operator) -> Optional[EscalationEvent]:
        if not arrears.fee_increased:
            return None
        return self.events.append(
            society_id,
            invoice.unit_id,
            domain.EscalationKind.LATE_FEE_APPLIED,
            occurred_at=as_utc(at),
            invoice_id=invoice.id,
            amount=increase,
            note=f"{arrears.overdue_days} days overdue, accrued {arrears.late_fee_accrued}",
            operator=operator,
        )

    def waive_late_fee(
        self,
        society_id: int,
        invoice_id: int,
        amount: Decimal,
        at: datetime,
        reason: Optional[str] = None,
        operator: Optional[str] = None,
    ) -> EscalationEvent:
        """Reduce an accrued fee; the waiver is netted off future evaluations"""
        amount = to_money(amount)
        invoice = self.invoices.get(society_id, invoice_id, for_update=True)
        if invoice.status == domain.InvoiceStatus.VOID.value:
            raise InvoiceStateError(f"Invoice {invoice.invoice_no} is void")
        if amount <= 0:
            raise ValidationError("Waiver amount must be > 0")
        if amount > invoice.late_fee_accrued:
            raise ValidationError(
                f"Waiver {amount} exceeds accrued late fee {invoice.late_fee_accrued}"
            )

        invoice.late_fee_accrued = invoice.late_fee_accrued - amount
        invoice.late_fee_waived = invoice.late_fee_waived + amount
        self.db.flush()

        return self.events.append(
            society_id,
            invoice.unit_id,
            domain.EscalationKind.LATE_FEE_WAIVED,
            occurred_at=as_utc(at),
            invoice_id=invoice.id,
            amount=amount,
            note=reason,
            operator=operator,
        )

    def record_payment(
        self,
        society_id: int,
        invoice_id: int,
        amount: Decimal,
        method: str,
        paid_on: date,
        at: datetime,
        operator: Optional[str] = None,
    ) -> Invoice:
        """
        Apply a payment against an invoice's principal.

        Status moves to PARTIALLY_PAID or, once the total is covered, PAID with
        a MARKED_PAID ledger entry. Overpayment is rejected outright; no part of
        the payment is applied.

        Raises:
            OverpaymentError: amount exceeds the remaining balance
            InvoiceStateError: invoice is void
        """
        amount = to_money(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be > 0")

        invoice = self.invoices.get(society_id, invoice_id, for_update=True)
        if invoice.status == domain.InvoiceStatus.VOID.value:
            raise InvoiceStateError(f"Invoice {invoice.invoice_no} is void")

        balance = invoice.total_amount - invoice.paid_amount
        if amount > balance:
            payment_counter.labels(outcome="rejected").inc()
            raise OverpaymentError(
                f"Payment {amount} exceeds remaining balance {balance} on {invoice.invoice_no}"
            )

        invoice.paid_amount = invoice.paid_amount + amount
        self.invoices.add_payment(invoice, amount, method, paid_on, operator)

        settled = invoice.paid_amount >= invoice.total_amount
        if settled:
            invoice.status = domain.InvoiceStatus.PAID.value
            self.events.append(
                society_id,
                invoice.unit_id,
                domain.EscalationKind.MARKED_PAID,
                occurred_at=as_utc(at),
                invoice_id=invoice.id,
                method=method,
                amount=invoice.paid_amount,
                operator=operator,
            )
        else:
            invoice.status = domain.InvoiceStatus.PARTIALLY_PAID.value
        self.db.flush()

        record_payment(settled)
        logger.info(
            "Payment recorded",
            extra={
                "invoice_no": invoice.invoice_no,
                "amount": str(amount),
                "method": method,
                "status": invoice.status,
            },
        )
        return invoice

    def history(self, unit_id: int) -> List[EscalationEvent]:
        return self.events.list_for_unit(unit_id)

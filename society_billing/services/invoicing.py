"""Invoice generator service - persists computed invoices"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from society_billing.domain import models as domain
from society_billing.domain.exceptions import DuplicateInvoiceError, InvoiceStateError
from society_billing.domain.invoicing import compute_invoice
from society_billing.infrastructure.database.models import Invoice
from society_billing.infrastructure.database.repositories import (
    BillingExceptionRepository,
    InvoiceRepository,
    UnitRepository,
    unit_to_domain,
)
from society_billing.infrastructure.observability.logging import log_invoice_generated
from society_billing.infrastructure.observability.metrics import invoices_generated_counter
from society_billing.services.rule_store import RuleStoreService

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    invoice: Invoice
    warnings: List[str] = field(default_factory=list)


def make_invoice_no(society_id: int, unit_id: int, period: domain.BillingPeriod, revision: int = 0) -> str:
    """INV-<society>-<YYYYMM>-<unit>, with -R<n> for regenerated invoices"""
    invoice_no = f"INV-{society_id}-{period.year:04d}{period.month:02d}-{unit_id}"
    if revision:
        invoice_no += f"-R{revision}"
    return invoice_no


class InvoiceService:
    """Generates invoices from the rule store, one per unit and period"""

    def __init__(self, db: Session):
        self.db = db
        self.units = UnitRepository(db)
        self.invoices = InvoiceRepository(db)
        self.exceptions = BillingExceptionRepository(db)
        self.rule_store = RuleStoreService(db)

    def generate_invoice(
        self,
        society_id: int,
        unit_id: int,
        period: domain.BillingPeriod,
        at: datetime,
        selection: Optional[domain.ChargeSelection] = None,
    ) -> GenerationResult:
        """
        Generate the invoice for a unit and billing period.

        Generation is idempotent by rejection: an existing live invoice for the
        same period raises DuplicateInvoiceError and nothing is written.

        Raises:
            ConfigurationError: No maintenance rule resolves for the unit
            DuplicateInvoiceError: Invoice already exists for the period
        """
        unit = self.units.get(society_id, unit_id)
        if self.invoices.find_live(unit_id, str(period)) is not None:
            raise DuplicateInvoiceError(f"Invoice already exists for unit {unit_id} and period {period}")

        return self._create(society_id, unit, period, at, selection)

    def regenerate_invoice(
        self,
        society_id: int,
        invoice_id: int,
        at: datetime,
        selection: Optional[domain.ChargeSelection] = None,
    ) -> GenerationResult:
        """
        Void an invoice and generate its replacement from current rules.

        The voided invoice stays in history pointing at its replacement.
        Accrued and waived late fees carry over so regeneration never erases
        a fee. Invoices with recorded payments cannot be regenerated.
        """
        old = self.invoices.get(society_id, invoice_id, for_update=True)
        if old.status == domain.InvoiceStatus.VOID.value:
            raise InvoiceStateError(f"Invoice {old.invoice_no} is already void")
        if old.paid_amount > 0:
            raise InvoiceStateError(f"Invoice {old.invoice_no} has payments and cannot be regenerated")

        period = domain.BillingPeriod.parse(old.billing_period)
        unit = self.units.get(society_id, old.unit_id)

        old.status = domain.InvoiceStatus.VOID.value
        old.live_period = None
        old.voided_at = at
        self.db.flush()

        result = self._create(society_id, unit, period, at, selection)
        new = result.invoice
        new.late_fee_accrued = old.late_fee_accrued
        new.late_fee_waived = old.late_fee_waived
        old.superseded_by_id = new.id
        self.db.flush()

        logger.info(
            "Invoice regenerated",
            extra={"society_id": society_id, "voided_invoice": old.invoice_no, "new_invoice": new.invoice_no},
        )
        return result

    def _create(self, society_id, unit, period, at, selection) -> GenerationResult:
        draft = compute_invoice(
            unit=unit_to_domain(unit),
            period=period,
            rules=self.rule_store.maintenance_rules(society_id),
            charges=self.rule_store.charge_heads(society_id),
            due_day=self.rule_store.due_day(society_id),
            selection=selection,
        )

        revision = self.invoices.count_revisions(unit.id, str(period))
        invoice = self.invoices.create_invoice(
            society_id,
            draft,
            invoice_no=make_invoice_no(society_id, unit.id, period, revision),
            revision=revision,
        )
        self.exceptions.resolve(unit.id, str(period), at)

        invoices_generated_counter.inc()
        log_invoice_generated(
            society_id,
            unit.id,
            invoice.invoice_no,
            str(period),
            str(invoice.total_amount),
            draft.warnings,
        )
        return GenerationResult(invoice=invoice, warnings=draft.warnings)

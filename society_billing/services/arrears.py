"""Arrears service - applies the evaluator to stored invoices"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from society_billing.domain import models as domain
from society_billing.domain.arrears import evaluate
from society_billing.infrastructure.database.models import Invoice
from society_billing.infrastructure.database.repositories import InvoiceRepository, invoice_state
from society_billing.infrastructure.observability.metrics import late_fee_applied_counter
from society_billing.services.rule_store import RuleStoreService

logger = logging.getLogger(__name__)


class ArrearsService:
    """Evaluates invoices against the society's late-fee policy and writes fees back"""

    def __init__(self, db: Session):
        self.db = db
        self.invoices = InvoiceRepository(db)
        self.rule_store = RuleStoreService(db)

    def evaluate_invoice(
        self,
        society_id: int,
        invoice_id: int,
        as_of: date,
        policy: Optional[domain.LateFeePolicy] = None,
    ) -> Tuple[Invoice, domain.ArrearsStatus, Decimal]:
        """
        Evaluate one invoice under a row lock.

        The row is read with SELECT ... FOR UPDATE so a concurrent payment
        cannot leave the fee computed from a stale paid amount.

        Returns: (invoice, arrears status, fee increase)
        """
        invoice = self.invoices.get(society_id, invoice_id, for_update=True)
        if policy is None:
            policy = self.rule_store.get_late_fee_config(society_id)
        return self.apply(invoice, as_of, policy)

    def apply(
        self,
        invoice: Invoice,
        as_of: date,
        policy: Optional[domain.LateFeePolicy],
    ) -> Tuple[Invoice, domain.ArrearsStatus, Decimal]:
        """Write the evaluation result onto an already-locked invoice row"""
        previous = invoice.late_fee_accrued
        arrears = evaluate(invoice_state(invoice), as_of, policy)

        increase = Decimal("0.00")
        if arrears.fee_increased:
            increase = arrears.late_fee_accrued - previous
            invoice.late_fee_accrued = arrears.late_fee_accrued
            late_fee_applied_counter.inc()
            logger.info(
                "Late fee accrued",
                extra={
                    "invoice_no": invoice.invoice_no,
                    "unit_id": invoice.unit_id,
                    "overdue_days": arrears.overdue_days,
                    "late_fee_accrued": str(arrears.late_fee_accrued),
                    "increase": str(increase),
                },
            )

        if arrears.status.value != invoice.status:
            invoice.status = arrears.status.value

        self.db.flush()
        return invoice, arrears, increase

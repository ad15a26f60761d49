"""
Billing batch jobs.

- Monthly generation: one invoice per unit for a billing period
- Bootstrap: first-time generation once a society's configuration is complete
- Arrears re-evaluation: late fees and overdue status for every open invoice

Each job fans out per unit through run_batch, so one unit's failure (missing
rule, lock timeout) is reported without stopping the rest.
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session, sessionmaker

from society_billing.domain import models as domain
from society_billing.domain.exceptions import ConfigurationError, DuplicateInvoiceError, SetupAlreadyFinalizedError
from society_billing.infrastructure.database.repositories import (
    BillingExceptionRepository,
    InvoiceRepository,
    UnitRepository,
)
from society_billing.infrastructure.observability.metrics import generation_failure_counter
from society_billing.jobs.batch import SKIPPED, SUCCEEDED, BatchOptions, BatchResult, run_batch
from society_billing.services.escalation import EscalationService
from society_billing.services.invoicing import InvoiceService
from society_billing.services.rule_store import RuleStoreService

logger = logging.getLogger(__name__)

SYSTEM_OPERATOR = "system"


def generate_for_society(
    society_id: int,
    period: domain.BillingPeriod,
    session_factory: sessionmaker,
    at: datetime,
    block: Optional[str] = None,
    selection: Optional[domain.ChargeSelection] = None,
    options: Optional[BatchOptions] = None,
) -> BatchResult:
    """Generate invoices for every unit (optionally one block) of a society"""
    with session_factory() as db:
        unit_ids = [unit.id for unit in UnitRepository(db).list_for_society(society_id, block)]

    def work(db: Session, unit_id: int) -> str:
        try:
            InvoiceService(db).generate_invoice(society_id, unit_id, period, at, selection)
        except DuplicateInvoiceError:
            return SKIPPED
        return SUCCEEDED

    def on_failure(db: Session, unit_id: int, error: Exception) -> None:
        generation_failure_counter.labels(reason=type(error).__name__).inc()
        BillingExceptionRepository(db).record(
            society_id,
            unit_id,
            str(period),
            error_type=type(error).__name__,
            message=str(error),
        )

    return run_batch(
        "generate_invoices",
        society_id,
        unit_ids,
        work,
        session_factory,
        options=options,
        on_failure=on_failure,
    )


def finalize_society(
    db: Session,
    society_id: int,
    period: domain.BillingPeriod,
    session_factory: sessionmaker,
    at: datetime,
    options: Optional[BatchOptions] = None,
) -> BatchResult:
    """
    One-time bootstrap: mark configuration complete and bill every unit.

    Raises:
        SetupAlreadyFinalizedError: Bootstrap already ran for the society
        ConfigurationError: No active maintenance rule is configured
    """
    rule_store = RuleStoreService(db)
    billing_settings = rule_store.get_settings(society_id)
    if billing_settings.finalized_at is not None:
        raise SetupAlreadyFinalizedError(f"Billing setup for society {society_id} is already finalized")
    if not any(rule.is_active for rule in rule_store.maintenance_rules(society_id)):
        raise ConfigurationError("Configure at least one active maintenance rule before finalizing")

    billing_settings.finalized_at = at
    db.commit()
    logger.info("Billing setup finalized", extra={"society_id": society_id, "billing_period": str(period)})

    return generate_for_society(society_id, period, session_factory, at, options=options)


def evaluate_arrears_for_society(
    society_id: int,
    as_of: date,
    session_factory: sessionmaker,
    at: datetime,
    options: Optional[BatchOptions] = None,
) -> BatchResult:
    """Re-evaluate every open invoice, unit by unit"""
    with session_factory() as db:
        unit_ids = sorted({unit_id for unit_id, _ in InvoiceRepository(db).list_open_invoice_ids(society_id)})

    def work(db: Session, unit_id: int) -> str:
        updated = EscalationService(db).apply_late_fees_for_unit(
            society_id,
            unit_id,
            as_of,
            at,
            operator=SYSTEM_OPERATOR,
            require_policy=False,
        )
        return SUCCEEDED if updated else SKIPPED

    return run_batch("evaluate_arrears", society_id, unit_ids, work, session_factory, options=options)

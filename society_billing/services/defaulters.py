"""Defaulter service - read-time arrears projection over invoices and the ledger"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from society_billing.domain import models as domain
from society_billing.domain.defaulters import classify, filter_defaulters, summarize
from society_billing.infrastructure.database.models import EscalationEvent, Invoice
from society_billing.infrastructure.database.repositories import (
    EscalationRepository,
    InvoiceRepository,
    UnitRepository,
    open_invoice,
    unit_to_domain,
)


@dataclass
class DefaulterDetail:
    record: Optional[domain.DefaulterRecord]
    open_invoices: List[Invoice] = field(default_factory=list)
    history: List[EscalationEvent] = field(default_factory=list)


class DefaulterService:
    """Builds DefaulterRecords on every read; nothing here is stored"""

    def __init__(self, db: Session):
        self.units = UnitRepository(db)
        self.invoices = InvoiceRepository(db)
        self.events = EscalationRepository(db)

    def records(self, society_id: int, as_of: date) -> List[domain.DefaulterRecord]:
        """One record per unit with at least one overdue open invoice"""
        by_unit: Dict[int, List[domain.OpenInvoice]] = defaultdict(list)
        for invoice in self.invoices.list_open_for_society(society_id, as_of=as_of):
            by_unit[invoice.unit_id].append(open_invoice(invoice))
        if not by_unit:
            return []

        reminders = self.events.reminder_summary(society_id)
        payments = self.invoices.last_payments(society_id)

        records = []
        for unit in self.units.list_for_society(society_id):
            if unit.id not in by_unit:
                continue
            count, last_at = reminders.get(unit.id, (0, None))
            record = classify(
                unit_to_domain(unit),
                by_unit[unit.id],
                as_of,
                reminder_count=count,
                last_reminder_at=last_at,
                last_payment=payments.get(unit.id),
            )
            if record is not None:
                records.append(record)
        return records

    def list(
        self,
        society_id: int,
        as_of: date,
        filters: Optional[domain.DefaulterFilters] = None,
    ) -> List[domain.DefaulterRecord]:
        """Filtered defaulters, oldest arrears first"""
        return filter_defaulters(self.records(society_id, as_of), filters)

    def stats(self, society_id: int, as_of: date) -> domain.DefaulterStats:
        return summarize(self.records(society_id, as_of))

    def classify_unit(self, society_id: int, unit_id: int, as_of: date) -> Optional[domain.DefaulterRecord]:
        unit = self.units.get(society_id, unit_id)
        open_invoices = [open_invoice(i) for i in self.invoices.list_open_for_unit(unit_id)]
        reminders = self.events.list_for_unit(unit_id, domain.EscalationKind.REMINDER_SENT)
        payments = self.invoices.last_payments(society_id)
        return classify(
            unit_to_domain(unit),
            open_invoices,
            as_of,
            reminder_count=len(reminders),
            last_reminder_at=reminders[0].occurred_at if reminders else None,
            last_payment=payments.get(unit_id),
        )

    def detail(self, society_id: int, unit_id: int, as_of: date) -> DefaulterDetail:
        record = self.classify_unit(society_id, unit_id, as_of)
        return DefaulterDetail(
            record=record,
            open_invoices=self.invoices.list_open_for_unit(unit_id),
            history=self.events.list_for_unit(unit_id),
        )

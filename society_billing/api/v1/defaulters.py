"""Defaulter endpoints - collections views, reminders and late-fee escalation"""

import csv
import io
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from society_billing.api.dependencies import get_notifier, get_now, get_operator, get_request_id, get_society_id
from society_billing.api.v1.schemas import (
    DefaulterDetailResponse,
    DefaulterListResponse,
    DefaulterRecordResponse,
    DefaulterStatsResponse,
    EscalationEventResponse,
    InvoiceResponse,
    ReminderRequest,
)
from society_billing.domain.defaulters import summarize
from society_billing.domain.models import DefaulterFilters
from society_billing.infrastructure.clients.notifier import ReminderNotifier
from society_billing.infrastructure.database.session import get_db
from society_billing.services.defaulters import DefaulterService
from society_billing.services.escalation import EscalationService

router = APIRouter()

EXPORT_COLUMNS = (
    "unit_number",
    "block",
    "owner_name",
    "phone",
    "outstanding_amount",
    "calculated_late_fees",
    "due_days",
    "bucket",
    "severity",
    "overdue_invoice_count",
    "reminder_count",
    "last_payment_date",
)


def _filters(
    block: Optional[str] = Query(None),
    due_days_bucket: Optional[str] = Query(None, alias="dueDaysBucket", description="0-30, 31-60, 61-90 or 90+"),
    min_amount: Optional[Decimal] = Query(None, alias="minAmount"),
    max_amount: Optional[Decimal] = Query(None, alias="maxAmount"),
    search: Optional[str] = Query(None),
) -> DefaulterFilters:
    return DefaulterFilters(
        block=block,
        due_days_bucket=due_days_bucket,
        min_amount=min_amount,
        max_amount=max_amount,
        search_text=search,
    )


@router.get("/defaulters", response_model=DefaulterListResponse)
def list_defaulters(
    filters: DefaulterFilters = Depends(_filters),
    as_of: Optional[date] = Query(None, alias="asOf"),
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Units with overdue invoices, oldest arrears first.

    Stats are computed over the filtered result so they match the list shown.
    """
    records = DefaulterService(db).list(society_id, as_of or now.date(), filters)
    return DefaulterListResponse(
        defaulters=[DefaulterRecordResponse.model_validate(r) for r in records],
        stats=DefaulterStatsResponse.model_validate(summarize(records)),
    )


@router.get("/defaulters/stats", response_model=DefaulterStatsResponse)
def get_defaulter_stats(
    as_of: Optional[date] = Query(None, alias="asOf"),
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    stats = DefaulterService(db).stats(society_id, as_of or now.date())
    return DefaulterStatsResponse.model_validate(stats)


@router.get("/defaulters/export")
def export_defaulters(
    filters: DefaulterFilters = Depends(_filters),
    as_of: Optional[date] = Query(None, alias="asOf"),
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Download the filtered defaulter list as CSV"""
    as_of = as_of or now.date()
    records = DefaulterService(db).list(society_id, as_of, filters)

    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    for record in records:
        row = []
        for column in EXPORT_COLUMNS:
            value = getattr(record, column)
            row.append("" if value is None else getattr(value, "value", value))
        writer.writerow(row)

    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="defaulters-{society_id}-{as_of.isoformat()}.csv"'},
    )


@router.get("/defaulters/{unit_id}", response_model=DefaulterDetailResponse)
def get_defaulter(
    unit_id: int,
    as_of: Optional[date] = Query(None, alias="asOf"),
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Arrears record of one unit with its open invoices and escalation history"""
    detail = DefaulterService(db).detail(society_id, unit_id, as_of or now.date())
    return DefaulterDetailResponse(
        unit_id=unit_id,
        record=DefaulterRecordResponse.model_validate(detail.record) if detail.record else None,
        open_invoices=[InvoiceResponse.from_row(i) for i in detail.open_invoices],
        history=[EscalationEventResponse.model_validate(e) for e in detail.history],
    )


@router.post("/defaulters/{unit_id}/reminder", response_model=EscalationEventResponse)
def send_reminder(
    unit_id: int,
    body: ReminderRequest,
    background_tasks: BackgroundTasks,
    request: Request,
    society_id: int = Depends(get_society_id),
    operator: Optional[str] = Depends(get_operator),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
    notifier: ReminderNotifier = Depends(get_notifier),
):
    """
    Log a reminder for a unit and hand it to the messaging webhook.

    At most one reminder per unit per day; a second one is a 409.
    """
    service = EscalationService(db)
    event = service.record_reminder(society_id, unit_id, body.method, now, operator=operator, note=body.note)
    db.commit()

    if notifier.enabled:
        record = DefaulterService(db).classify_unit(society_id, unit_id, now.date())
        background_tasks.add_task(
            notifier.send_reminder,
            {
                "event": "REMINDER_SENT",
                "event_id": event.id,
                "society_id": society_id,
                "unit_id": unit_id,
                "method": body.method.value,
                "outstanding_amount": str(record.outstanding_amount) if record else "0.00",
                "late_fees": str(record.calculated_late_fees) if record else "0.00",
                "phone": record.phone if record else None,
            },
        )

    logging.info(
        "Reminder recorded",
        extra={"request_id": get_request_id(request), "unit_id": unit_id, "method": body.method.value},
    )
    return EscalationEventResponse.model_validate(event)


@router.post("/defaulters/{unit_id}/late-fee", response_model=List[InvoiceResponse])
def apply_late_fee(
    unit_id: int,
    as_of: Optional[date] = Query(None, alias="asOf"),
    society_id: int = Depends(get_society_id),
    operator: Optional[str] = Depends(get_operator),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Evaluate every open invoice of a unit and accrue late fees.

    Repeating the call for the same day does not accrue twice. Requires an
    active late-fee configuration (422 otherwise).
    """
    invoices = EscalationService(db).apply_late_fees_for_unit(
        society_id,
        unit_id,
        as_of or now.date(),
        now,
        operator=operator,
    )
    db.commit()
    return [InvoiceResponse.from_row(i) for i in invoices]

"""Invoice endpoints - queries, payments, regeneration and late-fee waivers"""

import logging
from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from society_billing.api.dependencies import get_now, get_operator, get_request_id, get_society_id
from society_billing.api.v1.schemas import (
    BILLING_PERIOD_PATTERN,
    ChargeSelectionRequest,
    EscalationEventResponse,
    GenerateInvoiceRequest,
    InvoiceResponse,
    InvoiceStatsResponse,
    PaymentRequest,
    WaiveLateFeeRequest,
)
from society_billing.domain.models import OPEN_STATUSES, BillingPeriod, InvoiceStatus
from society_billing.infrastructure.database.repositories import InvoiceRepository
from society_billing.infrastructure.database.session import get_db
from society_billing.services.escalation import EscalationService
from society_billing.services.invoicing import InvoiceService
from society_billing.utils.money import sum_money

router = APIRouter()

OPEN_STATUS_VALUES = {s.value for s in OPEN_STATUSES}


@router.get("/invoices", response_model=List[InvoiceResponse])
def list_invoices(
    status: Optional[InvoiceStatus] = Query(None),
    block: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Invoice number, unit number or owner"),
    billing_period: Optional[str] = Query(None, alias="billingPeriod", pattern=BILLING_PERIOD_PATTERN),
    limit: int = Query(200, ge=1, le=1000),
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    invoices = InvoiceRepository(db).list_invoices(
        society_id,
        status=status.value if status else None,
        block=block,
        search=search,
        billing_period=billing_period,
        limit=limit,
    )
    return [InvoiceResponse.from_row(invoice) for invoice in invoices]


@router.post("/invoices", response_model=InvoiceResponse, status_code=201)
def generate_invoice(
    body: GenerateInvoiceRequest,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Generate the invoice of one unit for a billing period.

    An existing invoice for the same unit and period is a 409; use
    regenerate to replace it.
    """
    result = InvoiceService(db).generate_invoice(
        society_id,
        body.unit_id,
        BillingPeriod.parse(body.billing_period),
        now,
        body.to_selection(),
    )
    db.commit()
    return InvoiceResponse.from_row(result.invoice, result.warnings)


@router.get("/invoices/stats", response_model=InvoiceStatsResponse)
def get_invoice_stats(
    as_of: Optional[date] = Query(None, alias="asOf"),
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Collection totals for live invoices.

    Returns:
        Invoiced, collected and pending amounts, plus the unpaid balance and
        count of invoices past their due date as of the given day
    """
    as_of = as_of or now.date()
    repo = InvoiceRepository(db)
    totals = repo.status_totals(society_id)
    overdue = repo.list_open_for_society(society_id, as_of=as_of)

    return InvoiceStatsResponse(
        total_invoiced=sum_money(total for _, _, total, _ in totals),
        total_collected=sum_money(paid for _, _, _, paid in totals),
        total_pending=sum_money(total - paid for status, _, total, paid in totals if status in OPEN_STATUS_VALUES),
        overdue_amount=sum_money(i.total_amount - i.paid_amount for i in overdue),
        overdue_count=len(overdue),
        by_status={status: count for status, count, _, _ in totals},
    )


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
def get_invoice(
    invoice_id: int,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    return InvoiceResponse.from_row(InvoiceRepository(db).get(society_id, invoice_id))


@router.post("/invoices/{invoice_id}/payment", response_model=InvoiceResponse)
def record_payment(
    invoice_id: int,
    body: PaymentRequest,
    request: Request,
    society_id: int = Depends(get_society_id),
    operator: Optional[str] = Depends(get_operator),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Apply a payment against an invoice.

    Overpayment is rejected as a whole (422); nothing is applied.
    """
    invoice = EscalationService(db).record_payment(
        society_id,
        invoice_id,
        amount=body.amount,
        method=body.method,
        paid_on=body.paid_on or now.date(),
        at=now,
        operator=operator,
    )
    db.commit()
    logging.info(
        "Payment accepted",
        extra={"request_id": get_request_id(request), "invoice_id": invoice_id, "status": invoice.status},
    )
    return InvoiceResponse.from_row(invoice)


@router.post("/invoices/{invoice_id}/regenerate", response_model=InvoiceResponse)
def regenerate_invoice(
    invoice_id: int,
    body: Optional[ChargeSelectionRequest] = None,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """Void the invoice and bill the same unit and period again from current rules"""
    selection = body.to_selection() if body is not None else None
    result = InvoiceService(db).regenerate_invoice(society_id, invoice_id, now, selection)
    db.commit()
    return InvoiceResponse.from_row(result.invoice, result.warnings)


@router.post("/invoices/{invoice_id}/waive-late-fee", response_model=EscalationEventResponse)
def waive_late_fee(
    invoice_id: int,
    body: WaiveLateFeeRequest,
    society_id: int = Depends(get_society_id),
    operator: Optional[str] = Depends(get_operator),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    event = EscalationService(db).waive_late_fee(
        society_id,
        invoice_id,
        amount=body.amount,
        at=now,
        reason=body.reason,
        operator=operator,
    )
    db.commit()
    return EscalationEventResponse.model_validate(event)

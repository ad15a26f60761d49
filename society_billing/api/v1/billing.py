"""Billing run endpoints - bootstrap, bulk generation, bulk late fees and exceptions"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from society_billing.api.dependencies import (
    get_batch_options,
    get_now,
    get_request_id,
    get_session_factory,
    get_society_id,
)
from society_billing.api.v1.schemas import (
    ApplyLateFeesRequest,
    BatchResultResponse,
    BillingExceptionResponse,
    FinalizeRequest,
    GenerateRequest,
)
from society_billing.domain.models import BillingPeriod
from society_billing.infrastructure.database.repositories import BillingExceptionRepository
from society_billing.infrastructure.database.session import get_db
from society_billing.jobs.batch import BatchOptions, BatchResult
from society_billing.jobs.billing_jobs import evaluate_arrears_for_society, finalize_society, generate_for_society

router = APIRouter()


def _batch_response(result: BatchResult) -> BatchResultResponse:
    return BatchResultResponse(**result.summary())


@router.post("/billing/finalize", response_model=BatchResultResponse)
def finalize_billing(
    request: Request,
    body: Optional[FinalizeRequest] = None,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    session_factory: sessionmaker = Depends(get_session_factory),
    options: BatchOptions = Depends(get_batch_options),
    now: datetime = Depends(get_now),
):
    """
    One-time bootstrap: lock in the configuration and bill every unit.

    Flow:
    1. Reject if the society was already finalized (409)
    2. Require at least one active maintenance rule (422)
    3. Mark the society finalized
    4. Generate invoices for the requested (default: current) period

    Units that cannot be billed are reported in the result and listed under
    billing/exceptions.
    """
    period = (
        BillingPeriod.parse(body.billing_period)
        if body is not None and body.billing_period
        else BillingPeriod.containing(now.date())
    )
    result = finalize_society(db, society_id, period, session_factory, now, options)
    logging.info(
        "Billing finalized",
        extra={"request_id": get_request_id(request), "society_id": society_id, **result.summary()},
    )
    return _batch_response(result)


@router.post("/billing/generate", response_model=BatchResultResponse)
def generate_invoices(
    body: GenerateRequest,
    society_id: int = Depends(get_society_id),
    session_factory: sessionmaker = Depends(get_session_factory),
    options: BatchOptions = Depends(get_batch_options),
    now: datetime = Depends(get_now),
):
    """Generate invoices for every unit (or one block); already-billed units are skipped"""
    result = generate_for_society(
        society_id,
        BillingPeriod.parse(body.billing_period),
        session_factory,
        now,
        block=body.block,
        selection=body.to_selection(),
        options=options,
    )
    return _batch_response(result)


@router.post("/billing/late-fees/apply", response_model=BatchResultResponse)
def apply_late_fees(
    body: Optional[ApplyLateFeesRequest] = None,
    society_id: int = Depends(get_society_id),
    session_factory: sessionmaker = Depends(get_session_factory),
    options: BatchOptions = Depends(get_batch_options),
    now: datetime = Depends(get_now),
):
    """Re-evaluate every open invoice of the society, as the nightly job does"""
    as_of = body.as_of if body is not None and body.as_of else now.date()
    result = evaluate_arrears_for_society(society_id, as_of, session_factory, now, options)
    return _batch_response(result)


@router.get("/billing/exceptions", response_model=List[BillingExceptionResponse])
def list_billing_exceptions(
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    """Units that could not be billed and still need admin attention"""
    return [BillingExceptionResponse.model_validate(e) for e in BillingExceptionRepository(db).list_open(society_id)]

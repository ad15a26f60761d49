"""
Background scheduler for the billing cycle.

- Nightly arrears evaluation for every finalized society
- Monthly invoice generation on the configured day

Jobs iterate societies one by one; a failing society is logged and the
run moves on to the next.
"""

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler

from society_billing.config import settings
from society_billing.domain.models import BillingPeriod
from society_billing.infrastructure.database.repositories import RuleRepository
from society_billing.infrastructure.database.session import SessionLocal
from society_billing.jobs.billing_jobs import evaluate_arrears_for_society, generate_for_society

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(
    jobstores={"default": MemoryJobStore()},
    executors={"default": ThreadPoolExecutor(2)},
    job_defaults={
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 3600,
    },
    timezone=settings.scheduler_timezone,
)


def _finalized_societies():
    with SessionLocal() as db:
        return RuleRepository(db).list_finalized_society_ids()


def _local_date(at: datetime) -> date:
    # Calendar day in the zone the cron triggers fire in
    return at.astimezone(ZoneInfo(settings.scheduler_timezone)).date()


def run_nightly_arrears() -> None:
    at = datetime.now(timezone.utc)
    as_of = _local_date(at)
    for society_id in _finalized_societies():
        try:
            result = evaluate_arrears_for_society(society_id, as_of, SessionLocal, at)
            logger.info("Arrears run finished", extra={"society_id": society_id, **result.summary()})
        except Exception as e:
            logger.error(f"Arrears run failed for society {society_id}: {e}")


def run_monthly_generation() -> None:
    at = datetime.now(timezone.utc)
    period = BillingPeriod.containing(_local_date(at))
    for society_id in _finalized_societies():
        try:
            result = generate_for_society(society_id, period, SessionLocal, at)
            logger.info("Generation run finished", extra={"society_id": society_id, **result.summary()})
        except Exception as e:
            logger.error(f"Generation run failed for society {society_id}: {e}")


def start_scheduler() -> None:
    if scheduler.running:
        return

    scheduler.add_job(
        run_nightly_arrears,
        "cron",
        hour=settings.arrears_job_hour,
        minute=0,
        id="nightly_arrears",
        name="Nightly arrears evaluation",
        replace_existing=True,
    )
    scheduler.add_job(
        run_monthly_generation,
        "cron",
        day=settings.generation_job_day,
        hour=settings.generation_job_hour,
        minute=0,
        id="monthly_generation",
        name="Monthly invoice generation",
        replace_existing=True,
    )

    scheduler.start()
    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Billing scheduler stopped")

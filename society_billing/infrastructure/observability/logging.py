"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List

from pythonjsonlogger import jsonlogger

from society_billing.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_invoice_generated(
    society_id: int,
    unit_id: int,
    invoice_no: str,
    billing_period: str,
    total_amount: str,
    warnings: List[str],
) -> None:
    """Log structured generation outcome for audit"""
    logging.getLogger("society_billing.invoices").info(
        "Invoice generated",
        extra={
            "society_id": society_id,
            "unit_id": unit_id,
            "invoice_no": invoice_no,
            "billing_period": billing_period,
            "total_amount": total_amount,
            "step": "invoice_generated",
            "warning_count": len(warnings),
        },
    )


def log_batch_run(job: str, society_id: int, succeeded: int, skipped: int, failed: int, duration_ms: float) -> None:
    """Log batch job summary"""
    logging.getLogger("society_billing.jobs").info(
        "Batch run completed",
        extra={
            "job": job,
            "society_id": society_id,
            "succeeded": succeeded,
            "skipped": skipped,
            "failed": failed,
            "duration_ms": duration_ms,
        },
    )

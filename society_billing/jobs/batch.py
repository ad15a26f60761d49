"""Per-unit batch runner with isolation, bounded retries and parallelism"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from society_billing.config import settings
from society_billing.domain.exceptions import TransientStoreError
from society_billing.infrastructure.observability.logging import log_batch_run
from society_billing.infrastructure.observability.metrics import batch_retry_counter, batch_unit_counter

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"

RETRYABLE_ERRORS = (OperationalError, TransientStoreError, TimeoutError)

UnitWork = Callable[[Session, int], str]
FailureHook = Callable[[Session, int, Exception], None]


@dataclass
class BatchOptions:
    max_workers: int = settings.batch_max_workers
    max_retries: int = settings.batch_max_retries
    backoff_base: float = settings.batch_backoff_base


@dataclass
class BatchResult:
    """Outcome of one batch run; failures are reported, never dropped"""

    job: str
    succeeded: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)
    failed: Dict[int, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    def summary(self) -> Dict[str, object]:
        return {
            "job": self.job,
            "succeeded": len(self.succeeded),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "errors": {str(unit_id): error for unit_id, error in self.failed.items()},
        }


def is_retryable(error: Exception) -> bool:
    if isinstance(error, DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, RETRYABLE_ERRORS)


def run_unit(
    job: str,
    unit_id: int,
    work: UnitWork,
    session_factory: sessionmaker,
    options: BatchOptions,
    on_failure: Optional[FailureHook] = None,
) -> tuple[str, Optional[str]]:
    """
    Run work for one unit in its own session and transaction.

    Transient store errors are retried with exponential backoff up to
    options.max_retries attempts; anything else fails the unit immediately.

    Returns: (outcome, error description)
    """
    attempt = 0
    while True:
        db = session_factory()
        try:
            outcome = work(db, unit_id)
            db.commit()
            return outcome, None

        except Exception as e:
            db.rollback()
            attempt += 1

            if is_retryable(e) and attempt < options.max_retries:
                batch_retry_counter.labels(job=job).inc()
                backoff = options.backoff_base * (2 ** (attempt - 1))
                logger.warning(
                    f"Retrying unit after transient error: {e}",
                    extra={"job": job, "unit_id": unit_id, "attempt": attempt},
                )
                time.sleep(backoff)
                continue

            error = f"{type(e).__name__}: {e}"
            logger.error(f"Unit failed: {error}", extra={"job": job, "unit_id": unit_id, "attempts": attempt})
            if on_failure is not None:
                _record_failure(on_failure, session_factory, unit_id, e)
            return FAILED, error

        finally:
            db.close()


def _record_failure(on_failure: FailureHook, session_factory: sessionmaker, unit_id: int, error: Exception) -> None:
    db = session_factory()
    try:
        on_failure(db, unit_id, error)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Could not record failure for unit {unit_id}: {e}")
    finally:
        db.close()


def run_batch(
    job: str,
    society_id: int,
    unit_ids: Iterable[int],
    work: UnitWork,
    session_factory: sessionmaker,
    options: Optional[BatchOptions] = None,
    on_failure: Optional[FailureHook] = None,
) -> BatchResult:
    """
    Run work for every unit independently and in parallel.

    Units share nothing, so one unit failing never aborts the others.
    """
    options = options or BatchOptions()
    start_time = time.time()
    unit_ids = list(unit_ids)
    result = BatchResult(job=job)

    with ThreadPoolExecutor(max_workers=max(1, options.max_workers)) as pool:
        futures = {
            unit_id: pool.submit(run_unit, job, unit_id, work, session_factory, options, on_failure)
            for unit_id in unit_ids
        }
        for unit_id, future in futures.items():
            outcome, error = future.result()
            batch_unit_counter.labels(job=job, outcome=outcome).inc()
            if outcome == SUCCEEDED:
                result.succeeded.append(unit_id)
            elif outcome == SKIPPED:
                result.skipped.append(unit_id)
            else:
                result.failed[unit_id] = error

    result.duration_ms = (time.time() - start_time) * 1000
    log_batch_run(job, society_id, len(result.succeeded), len(result.skipped), len(result.failed), result.duration_ms)
    return result

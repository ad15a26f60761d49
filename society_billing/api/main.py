"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from society_billing.api.dependencies import get_request_id
from society_billing.api.middleware import MetricsMiddleware, RequestIDMiddleware
from society_billing.api.v1 import billing, billing_config, defaulters, invoices
from society_billing.config import settings
from society_billing.domain.exceptions import (
    ConfigurationError,
    DomainException,
    DuplicateInvoiceError,
    DuplicateReminderError,
    InvoiceStateError,
    NotFoundError,
    OverpaymentError,
    SetupAlreadyFinalizedError,
    TransientStoreError,
    ValidationError,
)
from society_billing.infrastructure.observability.logging import setup_logging
from society_billing.jobs.scheduler import shutdown_scheduler, start_scheduler

# Setup structured logging
setup_logging(settings.log_level)

# Most specific first; anything else derived from DomainException is a 500
ERROR_STATUS = (
    (NotFoundError, 404),
    (DuplicateInvoiceError, 409),
    (DuplicateReminderError, 409),
    (SetupAlreadyFinalizedError, 409),
    (InvoiceStateError, 409),
    (ValidationError, 422),
    (OverpaymentError, 422),
    (ConfigurationError, 422),
    (TransientStoreError, 503),
)


def status_for(error: DomainException) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(error, error_type):
            return status_code
    return 500


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    status_code = status_for(exc)
    log = logging.error if status_code >= 500 else logging.warning
    log(
        f"{type(exc).__name__}: {exc}",
        extra={"request_id": get_request_id(request), "path": request.url.path},
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.scheduler_enabled:
        start_scheduler()
    yield
    shutdown_scheduler()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Society Billing Engine",
        description="Maintenance billing, arrears and defaulter collections service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(billing_config.router, prefix="/v1", tags=["billing-config"])
    app.include_router(billing.router, prefix="/v1", tags=["billing"])
    app.include_router(invoices.router, prefix="/v1", tags=["invoices"])
    app.include_router(defaulters.router, prefix="/v1", tags=["defaulters"])

    return app


app = create_app()

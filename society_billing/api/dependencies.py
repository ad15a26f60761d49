"""Dependency injection for FastAPI endpoints"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import Header, Request
from sqlalchemy.orm import sessionmaker

from society_billing.infrastructure.clients.notifier import ReminderNotifier
from society_billing.infrastructure.database.session import SessionLocal
from society_billing.jobs.batch import BatchOptions


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_society_id(x_society_id: int = Header(..., alias="X-Society-ID", gt=0)) -> int:
    """Society the request is scoped to"""
    return x_society_id


def get_operator(x_operator: Optional[str] = Header(None, alias="X-Operator")) -> Optional[str]:
    """Operator identity recorded on ledger entries, set by the auth gateway"""
    return x_operator


def get_now() -> datetime:
    """Request timestamp; the engine itself never reads the clock"""
    return datetime.now(timezone.utc)


def get_session_factory() -> sessionmaker:
    """Session factory for batch runs that open one session per unit"""
    return SessionLocal


def get_batch_options() -> BatchOptions:
    return BatchOptions()


def get_notifier() -> ReminderNotifier:
    """Provide reminder webhook client instance"""
    return ReminderNotifier()

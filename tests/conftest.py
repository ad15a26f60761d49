"""Pytest fixtures for testing"""

import pytest
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from society_billing.api.dependencies import get_batch_options, get_notifier, get_now, get_session_factory
from society_billing.api.main import create_app
from society_billing.domain import models as domain
from society_billing.infrastructure.clients.notifier import ReminderNotifier
from society_billing.infrastructure.database.models import Base, Unit
from society_billing.infrastructure.database.session import get_db
from society_billing.jobs.batch import BatchOptions
from society_billing.services.rule_store import RuleStoreService


# Test database
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

SOCIETY_ID = 1
NOW = datetime(2024, 3, 20, 9, 30, tzinfo=timezone.utc)
JANUARY = domain.BillingPeriod(2024, 1)
JANUARY_DUE = date(2024, 1, 10)

# SQLite allows one writer; run batches serially and without backoff sleeps
TEST_BATCH_OPTIONS = BatchOptions(max_workers=1, max_retries=2, backoff_base=0.0)


@dataclass
class SeededSociety:
    society_id: int
    flat_unit: int  # A-101, 2BHK, billed by the FLAT 2BHK rule
    area_unit: int  # A-102, 3BHK, falls back to the ALL area rule
    shop_unit: int  # B-201, SHOP, falls back to the ALL area rule
    flat_rule: int
    area_rule: int
    water_charge: int
    parking_charge: int
    festival_charge: int


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestingSessionLocal
    app.dependency_overrides[get_batch_options] = lambda: TEST_BATCH_OPTIONS
    app.dependency_overrides[get_now] = lambda: NOW
    app.dependency_overrides[get_notifier] = lambda: ReminderNotifier(webhook_url="")
    return TestClient(app, headers={"X-Society-ID": str(SOCIETY_ID), "X-Operator": "admin@society"})


def add_unit(
    db: Session,
    block: str,
    number: str,
    unit_type: str,
    area: str | None = None,
    owner_name: str | None = None,
    phone: str | None = None,
    society_id: int = SOCIETY_ID,
) -> int:
    unit = Unit(
        society_id=society_id,
        block=block,
        number=number,
        unit_type=unit_type,
        area=Decimal(area) if area is not None else None,
        owner_name=owner_name,
        phone=phone,
    )
    db.add(unit)
    db.commit()
    return unit.id


@pytest.fixture
def society(db: Session) -> SeededSociety:
    """
    Society with three units and a complete billing configuration.

    - 2BHK FLAT 3000, ALL AREA 2.5 per sq ft
    - Water 200 (fixed), Parking 500 (optional), Festival fund (variable)
    - PER_DAY late fee 50, grace 5 days, capped at 500
    - Invoices due on the 10th
    """
    flat_unit = add_unit(db, "A", "101", "2BHK", area="1000", owner_name="Asha Rao", phone="9800000101")
    area_unit = add_unit(db, "A", "102", "3BHK", area="1500", owner_name="Vikram Shah", phone="9800000102")
    shop_unit = add_unit(db, "B", "201", "SHOP", area="400", owner_name="Meera Iyer", phone="9800000201")

    rule_store = RuleStoreService(db)
    flat_rule = rule_store.create_rule(
        SOCIETY_ID,
        domain.MaintenanceRule(id=0, unit_type="2BHK", mode=domain.CalculationMode.FLAT, amount=Decimal("3000")),
    )
    area_rule = rule_store.create_rule(
        SOCIETY_ID,
        domain.MaintenanceRule(id=0, unit_type="ALL", mode=domain.CalculationMode.AREA, rate_per_area=Decimal("2.5")),
    )
    water = rule_store.create_charge(SOCIETY_ID, domain.ChargeHead(id=0, name="Water", default_amount=Decimal("200")))
    parking = rule_store.create_charge(
        SOCIETY_ID,
        domain.ChargeHead(id=0, name="Parking", default_amount=Decimal("500"), is_optional=True),
    )
    festival = rule_store.create_charge(
        SOCIETY_ID,
        domain.ChargeHead(
            id=0,
            name="Festival fund",
            default_amount=Decimal("0"),
            method=domain.ChargeMethod.VARIABLE,
        ),
    )
    rule_store.update_late_fee_config(
        SOCIETY_ID,
        domain.LateFeePolicy(
            fee_type=domain.LateFeeType.PER_DAY,
            amount=Decimal("50"),
            grace_period_days=5,
            max_cap=Decimal("500"),
        ),
    )
    rule_store.update_due_day(SOCIETY_ID, 10)
    db.commit()

    return SeededSociety(
        society_id=SOCIETY_ID,
        flat_unit=flat_unit,
        area_unit=area_unit,
        shop_unit=shop_unit,
        flat_rule=flat_rule.id,
        area_rule=area_rule.id,
        water_charge=water.id,
        parking_charge=parking.id,
        festival_charge=festival.id,
    )

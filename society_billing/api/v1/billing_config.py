"""Rule store endpoints - maintenance rules, charge master, late-fee policy and billing settings"""

from datetime import datetime

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from society_billing.api.dependencies import get_now, get_society_id
from society_billing.api.v1.schemas import (
    BillingConfigResponse,
    BillingSettingsResponse,
    BillingSettingsUpdate,
    ChargeHeadCreate,
    ChargeHeadResponse,
    ChargeHeadUpdate,
    LateFeeConfigRequest,
    LateFeeConfigResponse,
    MaintenanceRuleCreate,
    MaintenanceRuleResponse,
    MaintenanceRuleUpdate,
)
from society_billing.domain import models as domain
from society_billing.infrastructure.database.session import get_db
from society_billing.services.rule_store import RuleStoreService

router = APIRouter()


def _settings_response(row) -> BillingSettingsResponse:
    return BillingSettingsResponse(due_day_of_month=row.due_day, finalized_at=row.finalized_at)


@router.get("/billing-config", response_model=BillingConfigResponse)
def get_billing_config(
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    """
    Full billing configuration of a society.

    Returns:
        Maintenance rules, charge master, late-fee policy and billing settings
    """
    rule_store = RuleStoreService(db)
    late_fee = rule_store.repo.get_late_fee_config(society_id)
    response = BillingConfigResponse(
        maintenance_rules=[MaintenanceRuleResponse.model_validate(r) for r in rule_store.repo.list_rules(society_id)],
        charges=[ChargeHeadResponse.model_validate(c) for c in rule_store.repo.list_charges(society_id)],
        late_fee_config=LateFeeConfigResponse.model_validate(late_fee) if late_fee is not None else None,
        settings=_settings_response(rule_store.get_settings(society_id)),
    )
    db.commit()
    return response


@router.post("/maintenance-rules", response_model=MaintenanceRuleResponse, status_code=status.HTTP_201_CREATED)
def create_maintenance_rule(
    body: MaintenanceRuleCreate,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    rule = domain.MaintenanceRule(
        id=0,
        unit_type=body.unit_type,
        mode=body.mode,
        amount=body.amount,
        rate_per_area=body.rate_per_area,
        is_active=body.is_active,
    )
    row = RuleStoreService(db).create_rule(society_id, rule)
    db.commit()
    return MaintenanceRuleResponse.model_validate(row)


@router.put("/maintenance-rules/{rule_id}", response_model=MaintenanceRuleResponse)
def update_maintenance_rule(
    rule_id: int,
    body: MaintenanceRuleUpdate,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    """Edit a rule; invoices already generated keep the values they were billed with"""
    row = RuleStoreService(db).update_rule(society_id, rule_id, body.model_dump(exclude_unset=True))
    db.commit()
    return MaintenanceRuleResponse.model_validate(row)


@router.delete("/maintenance-rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_maintenance_rule(
    rule_id: int,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    RuleStoreService(db).delete_rule(society_id, rule_id, now)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/charges", response_model=ChargeHeadResponse, status_code=status.HTTP_201_CREATED)
def create_charge(
    body: ChargeHeadCreate,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    charge = domain.ChargeHead(
        id=0,
        name=body.name,
        default_amount=body.default_amount,
        method=body.method,
        is_optional=body.is_optional,
        is_active=body.is_active,
    )
    row = RuleStoreService(db).create_charge(society_id, charge)
    db.commit()
    return ChargeHeadResponse.model_validate(row)


@router.put("/charges/{charge_id}", response_model=ChargeHeadResponse)
def update_charge(
    charge_id: int,
    body: ChargeHeadUpdate,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    row = RuleStoreService(db).update_charge(society_id, charge_id, body.model_dump(exclude_unset=True))
    db.commit()
    return ChargeHeadResponse.model_validate(row)


@router.delete("/charges/{charge_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_charge(
    charge_id: int,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    RuleStoreService(db).delete_charge(society_id, charge_id, now)
    db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/late-fee-config", response_model=LateFeeConfigResponse)
def update_late_fee_config(
    body: LateFeeConfigRequest,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    """Replace the society's late-fee policy; fees already accrued are untouched"""
    policy = domain.LateFeePolicy(
        fee_type=body.fee_type,
        amount=body.amount,
        grace_period_days=body.grace_period_days,
        max_cap=body.max_cap,
        is_active=body.is_active,
    )
    row = RuleStoreService(db).update_late_fee_config(society_id, policy)
    db.commit()
    return LateFeeConfigResponse.model_validate(row)


@router.get("/billing-settings", response_model=BillingSettingsResponse)
def get_billing_settings(
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    row = RuleStoreService(db).get_settings(society_id)
    db.commit()
    return _settings_response(row)


@router.put("/billing-settings", response_model=BillingSettingsResponse)
def update_billing_settings(
    body: BillingSettingsUpdate,
    society_id: int = Depends(get_society_id),
    db: Session = Depends(get_db),
):
    row = RuleStoreService(db).update_due_day(society_id, body.due_day_of_month)
    db.commit()
    return _settings_response(row)

"""Rule store service - billing configuration CRUD and lookups"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from society_billing.config import settings
from society_billing.domain import models as domain
from society_billing.domain.exceptions import ValidationError
from society_billing.domain.rules import (
    active_charge_heads,
    check_active_rule_conflict,
    resolve_maintenance_rule,
    validate_charge_head,
    validate_late_fee_policy,
    validate_maintenance_rule,
)
from society_billing.infrastructure.database.models import ChargeHead, LateFeeConfig, MaintenanceRule, SocietyBillingSettings
from society_billing.infrastructure.database.repositories import (
    RuleRepository,
    charge_to_domain,
    policy_to_domain,
    rule_to_domain,
)

logger = logging.getLogger(__name__)


class RuleStoreService:
    """Validated access to maintenance rules, charge master and late-fee policy"""

    def __init__(self, db: Session):
        self.repo = RuleRepository(db)

    # Lookups used by generation and evaluation

    def maintenance_rules(self, society_id: int) -> List[domain.MaintenanceRule]:
        return [rule_to_domain(r) for r in self.repo.list_rules(society_id)]

    def resolve_maintenance_rule(self, society_id: int, unit_type: str) -> domain.MaintenanceRule:
        return resolve_maintenance_rule(self.maintenance_rules(society_id), unit_type)

    def charge_heads(self, society_id: int) -> List[domain.ChargeHead]:
        return [charge_to_domain(c) for c in self.repo.list_charges(society_id)]

    def list_active_charge_heads(self, society_id: int) -> List[domain.ChargeHead]:
        return active_charge_heads(self.charge_heads(society_id))

    def get_late_fee_config(self, society_id: int) -> Optional[domain.LateFeePolicy]:
        return policy_to_domain(self.repo.get_late_fee_config(society_id))

    def get_settings(self, society_id: int) -> SocietyBillingSettings:
        return self.repo.get_or_create_settings(society_id, settings.default_due_day)

    def due_day(self, society_id: int) -> int:
        row = self.repo.get_settings(society_id)
        return row.due_day if row is not None else settings.default_due_day

    # Maintenance rules

    def create_rule(self, society_id: int, rule: domain.MaintenanceRule) -> MaintenanceRule:
        rule = validate_maintenance_rule(rule)
        check_active_rule_conflict(rule, self.maintenance_rules(society_id))
        row = self.repo.save_rule(society_id, rule)
        logger.info("Maintenance rule created", extra={"society_id": society_id, "rule_id": row.id})
        return row

    def update_rule(self, society_id: int, rule_id: int, changes: Dict[str, Any]) -> MaintenanceRule:
        """Apply a partial update; existing invoices keep their snapshots"""
        row = self.repo.get_rule(society_id, rule_id)
        rule = replace(rule_to_domain(row), **changes)
        rule = validate_maintenance_rule(rule)
        check_active_rule_conflict(rule, self.maintenance_rules(society_id))
        return self.repo.save_rule(society_id, rule, row)

    def delete_rule(self, society_id: int, rule_id: int, at: datetime) -> None:
        row = self.repo.get_rule(society_id, rule_id)
        self.repo.delete_rule(row, at)
        logger.info("Maintenance rule deleted", extra={"society_id": society_id, "rule_id": rule_id})

    # Charge master

    def create_charge(self, society_id: int, charge: domain.ChargeHead) -> ChargeHead:
        charge = validate_charge_head(charge)
        return self.repo.save_charge(society_id, charge)

    def update_charge(self, society_id: int, charge_id: int, changes: Dict[str, Any]) -> ChargeHead:
        row = self.repo.get_charge(society_id, charge_id)
        charge = validate_charge_head(replace(charge_to_domain(row), **changes))
        return self.repo.save_charge(society_id, charge, row)

    def delete_charge(self, society_id: int, charge_id: int, at: datetime) -> None:
        row = self.repo.get_charge(society_id, charge_id)
        self.repo.delete_charge(row, at)

    # Late fee policy and calendar

    def update_late_fee_config(self, society_id: int, policy: domain.LateFeePolicy) -> LateFeeConfig:
        """Replace the society's policy; only future evaluations see it"""
        policy = validate_late_fee_policy(policy)
        row = self.repo.save_late_fee_config(society_id, policy)
        logger.info(
            "Late fee config updated",
            extra={"society_id": society_id, "fee_type": policy.fee_type.value, "is_active": policy.is_active},
        )
        return row

    def update_due_day(self, society_id: int, due_day: int) -> SocietyBillingSettings:
        if not 1 <= due_day <= 28:
            raise ValidationError("due_day must be between 1 and 28")
        row = self.get_settings(society_id)
        row.due_day = due_day
        self.repo.db.flush()
        return row

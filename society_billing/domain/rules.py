"""Rule store logic - validation and resolution of billing configuration"""

from typing import Iterable, List, Optional

from society_billing.domain.exceptions import ConfigurationError, ValidationError
from society_billing.domain.models import (
    ALL_UNIT_TYPES,
    CalculationMode,
    ChargeHead,
    ChargeMethod,
    LateFeePolicy,
    LateFeeType,
    MaintenanceRule,
)


def normalize_unit_type(unit_type: str) -> str:
    return unit_type.strip().upper()


def validate_maintenance_rule(rule: MaintenanceRule) -> MaintenanceRule:
    """
    Check a rule before it is persisted.

    FLAT rules need amount > 0, AREA rules need rate_per_area > 0. The field
    that does not apply to the mode is cleared so only one value is meaningful.
    """
    if not rule.unit_type or not rule.unit_type.strip():
        raise ValidationError("unit_type is required")
    rule.unit_type = normalize_unit_type(rule.unit_type)
    if rule.is_active is None:
        raise ValidationError("is_active must be true or false")

    if rule.mode == CalculationMode.FLAT:
        if rule.amount is None or rule.amount <= 0:
            raise ValidationError("FLAT rules require amount > 0")
        rule.rate_per_area = None
    elif rule.mode == CalculationMode.AREA:
        if rule.rate_per_area is None or rule.rate_per_area <= 0:
            raise ValidationError("AREA rules require rate_per_area > 0")
        rule.amount = None
    else:
        raise ValidationError(f"Unknown calculation mode: {rule.mode}")

    return rule


def check_active_rule_conflict(rule: MaintenanceRule, existing: Iterable[MaintenanceRule]) -> None:
    """At most one active rule per unit-type scope"""
    if not rule.is_active:
        return
    for other in existing:
        if other.id != rule.id and other.is_active and other.unit_type == rule.unit_type:
            raise ValidationError(
                f"Active rule {other.id} already covers unit type {rule.unit_type}; deactivate it first"
            )


def validate_charge_head(charge: ChargeHead) -> ChargeHead:
    if not charge.name or not charge.name.strip():
        raise ValidationError("Charge name is required")
    charge.name = charge.name.strip()
    if charge.method is None:
        raise ValidationError("Charge method is required")
    if charge.is_optional is None or charge.is_active is None:
        raise ValidationError("is_optional and is_active must be true or false")
    if charge.default_amount is None or charge.default_amount < 0:
        raise ValidationError("default_amount must be >= 0")
    if charge.method == ChargeMethod.FIXED and charge.default_amount == 0:
        raise ValidationError("FIXED charges require default_amount > 0")
    return charge


def validate_late_fee_policy(policy: LateFeePolicy) -> LateFeePolicy:
    if policy.grace_period_days is None or policy.grace_period_days < 0:
        raise ValidationError("grace_period_days must be >= 0")
    if policy.amount is None or policy.amount < 0:
        raise ValidationError("amount must be >= 0")
    if policy.fee_type == LateFeeType.PERCENTAGE and policy.amount > 100:
        raise ValidationError("PERCENTAGE amount is a percent value and cannot exceed 100")
    if policy.max_cap is not None and policy.max_cap < 0:
        raise ValidationError("max_cap must be >= 0")
    return policy


def resolve_maintenance_rule(rules: Iterable[MaintenanceRule], unit_type: str) -> MaintenanceRule:
    """
    Pick the rule that applies to a unit type.

    Precedence: exact active match, then the active ALL rule. A missing rule is
    a configuration error, never a zero-amount bill.
    """
    wanted = normalize_unit_type(unit_type) if unit_type else ""
    fallback: Optional[MaintenanceRule] = None

    for rule in sorted(rules, key=lambda r: r.id):
        if not rule.is_active:
            continue
        if rule.unit_type == wanted:
            return rule
        if rule.unit_type == ALL_UNIT_TYPES and fallback is None:
            fallback = rule

    if fallback is None:
        raise ConfigurationError(f"No active maintenance rule for unit type {wanted or '<none>'}")
    return fallback


def active_charge_heads(charges: Iterable[ChargeHead]) -> List[ChargeHead]:
    """Active charge heads in stable line-item order"""
    return sorted((c for c in charges if c.is_active), key=lambda c: c.id)


def require_active_policy(policy: Optional[LateFeePolicy]) -> LateFeePolicy:
    if policy is None or not policy.is_active:
        raise ConfigurationError("No active late-fee configuration for this society")
    return policy

"""Pydantic schemas for API request/response validation"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from society_billing.domain.models import (
    ALL_UNIT_TYPES,
    CalculationMode,
    ChargeMethod,
    ChargeSelection,
    LateFeeType,
    ReminderMethod,
    Severity,
)
from society_billing.utils.money import to_money


# Currency is stored as Numeric(12, 2) and sent as a plain JSON number, so
# trailing zeros drop on the wire (2500.00 -> 2500.0)
def _money_json(value: Decimal) -> float:
    return float(to_money(value))


# Area rates keep four decimal places (Numeric(12, 4))
def _rate_json(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP))


Money = Annotated[Decimal, PlainSerializer(_money_json, return_type=float, when_used="json")]
Rate = Annotated[Decimal, PlainSerializer(_rate_json, return_type=float, when_used="json")]

BILLING_PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# Rule store


class MaintenanceRuleCreate(CamelModel):
    """Request body for POST /v1/maintenance-rules"""

    unit_type: str = Field(ALL_UNIT_TYPES, min_length=1, description="Unit type tag or ALL")
    mode: CalculationMode
    amount: Optional[Decimal] = Field(None, description="Flat amount (FLAT mode)")
    rate_per_area: Optional[Decimal] = Field(None, description="Rate per unit of area (AREA mode)")
    is_active: bool = True


class MaintenanceRuleUpdate(CamelModel):
    """Request body for PUT /v1/maintenance-rules/{id}; omitted fields are kept"""

    unit_type: Optional[str] = None
    mode: Optional[CalculationMode] = None
    amount: Optional[Decimal] = None
    rate_per_area: Optional[Decimal] = None
    is_active: Optional[bool] = None


class MaintenanceRuleResponse(CamelModel):
    id: int
    unit_type: str
    mode: CalculationMode
    amount: Optional[Money] = None
    rate_per_area: Optional[Rate] = None
    is_active: bool


class ChargeHeadCreate(CamelModel):
    """Request body for POST /v1/charges"""

    name: str = Field(..., min_length=1)
    default_amount: Decimal = Decimal("0")
    method: ChargeMethod = ChargeMethod.FIXED
    is_optional: bool = False
    is_active: bool = True


class ChargeHeadUpdate(CamelModel):
    name: Optional[str] = None
    default_amount: Optional[Decimal] = None
    method: Optional[ChargeMethod] = None
    is_optional: Optional[bool] = None
    is_active: Optional[bool] = None


class ChargeHeadResponse(CamelModel):
    id: int
    name: str
    default_amount: Money
    method: ChargeMethod
    is_optional: bool
    is_active: bool


class LateFeeConfigRequest(CamelModel):
    """Request body for PUT /v1/late-fee-config"""

    fee_type: LateFeeType
    amount: Decimal = Field(..., description="Currency, percent points or currency per day by fee type")
    grace_period_days: int = 0
    max_cap: Optional[Decimal] = None
    is_active: bool = True


class LateFeeConfigResponse(CamelModel):
    fee_type: LateFeeType
    amount: Money
    grace_period_days: int
    max_cap: Optional[Money] = None
    is_active: bool


class BillingSettingsUpdate(CamelModel):
    due_day_of_month: int = Field(..., description="Day of month invoices fall due (1-28)")


class BillingSettingsResponse(CamelModel):
    due_day_of_month: int
    finalized_at: Optional[datetime] = None


class BillingConfigResponse(CamelModel):
    """Response for GET /v1/billing-config"""

    maintenance_rules: List[MaintenanceRuleResponse]
    charges: List[ChargeHeadResponse]
    late_fee_config: Optional[LateFeeConfigResponse] = None
    settings: BillingSettingsResponse


# Invoices


class LineItemResponse(CamelModel):
    position: int
    kind: str
    description: str
    amount: Money
    source_id: Optional[int] = None
    source_snapshot: Optional[Dict[str, Any]] = None


class PaymentResponse(CamelModel):
    id: int
    amount: Money
    method: str
    paid_on: date
    recorded_by: Optional[str] = None


class InvoiceResponse(CamelModel):
    id: int
    invoice_no: str
    unit_id: int
    billing_period: str
    revision: int
    due_date: date
    status: str
    total_amount: Money
    paid_amount: Money
    balance: Money
    late_fee_accrued: Money
    late_fee_waived: Money
    maintenance_rule_id: int
    superseded_by_id: Optional[int] = None
    line_items: List[LineItemResponse] = []
    payments: List[PaymentResponse] = []
    warnings: List[str] = []

    @classmethod
    def from_row(cls, invoice, warnings: Optional[List[str]] = None) -> "InvoiceResponse":
        return cls(
            id=invoice.id,
            invoice_no=invoice.invoice_no,
            unit_id=invoice.unit_id,
            billing_period=invoice.billing_period,
            revision=invoice.revision,
            due_date=invoice.due_date,
            status=invoice.status,
            total_amount=invoice.total_amount,
            paid_amount=invoice.paid_amount,
            balance=invoice.total_amount - invoice.paid_amount,
            late_fee_accrued=invoice.late_fee_accrued,
            late_fee_waived=invoice.late_fee_waived,
            maintenance_rule_id=invoice.maintenance_rule_id,
            superseded_by_id=invoice.superseded_by_id,
            line_items=[LineItemResponse.model_validate(item) for item in invoice.line_items],
            payments=[PaymentResponse.model_validate(p) for p in invoice.payments],
            warnings=warnings or [],
        )


class InvoiceStatsResponse(CamelModel):
    """Response for GET /v1/invoices/stats"""

    total_invoiced: Money
    total_collected: Money
    total_pending: Money
    overdue_amount: Money
    overdue_count: int
    by_status: Dict[str, int]


class PaymentRequest(CamelModel):
    """Request body for POST /v1/invoices/{id}/payment"""

    amount: Decimal = Field(..., description="Payment amount in base currency")
    method: str = Field(..., min_length=1, description="Cash, cheque, UPI, ...")
    paid_on: Optional[date] = None


class WaiveLateFeeRequest(CamelModel):
    amount: Decimal
    reason: Optional[str] = None


class ChargeSelectionRequest(CamelModel):
    """Per-invoice charge inputs: VARIABLE amounts and opted-in optional heads"""

    charge_overrides: Dict[int, Decimal] = {}
    optional_charges: List[int] = []

    def to_selection(self) -> ChargeSelection:
        return ChargeSelection(overrides=dict(self.charge_overrides), optional_ids=set(self.optional_charges))


class GenerateInvoiceRequest(ChargeSelectionRequest):
    """Request body for POST /v1/invoices"""

    unit_id: int
    billing_period: str = Field(..., pattern=BILLING_PERIOD_PATTERN, description="YYYY-MM")


# Billing runs


class GenerateRequest(ChargeSelectionRequest):
    """Request body for POST /v1/billing/generate"""

    billing_period: str = Field(..., pattern=BILLING_PERIOD_PATTERN, description="YYYY-MM")
    block: Optional[str] = None


class FinalizeRequest(CamelModel):
    billing_period: Optional[str] = Field(None, pattern=BILLING_PERIOD_PATTERN)


class ApplyLateFeesRequest(CamelModel):
    as_of: Optional[date] = None


class BatchResultResponse(CamelModel):
    job: str
    succeeded: int
    skipped: int
    failed: int
    errors: Dict[str, str] = {}


class BillingExceptionResponse(CamelModel):
    id: int
    unit_id: int
    billing_period: str
    error_type: str
    message: str
    created_at: datetime


# Defaulters and escalation


class ReminderRequest(CamelModel):
    """Request body for POST /v1/defaulters/{unit_id}/reminder"""

    method: ReminderMethod
    note: Optional[str] = None


class EscalationEventResponse(CamelModel):
    id: int
    unit_id: int
    invoice_id: Optional[int] = None
    kind: str
    method: Optional[str] = None
    amount: Optional[Money] = None
    note: Optional[str] = None
    operator: Optional[str] = None
    occurred_at: datetime


class DefaulterRecordResponse(CamelModel):
    unit_id: int
    unit_number: str
    block: str
    owner_name: Optional[str] = None
    phone: Optional[str] = None
    outstanding_amount: Money
    calculated_late_fees: Money
    due_days: int
    due_since: date
    bucket: str
    severity: Severity
    overdue_invoice_count: int
    reminder_count: int
    last_reminder_at: Optional[datetime] = None
    last_payment_date: Optional[date] = None
    last_payment_amount: Optional[Money] = None


class BucketSummaryResponse(CamelModel):
    count: int
    amount: Money


class DefaulterStatsResponse(CamelModel):
    total_outstanding: Money
    total_late_fees: Money
    total_defaulters: int
    overdue_invoice_count: int
    buckets: Dict[str, BucketSummaryResponse]


class DefaulterListResponse(CamelModel):
    """Response for GET /v1/defaulters"""

    defaulters: List[DefaulterRecordResponse]
    stats: DefaulterStatsResponse


class DefaulterDetailResponse(CamelModel):
    unit_id: int
    record: Optional[DefaulterRecordResponse] = None
    open_invoices: List[InvoiceResponse]
    history: List[EscalationEventResponse]

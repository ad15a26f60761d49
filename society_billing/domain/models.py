"""Domain models - pure Python dataclasses representing billing entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Set

ALL_UNIT_TYPES = "ALL"


class CalculationMode(str, Enum):
    FLAT = "FLAT"
    AREA = "AREA"


class ChargeMethod(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"


class LateFeeType(str, Enum):
    FIXED = "FIXED"
    PERCENTAGE = "PERCENTAGE"
    PER_DAY = "PER_DAY"


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    OVERDUE = "OVERDUE"
    VOID = "VOID"


# Statuses that still carry an unpaid balance
OPEN_STATUSES = frozenset({InvoiceStatus.PENDING, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE})


class EscalationKind(str, Enum):
    REMINDER_SENT = "REMINDER_SENT"
    LATE_FEE_APPLIED = "LATE_FEE_APPLIED"
    LATE_FEE_WAIVED = "LATE_FEE_WAIVED"
    MARKED_PAID = "MARKED_PAID"


class ReminderMethod(str, Enum):
    SMS = "SMS"
    EMAIL = "EMAIL"
    WHATSAPP = "WHATSAPP"
    CALL = "CALL"
    NOTICE = "NOTICE"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class BillingPeriod:
    """Calendar month an invoice covers"""

    year: int
    month: int

    @classmethod
    def parse(cls, value: str) -> "BillingPeriod":
        """Parse 'YYYY-MM'"""
        try:
            year_part, month_part = value.split("-")
            period = cls(int(year_part), int(month_part))
        except (AttributeError, ValueError) as e:
            raise ValueError(f"Invalid billing period {value!r}, expected YYYY-MM") from e
        if not 1 <= period.month <= 12:
            raise ValueError(f"Invalid billing period {value!r}, month out of range")
        return period

    @classmethod
    def containing(cls, day: date) -> "BillingPeriod":
        return cls(day.year, day.month)

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


@dataclass
class Unit:
    """Billable property within a society"""

    id: int
    society_id: int
    block: str
    number: str
    unit_type: str
    area: Optional[Decimal] = None
    owner_name: Optional[str] = None
    phone: Optional[str] = None


@dataclass
class MaintenanceRule:
    """Base maintenance rate for a unit type"""

    id: int
    unit_type: str
    mode: CalculationMode
    amount: Optional[Decimal] = None
    rate_per_area: Optional[Decimal] = None
    is_active: bool = True


@dataclass
class ChargeHead:
    """Charge master entry added to invoices as a line item"""

    id: int
    name: str
    default_amount: Decimal
    method: ChargeMethod = ChargeMethod.FIXED
    is_optional: bool = False
    is_active: bool = True


@dataclass
class LateFeePolicy:
    """Society late-fee configuration, one per society"""

    fee_type: LateFeeType
    amount: Decimal
    grace_period_days: int = 0
    max_cap: Optional[Decimal] = None
    is_active: bool = True


@dataclass
class ChargeSelection:
    """
    Per-invoice inputs for charge heads.

    overrides: charge_id -> amount, required for VARIABLE heads
    optional_ids: optional FIXED heads to include at their default amount
    """

    overrides: Dict[int, Decimal] = field(default_factory=dict)
    optional_ids: Set[int] = field(default_factory=set)


@dataclass
class LineItem:
    """Single invoice line with the rule that produced it"""

    kind: str  # "MAINTENANCE" or "CHARGE"
    description: str
    amount: Decimal
    source_id: Optional[int] = None
    source_snapshot: Dict[str, object] = field(default_factory=dict)


@dataclass
class InvoiceDraft:
    """Output of invoice computation, before persistence"""

    unit_id: int
    billing_period: BillingPeriod
    due_date: date
    line_items: List[LineItem]
    total_amount: Decimal
    maintenance_rule_id: int
    warnings: List[str] = field(default_factory=list)


@dataclass
class InvoiceState:
    """Current invoice values the arrears evaluator works from"""

    total_amount: Decimal
    paid_amount: Decimal
    due_date: date
    status: InvoiceStatus
    late_fee_accrued: Decimal = Decimal("0")
    late_fee_waived: Decimal = Decimal("0")

    @property
    def balance(self) -> Decimal:
        return self.total_amount - self.paid_amount


@dataclass
class ArrearsStatus:
    """Result of evaluating one invoice as of a date"""

    is_overdue: bool
    overdue_days: int
    chargeable_days: int
    computed_fee: Decimal
    late_fee_accrued: Decimal
    fee_increased: bool
    status: InvoiceStatus


@dataclass
class OpenInvoice:
    """Open invoice as seen by the defaulter classifier"""

    invoice_id: int
    billing_period: str
    due_date: date
    balance: Decimal
    late_fee_accrued: Decimal


@dataclass
class DefaulterRecord:
    """Read-time arrears projection for one unit"""

    unit_id: int
    unit_number: str
    block: str
    owner_name: Optional[str]
    phone: Optional[str]
    outstanding_amount: Decimal
    calculated_late_fees: Decimal
    due_days: int
    due_since: date
    bucket: str
    severity: Severity
    overdue_invoice_count: int
    reminder_count: int = 0
    last_reminder_at: Optional[datetime] = None
    last_payment_date: Optional[date] = None
    last_payment_amount: Optional[Decimal] = None


@dataclass
class DefaulterFilters:
    block: Optional[str] = None
    due_days_bucket: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    search_text: Optional[str] = None


@dataclass
class BucketSummary:
    count: int = 0
    amount: Decimal = Decimal("0")


@dataclass
class DefaulterStats:
    total_outstanding: Decimal
    total_late_fees: Decimal
    total_defaulters: int
    overdue_invoice_count: int
    buckets: Dict[str, BucketSummary] = field(default_factory=dict)

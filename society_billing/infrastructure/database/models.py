"""SQLAlchemy ORM models for the billing store"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

Money = Numeric(12, 2)


class SocietyBillingSettings(Base):
    """Per-society billing calendar and bootstrap marker"""

    __tablename__ = "society_billing_settings"

    society_id = Column(Integer, primary_key=True)
    due_day = Column(Integer, nullable=False)
    finalized_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Unit(Base):
    """Billable unit, owned by the society directory"""

    __tablename__ = "unit"
    __table_args__ = (UniqueConstraint("society_id", "block", "number", name="uq_unit_number"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, index=True)
    block = Column(String(32), nullable=False)
    number = Column(String(32), nullable=False)
    unit_type = Column(String(32), nullable=False)
    area = Column(Numeric(10, 2), nullable=True)
    owner_name = Column(Text, nullable=True)
    phone = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoices = relationship("Invoice", back_populates="unit")


class MaintenanceRule(Base):
    """Maintenance rate rule; deleted rules are kept for audit"""

    __tablename__ = "maintenance_rule"

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, index=True)
    unit_type = Column(String(32), nullable=False)
    mode = Column(String(8), nullable=False)
    amount = Column(Money, nullable=True)
    rate_per_area = Column(Numeric(12, 4), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class ChargeHead(Base):
    """Charge master entry; deleted heads are kept for audit"""

    __tablename__ = "charge_head"

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, index=True)
    name = Column(Text, nullable=False)
    default_amount = Column(Money, nullable=False)
    method = Column(String(8), nullable=False, default="FIXED")
    is_optional = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class LateFeeConfig(Base):
    """Late-fee policy, one row per society"""

    __tablename__ = "late_fee_config"

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, unique=True)
    fee_type = Column(String(16), nullable=False)
    amount = Column(Money, nullable=False)
    grace_period_days = Column(Integer, nullable=False, default=0)
    max_cap = Column(Money, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class Invoice(Base):
    """
    Periodic maintenance invoice.

    live_period mirrors billing_period while the invoice is live and is cleared
    when it is voided, so the unique constraint allows one live invoice per
    unit and period while keeping voided history.
    """

    __tablename__ = "invoice"
    __table_args__ = (UniqueConstraint("unit_id", "live_period", name="uq_invoice_unit_period"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("unit.id"), nullable=False, index=True)
    invoice_no = Column(String(64), nullable=False, unique=True)
    billing_period = Column(String(7), nullable=False, index=True)
    live_period = Column(String(7), nullable=True)
    revision = Column(Integer, nullable=False, default=0)
    due_date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="PENDING", index=True)
    total_amount = Column(Money, nullable=False)
    paid_amount = Column(Money, nullable=False, default=0)
    late_fee_accrued = Column(Money, nullable=False, default=0)
    late_fee_waived = Column(Money, nullable=False, default=0)
    maintenance_rule_id = Column(Integer, ForeignKey("maintenance_rule.id"), nullable=False)
    superseded_by_id = Column(Integer, ForeignKey("invoice.id"), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    unit = relationship("Unit", back_populates="invoices")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
        cascade="all, delete-orphan",
    )
    payments = relationship(
        "InvoicePayment",
        back_populates="invoice",
        order_by="InvoicePayment.id",
        cascade="all, delete-orphan",
    )


class InvoiceLineItem(Base):
    """Line item with a snapshot of the rule or charge that produced it"""

    __tablename__ = "invoice_line_item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    kind = Column(String(16), nullable=False)
    description = Column(Text, nullable=False)
    amount = Column(Money, nullable=False)
    source_id = Column(Integer, nullable=True)
    source_snapshot = Column(JSON, nullable=True)

    invoice = relationship("Invoice", back_populates="line_items")


class InvoicePayment(Base):
    """Payment recorded against an invoice"""

    __tablename__ = "invoice_payment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    unit_id = Column(Integer, nullable=False, index=True)
    amount = Column(Money, nullable=False)
    method = Column(String(32), nullable=False)
    paid_on = Column(Date, nullable=False)
    recorded_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    invoice = relationship("Invoice", back_populates="payments")


class EscalationEvent(Base):
    """Append-only collections ledger entry"""

    __tablename__ = "escalation_event"

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("unit.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=True)
    kind = Column(String(24), nullable=False)
    method = Column(String(32), nullable=True)
    amount = Column(Money, nullable=True)
    note = Column(Text, nullable=True)
    operator = Column(Text, nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)


class BillingException(Base):
    """Unit that could not be billed for a period, pending admin action"""

    __tablename__ = "billing_exception"

    id = Column(Integer, primary_key=True, autoincrement=True)
    society_id = Column(Integer, nullable=False, index=True)
    unit_id = Column(Integer, ForeignKey("unit.id"), nullable=False)
    billing_period = Column(String(7), nullable=False)
    error_type = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    resolved_at = Column(DateTime(timezone=True), nullable=True)

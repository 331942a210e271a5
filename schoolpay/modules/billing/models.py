"""Billing models for student payments, invoices, payment methods and subscriptions.

Identifiers are UUID strings so the schema maps onto VARCHAR(36) keys in
MySQL and stays portable to SQLite for tests.
"""

import uuid
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from schoolpay.core.database import Base


class PaymentStatus(str, Enum):
    """Status shared by payments and invoices."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    OVERDUE = "overdue"


class PaymentMethodCode(str, Enum):
    """How a payment was (or will be) settled."""
    CREDIT_CARD = "credit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    STRIPE = "stripe"


class PaymentGatewayName(str, Enum):
    """Gateway that processes a payment; also the provider of a stored method."""
    PAYPAL = "paypal"
    STRIPE = "stripe"
    MANUAL = "manual"


class PaymentMethodType(str, Enum):
    """Kind of stored payment instrument."""
    CREDIT_CARD = "credit_card"
    PAYPAL = "paypal"
    BANK_ACCOUNT = "bank_account"
    STRIPE = "stripe"


class SubscriptionFrequency(str, Enum):
    """Billing period of a subscription."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi-annual"
    ANNUAL = "annual"


class SubscriptionStatus(str, Enum):
    """Subscription status values."""
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


def _new_id() -> str:
    return str(uuid.uuid4())


def _enum_column(enum_cls: type[Enum], name: str) -> SAEnum:
    """ENUM column storing the lowercase member values."""
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class Payment(Base):
    """A single monetary obligation owed by a student."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Owner (users table is managed elsewhere)
    student_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )
    payment_method: Mapped[PaymentMethodCode] = mapped_column(
        _enum_column(PaymentMethodCode, "payment_method_code"),
        default=PaymentMethodCode.CREDIT_CARD,
        nullable=False,
    )
    payment_gateway: Mapped[PaymentGatewayName] = mapped_column(
        _enum_column(PaymentGatewayName, "payment_gateway"),
        default=PaymentGatewayName.MANUAL,
        nullable=False,
    )

    # Gateway processing results
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, student={self.student_id}, status={self.status})>"


class Invoice(Base):
    """Billing document generated from exactly one payment."""

    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # INV-YYYYMMDD-NNNN
    invoice_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True
    )

    payment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    student_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        _enum_column(PaymentStatus, "payment_status"),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True,
    )

    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    issue_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<Invoice(id={self.id}, number={self.invoice_number}, status={self.status})>"


class PaymentMethod(Base):
    """Reusable payment instrument owned by a student.

    At most one method per student carries ``is_default``; the repository
    clears the flag on the student's other methods before setting it.
    """

    __tablename__ = "payment_methods"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    student_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    type: Mapped[PaymentMethodType] = mapped_column(
        _enum_column(PaymentMethodType, "payment_method_type"), nullable=False
    )
    provider: Mapped[PaymentGatewayName] = mapped_column(
        _enum_column(PaymentGatewayName, "payment_gateway"), nullable=False
    )

    # Masked instrument details
    token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    last_four: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    expiry_date: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    card_brand: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    billing_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<PaymentMethod(id={self.id}, student={self.student_id}, default={self.is_default})>"


class Subscription(Base):
    """Recurring billing definition that periodically produces payments."""

    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    student_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    frequency: Mapped[SubscriptionFrequency] = mapped_column(
        _enum_column(SubscriptionFrequency, "subscription_frequency"),
        nullable=False,
    )

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    next_billing_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    status: Mapped[SubscriptionStatus] = mapped_column(
        _enum_column(SubscriptionStatus, "subscription_status"),
        default=SubscriptionStatus.ACTIVE,
        nullable=False,
        index=True,
    )

    payment_method_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("payment_methods.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, student={self.student_id}, "
            f"frequency={self.frequency}, next={self.next_billing_date})>"
        )

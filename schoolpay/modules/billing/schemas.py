"""Pydantic schemas for the Billing API.

Request and response bodies use camelCase keys; Python code uses the
snake_case field names.
"""

from datetime import datetime, date
from decimal import Decimal
from typing import Any, Iterable, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from schoolpay.modules.billing.models import (
    PaymentGatewayName,
    PaymentMethodCode,
    PaymentMethodType,
    PaymentStatus,
    SubscriptionFrequency,
    SubscriptionStatus,
)


class CamelModel(BaseModel):
    """Base schema with camelCase aliases that also accepts field names."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ==================== Payment Schemas ====================

class PaymentCreate(CamelModel):
    """Schema for creating a payment."""
    student_id: str = Field(..., min_length=1, description="Owning student ID")
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    description: str = Field(..., min_length=1)
    due_date: date
    status: PaymentStatus = PaymentStatus.PENDING
    payment_method: Optional[PaymentMethodCode] = None
    payment_gateway: Optional[PaymentGatewayName] = None
    payment_date: Optional[datetime] = None


class PaymentStatusUpdate(CamelModel):
    """Schema for overwriting a payment status."""
    status: PaymentStatus
    payment_date: Optional[datetime] = None


class ProcessPaymentRequest(CamelModel):
    """Schema for processing a payment through a gateway."""
    payment_method_id: Optional[str] = None
    gateway: PaymentGatewayName = PaymentGatewayName.MANUAL


class PaymentResponse(CamelModel):
    """Payment as returned by the API."""
    id: str
    student_id: str
    amount: float
    description: str
    status: PaymentStatus
    payment_method: PaymentMethodCode
    payment_gateway: PaymentGatewayName
    transaction_id: Optional[str] = None
    gateway_response: Optional[dict] = None
    due_date: date
    payment_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentStatsResponse(CamelModel):
    """Aggregate payment figures."""
    total_amount: float
    completed_payments: int
    pending_payments: int
    overdue_payments: int


# ==================== Invoice Schemas ====================

class InvoiceCreate(CamelModel):
    """Schema for creating an invoice for a payment."""
    payment_id: str = Field(..., min_length=1)
    student_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    description: str = Field(..., min_length=1)
    due_date: date
    status: PaymentStatus = PaymentStatus.PENDING
    issue_date: Optional[datetime] = Field(None, description="Defaults to now")
    paid_date: Optional[datetime] = None


class InvoiceStatusUpdate(CamelModel):
    """Schema for overwriting an invoice status."""
    status: PaymentStatus
    paid_date: Optional[datetime] = None


class InvoiceResponse(CamelModel):
    """Invoice as returned by the API."""
    id: str
    invoice_number: str
    payment_id: str
    student_id: str
    amount: float
    description: str
    status: PaymentStatus
    due_date: date
    issue_date: datetime
    paid_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ==================== Payment Method Schemas ====================

class PaymentMethodCreate(CamelModel):
    """Schema for storing a payment method."""
    student_id: str = Field(..., min_length=1)
    type: PaymentMethodType
    provider: PaymentGatewayName
    token: Optional[str] = None
    last_four: Optional[str] = Field(None, min_length=4, max_length=4)
    expiry_date: Optional[str] = Field(None, max_length=7, description="MM/YYYY")
    card_brand: Optional[str] = None
    is_default: bool = False
    billing_details: Optional[dict[str, Any]] = None


class PaymentMethodUpdate(CamelModel):
    """Partial update of a stored payment method."""
    type: Optional[PaymentMethodType] = None
    provider: Optional[PaymentGatewayName] = None
    token: Optional[str] = None
    last_four: Optional[str] = Field(None, min_length=4, max_length=4)
    expiry_date: Optional[str] = Field(None, max_length=7)
    card_brand: Optional[str] = None
    is_default: Optional[bool] = None
    billing_details: Optional[dict[str, Any]] = None


class PaymentMethodResponse(CamelModel):
    """Stored payment method as returned by the API (token omitted)."""
    id: str
    student_id: str
    type: PaymentMethodType
    provider: PaymentGatewayName
    last_four: Optional[str] = None
    expiry_date: Optional[str] = None
    card_brand: Optional[str] = None
    is_default: bool
    billing_details: Optional[dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ==================== Subscription Schemas ====================

class SubscriptionCreate(CamelModel):
    """Schema for creating a subscription."""
    student_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    frequency: SubscriptionFrequency
    start_date: date
    end_date: Optional[date] = None
    payment_method_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE


class SubscriptionStatusUpdate(CamelModel):
    status: SubscriptionStatus


class SubscriptionCancel(CamelModel):
    end_date: Optional[date] = None


class SubscriptionPaymentMethodUpdate(CamelModel):
    payment_method_id: str = Field(..., min_length=1)


class RenewalRunRequest(CamelModel):
    """Body of a renewal pass; ``date`` defaults to today."""
    as_of: Optional[date] = Field(None, alias="date")


class SubscriptionResponse(CamelModel):
    """Subscription as returned by the API."""
    id: str
    student_id: str
    name: str
    description: str
    amount: float
    frequency: SubscriptionFrequency
    start_date: date
    end_date: Optional[date] = None
    next_billing_date: date
    status: SubscriptionStatus
    payment_method_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ==================== Response Envelope ====================

def serialize(schema: Type[CamelModel], obj: Any) -> dict:
    """Dump an ORM object through a response schema with camelCase keys."""
    return schema.model_validate(obj).model_dump(mode="json", by_alias=True)


def serialize_many(schema: Type[CamelModel], objs: Iterable[Any]) -> list[dict]:
    return [serialize(schema, obj) for obj in objs]


def envelope(
    data: Any = None,
    *,
    success: bool = True,
    message: Optional[str] = None,
    error: Optional[str] = None,
    count: Optional[int] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> dict:
    """Build the ``{success, data?, message?, error?, count?, limit?, offset?}`` body.

    Keys whose value is None are left out.
    """
    body: dict[str, Any] = {"success": success}
    optional = {
        "data": data,
        "message": message,
        "error": error,
        "count": count,
        "limit": limit,
        "offset": offset,
    }
    body.update({key: value for key, value in optional.items() if value is not None})
    return body

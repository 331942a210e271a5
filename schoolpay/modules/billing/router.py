"""API Router for the Billing Service.

Payments, invoices, stored payment methods and subscriptions, all mounted
under ``/payments``. Every endpoint answers with the standard envelope;
billing errors propagate to the application's exception handlers.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.config import settings
from schoolpay.core.database import get_session
from schoolpay.modules.billing.schemas import (
    InvoiceCreate,
    InvoiceResponse,
    InvoiceStatusUpdate,
    PaymentCreate,
    PaymentMethodCreate,
    PaymentMethodResponse,
    PaymentMethodUpdate,
    PaymentResponse,
    PaymentStatsResponse,
    PaymentStatusUpdate,
    ProcessPaymentRequest,
    RenewalRunRequest,
    SubscriptionCancel,
    SubscriptionCreate,
    SubscriptionPaymentMethodUpdate,
    SubscriptionResponse,
    SubscriptionStatusUpdate,
    envelope,
    serialize,
    serialize_many,
)
from schoolpay.modules.billing.service import BillingService

router = APIRouter(prefix="/payments", tags=["billing"])


def get_billing_service(session: AsyncSession = Depends(get_session)) -> BillingService:
    return BillingService(session)


# ==================== Payments ====================

@router.get("/all")
async def list_payments(
    limit: int = Query(default=settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    offset: int = Query(default=0, ge=0),
    service: BillingService = Depends(get_billing_service),
):
    """List payments, newest first."""
    payments = await service.list_payments(limit=limit, offset=offset)
    return envelope(
        serialize_many(PaymentResponse, payments),
        count=len(payments),
        limit=limit,
        offset=offset,
    )


@router.get("/overdue")
async def list_overdue_payments(
    service: BillingService = Depends(get_billing_service),
):
    """List pending payments whose due date has passed."""
    payments = await service.list_overdue_payments()
    return envelope(serialize_many(PaymentResponse, payments), count=len(payments))


@router.get("/stats")
async def get_payment_stats(
    service: BillingService = Depends(get_billing_service),
):
    """Get collected amount and payment counts by state."""
    stats = await service.get_payment_statistics()
    return envelope(PaymentStatsResponse(**stats).model_dump(mode="json", by_alias=True))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_payment(
    data: PaymentCreate,
    service: BillingService = Depends(get_billing_service),
):
    """Create a payment."""
    payment = await service.create_payment(data)
    return envelope(
        serialize(PaymentResponse, payment),
        message="Payment created successfully",
    )


@router.get("/student/{student_id}")
async def list_student_payments(
    student_id: str,
    service: BillingService = Depends(get_billing_service),
):
    """List a student's payments, newest first."""
    payments = await service.list_student_payments(student_id)
    return envelope(serialize_many(PaymentResponse, payments), count=len(payments))


# ==================== Payment Methods ====================

@router.get("/student/{student_id}/payment-methods")
async def list_student_payment_methods(
    student_id: str,
    service: BillingService = Depends(get_billing_service),
):
    """List a student's payment methods, default first."""
    methods = await service.list_student_payment_methods(student_id)
    return envelope(serialize_many(PaymentMethodResponse, methods), count=len(methods))


@router.post("/payment-methods", status_code=status.HTTP_201_CREATED)
async def create_payment_method(
    data: PaymentMethodCreate,
    service: BillingService = Depends(get_billing_service),
):
    """Store a payment method; ``isDefault`` replaces the student's current default."""
    method = await service.create_payment_method(data)
    return envelope(
        serialize(PaymentMethodResponse, method),
        message="Payment method created successfully",
    )


@router.get("/payment-methods/{method_id}")
async def get_payment_method(
    method_id: str,
    service: BillingService = Depends(get_billing_service),
):
    method = await service.get_payment_method(method_id)
    return envelope(serialize(PaymentMethodResponse, method))


@router.put("/payment-methods/{method_id}")
async def update_payment_method(
    method_id: str,
    data: PaymentMethodUpdate,
    service: BillingService = Depends(get_billing_service),
):
    method = await service.update_payment_method(method_id, data)
    return envelope(
        serialize(PaymentMethodResponse, method),
        message="Payment method updated successfully",
    )


@router.delete("/payment-methods/{method_id}")
async def delete_payment_method(
    method_id: str,
    service: BillingService = Depends(get_billing_service),
):
    await service.delete_payment_method(method_id)
    return envelope(message="Payment method deleted successfully")


@router.put("/payment-methods/{method_id}/default")
async def set_default_payment_method(
    method_id: str,
    service: BillingService = Depends(get_billing_service),
):
    """Make a payment method its student's only default."""
    method = await service.set_default_payment_method(method_id)
    return envelope(
        serialize(PaymentMethodResponse, method),
        message="Default payment method updated successfully",
    )


# ==================== Invoices ====================

@router.get("/invoices/all")
async def list_invoices(
    limit: int = Query(default=settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
    offset: int = Query(default=0, ge=0),
    service: BillingService = Depends(get_billing_service),
):
    invoices = await service.list_invoices(limit=limit, offset=offset)
    return envelope(
        serialize_many(InvoiceResponse, invoices),
        count=len(invoices),
        limit=limit,
        offset=offset,
    )


@router.get("/invoices/overdue")
async def list_overdue_invoices(
    service: BillingService = Depends(get_billing_service),
):
    invoices = await service.list_overdue_invoices()
    return envelope(serialize_many(InvoiceResponse, invoices), count=len(invoices))


@router.get("/invoices/id/{invoice_id}")
async def get_invoice(
    invoice_id: str,
    service: BillingService = Depends(get_billing_service),
):
    invoice = await service.get_invoice(invoice_id)
    return envelope(serialize(InvoiceResponse, invoice))


@router.get("/invoices/number/{invoice_number}")
async def get_invoice_by_number(
    invoice_number: str,
    service: BillingService = Depends(get_billing_service),
):
    invoice = await service.get_invoice_by_number(invoice_number)
    return envelope(serialize(InvoiceResponse, invoice))


@router.get("/student/{student_id}/invoices")
async def list_student_invoices(
    student_id: str,
    service: BillingService = Depends(get_billing_service),
):
    invoices = await service.list_student_invoices(student_id)
    return envelope(serialize_many(InvoiceResponse, invoices), count=len(invoices))


@router.post("/invoices", status_code=status.HTTP_201_CREATED)
async def create_invoice(
    data: InvoiceCreate,
    service: BillingService = Depends(get_billing_service),
):
    """Create an invoice for a payment that has none yet.

    Answers 400 with the existing invoice as ``data`` when the payment is
    already invoiced.
    """
    invoice = await service.create_invoice(data)
    return envelope(
        serialize(InvoiceResponse, invoice),
        message="Invoice created successfully",
    )


@router.put("/invoices/{invoice_id}/status")
async def update_invoice_status(
    invoice_id: str,
    data: InvoiceStatusUpdate,
    service: BillingService = Depends(get_billing_service),
):
    """Overwrite an invoice status; ``completed`` also completes the payment."""
    invoice = await service.update_invoice_status(invoice_id, data.status, data.paid_date)
    return envelope(
        serialize(InvoiceResponse, invoice),
        message="Invoice status updated successfully",
    )


# ==================== Subscriptions ====================

@router.get("/subscriptions/active")
async def list_active_subscriptions(
    service: BillingService = Depends(get_billing_service),
):
    subscriptions = await service.list_active_subscriptions()
    return envelope(serialize_many(SubscriptionResponse, subscriptions), count=len(subscriptions))


@router.post("/subscriptions/process-renewals")
async def process_subscription_renewals(
    data: Optional[RenewalRunRequest] = None,
    service: BillingService = Depends(get_billing_service),
):
    """Renew every active subscription due on or before ``date`` (default today)."""
    as_of = data.as_of if data else None
    results = await service.process_renewals(as_of)
    if not results:
        return envelope([], message="No subscriptions due for renewal", count=0)

    succeeded = sum(1 for result in results if result["status"] == "success")
    return envelope(
        results,
        message=f"Processed {len(results)} subscription renewals ({succeeded} succeeded)",
        count=len(results),
    )


@router.post("/subscriptions", status_code=status.HTTP_201_CREATED)
async def create_subscription(
    data: SubscriptionCreate,
    service: BillingService = Depends(get_billing_service),
):
    """Create a subscription billed from its start date."""
    subscription = await service.create_subscription(data)
    return envelope(
        serialize(SubscriptionResponse, subscription),
        message="Subscription created successfully",
    )


@router.get("/subscriptions/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    service: BillingService = Depends(get_billing_service),
):
    subscription = await service.get_subscription(subscription_id)
    return envelope(serialize(SubscriptionResponse, subscription))


@router.get("/student/{student_id}/subscriptions")
async def list_student_subscriptions(
    student_id: str,
    service: BillingService = Depends(get_billing_service),
):
    subscriptions = await service.list_student_subscriptions(student_id)
    return envelope(serialize_many(SubscriptionResponse, subscriptions), count=len(subscriptions))


@router.put("/subscriptions/{subscription_id}/status")
async def update_subscription_status(
    subscription_id: str,
    data: SubscriptionStatusUpdate,
    service: BillingService = Depends(get_billing_service),
):
    subscription = await service.update_subscription_status(subscription_id, data.status)
    return envelope(
        serialize(SubscriptionResponse, subscription),
        message="Subscription status updated successfully",
    )


@router.put("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    data: Optional[SubscriptionCancel] = None,
    service: BillingService = Depends(get_billing_service),
):
    """Cancel a subscription, ending it on ``endDate`` or today."""
    subscription = await service.cancel_subscription(
        subscription_id, data.end_date if data else None
    )
    return envelope(
        serialize(SubscriptionResponse, subscription),
        message="Subscription cancelled successfully",
    )


@router.put("/subscriptions/{subscription_id}/payment-method")
async def update_subscription_payment_method(
    subscription_id: str,
    data: SubscriptionPaymentMethodUpdate,
    service: BillingService = Depends(get_billing_service),
):
    """Link another of the student's payment methods to the subscription."""
    subscription = await service.update_subscription_payment_method(
        subscription_id, data.payment_method_id
    )
    return envelope(
        serialize(SubscriptionResponse, subscription),
        message="Subscription payment method updated successfully",
    )


# ==================== Single Payment ====================

@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    service: BillingService = Depends(get_billing_service),
):
    payment = await service.get_payment(payment_id)
    return envelope(serialize(PaymentResponse, payment))


@router.put("/{payment_id}/status")
async def update_payment_status(
    payment_id: str,
    data: PaymentStatusUpdate,
    service: BillingService = Depends(get_billing_service),
):
    """Overwrite a payment status; ``completed`` also completes its invoice."""
    payment = await service.update_payment_status(payment_id, data.status, data.payment_date)
    return envelope(
        serialize(PaymentResponse, payment),
        message="Payment status updated successfully",
    )


@router.post("/{payment_id}/process-payment")
async def process_payment(
    payment_id: str,
    data: Optional[ProcessPaymentRequest] = None,
    service: BillingService = Depends(get_billing_service),
):
    """Charge a payment through its gateway adapter and mark it completed."""
    data = data or ProcessPaymentRequest()
    payment = await service.process_payment(payment_id, data.payment_method_id, data.gateway)
    return envelope(
        serialize(PaymentResponse, payment),
        message="Payment processed successfully",
    )


@router.post("/{payment_id}/generate-invoice")
async def generate_invoice(
    payment_id: str,
    response: Response,
    service: BillingService = Depends(get_billing_service),
):
    """Return the payment's invoice, creating it (201) when it does not exist yet."""
    invoice, created = await service.generate_invoice(payment_id)
    if created:
        response.status_code = status.HTTP_201_CREATED
        message = "Invoice generated successfully"
    else:
        message = "Invoice already exists"
    return envelope(serialize(InvoiceResponse, invoice), message=message)

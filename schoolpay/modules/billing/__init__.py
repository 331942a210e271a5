"""Billing module.

Student payments, invoices, stored payment methods and recurring
subscriptions.
"""

from schoolpay.modules.billing.router import router
from schoolpay.modules.billing.service import BillingService
from schoolpay.modules.billing.renewal import RenewalProcessor, advance_billing_date
from schoolpay.modules.billing.models import (
    Payment,
    Invoice,
    PaymentMethod,
    Subscription,
    PaymentStatus,
    PaymentMethodCode,
    PaymentMethodType,
    PaymentGatewayName,
    SubscriptionFrequency,
    SubscriptionStatus,
)

__all__ = [
    "router",
    "BillingService",
    "RenewalProcessor",
    "advance_billing_date",
    "Payment",
    "Invoice",
    "PaymentMethod",
    "Subscription",
    "PaymentStatus",
    "PaymentMethodCode",
    "PaymentMethodType",
    "PaymentGatewayName",
    "SubscriptionFrequency",
    "SubscriptionStatus",
]

"""Subscription renewal processing.

A renewal creates the next pending payment of a subscription and moves its
next billing date forward by exactly one period. The period is always added
to the previous next billing date, never to the processing date, so a late
run does not shift the schedule.
"""

import logging
from datetime import date, datetime
from typing import Optional, Union

from dateutil.relativedelta import relativedelta
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.logging import log_error
from schoolpay.core.metrics import PAYMENTS_CREATED_TOTAL, SUBSCRIPTION_RENEWALS_TOTAL
from schoolpay.modules.billing.models import (
    Payment,
    PaymentGatewayName,
    PaymentMethodCode,
    PaymentMethodType,
    Subscription,
    SubscriptionFrequency,
)
from schoolpay.modules.billing.repository import (
    PaymentMethodRepository,
    PaymentRepository,
    SubscriptionRepository,
)

logger = logging.getLogger(__name__)

# Months added per billing period
FREQUENCY_MONTHS = {
    SubscriptionFrequency.MONTHLY: 1,
    SubscriptionFrequency.QUARTERLY: 3,
    SubscriptionFrequency.SEMI_ANNUAL: 6,
    SubscriptionFrequency.ANNUAL: 12,
}

# Stored instrument type -> how the renewal payment is settled
METHOD_TYPE_TO_PAYMENT_METHOD = {
    PaymentMethodType.CREDIT_CARD: PaymentMethodCode.CREDIT_CARD,
    PaymentMethodType.PAYPAL: PaymentMethodCode.PAYPAL,
    PaymentMethodType.BANK_ACCOUNT: PaymentMethodCode.BANK_TRANSFER,
    PaymentMethodType.STRIPE: PaymentMethodCode.STRIPE,
}


def advance_billing_date(
    current: date,
    frequency: Union[SubscriptionFrequency, str],
) -> date:
    """Return the billing date one period after ``current``.

    Month arithmetic clamps to the end of shorter months, so January 31
    advanced monthly becomes February 28 (or 29 in a leap year).

    Raises:
        ValueError: If the frequency is unknown
    """
    months = FREQUENCY_MONTHS[SubscriptionFrequency(frequency)]
    return current + relativedelta(months=months)


def renewal_description(subscription: Subscription) -> str:
    return f"Subscription renewal: {subscription.name}"


class RenewalProcessor:
    """Renews subscriptions that have reached their next billing date."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.payment_repo = PaymentRepository(session)
        self.method_repo = PaymentMethodRepository(session)
        self.subscription_repo = SubscriptionRepository(session)

    async def _resolve_payment_channel(
        self, subscription: Subscription
    ) -> tuple[PaymentMethodCode, PaymentGatewayName]:
        """Method and gateway of the renewal payment.

        Taken from the subscription's linked payment method when it still
        exists, else credit card through the manual gateway.
        """
        if subscription.payment_method_id:
            method = await self.method_repo.get_by_id(subscription.payment_method_id)
            if method:
                return (
                    METHOD_TYPE_TO_PAYMENT_METHOD[PaymentMethodType(method.type)],
                    PaymentGatewayName(method.provider),
                )
            logger.warning(
                f"Subscription {subscription.id} links missing payment method "
                f"{subscription.payment_method_id}, using defaults"
            )
        return PaymentMethodCode.CREDIT_CARD, PaymentGatewayName.MANUAL

    async def process_renewal(
        self,
        subscription: Subscription,
        today: Optional[date] = None,
    ) -> Payment:
        """Renew one subscription and commit.

        Creates a pending payment due ``today`` for the subscription amount
        and advances the next billing date by one period. The subscription
        status is left as it is.

        Returns:
            Payment: The renewal payment
        """
        today = today or datetime.utcnow().date()
        new_next_billing_date = advance_billing_date(
            subscription.next_billing_date, subscription.frequency
        )
        payment_method, payment_gateway = await self._resolve_payment_channel(subscription)

        payment = await self.payment_repo.create(
            student_id=subscription.student_id,
            amount=subscription.amount,
            description=renewal_description(subscription),
            due_date=today,
            payment_method=payment_method,
            payment_gateway=payment_gateway,
        )
        await self.subscription_repo.update_next_billing_date(
            subscription.id, new_next_billing_date
        )
        await self.session.commit()

        PAYMENTS_CREATED_TOTAL.labels(origin="renewal").inc()
        logger.info(
            f"Subscription {subscription.id} renewed: payment {payment.id}, "
            f"next billing date {new_next_billing_date.isoformat()}"
        )
        return payment

    async def process_due_renewals(self, as_of: Optional[date] = None) -> list[dict]:
        """Renew every active subscription due on or before ``as_of``.

        Subscriptions are processed one at a time. A failure is rolled back
        for that subscription only and reported alongside the successes.

        Returns:
            list[dict]: One result per subscription, either
            ``{"id", "status": "success", "paymentId", "nextBillingDate"}`` or
            ``{"id", "status": "failed", "error"}``
        """
        as_of = as_of or datetime.utcnow().date()
        due = await self.subscription_repo.get_due_for_renewal(as_of)
        # Rollback expires loaded instances; reload each item by id
        due_ids = [subscription.id for subscription in due]
        logger.info(f"Found {len(due_ids)} subscriptions due for renewal as of {as_of.isoformat()}")

        results: list[dict] = []
        for subscription_id in due_ids:
            try:
                subscription = await self.subscription_repo.get_by_id(subscription_id)
                if subscription is None:
                    raise LookupError(f"Subscription {subscription_id} no longer exists")
                payment = await self.process_renewal(subscription)
            except Exception as e:
                await self.session.rollback()
                SUBSCRIPTION_RENEWALS_TOTAL.labels(outcome="failed").inc()
                log_error(
                    logger,
                    f"Failed to renew subscription {subscription_id}",
                    exception=e,
                    subscription_id=subscription_id,
                )
                results.append({
                    "id": subscription_id,
                    "status": "failed",
                    "error": str(e),
                })
                continue

            SUBSCRIPTION_RENEWALS_TOTAL.labels(outcome="success").inc()
            results.append({
                "id": subscription_id,
                "status": "success",
                "paymentId": payment.id,
                "nextBillingDate": subscription.next_billing_date.isoformat(),
            })

        return results

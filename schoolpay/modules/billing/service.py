"""Billing service.

Coordinates the billing repositories for the API: validates existence and
ownership, commits each unit of work, and keeps payments and invoices in
step when either side is marked completed.
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.logging import log_error
from schoolpay.core.metrics import (
    GATEWAY_CHARGES_TOTAL,
    INVOICES_GENERATED_TOTAL,
    PAYMENT_STATUS_CHANGES_TOTAL,
    PAYMENTS_CREATED_TOTAL,
    STATUS_CASCADE_FAILURES_TOTAL,
)
from schoolpay.modules.billing.exceptions import (
    BillingError,
    InvoiceAlreadyExistsError,
    NotFoundError,
    OwnershipError,
    PersistenceError,
    ValidationError,
)
from schoolpay.modules.billing.gateways import GatewayRegistry
from schoolpay.modules.billing.models import (
    Invoice,
    Payment,
    PaymentGatewayName,
    PaymentMethod,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
)
from schoolpay.modules.billing.renewal import RenewalProcessor
from schoolpay.modules.billing.repository import (
    InvoiceRepository,
    PaymentMethodRepository,
    PaymentRepository,
    SubscriptionRepository,
)
from schoolpay.modules.billing.schemas import (
    InvoiceCreate,
    InvoiceResponse,
    PaymentCreate,
    PaymentMethodCreate,
    PaymentMethodUpdate,
    SubscriptionCreate,
    serialize,
)

logger = logging.getLogger(__name__)


class BillingService:
    """Service for payments, invoices, payment methods and subscriptions."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.payment_repo = PaymentRepository(session)
        self.invoice_repo = InvoiceRepository(session)
        self.method_repo = PaymentMethodRepository(session)
        self.subscription_repo = SubscriptionRepository(session)

    async def _commit(self, operation: str, **context) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            log_error(logger, f"Commit failed during {operation}", exception=e, operation=operation, **context)
            raise PersistenceError(f"Database error during {operation}: {e}") from e

    # ==================== Payments ====================

    async def get_payment(self, payment_id: str) -> Payment:
        payment = await self.payment_repo.get_by_id(payment_id)
        if not payment:
            raise NotFoundError("Payment not found")
        return payment

    async def list_payments(self, limit: int, offset: int) -> list[Payment]:
        return await self.payment_repo.get_all(limit=limit, offset=offset)

    async def list_overdue_payments(self) -> list[Payment]:
        return await self.payment_repo.get_overdue_payments()

    async def list_student_payments(self, student_id: str) -> list[Payment]:
        return await self.payment_repo.get_by_student_id(student_id)

    async def get_payment_statistics(self) -> dict:
        return await self.payment_repo.get_statistics()

    async def create_payment(self, data: PaymentCreate) -> Payment:
        """Create a payment from an API request."""
        payment = await self.payment_repo.create(
            student_id=data.student_id,
            amount=data.amount,
            description=data.description,
            due_date=data.due_date,
            status=data.status,
            payment_method=data.payment_method,
            payment_gateway=data.payment_gateway,
            payment_date=data.payment_date,
        )
        await self._commit("create payment", student_id=data.student_id)
        PAYMENTS_CREATED_TOTAL.labels(origin="api").inc()
        return payment

    async def update_payment_status(
        self,
        payment_id: str,
        status: PaymentStatus,
        payment_date: Optional[datetime] = None,
    ) -> Payment:
        """Overwrite a payment status.

        Completing a payment also completes its invoice. The payment update
        is committed first; if the invoice update then fails it is logged
        and the payment stays completed.
        """
        payment = await self.payment_repo.update_status(payment_id, status, payment_date)
        if not payment:
            raise NotFoundError("Payment not found")
        await self._commit("update payment status", payment_id=payment_id)
        PAYMENT_STATUS_CHANGES_TOTAL.labels(status=PaymentStatus(status).value).inc()

        if PaymentStatus(status) == PaymentStatus.COMPLETED:
            cascaded = await self._complete_invoice_for_payment(
                payment_id, payment_date or payment.payment_date
            )
            if not cascaded:
                payment = await self.get_payment(payment_id)
        return payment

    async def _complete_invoice_for_payment(
        self,
        payment_id: str,
        paid_date: Optional[datetime],
    ) -> bool:
        try:
            invoice = await self.invoice_repo.get_by_payment_id(payment_id)
            if not invoice:
                return True
            await self.invoice_repo.update_status(
                invoice.id, PaymentStatus.COMPLETED, paid_date or datetime.utcnow()
            )
            await self._commit("complete invoice for payment", payment_id=payment_id)
            logger.info(f"Invoice {invoice.id} completed with payment {payment_id}")
            return True
        except BillingError as e:
            STATUS_CASCADE_FAILURES_TOTAL.labels(direction="payment_to_invoice").inc()
            log_error(
                logger,
                f"Payment {payment_id} completed but its invoice could not be updated",
                exception=e,
                payment_id=payment_id,
            )
            return False

    async def process_payment(
        self,
        payment_id: str,
        payment_method_id: Optional[str] = None,
        gateway: PaymentGatewayName = PaymentGatewayName.MANUAL,
    ) -> Payment:
        """Charge a payment through a gateway adapter and mark it completed.

        Raises:
            NotFoundError: If the payment or the payment method does not exist
            OwnershipError: If the payment method belongs to another student
            ValidationError: If the gateway is unsupported or declines the charge
        """
        payment = await self.get_payment(payment_id)

        method: Optional[PaymentMethod] = None
        if payment_method_id:
            method = await self.method_repo.get_by_id(payment_method_id)
            if not method:
                raise NotFoundError("Payment method not found")
            if method.student_id != payment.student_id:
                raise OwnershipError("Payment method does not belong to this student")

        gateway_name = PaymentGatewayName(gateway or PaymentGatewayName.MANUAL)
        try:
            adapter = GatewayRegistry.get(gateway_name)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        result = await adapter.charge(method, payment.amount)
        GATEWAY_CHARGES_TOTAL.labels(
            gateway=gateway_name.value,
            outcome="success" if result.succeeded else "declined",
        ).inc()

        if not result.succeeded:
            await self.payment_repo.update_status(payment.id, PaymentStatus.FAILED)
            await self._commit("record declined payment", payment_id=payment_id)
            raise ValidationError(f"Payment declined: {result.error_message or result.status}")

        payment = await self.payment_repo.update_payment_details(
            payment.id,
            result.transaction_id,
            result.gateway_response,
            PaymentStatus.COMPLETED,
        )
        await self._commit("process payment", payment_id=payment_id)
        PAYMENT_STATUS_CHANGES_TOTAL.labels(status=PaymentStatus.COMPLETED.value).inc()

        if not await self._complete_invoice_for_payment(payment_id, payment.payment_date):
            payment = await self.get_payment(payment_id)
        return payment

    async def generate_invoice(self, payment_id: str) -> tuple[Invoice, bool]:
        """Return the payment's invoice, creating it from the payment if needed.

        Returns:
            tuple: (invoice, created) where created is False when the invoice
            already existed
        """
        payment = await self.get_payment(payment_id)

        existing = await self.invoice_repo.get_by_payment_id(payment.id)
        if existing:
            return existing, False

        invoice = await self.invoice_repo.create(
            payment_id=payment.id,
            student_id=payment.student_id,
            amount=payment.amount,
            description=payment.description,
            due_date=payment.due_date,
            status=payment.status,
            paid_date=payment.payment_date,
        )
        await self._commit("generate invoice", payment_id=payment_id)
        INVOICES_GENERATED_TOTAL.inc()
        return invoice, True

    # ==================== Invoices ====================

    async def get_invoice(self, invoice_id: str) -> Invoice:
        invoice = await self.invoice_repo.get_by_id(invoice_id)
        if not invoice:
            raise NotFoundError("Invoice not found")
        return invoice

    async def get_invoice_by_number(self, invoice_number: str) -> Invoice:
        invoice = await self.invoice_repo.get_by_invoice_number(invoice_number)
        if not invoice:
            raise NotFoundError("Invoice not found")
        return invoice

    async def list_invoices(self, limit: int, offset: int) -> list[Invoice]:
        return await self.invoice_repo.get_all(limit=limit, offset=offset)

    async def list_overdue_invoices(self) -> list[Invoice]:
        return await self.invoice_repo.get_overdue_invoices()

    async def list_student_invoices(self, student_id: str) -> list[Invoice]:
        return await self.invoice_repo.get_by_student_id(student_id)

    async def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """Create an invoice for a payment that has none yet.

        Raises:
            NotFoundError: If the payment does not exist
            InvoiceAlreadyExistsError: If the payment already has an invoice
        """
        payment = await self.get_payment(data.payment_id)

        existing = await self.invoice_repo.get_by_payment_id(payment.id)
        if existing:
            raise InvoiceAlreadyExistsError(serialize(InvoiceResponse, existing))

        invoice = await self.invoice_repo.create(
            payment_id=payment.id,
            student_id=data.student_id,
            amount=data.amount,
            description=data.description,
            due_date=data.due_date,
            status=data.status,
            issue_date=data.issue_date,
            paid_date=data.paid_date,
        )
        await self._commit("create invoice", payment_id=data.payment_id)
        INVOICES_GENERATED_TOTAL.inc()
        return invoice

    async def update_invoice_status(
        self,
        invoice_id: str,
        status: PaymentStatus,
        paid_date: Optional[datetime] = None,
    ) -> Invoice:
        """Overwrite an invoice status.

        Completing an invoice also completes its payment unless the payment
        is already completed. The invoice update is committed first.
        """
        invoice = await self.invoice_repo.update_status(invoice_id, status, paid_date)
        if not invoice:
            raise NotFoundError("Invoice not found")
        await self._commit("update invoice status", invoice_id=invoice_id)

        if PaymentStatus(status) == PaymentStatus.COMPLETED:
            cascaded = await self._complete_payment_for_invoice(
                invoice, paid_date or invoice.paid_date
            )
            if not cascaded:
                invoice = await self.get_invoice(invoice_id)
        return invoice

    async def _complete_payment_for_invoice(
        self,
        invoice: Invoice,
        paid_date: Optional[datetime],
    ) -> bool:
        invoice_id = invoice.id
        payment_id = invoice.payment_id
        try:
            payment = await self.payment_repo.get_by_id(payment_id)
            if not payment or payment.status == PaymentStatus.COMPLETED:
                return True
            await self.payment_repo.update_status(
                payment_id, PaymentStatus.COMPLETED, paid_date or datetime.utcnow()
            )
            await self._commit("complete payment for invoice", invoice_id=invoice_id)
            PAYMENT_STATUS_CHANGES_TOTAL.labels(status=PaymentStatus.COMPLETED.value).inc()
            logger.info(f"Payment {payment_id} completed with invoice {invoice_id}")
            return True
        except BillingError as e:
            STATUS_CASCADE_FAILURES_TOTAL.labels(direction="invoice_to_payment").inc()
            log_error(
                logger,
                f"Invoice {invoice_id} completed but its payment could not be updated",
                exception=e,
                invoice_id=invoice_id,
            )
            return False

    # ==================== Payment Methods ====================

    async def get_payment_method(self, method_id: str) -> PaymentMethod:
        method = await self.method_repo.get_by_id(method_id)
        if not method:
            raise NotFoundError("Payment method not found")
        return method

    async def list_student_payment_methods(self, student_id: str) -> list[PaymentMethod]:
        return await self.method_repo.get_by_student_id(student_id)

    async def create_payment_method(self, data: PaymentMethodCreate) -> PaymentMethod:
        method = await self.method_repo.create(**data.model_dump())
        await self._commit("create payment method", student_id=data.student_id)
        return method

    async def update_payment_method(
        self,
        method_id: str,
        data: PaymentMethodUpdate,
    ) -> PaymentMethod:
        method = await self.method_repo.update(method_id, **data.model_dump(exclude_unset=True))
        if not method:
            raise NotFoundError("Payment method not found")
        await self._commit("update payment method", method_id=method_id)
        return method

    async def set_default_payment_method(self, method_id: str) -> PaymentMethod:
        method = await self.method_repo.set_default(method_id)
        if not method:
            raise NotFoundError("Payment method not found")
        await self._commit("set default payment method", method_id=method_id)
        return method

    async def delete_payment_method(self, method_id: str) -> None:
        deleted = await self.method_repo.delete(method_id)
        if not deleted:
            raise NotFoundError("Payment method not found")
        await self._commit("delete payment method", method_id=method_id)

    # ==================== Subscriptions ====================

    async def get_subscription(self, subscription_id: str) -> Subscription:
        subscription = await self.subscription_repo.get_by_id(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    async def list_active_subscriptions(self) -> list[Subscription]:
        return await self.subscription_repo.get_active_subscriptions()

    async def list_student_subscriptions(self, student_id: str) -> list[Subscription]:
        return await self.subscription_repo.get_by_student_id(student_id)

    async def _get_owned_payment_method(self, method_id: str, student_id: str) -> PaymentMethod:
        method = await self.method_repo.get_by_id(method_id)
        if not method:
            raise NotFoundError("Payment method not found")
        if method.student_id != student_id:
            raise OwnershipError("Payment method does not belong to this student")
        return method

    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        """Create a subscription, checking that a linked method belongs to the student."""
        if data.payment_method_id:
            await self._get_owned_payment_method(data.payment_method_id, data.student_id)

        subscription = await self.subscription_repo.create(
            student_id=data.student_id,
            name=data.name,
            description=data.description,
            amount=data.amount,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            payment_method_id=data.payment_method_id,
            status=data.status,
        )
        await self._commit("create subscription", student_id=data.student_id)
        return subscription

    async def update_subscription_status(
        self,
        subscription_id: str,
        status: SubscriptionStatus,
    ) -> Subscription:
        subscription = await self.subscription_repo.update_status(subscription_id, status)
        if not subscription:
            raise NotFoundError("Subscription not found")
        await self._commit("update subscription status", subscription_id=subscription_id)
        return subscription

    async def cancel_subscription(
        self,
        subscription_id: str,
        end_date: Optional[date] = None,
    ) -> Subscription:
        subscription = await self.subscription_repo.cancel(subscription_id, end_date)
        if not subscription:
            raise NotFoundError("Subscription not found")
        await self._commit("cancel subscription", subscription_id=subscription_id)
        return subscription

    async def update_subscription_payment_method(
        self,
        subscription_id: str,
        payment_method_id: str,
    ) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        await self._get_owned_payment_method(payment_method_id, subscription.student_id)

        subscription = await self.subscription_repo.update_payment_method(
            subscription_id, payment_method_id
        )
        await self._commit("update subscription payment method", subscription_id=subscription_id)
        return subscription

    async def process_renewals(self, as_of: Optional[date] = None) -> list[dict]:
        """Renew every subscription due on or before ``as_of`` (default today)."""
        processor = RenewalProcessor(self.session)
        return await processor.process_due_renewals(as_of)

"""Repositories for billing database operations.

Repositories flush their writes; the caller owns the transaction and decides
when to commit. Storage failures are logged with the operation and the
record id, the session is rolled back, and a ``PersistenceError`` is raised.
"""

import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any, AsyncIterator, Optional, Union

from sqlalchemy import select, delete, func, and_, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.logging import log_error, log_warning
from schoolpay.modules.billing.exceptions import (
    PersistenceError,
    ValidationError,
    require_fields,
)
from schoolpay.modules.billing.models import (
    Invoice,
    Payment,
    PaymentGatewayName,
    PaymentMethod,
    PaymentMethodCode,
    PaymentMethodType,
    PaymentStatus,
    Subscription,
    SubscriptionFrequency,
    SubscriptionStatus,
)

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PREFIX = "INV"

# Stored-method fields that may be changed through PaymentMethodRepository.update
PAYMENT_METHOD_UPDATABLE_FIELDS = frozenset((
    "type",
    "provider",
    "token",
    "last_four",
    "expiry_date",
    "card_brand",
    "is_default",
    "billing_details",
))


def settlement_date(
    status: Union[PaymentStatus, str],
    supplied: Optional[datetime],
    current: Optional[datetime] = None,
) -> Optional[datetime]:
    """Settlement timestamp a payment or invoice should carry for ``status``.

    Completed records always carry a date (the supplied one, else the one
    already recorded, else now). Refunded records keep their date. Every
    other status has none.
    """
    status = PaymentStatus(status)
    if status == PaymentStatus.COMPLETED:
        return supplied or current or datetime.utcnow()
    if status == PaymentStatus.REFUNDED:
        return supplied or current
    return None


def _utc_today() -> date:
    return datetime.utcnow().date()


class BaseRepository:
    """Shared session handling for billing repositories."""

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session."""
        self.session = session

    @asynccontextmanager
    async def _guard(self, operation: str, **context: Any) -> AsyncIterator[None]:
        """Translate storage failures inside the block into PersistenceError."""
        try:
            yield
        except SQLAlchemyError as e:
            await self.session.rollback()
            log_error(
                logger,
                f"Database error during {operation}",
                exception=e,
                operation=operation,
                **context,
            )
            raise PersistenceError(f"Database error during {operation}: {e}") from e


# ==================== Payments ====================


class PaymentRepository(BaseRepository):
    """Repository for payment operations."""

    async def create(
        self,
        student_id: str,
        amount: Union[Decimal, float, int],
        description: str,
        due_date: date,
        status: Union[PaymentStatus, str] = PaymentStatus.PENDING,
        payment_method: Union[PaymentMethodCode, str] = PaymentMethodCode.CREDIT_CARD,
        payment_gateway: Union[PaymentGatewayName, str] = PaymentGatewayName.MANUAL,
        payment_date: Optional[datetime] = None,
        transaction_id: Optional[str] = None,
        gateway_response: Optional[dict] = None,
    ) -> Payment:
        """Create a new payment.

        Args:
            student_id: Owning student
            amount: Positive amount owed
            description: Free-text description
            due_date: Date the payment falls due
            status: Initial status (pending unless imported as settled)
            payment_method: How the payment is settled
            payment_gateway: Gateway that processes it
            payment_date: Settlement date, stamped automatically for completed payments

        Returns:
            Payment: Created payment instance

        Raises:
            ValidationError: If a required field is missing or amount is not positive
        """
        require_fields(
            {
                "student_id": student_id,
                "amount": amount,
                "description": description,
                "due_date": due_date,
            },
            "student_id", "amount", "description", "due_date",
        )
        if Decimal(str(amount)) <= 0:
            raise ValidationError("Amount must be greater than zero")

        status = PaymentStatus(status)
        payment = Payment(
            student_id=student_id,
            amount=Decimal(str(amount)),
            description=description,
            due_date=due_date,
            status=status,
            payment_method=PaymentMethodCode(payment_method or PaymentMethodCode.CREDIT_CARD),
            payment_gateway=PaymentGatewayName(payment_gateway or PaymentGatewayName.MANUAL),
            payment_date=settlement_date(status, payment_date),
            transaction_id=transaction_id,
            gateway_response=gateway_response,
        )
        async with self._guard("create payment", student_id=student_id):
            self.session.add(payment)
            await self.session.flush()
        logger.info(f"Payment {payment.id} created for student {student_id}")
        return payment

    async def get_by_id(self, payment_id: str) -> Optional[Payment]:
        """Get payment by ID."""
        async with self._guard("get payment", payment_id=payment_id):
            result = await self.session.execute(
                select(Payment).where(Payment.id == payment_id)
            )
            return result.scalar_one_or_none()

    async def get_by_student_id(self, student_id: str) -> list[Payment]:
        """Get all payments of a student, newest first."""
        async with self._guard("list student payments", student_id=student_id):
            result = await self.session.execute(
                select(Payment)
                .where(Payment.student_id == student_id)
                .order_by(desc(Payment.created_at))
            )
            return list(result.scalars().all())

    async def get_all(self, limit: int = 100, offset: int = 0) -> list[Payment]:
        """Get a page of payments, newest first."""
        async with self._guard("list payments"):
            result = await self.session.execute(
                select(Payment)
                .order_by(desc(Payment.created_at))
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def get_by_status(
        self,
        status: Union[PaymentStatus, str],
        limit: int = 100,
        offset: int = 0,
    ) -> list[Payment]:
        """Get a page of payments with the given status, newest first."""
        status = PaymentStatus(status)
        async with self._guard("list payments by status", status=status.value):
            result = await self.session.execute(
                select(Payment)
                .where(Payment.status == status)
                .order_by(desc(Payment.created_at))
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def update_status(
        self,
        payment_id: str,
        status: Union[PaymentStatus, str],
        payment_date: Optional[datetime] = None,
    ) -> Optional[Payment]:
        """Overwrite the payment status.

        Any status may follow any other. Returns None if the payment does
        not exist.
        """
        payment = await self.get_by_id(payment_id)
        if not payment:
            return None

        status = PaymentStatus(status)
        async with self._guard("update payment status", payment_id=payment_id):
            payment.status = status
            payment.payment_date = settlement_date(status, payment_date, payment.payment_date)
            await self.session.flush()
        logger.info(f"Payment {payment_id} status updated to {status.value}")
        return payment

    async def update_payment_details(
        self,
        payment_id: str,
        transaction_id: str,
        gateway_response: Optional[dict],
        status: Union[PaymentStatus, str],
    ) -> Optional[Payment]:
        """Record a gateway result and stamp the payment date with now."""
        payment = await self.get_by_id(payment_id)
        if not payment:
            return None

        async with self._guard("update payment details", payment_id=payment_id):
            payment.transaction_id = transaction_id
            payment.gateway_response = gateway_response
            payment.status = PaymentStatus(status)
            payment.payment_date = datetime.utcnow()
            await self.session.flush()
        logger.info(f"Payment {payment_id} processed with transaction {transaction_id}")
        return payment

    async def get_overdue_payments(self, today: Optional[date] = None) -> list[Payment]:
        """Get pending payments whose due date is strictly before today, oldest first."""
        today = today or _utc_today()
        async with self._guard("list overdue payments"):
            result = await self.session.execute(
                select(Payment)
                .where(
                    and_(
                        Payment.status == PaymentStatus.PENDING,
                        Payment.due_date < today,
                    )
                )
                .order_by(Payment.due_date)
            )
            return list(result.scalars().all())

    async def get_statistics(self, today: Optional[date] = None) -> dict:
        """Aggregate payment counts and the total amount collected.

        Returns:
            dict: total_amount (sum of completed payments), completed_payments,
            pending_payments, overdue_payments (pending and past due)
        """
        today = today or _utc_today()
        async with self._guard("payment statistics"):
            result = await self.session.execute(
                select(
                    Payment.status,
                    func.count(Payment.id),
                    func.coalesce(func.sum(Payment.amount), 0),
                ).group_by(Payment.status)
            )
            by_status = {
                PaymentStatus(status): (count, total)
                for status, count, total in result.all()
            }

            overdue_result = await self.session.execute(
                select(func.count(Payment.id)).where(
                    and_(
                        Payment.status == PaymentStatus.PENDING,
                        Payment.due_date < today,
                    )
                )
            )
            overdue = overdue_result.scalar_one()

        completed_count, completed_total = by_status.get(PaymentStatus.COMPLETED, (0, 0))
        pending_count, _ = by_status.get(PaymentStatus.PENDING, (0, 0))
        return {
            "total_amount": Decimal(str(completed_total)),
            "completed_payments": completed_count,
            "pending_payments": pending_count,
            "overdue_payments": overdue,
        }


# ==================== Invoices ====================


class InvoiceRepository(BaseRepository):
    """Repository for invoice operations."""

    async def generate_invoice_number(self, now: Optional[datetime] = None) -> str:
        """Next invoice number for the day of ``now``.

        Takes the greatest existing number sharing the ``INV-YYYYMMDD-`` prefix
        and increments its four-digit sequence. The read-then-write is not
        locked; two concurrent creations can draw the same number, in which
        case the unique constraint rejects the second insert. If the lookup
        fails, the sequence falls back to the last four digits of the
        millisecond clock.

        The format holds up to 9999 invoices a day. The next number after
        ``-9999`` is ``-10000``, which sorts below ``-9999``, so every later
        call draws ``-10000`` again and its insert is rejected as a duplicate.
        """
        now = now or datetime.utcnow()
        prefix = f"{INVOICE_NUMBER_PREFIX}-{now:%Y%m%d}-"

        try:
            result = await self.session.execute(
                select(Invoice.invoice_number)
                .where(Invoice.invoice_number.like(f"{prefix}%"))
                .order_by(desc(Invoice.invoice_number))
                .limit(1)
            )
            last_number = result.scalar_one_or_none()
            sequence = int(last_number[-4:]) + 1 if last_number else 1
        except (SQLAlchemyError, ValueError) as e:
            log_warning(
                logger,
                "Invoice number lookup failed, using timestamp sequence",
                error=str(e),
                prefix=prefix,
            )
            sequence = int(time.time() * 1000) % 10000

        return f"{prefix}{sequence:04d}"

    async def create(
        self,
        payment_id: str,
        student_id: str,
        amount: Union[Decimal, float, int],
        description: str,
        due_date: date,
        status: Union[PaymentStatus, str] = PaymentStatus.PENDING,
        issue_date: Optional[datetime] = None,
        paid_date: Optional[datetime] = None,
    ) -> Invoice:
        """Create a new invoice with the next invoice number of the day.

        Raises:
            ValidationError: If a required field is missing
        """
        require_fields(
            {
                "payment_id": payment_id,
                "student_id": student_id,
                "amount": amount,
                "description": description,
                "due_date": due_date,
            },
            "payment_id", "student_id", "amount", "description", "due_date",
        )

        now = datetime.utcnow()
        invoice_number = await self.generate_invoice_number(now)
        status = PaymentStatus(status)
        invoice = Invoice(
            invoice_number=invoice_number,
            payment_id=payment_id,
            student_id=student_id,
            amount=Decimal(str(amount)),
            description=description,
            status=status,
            due_date=due_date,
            issue_date=issue_date or now,
            paid_date=settlement_date(status, paid_date),
        )
        async with self._guard("create invoice", payment_id=payment_id):
            self.session.add(invoice)
            await self.session.flush()
        logger.info(f"Invoice {invoice_number} created for payment {payment_id}")
        return invoice

    async def get_by_id(self, invoice_id: str) -> Optional[Invoice]:
        """Get invoice by ID."""
        async with self._guard("get invoice", invoice_id=invoice_id):
            result = await self.session.execute(
                select(Invoice).where(Invoice.id == invoice_id)
            )
            return result.scalar_one_or_none()

    async def get_by_invoice_number(self, invoice_number: str) -> Optional[Invoice]:
        """Get invoice by its human-readable number."""
        async with self._guard("get invoice by number", invoice_number=invoice_number):
            result = await self.session.execute(
                select(Invoice).where(Invoice.invoice_number == invoice_number)
            )
            return result.scalar_one_or_none()

    async def get_by_student_id(self, student_id: str) -> list[Invoice]:
        """Get all invoices of a student, newest issue date first."""
        async with self._guard("list student invoices", student_id=student_id):
            result = await self.session.execute(
                select(Invoice)
                .where(Invoice.student_id == student_id)
                .order_by(desc(Invoice.issue_date))
            )
            return list(result.scalars().all())

    async def get_by_payment_id(self, payment_id: str) -> Optional[Invoice]:
        """Get the invoice generated from a payment, if any."""
        async with self._guard("get invoice by payment", payment_id=payment_id):
            result = await self.session.execute(
                select(Invoice).where(Invoice.payment_id == payment_id)
            )
            return result.scalar_one_or_none()

    async def get_all(self, limit: int = 100, offset: int = 0) -> list[Invoice]:
        """Get a page of invoices, newest issue date first."""
        async with self._guard("list invoices"):
            result = await self.session.execute(
                select(Invoice)
                .order_by(desc(Invoice.issue_date))
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def get_by_status(
        self,
        status: Union[PaymentStatus, str],
        limit: int = 100,
        offset: int = 0,
    ) -> list[Invoice]:
        """Get a page of invoices with the given status."""
        status = PaymentStatus(status)
        async with self._guard("list invoices by status", status=status.value):
            result = await self.session.execute(
                select(Invoice)
                .where(Invoice.status == status)
                .order_by(desc(Invoice.issue_date))
                .limit(limit)
                .offset(offset)
            )
            return list(result.scalars().all())

    async def get_overdue_invoices(self, today: Optional[date] = None) -> list[Invoice]:
        """Get pending invoices whose due date is strictly before today."""
        today = today or _utc_today()
        async with self._guard("list overdue invoices"):
            result = await self.session.execute(
                select(Invoice)
                .where(
                    and_(
                        Invoice.status == PaymentStatus.PENDING,
                        Invoice.due_date < today,
                    )
                )
                .order_by(Invoice.due_date)
            )
            return list(result.scalars().all())

    async def update_status(
        self,
        invoice_id: str,
        status: Union[PaymentStatus, str],
        paid_date: Optional[datetime] = None,
    ) -> Optional[Invoice]:
        """Overwrite the invoice status. Returns None if the invoice does not exist."""
        invoice = await self.get_by_id(invoice_id)
        if not invoice:
            return None

        status = PaymentStatus(status)
        async with self._guard("update invoice status", invoice_id=invoice_id):
            invoice.status = status
            invoice.paid_date = settlement_date(status, paid_date, invoice.paid_date)
            await self.session.flush()
        logger.info(f"Invoice {invoice_id} status updated to {status.value}")
        return invoice


# ==================== Payment Methods ====================


class PaymentMethodRepository(BaseRepository):
    """Repository for stored payment methods.

    Every write that leaves a method with ``is_default`` set first clears the
    flag on all of the student's methods. Both steps are flushed in the
    caller's transaction so they commit together.
    """

    async def _clear_default_for_student(self, student_id: str) -> None:
        result = await self.session.execute(
            select(PaymentMethod).where(
                and_(
                    PaymentMethod.student_id == student_id,
                    PaymentMethod.is_default == True,  # noqa: E712
                )
            )
        )
        for method in result.scalars().all():
            method.is_default = False

    async def create(
        self,
        student_id: str,
        type: Union[PaymentMethodType, str],
        provider: Union[PaymentGatewayName, str],
        token: Optional[str] = None,
        last_four: Optional[str] = None,
        expiry_date: Optional[str] = None,
        card_brand: Optional[str] = None,
        is_default: bool = False,
        billing_details: Optional[dict] = None,
    ) -> PaymentMethod:
        """Store a new payment method for a student.

        Raises:
            ValidationError: If student_id, type or provider is missing
        """
        require_fields(
            {"student_id": student_id, "type": type, "provider": provider},
            "student_id", "type", "provider",
        )

        method = PaymentMethod(
            student_id=student_id,
            type=PaymentMethodType(type),
            provider=PaymentGatewayName(provider),
            token=token,
            last_four=last_four,
            expiry_date=expiry_date,
            card_brand=card_brand,
            is_default=bool(is_default),
            billing_details=billing_details,
        )
        async with self._guard("create payment method", student_id=student_id):
            if method.is_default:
                await self._clear_default_for_student(student_id)
            self.session.add(method)
            await self.session.flush()
        logger.info(f"Payment method {method.id} created for student {student_id}")
        return method

    async def get_by_id(self, method_id: str) -> Optional[PaymentMethod]:
        """Get payment method by ID."""
        async with self._guard("get payment method", method_id=method_id):
            result = await self.session.execute(
                select(PaymentMethod).where(PaymentMethod.id == method_id)
            )
            return result.scalar_one_or_none()

    async def get_by_student_id(self, student_id: str) -> list[PaymentMethod]:
        """Get a student's payment methods, default first, then newest."""
        async with self._guard("list student payment methods", student_id=student_id):
            result = await self.session.execute(
                select(PaymentMethod)
                .where(PaymentMethod.student_id == student_id)
                .order_by(desc(PaymentMethod.is_default), desc(PaymentMethod.created_at))
            )
            return list(result.scalars().all())

    async def get_default_for_student(self, student_id: str) -> Optional[PaymentMethod]:
        """Get the student's default payment method, if one is set."""
        async with self._guard("get default payment method", student_id=student_id):
            result = await self.session.execute(
                select(PaymentMethod)
                .where(
                    and_(
                        PaymentMethod.student_id == student_id,
                        PaymentMethod.is_default == True,  # noqa: E712
                    )
                )
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def set_default(self, method_id: str) -> Optional[PaymentMethod]:
        """Make a method its student's only default. Returns None if not found."""
        method = await self.get_by_id(method_id)
        if not method:
            return None

        async with self._guard("set default payment method", method_id=method_id):
            await self._clear_default_for_student(method.student_id)
            method.is_default = True
            await self.session.flush()
        logger.info(f"Payment method {method_id} set as default for student {method.student_id}")
        return method

    async def update(self, method_id: str, **fields: Any) -> Optional[PaymentMethod]:
        """Apply a partial update. Fields passed as None are left unchanged.

        Returns None if the method does not exist.
        """
        method = await self.get_by_id(method_id)
        if not method:
            return None

        changes = {
            key: value
            for key, value in fields.items()
            if key in PAYMENT_METHOD_UPDATABLE_FIELDS and value is not None
        }
        if "type" in changes:
            changes["type"] = PaymentMethodType(changes["type"])
        if "provider" in changes:
            changes["provider"] = PaymentGatewayName(changes["provider"])
        if not changes:
            return method

        async with self._guard("update payment method", method_id=method_id):
            if changes.get("is_default") is True:
                await self._clear_default_for_student(method.student_id)
            for key, value in changes.items():
                setattr(method, key, value)
            await self.session.flush()
        logger.info(f"Payment method {method_id} updated")
        return method

    async def delete(self, method_id: str) -> bool:
        """Delete a payment method. Returns False if it did not exist."""
        async with self._guard("delete payment method", method_id=method_id):
            result = await self.session.execute(
                delete(PaymentMethod).where(PaymentMethod.id == method_id)
            )
            await self.session.flush()
        deleted = result.rowcount > 0
        if deleted:
            logger.info(f"Payment method {method_id} deleted")
        return deleted


# ==================== Subscriptions ====================


class SubscriptionRepository(BaseRepository):
    """Repository for subscription operations."""

    # Set once the subscriptions table is known to exist in this process
    _table_ready: bool = False

    async def ensure_table(self) -> None:
        """Create the subscriptions table if it is missing (once per process)."""
        if SubscriptionRepository._table_ready:
            return
        async with self._guard("ensure subscriptions table"):
            connection = await self.session.connection()
            await connection.run_sync(Subscription.__table__.create, checkfirst=True)
        SubscriptionRepository._table_ready = True

    async def create(
        self,
        student_id: str,
        name: str,
        description: str,
        amount: Union[Decimal, float, int],
        frequency: Union[SubscriptionFrequency, str],
        start_date: date,
        payment_method_id: Optional[str] = None,
        end_date: Optional[date] = None,
        status: Union[SubscriptionStatus, str] = SubscriptionStatus.ACTIVE,
    ) -> Subscription:
        """Create a subscription whose first billing date is its start date.

        Raises:
            ValidationError: If a required field is missing or amount is not positive
        """
        require_fields(
            {
                "student_id": student_id,
                "name": name,
                "description": description,
                "amount": amount,
                "frequency": frequency,
                "start_date": start_date,
            },
            "student_id", "name", "description", "amount", "frequency", "start_date",
        )
        if Decimal(str(amount)) <= 0:
            raise ValidationError("Amount must be greater than zero")

        await self.ensure_table()

        subscription = Subscription(
            student_id=student_id,
            name=name,
            description=description,
            amount=Decimal(str(amount)),
            frequency=SubscriptionFrequency(frequency),
            start_date=start_date,
            end_date=end_date,
            next_billing_date=start_date,
            status=SubscriptionStatus(status),
            payment_method_id=payment_method_id,
        )
        async with self._guard("create subscription", student_id=student_id):
            self.session.add(subscription)
            await self.session.flush()
        logger.info(f"Subscription {subscription.id} created for student {student_id}")
        return subscription

    async def get_by_id(self, subscription_id: str) -> Optional[Subscription]:
        """Get subscription by ID."""
        async with self._guard("get subscription", subscription_id=subscription_id):
            result = await self.session.execute(
                select(Subscription).where(Subscription.id == subscription_id)
            )
            return result.scalar_one_or_none()

    async def get_by_student_id(self, student_id: str) -> list[Subscription]:
        """Get all subscriptions of a student, newest first."""
        async with self._guard("list student subscriptions", student_id=student_id):
            result = await self.session.execute(
                select(Subscription)
                .where(Subscription.student_id == student_id)
                .order_by(desc(Subscription.created_at))
            )
            return list(result.scalars().all())

    async def update_status(
        self,
        subscription_id: str,
        status: Union[SubscriptionStatus, str],
    ) -> Optional[Subscription]:
        """Overwrite the subscription status."""
        subscription = await self.get_by_id(subscription_id)
        if not subscription:
            return None

        status = SubscriptionStatus(status)
        async with self._guard("update subscription status", subscription_id=subscription_id):
            subscription.status = status
            await self.session.flush()
        logger.info(f"Subscription {subscription_id} status updated to {status.value}")
        return subscription

    async def update_next_billing_date(
        self,
        subscription_id: str,
        next_billing_date: date,
    ) -> Optional[Subscription]:
        """Set the date of the next renewal."""
        subscription = await self.get_by_id(subscription_id)
        if not subscription:
            return None

        async with self._guard("update next billing date", subscription_id=subscription_id):
            subscription.next_billing_date = next_billing_date
            await self.session.flush()
        return subscription

    async def cancel(
        self,
        subscription_id: str,
        end_date: Optional[date] = None,
    ) -> Optional[Subscription]:
        """Cancel a subscription, ending it on ``end_date`` or today."""
        subscription = await self.get_by_id(subscription_id)
        if not subscription:
            return None

        async with self._guard("cancel subscription", subscription_id=subscription_id):
            subscription.status = SubscriptionStatus.CANCELLED
            subscription.end_date = end_date or _utc_today()
            await self.session.flush()
        logger.info(f"Subscription {subscription_id} cancelled")
        return subscription

    async def get_active_subscriptions(self) -> list[Subscription]:
        """Get all active subscriptions, soonest billing date first."""
        async with self._guard("list active subscriptions"):
            result = await self.session.execute(
                select(Subscription)
                .where(Subscription.status == SubscriptionStatus.ACTIVE)
                .order_by(Subscription.next_billing_date)
            )
            return list(result.scalars().all())

    async def get_due_for_renewal(self, as_of: Optional[date] = None) -> list[Subscription]:
        """Get active subscriptions whose next billing date is on or before ``as_of``."""
        as_of = as_of or _utc_today()
        async with self._guard("list subscriptions due for renewal"):
            result = await self.session.execute(
                select(Subscription)
                .where(
                    and_(
                        Subscription.status == SubscriptionStatus.ACTIVE,
                        Subscription.next_billing_date <= as_of,
                    )
                )
                .order_by(Subscription.next_billing_date)
            )
            return list(result.scalars().all())

    async def update_payment_method(
        self,
        subscription_id: str,
        payment_method_id: Optional[str],
    ) -> Optional[Subscription]:
        """Link a different stored payment method to the subscription."""
        subscription = await self.get_by_id(subscription_id)
        if not subscription:
            return None

        async with self._guard("update subscription payment method", subscription_id=subscription_id):
            subscription.payment_method_id = payment_method_id
            await self.session.flush()
        logger.info(f"Subscription {subscription_id} payment method set to {payment_method_id}")
        return subscription

"""Tests for the billing repositories against an in-memory database."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from schoolpay.modules.billing.exceptions import ValidationError
from schoolpay.modules.billing.models import (
    PaymentGatewayName,
    PaymentMethodCode,
    PaymentStatus,
    SubscriptionFrequency,
    SubscriptionStatus,
)
from schoolpay.modules.billing.repository import (
    InvoiceRepository,
    PaymentMethodRepository,
    PaymentRepository,
    SubscriptionRepository,
    settlement_date,
)


TODAY = date(2024, 6, 15)


async def _payment(session, **overrides):
    values = {
        "student_id": "student-1",
        "amount": Decimal("250.00"),
        "description": "Tuition fee",
        "due_date": TODAY,
    }
    values.update(overrides)
    return await PaymentRepository(session).create(**values)


class TestPaymentRepository:
    """Tests for payment persistence."""

    @pytest.mark.asyncio
    async def test_create_applies_defaults(self, session) -> None:
        payment = await _payment(session)
        await session.commit()

        found = await PaymentRepository(session).get_by_id(payment.id)

        assert found is not None
        assert found.student_id == "student-1"
        assert found.amount == Decimal("250.00")
        assert found.status == PaymentStatus.PENDING
        assert found.payment_method == PaymentMethodCode.CREDIT_CARD
        assert found.payment_gateway == PaymentGatewayName.MANUAL
        assert found.payment_date is None
        assert found.created_at is not None

    @pytest.mark.asyncio
    async def test_missing_fields_are_named(self, session) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await PaymentRepository(session).create(
                student_id="",
                amount=Decimal("10"),
                description=None,
                due_date=TODAY,
            )

        assert exc_info.value.message == "Missing required fields: student_id, description"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
    async def test_non_positive_amount_is_rejected(self, session, amount) -> None:
        with pytest.raises(ValidationError):
            await _payment(session, amount=amount)

    @pytest.mark.asyncio
    async def test_completed_payment_gets_a_payment_date(self, session) -> None:
        payment = await _payment(session, status=PaymentStatus.COMPLETED)

        assert payment.payment_date is not None

    @pytest.mark.asyncio
    async def test_status_update_keeps_payment_date_consistent(self, session) -> None:
        repo = PaymentRepository(session)
        payment = await _payment(session)
        paid_at = datetime(2024, 6, 16, 12, 0)

        completed = await repo.update_status(payment.id, PaymentStatus.COMPLETED, paid_at)
        assert completed.payment_date == paid_at

        refunded = await repo.update_status(payment.id, PaymentStatus.REFUNDED)
        assert refunded.payment_date == paid_at

        reopened = await repo.update_status(payment.id, PaymentStatus.PENDING)
        assert reopened.payment_date is None

    @pytest.mark.asyncio
    async def test_update_status_of_missing_payment_returns_none(self, session) -> None:
        assert await PaymentRepository(session).update_status("missing", "completed") is None

    @pytest.mark.asyncio
    async def test_overdue_excludes_payments_due_today(self, session) -> None:
        overdue = await _payment(session, due_date=TODAY - timedelta(days=1))
        await _payment(session, due_date=TODAY)
        await _payment(
            session,
            due_date=TODAY - timedelta(days=10),
            status=PaymentStatus.COMPLETED,
        )
        await session.commit()

        result = await PaymentRepository(session).get_overdue_payments(today=TODAY)

        assert [payment.id for payment in result] == [overdue.id]

    @pytest.mark.asyncio
    async def test_statistics(self, session) -> None:
        await _payment(session, amount=Decimal("100.00"), status=PaymentStatus.COMPLETED)
        await _payment(session, amount=Decimal("50.50"), status=PaymentStatus.COMPLETED)
        await _payment(session, amount=Decimal("75.00"), due_date=TODAY - timedelta(days=3))
        await _payment(session, amount=Decimal("20.00"), due_date=TODAY + timedelta(days=3))
        await _payment(session, amount=Decimal("999.00"), status=PaymentStatus.FAILED)
        await session.commit()

        stats = await PaymentRepository(session).get_statistics(today=TODAY)

        assert stats == {
            "total_amount": Decimal("150.50"),
            "completed_payments": 2,
            "pending_payments": 2,
            "overdue_payments": 1,
        }

    @pytest.mark.asyncio
    async def test_statistics_of_empty_table(self, session) -> None:
        stats = await PaymentRepository(session).get_statistics(today=TODAY)

        assert stats["total_amount"] == 0
        assert stats["completed_payments"] == 0
        assert stats["overdue_payments"] == 0

    @pytest.mark.asyncio
    async def test_get_by_status_filters_and_pages(self, session) -> None:
        completed = [
            await _payment(session, status=PaymentStatus.COMPLETED) for _ in range(3)
        ]
        await _payment(session)
        await _payment(session, status=PaymentStatus.FAILED)
        await session.commit()
        repo = PaymentRepository(session)

        everything = await repo.get_by_status("completed")
        first_page = await repo.get_by_status(PaymentStatus.COMPLETED, limit=2, offset=0)
        second_page = await repo.get_by_status(PaymentStatus.COMPLETED, limit=2, offset=2)

        assert {payment.id for payment in everything} == {payment.id for payment in completed}
        assert len(first_page) == 2
        assert len(second_page) == 1
        assert {p.id for p in first_page} | {p.id for p in second_page} == {
            payment.id for payment in completed
        }
        assert [p.id for p in await repo.get_by_status("refunded")] == []

    @pytest.mark.asyncio
    async def test_student_payments_are_scoped(self, session) -> None:
        await _payment(session, student_id="student-1")
        await _payment(session, student_id="student-2")
        await session.commit()

        payments = await PaymentRepository(session).get_by_student_id("student-1")

        assert [payment.student_id for payment in payments] == ["student-1"]


class TestInvoiceRepository:
    """Tests for invoice persistence."""

    @pytest.mark.asyncio
    async def test_invoice_lookups(self, session) -> None:
        payment = await _payment(session)
        repo = InvoiceRepository(session)
        invoice = await repo.create(
            payment_id=payment.id,
            student_id=payment.student_id,
            amount=payment.amount,
            description=payment.description,
            due_date=payment.due_date,
        )
        await session.commit()

        assert (await repo.get_by_payment_id(payment.id)).id == invoice.id
        assert (await repo.get_by_invoice_number(invoice.invoice_number)).id == invoice.id
        assert [i.id for i in await repo.get_by_student_id("student-1")] == [invoice.id]
        assert invoice.issue_date is not None
        assert invoice.paid_date is None

    @pytest.mark.asyncio
    async def test_missing_fields_are_rejected(self, session) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await InvoiceRepository(session).create(
                payment_id=None,
                student_id="student-1",
                amount=Decimal("10"),
                description="Fee",
                due_date=TODAY,
            )

        assert "payment_id" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_overdue_invoices(self, session) -> None:
        repo = InvoiceRepository(session)
        late = await _payment(session, due_date=TODAY - timedelta(days=2))
        current = await _payment(session, due_date=TODAY)
        late_invoice = await repo.create(
            payment_id=late.id, student_id="student-1", amount=late.amount,
            description=late.description, due_date=late.due_date,
        )
        await repo.create(
            payment_id=current.id, student_id="student-1", amount=current.amount,
            description=current.description, due_date=current.due_date,
        )
        await session.commit()

        overdue = await repo.get_overdue_invoices(today=TODAY)

        assert [invoice.id for invoice in overdue] == [late_invoice.id]

    @pytest.mark.asyncio
    async def test_get_by_status_filters_and_pages(self, session) -> None:
        """Invoices of one status come back newest issue date first, in pages."""
        repo = InvoiceRepository(session)
        completed_ids = []
        for day in (1, 2, 3):
            payment = await _payment(session, status=PaymentStatus.COMPLETED)
            invoice = await repo.create(
                payment_id=payment.id, student_id="student-1", amount=payment.amount,
                description=payment.description, due_date=payment.due_date,
                status=PaymentStatus.COMPLETED, issue_date=datetime(2024, 6, day),
            )
            completed_ids.append(invoice.id)
        pending = await _payment(session)
        await repo.create(
            payment_id=pending.id, student_id="student-1", amount=pending.amount,
            description=pending.description, due_date=pending.due_date,
            issue_date=datetime(2024, 6, 4),
        )
        await session.commit()

        first_page = await repo.get_by_status("completed", limit=2)
        second_page = await repo.get_by_status(PaymentStatus.COMPLETED, limit=2, offset=2)

        assert [invoice.id for invoice in first_page] == [completed_ids[2], completed_ids[1]]
        assert [invoice.id for invoice in second_page] == [completed_ids[0]]
        assert len(await repo.get_by_status("pending")) == 1

    @pytest.mark.asyncio
    async def test_completing_sets_paid_date(self, session) -> None:
        payment = await _payment(session)
        repo = InvoiceRepository(session)
        invoice = await repo.create(
            payment_id=payment.id, student_id="student-1", amount=payment.amount,
            description=payment.description, due_date=payment.due_date,
        )

        updated = await repo.update_status(invoice.id, PaymentStatus.COMPLETED)

        assert updated.status == PaymentStatus.COMPLETED
        assert updated.paid_date is not None


class TestPaymentMethodRepository:
    """Tests for stored payment methods."""

    @pytest.mark.asyncio
    async def test_partial_update_leaves_other_fields(self, session) -> None:
        repo = PaymentMethodRepository(session)
        method = await repo.create(
            student_id="student-1",
            type="credit_card",
            provider="stripe",
            token="tok_123",
            last_four="4242",
            expiry_date="12/2027",
            card_brand="visa",
        )

        updated = await repo.update(method.id, card_brand="mastercard", last_four=None)

        assert updated.card_brand == "mastercard"
        assert updated.last_four == "4242"
        assert updated.token == "tok_123"

    @pytest.mark.asyncio
    async def test_missing_type_is_rejected(self, session) -> None:
        with pytest.raises(ValidationError):
            await PaymentMethodRepository(session).create(
                student_id="student-1", type=None, provider="stripe"
            )

    @pytest.mark.asyncio
    async def test_delete(self, session) -> None:
        repo = PaymentMethodRepository(session)
        method = await repo.create(student_id="student-1", type="paypal", provider="paypal")
        await session.commit()

        assert await repo.delete(method.id) is True
        await session.commit()
        assert await repo.get_by_id(method.id) is None
        assert await repo.delete(method.id) is False


class TestSubscriptionRepository:
    """Tests for subscription persistence."""

    async def _subscription(self, session, **overrides):
        values = {
            "student_id": "student-1",
            "name": "Bus service",
            "description": "School bus, morning and afternoon",
            "amount": Decimal("40.00"),
            "frequency": SubscriptionFrequency.MONTHLY,
            "start_date": date(2024, 1, 15),
        }
        values.update(overrides)
        return await SubscriptionRepository(session).create(**values)

    @pytest.mark.asyncio
    async def test_first_billing_date_is_start_date(self, session) -> None:
        subscription = await self._subscription(session)

        assert subscription.next_billing_date == date(2024, 1, 15)
        assert subscription.status == SubscriptionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_cancel_sets_end_date(self, session) -> None:
        repo = SubscriptionRepository(session)
        subscription = await self._subscription(session)

        cancelled = await repo.cancel(subscription.id, end_date=date(2024, 3, 1))

        assert cancelled.status == SubscriptionStatus.CANCELLED
        assert cancelled.end_date == date(2024, 3, 1)

    @pytest.mark.asyncio
    async def test_cancel_defaults_end_date_to_today(self, session) -> None:
        repo = SubscriptionRepository(session)
        subscription = await self._subscription(session)

        cancelled = await repo.cancel(subscription.id)

        assert cancelled.end_date == datetime.utcnow().date()

    @pytest.mark.asyncio
    async def test_due_for_renewal_only_includes_active_and_due(self, session) -> None:
        repo = SubscriptionRepository(session)
        due = await self._subscription(session, start_date=date(2024, 1, 15))
        await self._subscription(session, start_date=date(2024, 1, 16))
        suspended = await self._subscription(session, start_date=date(2024, 1, 1))
        await repo.update_status(suspended.id, SubscriptionStatus.SUSPENDED)
        await session.commit()

        result = await repo.get_due_for_renewal(as_of=date(2024, 1, 15))

        assert [subscription.id for subscription in result] == [due.id]

    @pytest.mark.asyncio
    async def test_non_positive_amount_is_rejected(self, session) -> None:
        with pytest.raises(ValidationError):
            await self._subscription(session, amount=Decimal("0"))

    @pytest.mark.asyncio
    async def test_ensure_table_is_idempotent(self, session) -> None:
        repo = SubscriptionRepository(session)
        SubscriptionRepository._table_ready = False
        try:
            await repo.ensure_table()
            await repo.ensure_table()
        finally:
            SubscriptionRepository._table_ready = True

        assert await repo.get_active_subscriptions() == []


class TestSettlementDate:
    """Tests for the settlement date rule shared by payments and invoices."""

    def test_completed_keeps_supplied_date(self) -> None:
        supplied = datetime(2024, 1, 1)
        assert settlement_date("completed", supplied) == supplied

    def test_completed_keeps_current_date(self) -> None:
        current = datetime(2023, 12, 1)
        assert settlement_date("completed", None, current) == current

    def test_completed_without_dates_uses_now(self) -> None:
        assert settlement_date(PaymentStatus.COMPLETED, None) is not None

    @pytest.mark.parametrize("status", ["pending", "failed", "overdue"])
    def test_unsettled_statuses_clear_the_date(self, status) -> None:
        assert settlement_date(status, datetime(2024, 1, 1), datetime(2024, 1, 1)) is None

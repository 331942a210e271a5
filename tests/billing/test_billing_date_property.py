"""Property-based tests for subscription billing-date arithmetic.

Each renewal moves the next billing date forward by exactly one period,
counted from the previous billing date, clamping to the end of shorter
months.
"""

import calendar
from datetime import date

from hypothesis import given, settings, strategies as st
import pytest

from schoolpay.modules.billing.models import SubscriptionFrequency
from schoolpay.modules.billing.renewal import FREQUENCY_MONTHS, advance_billing_date


frequency_strategy = st.sampled_from(list(SubscriptionFrequency))
billing_date_strategy = st.dates(min_value=date(2000, 1, 1), max_value=date(2090, 12, 31))


def _add_months(current: date, months: int) -> date:
    month_index = current.month - 1 + months
    year = current.year + month_index // 12
    month = month_index % 12 + 1
    day = min(current.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


class TestAdvanceBillingDate:
    """Property tests for advance_billing_date."""

    @given(current=billing_date_strategy, frequency=frequency_strategy)
    @settings(max_examples=100)
    def test_advances_by_exactly_one_period(
        self,
        current: date,
        frequency: SubscriptionFrequency,
    ) -> None:
        """*For any* date and frequency, the result is the same day-of-month
        one period later, clamped to the last day of the target month."""
        result = advance_billing_date(current, frequency)

        assert result == _add_months(current, FREQUENCY_MONTHS[frequency])

    @given(current=billing_date_strategy, frequency=frequency_strategy)
    @settings(max_examples=100)
    def test_strictly_advances(
        self,
        current: date,
        frequency: SubscriptionFrequency,
    ) -> None:
        """*For any* renewal, the next billing date moves strictly forward."""
        assert advance_billing_date(current, frequency) > current

    @given(
        current=billing_date_strategy,
        frequency=frequency_strategy,
        renewals=st.integers(min_value=1, max_value=24),
    )
    @settings(max_examples=100)
    def test_repeated_renewals_never_move_past_the_schedule(
        self,
        current: date,
        frequency: SubscriptionFrequency,
        renewals: int,
    ) -> None:
        """*For any* chain of renewals, the date stays within the expected
        month: clamping may shorten the day but never skips a month."""
        result = current
        for _ in range(renewals):
            result = advance_billing_date(result, frequency)

        expected_month = _add_months(
            current.replace(day=1), FREQUENCY_MONTHS[frequency] * renewals
        )
        assert (result.year, result.month) == (expected_month.year, expected_month.month)
        assert result.day <= current.day

    @given(current=billing_date_strategy)
    @settings(max_examples=100)
    def test_frequency_accepts_plain_strings(self, current: date) -> None:
        assert advance_billing_date(current, "semi-annual") == advance_billing_date(
            current, SubscriptionFrequency.SEMI_ANNUAL
        )


class TestBillingDateExamples:
    """Concrete billing-date cases."""

    @pytest.mark.parametrize(
        "current, frequency, expected",
        [
            (date(2024, 1, 15), "monthly", date(2024, 2, 15)),
            (date(2024, 1, 15), "quarterly", date(2024, 4, 15)),
            (date(2024, 1, 15), "semi-annual", date(2024, 7, 15)),
            (date(2024, 1, 15), "annual", date(2025, 1, 15)),
            (date(2024, 1, 31), "monthly", date(2024, 2, 29)),
            (date(2023, 1, 31), "monthly", date(2023, 2, 28)),
            (date(2024, 2, 29), "annual", date(2025, 2, 28)),
            (date(2024, 11, 30), "quarterly", date(2025, 2, 28)),
            (date(2024, 12, 15), "monthly", date(2025, 1, 15)),
        ],
    )
    def test_known_dates(self, current: date, frequency: str, expected: date) -> None:
        assert advance_billing_date(current, frequency) == expected

    def test_unknown_frequency_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            advance_billing_date(date(2024, 1, 15), "weekly")

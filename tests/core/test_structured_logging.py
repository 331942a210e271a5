"""Tests for structured logging and correlation IDs."""

import json
import logging

import pytest

from schoolpay.core.logging import (
    StructuredFormatter,
    clear_correlation_id,
    get_correlation_id,
    log_error,
    log_warning,
    set_correlation_id,
)


def _record(message: str = "Payment created", exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="schoolpay.modules.billing.service",
        level=logging.ERROR if exc_info else logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def reset_correlation_id():
    clear_correlation_id()
    yield
    clear_correlation_id()


class TestCorrelationId:
    def test_generated_once_per_context(self) -> None:
        first = get_correlation_id()

        assert first
        assert get_correlation_id() == first

    def test_explicit_id_is_used(self) -> None:
        set_correlation_id("renewal-task")

        assert get_correlation_id() == "renewal-task"


class TestStructuredFormatter:
    """Tests for the JSON log format."""

    def test_core_fields(self) -> None:
        set_correlation_id("req-1")

        data = json.loads(StructuredFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "schoolpay.modules.billing.service"
        assert data["message"] == "Payment created"
        assert data["correlation_id"] == "req-1"
        assert data["timestamp"].endswith("Z")
        assert data["source"]["line"] == 10

    def test_extra_fields_are_included(self) -> None:
        record = _record(payment_id="p-1", amount=object())

        data = json.loads(StructuredFormatter().format(record))

        assert data["extra"]["payment_id"] == "p-1"
        assert isinstance(data["extra"]["amount"], str)

    def test_exception_details(self) -> None:
        try:
            raise RuntimeError("database unavailable")
        except RuntimeError as e:
            record = _record("Commit failed", exc_info=(type(e), e, e.__traceback__))

        data = json.loads(StructuredFormatter().format(record))

        assert data["exception"]["type"] == "RuntimeError"
        assert data["exception"]["message"] == "database unavailable"
        assert data["exception"]["stack_trace"]

    def test_stack_trace_can_be_disabled(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError as e:
            record = _record("Failed", exc_info=(type(e), e, e.__traceback__))

        data = json.loads(StructuredFormatter(include_stack_trace=False).format(record))

        assert "exception" not in data


class TestLogError:
    def test_attaches_context_and_exception(self, caplog) -> None:
        logger = logging.getLogger("schoolpay.tests")
        set_correlation_id("req-9")

        with caplog.at_level(logging.ERROR, logger="schoolpay.tests"):
            log_error(logger, "Renewal failed", exception=ValueError("bad"), subscription_id="s-1")

        record = caplog.records[-1]
        assert record.getMessage() == "Renewal failed"
        assert record.subscription_id == "s-1"
        assert record.correlation_id == "req-9"
        assert record.exc_info[0] is ValueError

    def test_warning_carries_context(self, caplog) -> None:
        logger = logging.getLogger("schoolpay.tests")
        set_correlation_id("req-10")

        with caplog.at_level(logging.WARNING, logger="schoolpay.tests"):
            log_warning(logger, "Invoice number lookup failed", prefix="INV-20240305-")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.prefix == "INV-20240305-"
        assert record.correlation_id == "req-10"

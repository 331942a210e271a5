"""Billing error taxonomy.

Each error carries the HTTP status the API layer answers with; the
exception handlers registered in ``schoolpay.main`` are the only place that
turns these into responses.
"""

from typing import Any, Optional


class BillingError(Exception):
    """Base exception for billing errors."""

    status_code: int = 500

    def __init__(self, message: str, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(BillingError):
    """Raised when required fields are missing or malformed."""

    status_code = 400


class NotFoundError(BillingError):
    """Raised when a payment, invoice, method or subscription does not exist."""

    status_code = 404


class OwnershipError(BillingError):
    """Raised when a payment method belongs to a different student."""

    status_code = 403


class PersistenceError(BillingError):
    """Raised when the underlying storage fails."""

    status_code = 500


class InvoiceAlreadyExistsError(ValidationError):
    """Raised when creating a second invoice for the same payment."""

    def __init__(self, invoice: Any):
        super().__init__("Invoice already exists for this payment", data=invoice)
        self.invoice = invoice


def require_fields(values: dict[str, Any], *names: str) -> None:
    """Raise ValidationError naming every missing (None or empty) field."""
    missing = [name for name in names if values.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

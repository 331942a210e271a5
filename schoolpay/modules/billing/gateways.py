"""Payment gateway adapters used when processing a payment.

Defines the contract a gateway integration implements and a registry that
resolves the adapter for a gateway name. The shipped adapters settle charges
locally: they generate a transaction id and a synthetic success response
without calling an external service.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, Type, Union

from schoolpay.modules.billing.models import PaymentGatewayName, PaymentMethod

logger = logging.getLogger(__name__)


@dataclass
class ChargeResult:
    """Result from a charge attempt."""
    transaction_id: str
    status: str
    gateway_response: dict = field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


class BillingGateway(ABC):
    """Abstract interface for gateway integrations.

    Implementations charge an amount against a stored payment method (or
    against no stored method for manual settlement).
    """

    def __init__(self, name: str):
        self.name = name

    @abstractmethod
    async def charge(
        self,
        method: Optional[PaymentMethod],
        amount: Union[Decimal, float],
    ) -> ChargeResult:
        """Charge an amount.

        Args:
            method: Stored payment method to charge, if any
            amount: Amount to charge

        Returns:
            ChargeResult with the gateway transaction id and status
        """
        pass


class SimulatedGateway(BillingGateway):
    """Gateway that approves every charge locally."""

    async def charge(
        self,
        method: Optional[PaymentMethod],
        amount: Union[Decimal, float],
    ) -> ChargeResult:
        transaction_id = str(uuid.uuid4())
        response = {
            "transactionId": transaction_id,
            "status": "success",
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "gateway": self.name,
        }
        logger.info(
            f"Simulated {self.name} charge of {amount} approved "
            f"(method={method.id if method else None}, transaction={transaction_id})"
        )
        return ChargeResult(
            transaction_id=transaction_id,
            status="success",
            gateway_response=response,
        )


class GatewayRegistry:
    """Resolves gateway adapters by name."""

    _gateways: dict[str, Type[BillingGateway]] = {
        PaymentGatewayName.MANUAL.value: SimulatedGateway,
        PaymentGatewayName.PAYPAL.value: SimulatedGateway,
        PaymentGatewayName.STRIPE.value: SimulatedGateway,
    }

    @classmethod
    def get(cls, name: Union[PaymentGatewayName, str]) -> BillingGateway:
        """Create the adapter for a gateway name.

        Raises:
            ValueError: If no adapter is registered under that name
        """
        key = name.value if isinstance(name, PaymentGatewayName) else str(name)
        gateway_class = cls._gateways.get(key)
        if not gateway_class:
            raise ValueError(f"Unsupported payment gateway: {key}")
        return gateway_class(key)

    @classmethod
    def register(cls, name: str, gateway_class: Type[BillingGateway]) -> None:
        """Register (or replace) the adapter class for a gateway name."""
        cls._gateways[name] = gateway_class

    @classmethod
    def get_supported_gateways(cls) -> list[str]:
        return list(cls._gateways.keys())

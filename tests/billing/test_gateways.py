"""Tests for gateway adapters and the gateway registry."""

from decimal import Decimal
from typing import Optional

import pytest

from schoolpay.modules.billing.gateways import (
    BillingGateway,
    ChargeResult,
    GatewayRegistry,
    SimulatedGateway,
)


class DecliningGateway(BillingGateway):
    async def charge(self, method, amount) -> ChargeResult:
        return ChargeResult(
            transaction_id="",
            status="declined",
            error_message="Insufficient funds",
        )


class TestGatewayRegistry:
    """Tests for resolving adapters by gateway name."""

    @pytest.mark.parametrize("name", ["manual", "paypal", "stripe"])
    def test_supported_gateways_resolve(self, name: str) -> None:
        gateway = GatewayRegistry.get(name)

        assert isinstance(gateway, SimulatedGateway)
        assert gateway.name == name

    def test_unknown_gateway_is_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unsupported payment gateway: bitcoin"):
            GatewayRegistry.get("bitcoin")

    def test_register_adds_gateway(self) -> None:
        GatewayRegistry.register("declining", DecliningGateway)
        try:
            assert "declining" in GatewayRegistry.get_supported_gateways()
            assert isinstance(GatewayRegistry.get("declining"), DecliningGateway)
        finally:
            GatewayRegistry._gateways.pop("declining", None)


class TestSimulatedGateway:
    """Tests for the locally settling adapter."""

    @pytest.mark.asyncio
    async def test_charge_succeeds_with_transaction_id(self) -> None:
        result = await SimulatedGateway("stripe").charge(None, Decimal("12.50"))

        assert result.succeeded
        assert result.transaction_id
        assert result.gateway_response["transactionId"] == result.transaction_id
        assert result.gateway_response["status"] == "success"
        assert result.gateway_response["gateway"] == "stripe"
        assert result.gateway_response["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_transaction_ids_are_unique(self) -> None:
        gateway = SimulatedGateway("manual")
        ids = {(await gateway.charge(None, 1)).transaction_id for _ in range(20)}

        assert len(ids) == 20

    @pytest.mark.asyncio
    async def test_declined_result_is_not_successful(self) -> None:
        result: Optional[ChargeResult] = await DecliningGateway("declining").charge(None, 5)

        assert not result.succeeded
        assert result.error_message == "Insufficient funds"

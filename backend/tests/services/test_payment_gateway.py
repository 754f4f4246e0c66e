"""Tests for the Midtrans adapter, simulated strategy, fallback, and signatures."""

import json

import httpx
import pytest

from thesisflow.core.config import Settings
from thesisflow.core.exceptions import GatewayError, PaymentConfigError
from thesisflow.integrations.payments import (
    MIDTRANS_PRODUCTION_URL,
    MIDTRANS_SANDBOX_URL,
    FallbackPaymentGateway,
    MidtransGateway,
    SimulatedPaymentGateway,
    build_payment_gateway,
    compute_signature,
    is_simulated,
    verify_signature,
)

pytestmark = pytest.mark.unit


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestMidtransGateway:
    async def test_opens_transaction(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(201, json={"token": "snap-token", "redirect_url": "https://pay/x"})

        async with _client(handler) as client:
            gateway = MidtransGateway("server-key", client=client)
            session = await gateway.open_transaction("TF-1", 399000, "a@b.com")

        assert session.token == "snap-token"
        assert session.redirect_url == "https://pay/x"
        assert session.settled is False
        assert session.simulated is False
        assert seen["url"] == MIDTRANS_SANDBOX_URL
        assert seen["body"]["transaction_details"] == {"order_id": "TF-1", "gross_amount": 399000}
        assert seen["auth"].startswith("Basic ")

    def test_production_url(self):
        assert MidtransGateway("k", is_production=True).url == MIDTRANS_PRODUCTION_URL

    async def test_missing_server_key_is_config_error(self):
        with pytest.raises(PaymentConfigError):
            await MidtransGateway("").open_transaction("TF-1", 1, "a@b.com")

    async def test_unauthorized_is_config_error(self):
        def handler(request):
            return httpx.Response(401, json={"status_message": "Access denied"})

        async with _client(handler) as client:
            with pytest.raises(PaymentConfigError):
                await MidtransGateway("k", client=client).open_transaction("TF-1", 1, "a@b.com")

    async def test_rejection_is_gateway_error_with_message(self):
        def handler(request):
            return httpx.Response(400, json={"error_messages": ["gross_amount is invalid"]})

        async with _client(handler) as client:
            with pytest.raises(GatewayError, match="gross_amount is invalid") as exc_info:
                await MidtransGateway("k", client=client).open_transaction("TF-1", 1, "a@b.com")
        assert exc_info.value.context["order_id"] == "TF-1"

    async def test_timeout_is_gateway_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            with pytest.raises(GatewayError, match="timed out"):
                await MidtransGateway("k", client=client).open_transaction("TF-1", 1, "a@b.com")

    async def test_missing_token_is_gateway_error(self):
        def handler(request):
            return httpx.Response(201, json={})

        async with _client(handler) as client:
            with pytest.raises(GatewayError):
                await MidtransGateway("k", client=client).open_transaction("TF-1", 1, "a@b.com")


class TestSimulatedAndFallback:
    async def test_simulated_settles_with_demo_prefix(self):
        session = await SimulatedPaymentGateway().open_transaction("TF-1", 399000, "a@b.com")
        assert session.settled is True
        assert session.simulated is True
        assert session.transaction_id == "DEMO-TF-1"
        assert is_simulated(session.transaction_id)
        assert not is_simulated("midtrans-txn-1")

    async def test_fallback_only_on_config_error(self):
        gateway = FallbackPaymentGateway(MidtransGateway(""), SimulatedPaymentGateway())
        session = await gateway.open_transaction("TF-1", 1, "a@b.com")
        assert session.simulated is True

    async def test_fallback_does_not_mask_gateway_errors(self):
        def handler(request):
            return httpx.Response(500, json={"status_message": "boom"})

        async with _client(handler) as client:
            gateway = FallbackPaymentGateway(MidtransGateway("k", client=client), SimulatedPaymentGateway())
            with pytest.raises(GatewayError):
                await gateway.open_transaction("TF-1", 1, "a@b.com")

    @pytest.mark.parametrize(
        "mode,expected",
        [("simulated", SimulatedPaymentGateway), ("midtrans", MidtransGateway), ("auto", FallbackPaymentGateway)],
    )
    def test_build_from_settings(self, mode, expected):
        assert isinstance(build_payment_gateway(Settings(payment_mode=mode)), expected)

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValueError):
            build_payment_gateway(Settings(payment_mode="cash"))


class TestSignature:
    def test_round_trip(self):
        signature = compute_signature("TF-1", "200", "399000.00", "secret")
        assert len(signature) == 128
        assert verify_signature("TF-1", "200", "399000.00", "secret", signature)

    def test_mismatch(self):
        signature = compute_signature("TF-1", "200", "399000.00", "secret")
        assert not verify_signature("TF-1", "200", "1.00", "secret", signature)

"""Payment Gateway Adapter: Midtrans Snap, simulated payments, and the
configuration-selected strategy that wires them together.

The simulated strategy exists for environments without gateway credentials.
Every simulated session carries ``simulated=True`` and a ``DEMO-`` transaction
id, and is logged as ``payment_mode="simulated"``.
"""

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import httpx
import structlog

from thesisflow.core.config import Settings
from thesisflow.core.exceptions import GatewayError, PaymentConfigError

logger = structlog.get_logger(__name__)

MIDTRANS_SANDBOX_URL = "https://app.sandbox.midtrans.com/snap/v1/transactions"
MIDTRANS_PRODUCTION_URL = "https://app.midtrans.com/snap/v1/transactions"

SIMULATED_PREFIX = "DEMO-"


@dataclass(frozen=True)
class PaymentSession:
    """Result of opening a transaction.

    ``settled`` is True only when the payment is already final (simulated
    payments); real sessions settle later through the webhook.
    """

    order_id: str
    token: str
    redirect_url: str | None = None
    transaction_id: str | None = None
    settled: bool = False
    simulated: bool = False


@runtime_checkable
class PaymentGateway(Protocol):
    async def open_transaction(
        self, order_id: str, amount: int, payer_email: str, item_name: str = "Thesis workspace - 30 day access"
    ) -> PaymentSession:
        """Open a transaction and return the session token.

        Raises:
            PaymentConfigError: gateway is not configured for this environment
            GatewayError: gateway rejected the request or could not be reached
        """
        ...


class MidtransGateway:
    """Midtrans Snap transaction API over httpx."""

    def __init__(self, server_key: str, is_production: bool = False, client: httpx.AsyncClient | None = None):
        self.server_key = server_key
        self.url = MIDTRANS_PRODUCTION_URL if is_production else MIDTRANS_SANDBOX_URL
        self._client = client

    async def open_transaction(
        self, order_id: str, amount: int, payer_email: str, item_name: str = "Thesis workspace - 30 day access"
    ) -> PaymentSession:
        if not self.server_key:
            raise PaymentConfigError("Payment gateway server key is not configured", {"order_id": order_id})

        body = {
            "transaction_details": {"order_id": order_id, "gross_amount": amount},
            "customer_details": {"email": payer_email, "first_name": payer_email.split("@")[0]},
            "item_details": [{"id": "thesisflow-access", "name": item_name, "price": amount, "quantity": 1}],
        }

        try:
            response = await self._post(body)
        except httpx.TimeoutException as exc:
            logger.warning("midtrans_timeout", order_id=order_id)
            raise GatewayError("Payment gateway timed out", {"order_id": order_id}) from exc
        except httpx.HTTPError as exc:
            logger.error("midtrans_unreachable", order_id=order_id, error=str(exc))
            raise GatewayError("Payment gateway could not be reached", {"order_id": order_id}) from exc

        try:
            data: dict[str, Any] = response.json()
        except ValueError as exc:
            raise GatewayError("Invalid response from payment gateway", {"order_id": order_id}) from exc

        if response.status_code in (401, 402):
            # Key/environment mismatch (sandbox key against production URL or vice versa)
            logger.error("midtrans_unauthorized", order_id=order_id, status_code=response.status_code)
            raise PaymentConfigError(
                "Payment gateway rejected the server key for this environment",
                {"order_id": order_id, "status_code": response.status_code},
            )

        if response.is_error:
            message = ", ".join(data.get("error_messages") or []) or data.get("status_message") or "Midtrans API error"
            logger.error("midtrans_error", order_id=order_id, status_code=response.status_code, message=message)
            raise GatewayError(message, {"order_id": order_id, "status_code": response.status_code})

        token = data.get("token")
        if not token:
            raise GatewayError("Payment token was not returned by the gateway", {"order_id": order_id})

        logger.info("midtrans_transaction_opened", order_id=order_id, amount=amount)
        return PaymentSession(order_id=order_id, token=token, redirect_url=data.get("redirect_url"))

    async def _post(self, body: dict) -> httpx.Response:
        kwargs = {
            "json": body,
            "auth": (self.server_key, ""),
            "headers": {"Accept": "application/json"},
        }
        if self._client is not None:
            return await self._client.post(self.url, **kwargs)
        async with httpx.AsyncClient(timeout=30.0) as client:
            return await client.post(self.url, **kwargs)


class SimulatedPaymentGateway:
    """Settles every transaction immediately. Not a real payment."""

    async def open_transaction(
        self, order_id: str, amount: int, payer_email: str, item_name: str = "Thesis workspace - 30 day access"
    ) -> PaymentSession:
        transaction_id = f"{SIMULATED_PREFIX}{order_id}"
        logger.warning(
            "payment_simulated",
            payment_mode="simulated",
            order_id=order_id,
            transaction_id=transaction_id,
            amount=amount,
        )
        return PaymentSession(
            order_id=order_id,
            token=transaction_id,
            transaction_id=transaction_id,
            settled=True,
            simulated=True,
        )


class FallbackPaymentGateway:
    """Use ``primary``; on PaymentConfigError only, delegate to ``fallback``."""

    def __init__(self, primary: PaymentGateway, fallback: PaymentGateway):
        self.primary = primary
        self.fallback = fallback

    async def open_transaction(
        self, order_id: str, amount: int, payer_email: str, item_name: str = "Thesis workspace - 30 day access"
    ) -> PaymentSession:
        try:
            return await self.primary.open_transaction(order_id, amount, payer_email, item_name)
        except PaymentConfigError as exc:
            logger.warning("payment_gateway_unconfigured_falling_back", order_id=order_id, reason=exc.message)
            return await self.fallback.open_transaction(order_id, amount, payer_email, item_name)


def build_payment_gateway(settings: Settings) -> PaymentGateway:
    """Select the payment strategy from configuration."""
    mode = settings.payment_mode
    if mode == "simulated":
        return SimulatedPaymentGateway()
    midtrans = MidtransGateway(settings.midtrans_server_key, settings.midtrans_is_production)
    if mode == "midtrans":
        return midtrans
    if mode == "auto":
        return FallbackPaymentGateway(midtrans, SimulatedPaymentGateway())
    raise ValueError(f"Unknown payment_mode: {mode}")


def is_simulated(transaction_id: str | None) -> bool:
    return bool(transaction_id) and transaction_id.startswith(SIMULATED_PREFIX)


def compute_signature(order_id: str, status_code: str, gross_amount: str, server_key: str) -> str:
    """SHA512(order_id + status_code + gross_amount + server_key), hex encoded."""
    raw = f"{order_id}{status_code}{gross_amount}{server_key}".encode()
    return hashlib.sha512(raw).hexdigest()


def verify_signature(order_id: str, status_code: str, gross_amount: str, server_key: str, signature: str) -> bool:
    expected = compute_signature(order_id, status_code, gross_amount, server_key)
    return hmac.compare_digest(expected, signature)

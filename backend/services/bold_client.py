"""
Bold REST client (payment links, payment lookups, payment methods).

Authenticates with the "x-api-key" identity key against integrations.api.bold.co.
Bold wraps every answer as {"payload": ..., "errors": [...]}; the methods here
return the payload only.
"""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import httpx

from domain.errors import GatewayError
from services.gateway_http import GatewayHttpClient

logger = logging.getLogger(__name__)


class BoldClient(GatewayHttpClient):

    name = "Bold"

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings, settings.bold_api_base, transport)
        self.api_key = settings.bold_api_key

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def auth_headers(self) -> dict:
        return {"Authorization": f"x-api-key {self.api_key}"}

    async def _payload(self, method: str, path: str, **kwargs):
        body = await self._request(method, path, **kwargs)
        errors = body.get("errors") if isinstance(body, dict) else None
        if errors:
            raise GatewayError("Bold reported errors", details={"errors": errors})
        return body.get("payload") if isinstance(body, dict) else None

    # ── Payments ────────────────────────────────────────────────────

    async def get_payment(self, integration_id: str) -> dict:
        """GET /payments/{id}: status of a payment started through a link."""
        payment = await self._payload("GET", f"/payments/{integration_id}")
        if not isinstance(payment, dict):
            raise GatewayError("Bold returned no payment record", details={"integrationId": integration_id})
        logger.info(f"Bold payment {integration_id}: status={payment.get('status')} ref={payment.get('reference')}")
        return payment

    async def list_payment_methods(self) -> list:
        payload = await self._payload("GET", "/payments/payment-methods") or {}
        return payload.get("payment_methods", [])

    # ── Checkout ────────────────────────────────────────────────────

    async def create_payment_link(
        self,
        order_number: str,
        amount,
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
        return_url: Optional[str] = None,
    ) -> dict:
        """
        Create a closed-amount payment link (Botón de pagos) for an order.

        Bold sends the shopper back to return_url, by default
        <base_url>/checkout/success, and reports the result by webhook.
        """
        total = int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        link = {
            "amount_type": "CLOSE",
            "amount": {"currency": "COP", "total_amount": total, "tip_amount": 0},
            "reference": order_number,
            "description": description or f"Orden {order_number}",
            "callback_url": return_url or f"{self.base_url}/checkout/success",
        }
        if customer_email:
            link["payer_email"] = customer_email

        payload = await self._payload("POST", "/online/link/v1", json=link) or {}
        link_id = payload.get("payment_link")
        if not link_id:
            raise GatewayError("Bold returned no payment link")

        logger.info(f"Bold payment link {link_id} created for {order_number}")
        return {"paymentId": link_id, "paymentUrl": payload.get("url")}

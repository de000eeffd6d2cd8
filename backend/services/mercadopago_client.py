"""
MercadoPago REST client (payments, checkout preferences, payment methods).

Thin async wrapper over httpx covering only the calls the store needs; timeouts,
retries and error mapping come from GatewayHttpClient.
"""
import logging
from decimal import Decimal
from typing import Optional

import httpx

from domain.errors import GatewayError
from services.gateway_http import GatewayHttpClient

logger = logging.getLogger(__name__)


class MercadoPagoClient(GatewayHttpClient):
    """Bearer-token client for api.mercadopago.com."""

    name = "MercadoPago"

    def __init__(self, settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(settings, settings.mercadopago_api_base, transport)
        self.access_token = settings.mercadopago_access_token

    @property
    def configured(self) -> bool:
        return bool(self.access_token)

    def auth_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.access_token}"}

    # ── Payments ────────────────────────────────────────────────────

    async def get_payment(self, payment_id: str) -> dict:
        """GET /v1/payments/{id} — authoritative payment record."""
        payment = await self._request("GET", f"/v1/payments/{payment_id}")
        logger.info(
            f"MercadoPago payment {payment_id}: status={payment.get('status')} "
            f"ref={payment.get('external_reference')}"
        )
        return payment

    async def list_payment_methods(self) -> list:
        return await self._request("GET", "/v1/payment_methods")

    # ── Checkout ────────────────────────────────────────────────────

    async def create_preference(
        self,
        order_number: str,
        amount,
        customer_email: str,
        customer_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> dict:
        """
        Create a Checkout Pro preference for an order.

        The shopper comes back to <base_url>/checkout/success with the
        redirect parameters whatever the result; MercadoPago fills them in.
        """
        return_url = f"{self.base_url}/checkout/success"
        preference = {
            "items": [
                {
                    "title": description or f"Orden {order_number}",
                    "unit_price": float(Decimal(str(amount))),
                    "quantity": 1,
                    "currency_id": "COP",
                }
            ],
            "payer": {"email": customer_email, "name": customer_name or ""},
            "external_reference": order_number,
            "back_urls": {"success": return_url, "failure": return_url, "pending": return_url},
            "auto_return": "approved",
            "notification_url": f"{self.api_url}/api/payment/webhook",
        }

        result = await self._request("POST", "/checkout/preferences", json=preference)
        preference_id = result.get("id")
        if not preference_id:
            raise GatewayError("MercadoPago returned no preference id")

        logger.info(f"MercadoPago preference {preference_id} created for {order_number}")
        return {
            "preferenceId": preference_id,
            "initPoint": result.get("init_point"),
            "sandboxInitPoint": result.get("sandbox_init_point"),
        }

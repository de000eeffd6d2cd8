"""
Tests for API route endpoints.

Tests: health, gateway webhooks, redirect resolution, cancellation reports,
payment status, orders and the error envelope.
"""
import base64
import hashlib
import hmac

import pytest

from services.webhook_events import epayco_signature
from tests.conftest import BOLD_SECRET, EPAYCO_CUSTOMER_ID, EPAYCO_P_KEY, MP_SECRET
from tests.factories import bold_payment, fetch_order, make_order, mp_payment


def mp_headers(data_id, request_id="req-1", ts="1704908010"):
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    v1 = hmac.new(MP_SECRET.encode(), manifest.encode(), hashlib.sha256).hexdigest()
    return {"x-signature": f"ts={ts},v1={v1}", "x-request-id": request_id}


class TestHealthEndpoint:

    @pytest.mark.api
    async def test_health_returns_200(self, client):
        response = await client.get("/health")
        assert response.status_code == 200

    @pytest.mark.api
    async def test_health_returns_status(self, client):
        data = (await client.get("/health")).json()
        assert data["status"] == "healthy"
        assert data["database_connected"] is True
        assert "environment" in data

    @pytest.mark.api
    async def test_maintenance_status(self, client):
        data = (await client.get("/maintenance/status")).json()
        assert data["running"] is False
        assert "abandonedOrderHours" in data


class TestWebhookEndpoints:

    @pytest.mark.api
    async def test_signed_mercadopago_webhook(self, client, db_session, gateway, sender, sample_order):
        gateway.payments["555"] = mp_payment("555", sample_order)

        response = await client.post(
            "/api/payment/webhook",
            json={"action": "payment.updated", "type": "payment", "data": {"id": "555"}},
            headers=mp_headers("555"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["received"] is True
        assert data["processed"] is True
        assert data["paymentStatus"] == "paid"
        assert (await fetch_order(db_session, sample_order)).payment_status == "paid"
        assert sender.kinds_for(sample_order) == ["approved"]

    @pytest.mark.api
    async def test_duplicate_deliveries_send_one_email(self, client, gateway, sender, sample_order):
        gateway.payments["555"] = mp_payment("555", sample_order)
        body = {"action": "payment.updated", "type": "payment", "data": {"id": "555"}}

        for _ in range(3):
            response = await client.post("/api/payment/webhook", json=body, headers=mp_headers("555"))
            assert response.status_code == 200

        assert sender.kinds_for(sample_order) == ["approved"]

    @pytest.mark.api
    async def test_missing_signature_is_401(self, client, gateway):
        response = await client.post("/api/payment/webhook", json={"type": "payment", "data": {"id": "1"}})

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": {"code": "unauthorized", "message": "Invalid webhook signature", "details": None},
        }
        assert gateway.calls == []

    @pytest.mark.api
    async def test_malformed_body_is_400(self, client):
        response = await client.post(
            "/api/payment/webhook", content=b"{not json", headers={"content-type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "malformed_input"

    @pytest.mark.api
    async def test_unhandled_topic_is_acknowledged(self, client, metrics):
        response = await client.post(
            "/api/payment/webhook",
            json={"type": "merchant_order", "data": {"id": "9"}},
            headers=mp_headers("9"),
        )

        assert response.status_code == 200
        assert response.json()["processed"] is False
        assert metrics.unrecognized_events == 1

    @pytest.mark.api
    async def test_gateway_outage_is_502(self, client, gateway, sample_order):
        gateway.unavailable = True

        response = await client.post(
            "/api/payment/webhook",
            json={"type": "payment", "data": {"id": "555"}},
            headers=mp_headers("555"),
        )

        assert response.status_code == 502
        assert response.json()["error"]["code"] == "gateway_error"

    @pytest.mark.api
    async def test_bold_webhook(self, client, db_session, sample_order):
        raw = (
            '{"event": "payment.succeeded", "data": {"payment_id": "b-77", '
            f'"metadata": {{"reference": "{sample_order}"}}}}}}'
        ).encode()
        signature = hmac.new(BOLD_SECRET.encode(), base64.b64encode(raw), hashlib.sha256).hexdigest()

        response = await client.post(
            "/api/payment/webhook/bold",
            content=raw,
            headers={"content-type": "application/json", "x-bold-signature": signature},
        )

        assert response.status_code == 200
        assert response.json()["outcome"] == "approved"
        assert (await fetch_order(db_session, sample_order)).payment_status == "paid"

    @pytest.mark.api
    async def test_epayco_form_confirmation(self, client, db_session, sample_order):
        form = {
            "x_ref_payco": "99001",
            "x_transaction_id": "t-99001",
            "x_amount": "2800000",
            "x_currency_code": "COP",
            "x_id_invoice": sample_order,
            "x_cod_response": "2",
            "x_response_reason_text": "Fondos insuficientes",
        }
        form["x_signature"] = epayco_signature(EPAYCO_CUSTOMER_ID, EPAYCO_P_KEY, form)

        response = await client.post("/api/payment/webhook/epayco", data=form)

        assert response.status_code == 200
        assert response.json()["paymentStatus"] == "failed"
        assert (await fetch_order(db_session, sample_order)).payment_status == "failed"

    @pytest.mark.api
    async def test_unknown_gateway_path(self, client):
        response = await client.post("/api/payment/webhook/paypal", json={})
        assert response.status_code == 422


class TestRedirectEndpoint:

    @pytest.mark.api
    async def test_null_literals_with_unknown_order(self, client):
        response = await client.get(
            "/api/payment/redirect",
            params={"external_reference": "TEST-ORDER-123", "collection_status": "null", "status": "null"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["outcome"] == "user_cancelled"
        assert data["error"] == "order_not_found"
        assert data["statusChanged"] is False

    @pytest.mark.api
    async def test_decline_code(self, client, db_session, sample_order):
        response = await client.get("/api/payment/redirect", params={
            "payment_id": "123", "external_reference": sample_order, "error": "cc_rejected_insufficient_amount",
        })

        data = response.json()
        assert data["outcome"] == "cc_rejected_insufficient_amount"
        assert data["paymentStatus"] == "failed"
        assert (await fetch_order(db_session, sample_order)).payment_status == "failed"

    @pytest.mark.api
    async def test_forged_approval_is_not_applied(self, client, db_session, sample_order):
        response = await client.get("/api/payment/redirect", params={
            "payment_id": "31337", "external_reference": sample_order, "status": "approved",
        })

        data = response.json()
        assert data["verified"] is False
        assert (await fetch_order(db_session, sample_order)).payment_status == "pending"


class TestPaymentCancelledEndpoint:

    @pytest.mark.api
    async def test_first_report_sends_email(self, client, sample_order):
        response = await client.post("/api/payment-cancelled", json={
            "orderNumber": sample_order,
            "customerInfo": {"name": "María Gómez", "email": "cliente@example.com"},
            "reason": "user_closed_checkout",
        })

        assert response.status_code == 200
        assert response.json() == {"success": True, "emailSent": True, "alreadySent": False}

    @pytest.mark.api
    async def test_second_report_is_already_sent(self, client, sender, sample_order):
        body = {"orderNumber": sample_order}
        await client.post("/api/payment-cancelled", json=body)

        response = await client.post("/api/payment-cancelled", json=body)

        assert response.json() == {"success": True, "emailSent": False, "alreadySent": True}
        assert len(sender.sent) == 1

    @pytest.mark.api
    async def test_unknown_order_is_404(self, client):
        response = await client.post("/api/payment-cancelled", json={"orderNumber": "ORD-NOPE"})

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "order_not_found"}

    @pytest.mark.api
    async def test_missing_order_number_is_422(self, client):
        response = await client.post("/api/payment-cancelled", json={"reason": "x"})
        assert response.status_code == 422


class TestPaymentStatusEndpoints:

    @pytest.mark.api
    async def test_status_lookup(self, client, gateway, sample_order):
        gateway.payments["555"] = mp_payment("555", sample_order)

        response = await client.get("/api/payment/status/555")

        data = response.json()
        assert data["success"] is True
        assert data["verification"]["is_approved"] is True
        assert data["verification"]["source"] == "api_verified"
        assert data["reconciliation"]["statusChanged"] is True

    @pytest.mark.api
    async def test_status_lookup_unknown_payment(self, client):
        response = await client.get("/api/payment/status/000")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    @pytest.mark.api
    async def test_verify_pending(self, client, db_session, gateway):
        number = await make_order(db_session, payment_id="321")
        gateway.payments["321"] = mp_payment("321", number)

        response = await client.post("/api/payment/verify-pending")

        data = response.json()
        assert data["success"] is True
        assert data["total"] == 1
        assert data["verified"] == 1

    @pytest.mark.api
    async def test_metrics(self, client):
        await client.get("/api/payment/redirect")

        data = (await client.get("/api/payment/metrics")).json()

        assert data["metrics"]["bare_return_cancellations"] == 1
        assert data["metrics"]["outcomes"] == {"user_cancelled": 1}
        assert "maintenance" in data


class TestMercadoPagoEndpoints:

    @pytest.mark.api
    async def test_create_preference(self, client, sample_order):
        response = await client.post("/api/mercadopago/create-preference", json={
            "amount": 2800000, "orderId": sample_order, "customerEmail": "cliente@example.com",
        })

        assert response.status_code == 200
        assert response.json()["preferenceId"] == f"pref-{sample_order}"

    @pytest.mark.api
    async def test_create_preference_validation(self, client):
        response = await client.post("/api/mercadopago/create-preference", json={
            "amount": 0, "orderId": "ORD-1", "customerEmail": "not-an-email",
        })
        assert response.status_code == 422

    @pytest.mark.api
    async def test_payment_methods(self, client):
        data = (await client.get("/api/mercadopago/payment-methods")).json()
        assert [m["id"] for m in data["paymentMethods"]] == ["visa", "pse"]


class TestBoldEndpoints:

    @pytest.mark.api
    async def test_create_payment_link(self, client, bold, sample_order):
        response = await client.post("/api/bold/create-payment-link", json={
            "amount": 2800000, "reference": sample_order, "customerEmail": "cliente@example.com",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["paymentId"] == f"LNK_{sample_order}"
        assert data["paymentUrl"].endswith(f"LNK_{sample_order}")
        assert bold.links[0]["order_number"] == sample_order

    @pytest.mark.api
    async def test_create_payment_link_validation(self, client):
        response = await client.post("/api/bold/create-payment-link", json={"amount": -5, "reference": ""})
        assert response.status_code == 422

    @pytest.mark.api
    async def test_create_payment_link_without_credentials(self, client, bold):
        bold.configured = False

        response = await client.post("/api/bold/create-payment-link", json={
            "amount": 1000, "reference": "ORD-1",
        })

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "gateway_not_configured"

    @pytest.mark.api
    async def test_payment_status(self, client, db_session, bold, sample_order):
        bold.payments["LNK_9"] = bold_payment(sample_order)

        response = await client.get("/api/bold/payment-status/LNK_9")

        data = response.json()
        assert data["success"] is True
        assert data["verification"]["is_approved"] is True
        assert data["reconciliation"]["statusChanged"] is True
        assert (await fetch_order(db_session, sample_order)).payment_status == "paid"

    @pytest.mark.api
    async def test_payment_status_unknown_link(self, client):
        response = await client.get("/api/bold/payment-status/LNK_missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"

    @pytest.mark.api
    async def test_payment_methods(self, client):
        data = (await client.get("/api/bold/payment-methods")).json()
        assert [m["name"] for m in data["paymentMethods"]] == ["CARD", "PSE"]


class TestOrderEndpoints:

    @pytest.mark.api
    async def test_create_order(self, client, sender):
        response = await client.post("/api/orders", json={
            "customer": {"name": "Ana Pérez", "email": "ana@example.com", "phone": "3100000000"},
            "items": [{"productId": "3", "name": "Cama Doble de Piñón", "price": 3200000, "quantity": 1}],
            "subtotal": 3200000,
            "total": 3200000,
            "shippingZone": "bogota",
        })

        assert response.status_code == 201
        data = response.json()
        assert data["success"] is True
        assert data["emailSent"] is True
        assert data["order"]["estimatedDelivery"] == "1-2 días"
        assert data["order"]["orderNumber"].startswith("ORD-")
        assert sender.kinds_for(data["order"]["orderNumber"]) == ["confirmation"]

    @pytest.mark.api
    async def test_create_order_without_customer(self, client):
        response = await client.post("/api/orders", json={
            "items": [{"name": "Mesa", "price": 1}], "total": 1,
        })
        assert response.status_code == 422

    @pytest.mark.api
    async def test_list_orders(self, client, sample_order):
        response = await client.get("/api/orders", params={"paymentStatus": "pending", "limit": 5})

        data = response.json()
        assert data["pagination"]["total"] == 1
        assert data["orders"][0]["orderNumber"] == sample_order
        assert data["stats"]["pendingOrders"] == 1

    @pytest.mark.api
    async def test_list_orders_bad_sort(self, client):
        response = await client.get("/api/orders", params={"sortBy": "password"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "validation_error"

    @pytest.mark.api
    async def test_get_order(self, client, sample_order):
        data = (await client.get(f"/api/orders/{sample_order}")).json()
        assert data["order"]["customerInfo"]["name"] == "María Gómez"

    @pytest.mark.api
    async def test_get_missing_order(self, client):
        response = await client.get("/api/orders/ORD-NOPE")

        assert response.status_code == 404
        assert response.json()["error"] == {
            "code": "order_not_found",
            "message": "Order not found: ORD-NOPE",
            "details": {"orderNumber": "ORD-NOPE"},
        }

    @pytest.mark.api
    async def test_update_order_status(self, client, sample_order):
        response = await client.put(f"/api/orders/{sample_order}", json={"status": "shipped", "notes": "Guía 123"})

        data = response.json()
        assert data["order"]["status"] == "shipped"
        assert data["order"]["notes"] == "Guía 123"

    @pytest.mark.api
    async def test_payment_status_cannot_be_set_by_admin(self, client, db_session, sample_order):
        response = await client.put(f"/api/orders/{sample_order}", json={"paymentStatus": "paid"})

        assert response.status_code == 422
        error = response.json()["error"]
        assert error["code"] == "validation_error"
        assert error["details"]["errors"][0]["type"] == "extra_forbidden"
        assert (await fetch_order(db_session, sample_order)).payment_status == "pending"

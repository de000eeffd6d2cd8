"""
Payment Routes — gateway webhooks, redirect resolution, cancellation reports.

Endpoints:
    POST /api/payment/webhook                 — MercadoPago webhook
    POST /api/payment/webhook/{gateway}       — mercadopago / bold / epayco
    GET  /api/payment/redirect                — resolve the shopper's redirect-back query
    POST /api/payment-cancelled               — storefront reports an abandoned checkout
    GET  /api/payment/status/{payment_id}     — stored record or gateway lookup
    POST /api/payment/verify-pending          — re-check pending orders (daily job)
    GET  /api/payment/metrics                 — resolver counters
    POST /api/mercadopago/create-preference   — Checkout Pro preference
    GET  /api/mercadopago/payment-methods     — gateway payment methods
    POST /api/bold/create-payment-link        — Bold payment link for an order
    GET  /api/bold/payment-status/{id}        — Bold lookup, reconciled into the order
    GET  /api/bold/payment-methods            — Bold payment methods

Webhooks answer 200 for processed and ignored events alike so gateways stop
retrying; a bad signature is 401 and an unparseable body 400.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import get_metrics, get_reconciler, require_bold, require_mercadopago
from domain.constants import ORDER_NOT_FOUND
from domain.enums import Gateway
from domain.errors import UnauthorizedError
from domain.responses import success_response
from middleware.rate_limit import rate_limit
from models import (
    CreatePaymentLinkRequest,
    CreatePreferenceRequest,
    PaymentCancelledRequest,
    PaymentCancelledResponse,
)
from services import maintenance
from services.bold_client import BoldClient
from services.mercadopago_client import MercadoPagoClient
from services.payment_service import PaymentReconciler
from services.resolver_metrics import ResolverMetrics
from services.webhook_events import decode_body, parse_webhook, verify_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])
mercadopago_router = APIRouter(prefix="/api/mercadopago", tags=["mercadopago"])
bold_router = APIRouter(prefix="/api/bold", tags=["bold"])


# ════════════════════════════════════════════════════════════════════
# Webhooks
# ════════════════════════════════════════════════════════════════════


async def _receive_webhook(
    gateway: str,
    request: Request,
    db: AsyncSession,
    reconciler: PaymentReconciler,
) -> dict:
    raw = await request.body()
    query = request.query_params

    # Legacy MercadoPago IPN: ?topic=payment&id=... with an empty body
    if not raw.strip() and query:
        body = {}
    else:
        body = decode_body(raw, request.headers.get("content-type"))

    if not verify_webhook(gateway, reconciler.settings, raw, request.headers, body, query):
        logger.warning(f"Rejected {gateway} webhook: invalid signature")
        raise UnauthorizedError("Invalid webhook signature")

    event = parse_webhook(gateway, body, query)
    logger.info(f"Webhook received from {gateway}: {type(event).__name__}")
    return await reconciler.handle_webhook(db, event)


@router.post("/payment/webhook")
async def mercadopago_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """MercadoPago notification URL configured on preferences."""
    return await _receive_webhook(Gateway.MERCADOPAGO.value, request, db, reconciler)


@router.post("/payment/webhook/{gateway}")
async def gateway_webhook(
    gateway: Gateway,
    request: Request,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    return await _receive_webhook(gateway.value, request, db, reconciler)


# ════════════════════════════════════════════════════════════════════
# Redirect-back and client reports
# ════════════════════════════════════════════════════════════════════


@router.get("/payment/redirect")
async def resolve_redirect(
    request: Request,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """
    Classify the query string the gateway appended to /checkout/success.

    Recognized parameters: external_reference, collection_status, status,
    payment_id, error. None of them are required.
    """
    result = await reconciler.handle_redirect(db, request.query_params)
    return success_response(**result.to_dict())


@router.post(
    "/payment-cancelled",
    dependencies=[Depends(rate_limit(max_requests=10, window_seconds=60))],
)
async def payment_cancelled(
    req: PaymentCancelledRequest,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Storefront reports that the shopper cancelled or abandoned payment."""
    result = await reconciler.report_cancellation(db, req.order_number, req.customer_info, req.reason)
    if result.get("error") == ORDER_NOT_FOUND:
        return JSONResponse(status_code=404, content={"success": False, "error": ORDER_NOT_FOUND})
    return PaymentCancelledResponse.model_validate(result).model_dump(by_alias=True, exclude_none=True)


# ════════════════════════════════════════════════════════════════════
# Verification and telemetry
# ════════════════════════════════════════════════════════════════════


@router.get("/payment/status/{payment_id}")
async def get_payment_status(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    result = await reconciler.get_payment_status(db, payment_id)
    return success_response(**result)


@router.post(
    "/payment/verify-pending",
    dependencies=[Depends(rate_limit(max_requests=5, window_seconds=300))],
)
async def verify_pending_payments(
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    summary = await reconciler.verify_pending_payments(db)
    return success_response(**summary)


@router.get("/payment/metrics")
async def get_payment_metrics(metrics: ResolverMetrics = Depends(get_metrics)):
    return success_response(metrics=metrics.to_dict(), maintenance=maintenance.get_status())


# ════════════════════════════════════════════════════════════════════
# MercadoPago checkout
# ════════════════════════════════════════════════════════════════════


@mercadopago_router.post(
    "/create-preference",
    dependencies=[Depends(rate_limit(max_requests=20, window_seconds=60))],
)
async def create_preference(
    req: CreatePreferenceRequest,
    client: MercadoPagoClient = Depends(require_mercadopago),
):
    preference = await client.create_preference(
        order_number=req.order_id,
        amount=req.amount,
        customer_email=req.customer_email,
        customer_name=req.customer_name,
        description=req.description,
    )
    return success_response(**preference, message="Preference created successfully")


@mercadopago_router.get("/payment-methods")
async def list_payment_methods(client: MercadoPagoClient = Depends(require_mercadopago)):
    return success_response(paymentMethods=await client.list_payment_methods())


# ════════════════════════════════════════════════════════════════════
# Bold checkout
# ════════════════════════════════════════════════════════════════════


@bold_router.post(
    "/create-payment-link",
    dependencies=[Depends(rate_limit(max_requests=20, window_seconds=60))],
)
async def create_payment_link(
    req: CreatePaymentLinkRequest,
    client: BoldClient = Depends(require_bold),
):
    link = await client.create_payment_link(
        order_number=req.reference,
        amount=req.amount,
        description=req.description,
        customer_email=req.customer_email,
    )
    return success_response(**link, message="Payment link created successfully")


@bold_router.get("/payment-status/{integration_id}")
async def get_bold_payment_status(
    integration_id: str,
    db: AsyncSession = Depends(get_db),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    result = await reconciler.get_bold_payment_status(db, integration_id)
    return success_response(**result)


@bold_router.get("/payment-methods")
async def list_bold_payment_methods(client: BoldClient = Depends(require_bold)):
    return success_response(paymentMethods=await client.list_payment_methods())

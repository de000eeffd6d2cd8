"""
Shared FastAPI dependencies.

Long-lived collaborators (reconciler, gateway clients, notification gate) are
built once in main.lifespan and kept on app.state; routers reach them here.
"""

from __future__ import annotations

from typing import TypedDict

from fastapi import Query, Request

from domain.errors import GatewayNotConfiguredError
from services.bold_client import BoldClient
from services.mercadopago_client import MercadoPagoClient
from services.notification_gate import NotificationGate
from services.payment_service import PaymentReconciler
from services.resolver_metrics import ResolverMetrics


class Pagination(TypedDict):
    page: int
    limit: int


def pagination_params(
    page: int = Query(1, ge=1, le=100_000),
    limit: int = Query(20, ge=1, le=200),
) -> Pagination:
    return {"page": page, "limit": limit}


def get_reconciler(request: Request) -> PaymentReconciler:
    return request.app.state.reconciler


def get_notification_gate(request: Request) -> NotificationGate:
    return request.app.state.reconciler.gate


def get_metrics(request: Request) -> ResolverMetrics:
    return request.app.state.reconciler.metrics


def require_mercadopago(request: Request) -> MercadoPagoClient:
    """MercadoPago client, or 503 when no access token is configured."""
    client = request.app.state.reconciler.gateway_client
    if client is None or not client.configured:
        raise GatewayNotConfiguredError("MercadoPago")
    return client


def require_bold(request: Request) -> BoldClient:
    """Bold client, or 503 when no API key is configured."""
    client = request.app.state.reconciler.bold_client
    if client is None or not client.configured:
        raise GatewayNotConfiguredError("Bold")
    return client

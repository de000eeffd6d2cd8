"""
Order Routes — checkout order creation and the admin order panel.

Endpoints:
    POST /api/orders                    — create order (sends confirmation email)
    GET  /api/orders                    — filter / sort / paginate, with stats
    GET  /api/orders/{order_number}     — single order
    PUT  /api/orders/{order_number}     — fulfilment update (status, notes, ...)
"""
import logging
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from deps import Pagination, get_notification_gate, pagination_params
from domain.responses import success_response
from middleware.rate_limit import rate_limit
from models import CreateOrderRequest, OrderUpdateRequest
from services import order_service
from services.notification_gate import NotificationGate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit(max_requests=20, window_seconds=60))],
)
async def create_order(
    req: CreateOrderRequest,
    db: AsyncSession = Depends(get_db),
    gate: NotificationGate = Depends(get_notification_gate),
):
    result = await order_service.create_order(db, req, gate=gate)
    return success_response(**result)


@router.get("")
async def list_orders(
    status_filter: Optional[str] = Query(None, alias="status"),
    payment_status: Optional[str] = Query(None, alias="paymentStatus"),
    payment_method: Optional[str] = Query(None, alias="paymentMethod"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    pagination: Pagination = Depends(pagination_params),
    db: AsyncSession = Depends(get_db),
):
    result = await order_service.list_orders(
        db,
        page=pagination["page"],
        limit=pagination["limit"],
        sort_by=sort_by,
        sort_order=sort_order,
        status=status_filter,
        payment_status=payment_status,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    return success_response(**result)


@router.get("/{order_number}")
async def get_order(order_number: str, db: AsyncSession = Depends(get_db)):
    return success_response(order=await order_service.get_order(db, order_number))


@router.put("/{order_number}")
async def update_order(
    order_number: str,
    req: OrderUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.update_order(db, order_number, req)
    return success_response(order=order)

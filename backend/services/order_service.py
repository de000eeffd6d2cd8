"""
Order Service — checkout order persistence, listing and admin updates.

payment_status is never written here; it belongs to the payment reconciler.
"""
import logging
import secrets
import string
import time
from datetime import date, datetime, time as dt_time, timedelta
from typing import Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order, utcnow
from domain.constants import (
    DEFAULT_DELIVERY_ESTIMATE,
    DELIVERY_ESTIMATES,
    ORDER_NUMBER_PREFIX,
    ORDER_NUMBER_SUFFIX_LENGTH,
)
from domain.enums import NotificationKind, OrderStatus, PaymentStatus
from domain.errors import OrderNotFoundError, ValidationError
from domain.responses import page_meta
from models import CreateOrderRequest, OrderResponse, OrderUpdateRequest
from services.email_service import OrderSnapshot

logger = logging.getLogger(__name__)

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

SORT_FIELDS = {
    "createdAt": Order.created_at,
    "updatedAt": Order.updated_at,
    "total": Order.total,
    "orderNumber": Order.order_number,
    "status": Order.status,
    "paymentStatus": Order.payment_status,
}


def generate_order_number(now_ms: Optional[int] = None) -> str:
    """ORD-<epoch millis>-<9 uppercase alphanumerics>"""
    millis = now_ms if now_ms is not None else int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(ORDER_NUMBER_SUFFIX_LENGTH))
    return f"{ORDER_NUMBER_PREFIX}{millis}-{suffix}"


def estimate_delivery(shipping_zone: Optional[str]) -> str:
    if not shipping_zone:
        return DEFAULT_DELIVERY_ESTIMATE
    return DELIVERY_ESTIMATES.get(shipping_zone.strip().lower(), DEFAULT_DELIVERY_ESTIMATE)


def order_to_dict(order: Order) -> dict:
    """Serialize an order the way the storefront expects (camelCase)."""
    return OrderResponse(
        id=order.id,
        order_number=order.order_number,
        customer_info={
            "name": order.customer_name,
            "email": order.customer_email,
            "phone": order.customer_phone,
            **(order.customer_address or {}),
        },
        items=order.items or [],
        subtotal=float(order.subtotal or 0),
        shipping=float(order.shipping or 0),
        tax=float(order.tax or 0),
        total=float(order.total or 0),
        status=order.status,
        payment_status=order.payment_status,
        payment_method=order.payment_method,
        payment_id=order.payment_id,
        shipping_zone=order.shipping_zone,
        notes=order.notes,
        estimated_delivery=order.estimated_delivery,
        email_status=order.email_status or {},
        abandoned_at=order.abandoned_at,
        actual_delivery=order.actual_delivery,
        created_at=order.created_at,
        updated_at=order.updated_at,
    ).model_dump(by_alias=True, mode="json")


# ════════════════════════════════════════════════════════════════════
# Create / read / update
# ════════════════════════════════════════════════════════════════════


async def create_order(db: AsyncSession, request: CreateOrderRequest, gate=None) -> dict:
    """
    Persist a new order in pending/pending and send the confirmation email.

    The email is best effort: a failed send leaves emailStatus.confirmation
    unset but the order is still created.
    """
    contact = request.contact
    zone = request.shipping_zone or "other"
    order = Order(
        order_number=generate_order_number(),
        customer_name=contact.name,
        customer_email=contact.email,
        customer_phone=contact.phone,
        customer_address=contact.model_dump(include={"address", "city", "department"}, exclude_none=True),
        items=[
            {**item.model_dump(by_alias=True, exclude_none=True), "price": float(item.price)}
            for item in request.items
        ],
        subtotal=request.subtotal,
        shipping=request.shipping,
        tax=request.tax,
        total=request.total,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        payment_method=request.payment_method,
        shipping_zone=zone,
        notes=request.notes or "",
        estimated_delivery=estimate_delivery(zone),
        email_status={},
    )
    db.add(order)
    await db.commit()
    logger.info(f"Order created: {order.order_number} ({contact.email}, total {order.total})")

    email_sent = False
    if gate is not None:
        result = await gate.dispatch(db, OrderSnapshot.from_order(order), NotificationKind.CONFIRMATION)
        email_sent = result.email_sent
        # the gate writes email_status outside the ORM
        order = await _get(db, order.order_number)
    return {"order": order_to_dict(order), "emailSent": email_sent}


async def _get(db: AsyncSession, order_number: str) -> Order:
    res = await db.execute(
        select(Order)
        .where(Order.order_number == order_number)
        .execution_options(populate_existing=True)
    )
    order = res.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_number)
    return order


async def get_order(db: AsyncSession, order_number: str) -> dict:
    return order_to_dict(await _get(db, order_number))


async def update_order(db: AsyncSession, order_number: str, request: OrderUpdateRequest) -> dict:
    """Admin update of fulfilment fields; stamps actual_delivery on first delivery."""
    order = await _get(db, order_number)
    changes = request.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No updatable fields supplied")

    for field, value in changes.items():
        setattr(order, field, value.value if isinstance(value, OrderStatus) else value)

    if changes.get("status") == OrderStatus.DELIVERED and order.actual_delivery is None:
        order.actual_delivery = utcnow()

    await db.commit()
    await db.refresh(order)
    logger.info(f"Order updated: {order_number} {sorted(changes)}")
    return order_to_dict(order)


# ════════════════════════════════════════════════════════════════════
# Listing
# ════════════════════════════════════════════════════════════════════


def _escape_like(text: str) -> str:
    """Make LIKE wildcards in user input match literally (escape char: backslash)."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filters(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    payment_method: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
) -> list:
    conditions = []
    if status:
        conditions.append(Order.status == status)
    if payment_status:
        conditions.append(Order.payment_status == payment_status)
    if payment_method:
        conditions.append(Order.payment_method == payment_method)
    if date_from:
        conditions.append(Order.created_at >= datetime.combine(date_from, dt_time.min))
    if date_to:
        # inclusive of the whole dateTo day
        conditions.append(Order.created_at < datetime.combine(date_to + timedelta(days=1), dt_time.min))
    if search:
        pattern = f"%{_escape_like(search.strip())}%"
        conditions.append(
            or_(
                Order.order_number.ilike(pattern, escape="\\"),
                Order.customer_name.ilike(pattern, escape="\\"),
                Order.customer_email.ilike(pattern, escape="\\"),
                Order.customer_phone.like(pattern, escape="\\"),
            )
        )
    return conditions


async def list_orders(
    db: AsyncSession,
    *,
    page: int = 1,
    limit: int = 20,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    **filters,
) -> dict:
    """Filtered, sorted, paginated order list plus stats over the filtered set."""
    column = SORT_FIELDS.get(sort_by)
    if column is None:
        raise ValidationError(f"Unsupported sort field. Use one of: {', '.join(SORT_FIELDS)}", field="sortBy")
    conditions = _filters(**filters)

    stats_row = (
        await db.execute(
            select(
                func.count(Order.id),
                func.coalesce(
                    func.sum(case((Order.payment_status == PaymentStatus.PAID.value, Order.total), else_=0)), 0
                ),
                func.count(case((Order.status == OrderStatus.PENDING.value, 1))),
                func.count(case((Order.status == OrderStatus.DELIVERED.value, 1))),
                func.coalesce(func.avg(Order.total), 0),
            ).where(*conditions)
        )
    ).one()
    total, revenue, pending, completed, average = stats_row

    ordering = column.asc() if sort_order == "asc" else column.desc()
    res = await db.execute(
        select(Order)
        .where(*conditions)
        .order_by(ordering, Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    orders = [order_to_dict(o) for o in res.scalars().all()]

    return {
        "orders": orders,
        "pagination": page_meta(page, limit, total),
        "stats": {
            "totalOrders": total,
            "totalRevenue": float(revenue or 0),
            "pendingOrders": pending,
            "completedOrders": completed,
            "averageOrderValue": round(float(average or 0), 2),
        },
    }


# ════════════════════════════════════════════════════════════════════
# Maintenance
# ════════════════════════════════════════════════════════════════════


async def mark_abandoned(db: AsyncSession, hours: int = 24) -> int:
    """Stamp abandoned_at on unpaid pending orders older than `hours`. Returns the count."""
    cutoff = utcnow() - timedelta(hours=hours)
    res = await db.execute(
        update(Order)
        .where(
            Order.status == OrderStatus.PENDING.value,
            Order.payment_status == PaymentStatus.PENDING.value,
            Order.created_at < cutoff,
            Order.abandoned_at.is_(None),
        )
        .values(abandoned_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if res.rowcount:
        logger.info(f"Marked {res.rowcount} orders as abandoned (older than {hours}h)")
    return res.rowcount

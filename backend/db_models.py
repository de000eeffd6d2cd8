"""
SQLAlchemy ORM models for the Casa Piñón payments backend.

Tables:
    orders              — checkout orders; payment_status is owned by the reconciler
    email_notifications — at-most-once notification claims, unique per (order, kind)
    payments            — gateway payment records (webhook or API verified)
    payment_events      — audit log of every classified payment signal
"""
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text, JSON,
    UniqueConstraint, Index,
)

from database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp (DateTime columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Order(Base):
    """Checkout order. One row per order_number."""
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(50), unique=True, nullable=False, index=True)

    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False)
    customer_phone = Column(String(50), nullable=True)
    customer_address = Column(JSON, nullable=False, default=dict)

    items = Column(JSON, nullable=False, default=list)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    shipping = Column(Numeric(12, 2), nullable=False, default=0)
    tax = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)

    status = Column(String(30), nullable=False, default="pending")           # OrderStatus
    payment_status = Column(String(30), nullable=False, default="pending")   # PaymentStatus
    payment_method = Column(String(30), nullable=False, default="mercadopago")
    payment_id = Column(String(100), nullable=True)

    shipping_zone = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    estimated_delivery = Column(String(100), nullable=True)

    # {kind: {"sent": bool, "sentAt": iso}}, projected from email_notifications
    email_status = Column(JSON, nullable=False, default=dict)
    # bumped on every email_status write; writers update conditionally on it
    email_status_version = Column(Integer, nullable=False, default=0)

    abandoned_at = Column(DateTime, nullable=True)
    actual_delivery = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_orders_payment_status_created", "payment_status", "created_at"),
    )


class EmailNotification(Base):
    """
    Notification gate record.

    The unique (order_number, kind) constraint is what guarantees at most one
    dispatch per kind: a worker must insert the 'sending' claim before it may
    call the email sender.
    """
    __tablename__ = "email_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_number = Column(String(50), nullable=False, index=True)
    kind = Column(String(30), nullable=False)
    state = Column(String(20), nullable=False, default="sending")  # "sending" | "sent"
    claim_token = Column(String(64), nullable=False)
    claimed_at = Column(DateTime, nullable=False, default=utcnow)
    sent_at = Column(DateTime, nullable=True)
    message_id = Column(String(255), nullable=True)
    attempts = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("order_number", "kind", name="uq_email_notifications_order_kind"),
    )


class Payment(Base):
    """Gateway payment record, keyed by the gateway's payment id."""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String(100), unique=True, nullable=False, index=True)
    gateway = Column(String(30), nullable=False, default="mercadopago")
    order_number = Column(String(50), nullable=True, index=True)
    status = Column(String(50), nullable=False)
    status_detail = Column(String(100), nullable=True)
    transaction_amount = Column(Numeric(12, 2), nullable=True)
    currency_id = Column(String(10), nullable=True)
    payment_method_id = Column(String(50), nullable=True)
    payer_email = Column(String(255), nullable=True)
    date_created = Column(String(40), nullable=True)   # gateway ISO strings, kept verbatim
    date_approved = Column(String(40), nullable=True)
    webhook_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class PaymentEvent(Base):
    """Audit log of payment signals and how they were classified."""
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source = Column(String(20), nullable=False)       # EventSource
    gateway = Column(String(30), nullable=True)
    event_type = Column(String(100), nullable=True)
    payment_id = Column(String(100), nullable=True, index=True)
    external_reference = Column(String(100), nullable=True, index=True)
    raw_status = Column(String(30), nullable=True)
    collection_status = Column(String(30), nullable=True)
    error_code = Column(String(100), nullable=True)
    outcome = Column(String(100), nullable=True)
    rule = Column(String(40), nullable=True)
    payload = Column(JSON, nullable=True)
    received_at = Column(DateTime, default=utcnow, index=True)

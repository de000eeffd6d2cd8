"""
Domain enums shared by the resolver, services and routers.
"""

from enum import Enum


class PaymentStatus(str, Enum):
    """Canonical order payment state (orders.payment_status)."""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    """Fulfilment state, owned by the admin panel."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class GatewayStatus(str, Enum):
    """Gateway status vocabulary after normalization at the boundary."""
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    UNKNOWN = "unknown"  # present but unrecognized


class Outcome(str, Enum):
    """Named resolver outcomes. Gateway failure codes pass through as plain strings."""
    USER_CANCELLED = "user_cancelled"
    APPROVED = "approved"
    PENDING = "pending"
    REFUNDED = "refunded"
    PAYMENT_FAILED = "payment_failed"


class NotificationKind(str, Enum):
    """Keys of orders.email_status — one email per (order, kind) at most."""
    CONFIRMATION = "confirmation"
    APPROVED = "approved"
    PENDING = "pending"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class EventSource(str, Enum):
    WEBHOOK = "webhook"
    REDIRECT = "redirect"
    CLIENT_REPORT = "client_report"
    VERIFICATION = "verification"


class Gateway(str, Enum):
    MERCADOPAGO = "mercadopago"
    BOLD = "bold"
    EPAYCO = "epayco"

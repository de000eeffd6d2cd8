"""
Pydantic models for request/response validation.

The storefront sends camelCase JSON; fields are declared in snake_case with
camelCase aliases and accept either spelling.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from domain.enums import OrderStatus


class ApiBase(BaseModel):
    """Shared base — allows construction by Python name or alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


PaymentMethod = Literal["mercadopago", "bold", "epayco", "bank_transfer", "cash_delivery"]


# ── Orders ──────────────────────────────────────────────────────────

class CustomerInfo(ApiBase):
    """Checkout customer block."""
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    phone: Optional[str] = Field(default=None, max_length=50)
    address: Optional[str] = Field(default=None, max_length=500)
    city: Optional[str] = Field(default=None, max_length=100)
    department: Optional[str] = Field(default=None, max_length=100)


class OrderItem(ApiBase):
    """Cart line. Extra keys (wood type, customizations...) are kept as sent."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    product_id: Optional[str] = Field(default=None, alias="productId")
    name: str = Field(..., min_length=1, max_length=255)
    price: Decimal = Field(..., ge=0)
    quantity: int = Field(default=1, ge=1, le=1000)


class CreateOrderRequest(ApiBase):
    """POST /api/orders. Older clients send the customer as customerInfo."""
    customer: Optional[CustomerInfo] = None
    customer_info: Optional[CustomerInfo] = Field(default=None, alias="customerInfo")
    items: List[OrderItem] = Field(..., min_length=1)
    subtotal: Decimal = Field(default=Decimal("0"), ge=0)
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal = Field(..., gt=0)
    shipping_zone: Optional[str] = Field(default=None, alias="shippingZone", max_length=100)
    payment_method: PaymentMethod = Field(default="mercadopago", alias="paymentMethod")
    notes: Optional[str] = Field(default=None, max_length=2000)

    @model_validator(mode="after")
    def _require_customer(self):
        if self.customer is None and self.customer_info is None:
            raise ValueError("customer information is required")
        return self

    @property
    def contact(self) -> CustomerInfo:
        return self.customer or self.customer_info


class OrderUpdateRequest(ApiBase):
    """
    PUT /api/orders/{order_number} — fulfilment fields only.

    paymentStatus and emailStatus are owned by payment reconciliation and are
    rejected here (extra="forbid").
    """
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    status: Optional[OrderStatus] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    shipping_zone: Optional[str] = Field(default=None, alias="shippingZone", max_length=100)
    estimated_delivery: Optional[str] = Field(default=None, alias="estimatedDelivery", max_length=100)


class OrderResponse(ApiBase):
    """Order as returned to the storefront and admin panel."""
    id: int
    order_number: str = Field(..., alias="orderNumber")
    customer_info: dict[str, Any] = Field(..., alias="customerInfo")
    items: List[dict[str, Any]]
    subtotal: float
    shipping: float
    tax: float
    total: float
    status: str
    payment_status: str = Field(..., alias="paymentStatus")
    payment_method: str = Field(..., alias="paymentMethod")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    shipping_zone: Optional[str] = Field(default=None, alias="shippingZone")
    notes: Optional[str] = None
    estimated_delivery: Optional[str] = Field(default=None, alias="estimatedDelivery")
    email_status: dict[str, Any] = Field(default_factory=dict, alias="emailStatus")
    abandoned_at: Optional[datetime] = Field(default=None, alias="abandonedAt")
    actual_delivery: Optional[datetime] = Field(default=None, alias="actualDelivery")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


# ── Payments ────────────────────────────────────────────────────────

class PaymentCancelledRequest(ApiBase):
    """POST /api/payment-cancelled — the storefront reports an abandoned checkout."""
    order_number: str = Field(..., alias="orderNumber", min_length=1, max_length=50)
    customer_info: Optional[dict[str, Any]] = Field(default=None, alias="customerInfo")
    reason: Optional[str] = Field(default=None, max_length=500)


class PaymentCancelledResponse(ApiBase):
    success: bool
    email_sent: bool = Field(default=False, alias="emailSent")
    already_sent: bool = Field(default=False, alias="alreadySent")
    error: Optional[str] = None


class CreatePreferenceRequest(ApiBase):
    """POST /api/mercadopago/create-preference."""
    amount: Decimal = Field(..., gt=0)
    order_id: str = Field(..., alias="orderId", min_length=1, max_length=50)
    customer_email: EmailStr = Field(..., alias="customerEmail")
    customer_name: Optional[str] = Field(default=None, alias="customerName", max_length=255)
    description: Optional[str] = Field(default=None, max_length=255)


class CreatePaymentLinkRequest(ApiBase):
    """POST /api/bold/create-payment-link."""
    amount: Decimal = Field(..., gt=0)
    reference: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(default=None, max_length=255)
    customer_email: Optional[EmailStr] = Field(default=None, alias="customerEmail")

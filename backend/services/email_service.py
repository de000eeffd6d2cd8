"""
Email Service — customer notifications over SMTP (fastapi-mail).

Contract used by the notification gate:

    await sender.send(kind, order, customer) -> SendResult

send() never raises for transport problems; it reports them in the result so
the caller can leave the notification unflagged for a later retry.
"""
import html
import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from fastapi_mail import ConnectionConfig, FastMail, MessageSchema, MessageType
from fastapi_mail.errors import ConnectionErrors
from pydantic import ValidationError as PydanticValidationError

from domain.enums import NotificationKind

logger = logging.getLogger(__name__)

BRAND = "Casa Piñón Ebanistería"


@dataclass(frozen=True)
class CustomerContact:
    name: str
    email: str
    phone: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Optional[dict], fallback: "CustomerContact") -> "CustomerContact":
        """Client-supplied customer info, filling gaps from the stored order."""
        data = data or {}
        return cls(
            name=data.get("name") or fallback.name,
            email=data.get("email") or fallback.email,
            phone=data.get("phone") or fallback.phone,
        )


@dataclass(frozen=True)
class OrderSnapshot:
    """Plain copy of the order fields an email needs (safe to use after a rollback)."""
    order_number: str
    total: Decimal
    payment_status: str
    items: list = field(default_factory=list)
    shipping_zone: Optional[str] = None
    estimated_delivery: Optional[str] = None
    payment_id: Optional[str] = None
    customer: Optional[CustomerContact] = None

    @classmethod
    def from_order(cls, order) -> "OrderSnapshot":
        return cls(
            order_number=order.order_number,
            total=Decimal(str(order.total or 0)),
            payment_status=order.payment_status,
            items=list(order.items or []),
            shipping_zone=order.shipping_zone,
            estimated_delivery=order.estimated_delivery,
            payment_id=order.payment_id,
            customer=CustomerContact(
                name=order.customer_name,
                email=order.customer_email,
                phone=order.customer_phone,
            ),
        )


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


# ════════════════════════════════════════════════════════════════════
# Templates
# ════════════════════════════════════════════════════════════════════

_STATUS_CONTENT = {
    NotificationKind.CONFIRMATION: {
        "subject": "Confirmación de Pedido #{order_number}",
        "title": "¡Gracias por tu pedido!",
        "message": "Hemos recibido tu pedido y estamos procesándolo.",
        "color": "#8B4513",
    },
    NotificationKind.APPROVED: {
        "subject": "¡Pago Confirmado! Pedido #{order_number}",
        "title": "✅ ¡Pago Confirmado!",
        "message": "Tu pago ha sido confirmado exitosamente. Tu pedido está siendo preparado.",
        "color": "#28a745",
    },
    NotificationKind.PENDING: {
        "subject": "Pago Pendiente - Pedido #{order_number}",
        "title": "⏳ Pago Pendiente",
        "message": "Tu pago está siendo procesado. Te avisaremos en cuanto se confirme.",
        "color": "#ffc107",
    },
    NotificationKind.REJECTED: {
        "subject": "Pago Rechazado - Pedido #{order_number}",
        "title": "❌ Pago Rechazado",
        "message": "No pudimos procesar tu pago. Puedes intentarlo de nuevo con otro medio de pago.",
        "color": "#dc3545",
    },
    NotificationKind.CANCELLED: {
        "subject": "Pago Cancelado - Pedido #{order_number}",
        "title": "Pago Cancelado",
        "message": "El proceso de pago fue cancelado. Tu pedido sigue guardado si deseas completarlo.",
        "color": "#6c757d",
    },
    NotificationKind.REFUNDED: {
        "subject": "Reembolso Procesado - Pedido #{order_number}",
        "title": "Reembolso Procesado",
        "message": "Hemos procesado el reembolso de tu pago.",
        "color": "#17a2b8",
    },
}


def format_cop(amount) -> str:
    """Colombian peso formatting: 2800000 → $2.800.000"""
    value = Decimal(str(amount or 0))
    return "$" + f"{value:,.0f}".replace(",", ".")


def render_email(kind: NotificationKind, order: OrderSnapshot, customer: CustomerContact) -> tuple[str, str]:
    """Build (subject, html) for a notification kind."""
    content = _STATUS_CONTENT[NotificationKind(kind)]
    subject = f"{content['subject'].format(order_number=order.order_number)} - {BRAND}"

    items_html = "".join(
        f"<li>{html.escape(str(item.get('name', 'Producto')))} - {format_cop(item.get('price', 0))}"
        f" x {item.get('quantity', 1)}</li>"
        for item in order.items
        if isinstance(item, dict)
    )
    delivery = ""
    if order.estimated_delivery:
        delivery = f"<p><strong>Entrega estimada:</strong> {html.escape(order.estimated_delivery)}</p>"

    body = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h1 style="color: #8B4513; text-align: center;">{BRAND}</h1>
  <h2 style="color: {content['color']};">{content['title']}</h2>
  <p>Hola {html.escape(customer.name)},</p>
  <p>{content['message']}</p>
  <p><strong>Número de Pedido:</strong> {html.escape(order.order_number)}</p>
  <ul>{items_html}</ul>
  <p style="text-align: right; font-size: 18px;"><strong>Total:</strong> {format_cop(order.total)}</p>
  {delivery}
  <p style="color: #666; font-size: 12px;">Artesanía en madera de piñón</p>
</div>
"""
    return subject, body


# ════════════════════════════════════════════════════════════════════
# Sender
# ════════════════════════════════════════════════════════════════════


class EmailSender:
    """SMTP sender built from Settings; one instance per process."""

    def __init__(self, settings):
        self._fastmail: Optional[FastMail] = None
        if settings.email_configured:
            config = ConnectionConfig(
                MAIL_USERNAME=settings.mail_username,
                MAIL_PASSWORD=settings.mail_password,
                MAIL_FROM=settings.mail_from,
                MAIL_FROM_NAME=settings.mail_from_name,
                MAIL_PORT=settings.mail_port,
                MAIL_SERVER=settings.mail_server,
                MAIL_STARTTLS=settings.mail_starttls,
                MAIL_SSL_TLS=settings.mail_ssl_tls,
                USE_CREDENTIALS=True,
                VALIDATE_CERTS=True,
                SUPPRESS_SEND=1 if settings.mail_suppress_send else 0,
            )
            self._fastmail = FastMail(config)

    @property
    def configured(self) -> bool:
        return self._fastmail is not None

    async def send(self, kind, order: OrderSnapshot, customer: CustomerContact) -> SendResult:
        if self._fastmail is None:
            logger.warning("Email credentials not configured, skipping email send")
            return SendResult(success=False, error="email not configured")
        if not customer.email:
            return SendResult(success=False, error="customer has no email address")

        subject, body = render_email(kind, order, customer)
        try:
            message = MessageSchema(
                subject=subject,
                recipients=[customer.email],
                body=body,
                subtype=MessageType.html,
            )
            await self._fastmail.send_message(message)
        except (ConnectionErrors, PydanticValidationError) as e:
            logger.error(f"Error sending {kind} email for {order.order_number}: {e}")
            return SendResult(success=False, error=str(e))

        message_id = uuid.uuid4().hex
        logger.info(f"{NotificationKind(kind).value} email sent for {order.order_number} ({message_id})")
        return SendResult(success=True, message_id=message_id)

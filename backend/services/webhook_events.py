"""
Gateway webhook events — parsing and signature verification.

Every gateway posts a different body. parse_webhook() turns it into one of a
small set of event types so the reconciler can dispatch on type instead of
probing dict keys:

    MercadoPagoPaymentEvent   payment id only; status is fetched from the API
    BoldPaymentEvent          status inline (payment.succeeded / failed / pending)
    EpaycoConfirmation        status inline as x_cod_response
    UnrecognizedEvent         anything else (acknowledged, not processed)

Signature checks fail closed: with verification enabled, a gateway whose
secret is not configured has all of its webhooks rejected.
"""
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Union
from urllib.parse import parse_qsl

from domain.enums import Gateway
from domain.errors import MalformedInputError
from services.payment_resolver import PaymentSignal, clean_text, normalize_signal

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════
# Event types
# ════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class MercadoPagoPaymentEvent:
    payment_id: str
    action: str

    gateway = Gateway.MERCADOPAGO.value


_BOLD_EVENT_STATUS = {
    "payment.succeeded": "approved",
    "payment.failed": "rejected",
    "payment.pending": "pending",
}


@dataclass(frozen=True)
class BoldPaymentEvent:
    event: str
    payment_id: Optional[str]
    reference: Optional[str]
    raw_status: Optional[str]

    gateway = Gateway.BOLD.value

    def to_signal(self) -> PaymentSignal:
        return normalize_signal(
            payment_id=self.payment_id,
            external_reference=self.reference,
            raw_status=self.raw_status,
        )


# x_cod_response values documented by ePayco
_EPAYCO_RESPONSE_STATUS = {
    "1": "approved",
    "2": "rejected",
    "3": "pending",
    "4": "rejected",
    "6": "refunded",
    "7": "pending",
    "8": "pending",
    "9": "expired",
    "10": "cancelled",
    "11": "cancelled",
}


@dataclass(frozen=True)
class EpaycoConfirmation:
    ref_payco: Optional[str]
    invoice: Optional[str]
    response_code: str
    reason: Optional[str] = None

    gateway = Gateway.EPAYCO.value

    @property
    def raw_status(self) -> str:
        return _EPAYCO_RESPONSE_STATUS[self.response_code]

    def to_signal(self) -> PaymentSignal:
        return normalize_signal(
            payment_id=self.ref_payco,
            external_reference=self.invoice,
            raw_status=self.raw_status,
        )


@dataclass(frozen=True)
class UnrecognizedEvent:
    gateway: str
    reason: str


GatewayEvent = Union[MercadoPagoPaymentEvent, BoldPaymentEvent, EpaycoConfirmation, UnrecognizedEvent]


# ════════════════════════════════════════════════════════════════════
# Body decoding
# ════════════════════════════════════════════════════════════════════


def decode_body(raw: bytes, content_type: Optional[str] = None) -> dict:
    """
    Decode a webhook body into a dict.

    JSON objects are accepted from every gateway; ePayco confirmations may
    also arrive form-encoded. Anything else raises MalformedInputError (400).
    """
    if content_type and "application/x-www-form-urlencoded" in content_type:
        try:
            return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError as e:
            raise MalformedInputError("Webhook body is not valid form data") from e

    try:
        body = json.loads(raw or b"")
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedInputError("Webhook body is not valid JSON") from e
    if not isinstance(body, dict):
        raise MalformedInputError("Webhook body must be a JSON object")
    return body


# ════════════════════════════════════════════════════════════════════
# Parsing
# ════════════════════════════════════════════════════════════════════


def parse_webhook(gateway: str, body: dict, query: Optional[Mapping] = None) -> GatewayEvent:
    """Turn a decoded webhook body into a typed gateway event."""
    query = query or {}
    if gateway == Gateway.MERCADOPAGO.value:
        return _parse_mercadopago(body, query)
    if gateway == Gateway.BOLD.value:
        return _parse_bold(body)
    if gateway == Gateway.EPAYCO.value:
        return _parse_epayco(body)
    return UnrecognizedEvent(gateway=gateway, reason="unknown_gateway")


def _parse_mercadopago(body: dict, query: Mapping) -> GatewayEvent:
    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    action = clean_text(body.get("action")) or ""
    kind = clean_text(body.get("type")) or clean_text(body.get("topic")) or clean_text(query.get("topic"))

    if action.startswith("payment.") or kind == "payment":
        payment_id = clean_text(data.get("id")) or clean_text(body.get("id")) or clean_text(query.get("id"))
        if payment_id is None:
            return UnrecognizedEvent(Gateway.MERCADOPAGO.value, "missing_payment_id")
        return MercadoPagoPaymentEvent(payment_id=payment_id, action=action or "payment.updated")

    return UnrecognizedEvent(Gateway.MERCADOPAGO.value, f"unhandled_type_{kind or action or 'none'}")


def _parse_bold(body: dict) -> GatewayEvent:
    event = clean_text(body.get("event")) or clean_text(body.get("type")) or ""
    status = _BOLD_EVENT_STATUS.get(event.lower())
    if status is None:
        return UnrecognizedEvent(Gateway.BOLD.value, f"unhandled_event_{event or 'none'}")

    data = body.get("data") if isinstance(body.get("data"), dict) else {}
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return BoldPaymentEvent(
        event=event.lower(),
        payment_id=clean_text(data.get("payment_id")) or clean_text(data.get("id")),
        reference=clean_text(data.get("reference")) or clean_text(metadata.get("reference")),
        raw_status=status,
    )


def _parse_epayco(body: dict) -> GatewayEvent:
    code = clean_text(body.get("x_cod_response")) or clean_text(body.get("x_cod_transaction_state"))
    if code is None or code not in _EPAYCO_RESPONSE_STATUS:
        return UnrecognizedEvent(Gateway.EPAYCO.value, f"unhandled_response_code_{code or 'none'}")
    return EpaycoConfirmation(
        ref_payco=clean_text(body.get("x_ref_payco")),
        invoice=clean_text(body.get("x_id_invoice")) or clean_text(body.get("x_extra1")),
        response_code=code,
        reason=clean_text(body.get("x_response_reason_text")),
    )


# ════════════════════════════════════════════════════════════════════
# Signature verification
# ════════════════════════════════════════════════════════════════════


def _parse_mercadopago_signature(header: str) -> tuple[Optional[str], Optional[str]]:
    """x-signature: "ts=1704908010,v1=618c8534..." → (ts, v1)"""
    parts = {}
    for chunk in header.split(","):
        key, _, value = chunk.strip().partition("=")
        parts[key.strip()] = value.strip()
    return parts.get("ts"), parts.get("v1")


def verify_mercadopago_signature(
    secret: str,
    signature_header: Optional[str],
    request_id: Optional[str],
    data_id: Optional[str],
) -> bool:
    """
    Verify a MercadoPago webhook.

    The signed manifest is ``id:<data.id>;request-id:<x-request-id>;ts:<ts>;``
    hashed with HMAC-SHA256 under the webhook secret.
    """
    if not secret:
        logger.error(
            "MERCADOPAGO_WEBHOOK_SECRET not configured, rejecting webhook. "
            "Set it in .env to accept MercadoPago webhooks."
        )
        return False
    if not signature_header:
        logger.warning("MercadoPago webhook received without x-signature header")
        return False

    ts, v1 = _parse_mercadopago_signature(signature_header)
    if not ts or not v1:
        return False

    manifest = ""
    if data_id:
        manifest += f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"

    expected = hmac.new(secret.encode("utf-8"), manifest.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, v1)


def verify_bold_signature(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    """Bold signs the base64-encoded raw body with HMAC-SHA256."""
    if not secret:
        logger.error("BOLD_SECRET_KEY not configured, rejecting webhook.")
        return False
    if not signature:
        logger.warning("Bold webhook received without x-bold-signature header")
        return False

    encoded = base64.b64encode(raw_body)
    expected = hmac.new(secret.encode("utf-8"), encoded, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def epayco_signature(customer_id: str, p_key: str, body: Mapping) -> str:
    """SHA-256 of cust_id^p_key^x_ref_payco^x_transaction_id^x_amount^x_currency_code."""
    fields = [
        customer_id,
        p_key,
        str(body.get("x_ref_payco", "")),
        str(body.get("x_transaction_id", "")),
        str(body.get("x_amount", "")),
        str(body.get("x_currency_code", "")),
    ]
    return hashlib.sha256("^".join(fields).encode("utf-8")).hexdigest()


def verify_epayco_signature(customer_id: str, p_key: str, body: Mapping) -> bool:
    if not customer_id or not p_key:
        logger.error("EPAYCO_CUSTOMER_ID / EPAYCO_P_KEY not configured, rejecting confirmation.")
        return False
    signature = body.get("x_signature")
    if not signature:
        logger.warning("ePayco confirmation received without x_signature")
        return False
    return hmac.compare_digest(epayco_signature(customer_id, p_key, body), str(signature))


def verify_webhook(
    gateway: str,
    settings,
    raw_body: bytes,
    headers: Mapping,
    body: dict,
    query: Optional[Mapping] = None,
) -> bool:
    """Check the gateway-specific signature. Always True when verification is disabled."""
    if not settings.webhook_verification:
        return True

    query = query or {}
    if gateway == Gateway.MERCADOPAGO.value:
        data = body.get("data") if isinstance(body.get("data"), dict) else {}
        data_id = data.get("id") or query.get("data.id") or query.get("id")
        return verify_mercadopago_signature(
            settings.mercadopago_webhook_secret,
            headers.get("x-signature"),
            headers.get("x-request-id"),
            data_id,
        )
    if gateway == Gateway.BOLD.value:
        return verify_bold_signature(settings.bold_secret_key, raw_body, headers.get("x-bold-signature"))
    if gateway == Gateway.EPAYCO.value:
        return verify_epayco_signature(settings.epayco_customer_id, settings.epayco_p_key, body)
    return False

"""
Payment Status Resolver — classifies a payment signal into an outcome.

A signal is whatever a gateway tells us about a payment: an asynchronous
webhook, or the query string on the shopper's redirect back to the store.
Both are normalized into a PaymentSignal at the boundary (normalize_signal)
so that the classification below never compares raw gateway strings.

Classification (first match wins):
    0. payment id + approved status            → approved (status field only)
    1. any status is cancelled                 → user_cancelled
    2. no payment id, no status, has reference → user_cancelled
    3. no payment id, no reference, no error   → user_cancelled (bare return)
    4. error is unknown / return_to_site       → user_cancelled
    5. no payment id, no reference             → error code verbatim
    6. error code, else approved/pending/refunded status, else payment_failed

Gateways omit status fields when the shopper backs out before a transaction
exists, so abandonment is checked before any failure code.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from domain.constants import ABANDONMENT_ERROR_CODES, NULL_LITERALS
from domain.enums import GatewayStatus, NotificationKind, Outcome, PaymentStatus

logger = logging.getLogger(__name__)


# Gateway vocabulary → GatewayStatus (MercadoPago, Bold, ePayco)
_STATUS_ALIASES = {
    "approved": GatewayStatus.APPROVED,
    "accredited": GatewayStatus.APPROVED,
    "paid": GatewayStatus.APPROVED,
    "succeeded": GatewayStatus.APPROVED,
    "success": GatewayStatus.APPROVED,
    "aceptada": GatewayStatus.APPROVED,
    "pending": GatewayStatus.PENDING,
    "in_process": GatewayStatus.PENDING,
    "in_mediation": GatewayStatus.PENDING,
    "authorized": GatewayStatus.PENDING,
    "processing": GatewayStatus.PENDING,
    "pendiente": GatewayStatus.PENDING,
    "active": GatewayStatus.PENDING,  # Bold link not yet paid
    "rejected": GatewayStatus.REJECTED,
    "failed": GatewayStatus.REJECTED,
    "failure": GatewayStatus.REJECTED,
    "declined": GatewayStatus.REJECTED,
    "rechazada": GatewayStatus.REJECTED,
    "fallida": GatewayStatus.REJECTED,
    "cancelled": GatewayStatus.CANCELLED,
    "canceled": GatewayStatus.CANCELLED,
    "expired": GatewayStatus.CANCELLED,
    "cancelada": GatewayStatus.CANCELLED,
    "refunded": GatewayStatus.REFUNDED,
    "charged_back": GatewayStatus.REFUNDED,
    "reversed": GatewayStatus.REFUNDED,
    "voided": GatewayStatus.REFUNDED,
    "reversada": GatewayStatus.REFUNDED,
}

_OUTCOME_TO_PAYMENT_STATUS = {
    Outcome.APPROVED.value: PaymentStatus.PAID,
    Outcome.PENDING.value: PaymentStatus.PENDING,
    Outcome.USER_CANCELLED.value: PaymentStatus.CANCELLED,
    Outcome.REFUNDED.value: PaymentStatus.REFUNDED,
}

_OUTCOME_TO_NOTIFICATION = {
    Outcome.APPROVED.value: NotificationKind.APPROVED,
    Outcome.PENDING.value: NotificationKind.PENDING,
    Outcome.USER_CANCELLED.value: NotificationKind.CANCELLED,
    Outcome.REFUNDED.value: NotificationKind.REFUNDED,
}


# ════════════════════════════════════════════════════════════════════
# Boundary normalization
# ════════════════════════════════════════════════════════════════════


def clean_text(value) -> Optional[str]:
    """Strip a gateway field; "null"-like text and blanks become None."""
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in NULL_LITERALS:
        return None
    return text


def normalize_status(value) -> Optional[GatewayStatus]:
    """Map a gateway status string onto GatewayStatus (None when absent)."""
    text = clean_text(value)
    if text is None:
        return None
    status = _STATUS_ALIASES.get(text.lower())
    if status is None:
        logger.debug(f"Unrecognized gateway status: {text!r}")
        return GatewayStatus.UNKNOWN
    return status


@dataclass(frozen=True)
class PaymentSignal:
    """Normalized resolver input, identical for webhooks and redirects."""
    payment_id: Optional[str] = None
    external_reference: Optional[str] = None
    raw_status: Optional[GatewayStatus] = None
    collection_status: Optional[GatewayStatus] = None
    error_code: Optional[str] = None

    def statuses(self) -> tuple:
        return (self.raw_status, self.collection_status)


def normalize_signal(
    *,
    payment_id=None,
    external_reference=None,
    raw_status=None,
    collection_status=None,
    error_code=None,
) -> PaymentSignal:
    """Build a PaymentSignal from raw gateway fields."""
    error = clean_text(error_code)
    return PaymentSignal(
        payment_id=clean_text(payment_id),
        external_reference=clean_text(external_reference),
        raw_status=normalize_status(raw_status),
        collection_status=normalize_status(collection_status),
        error_code=error,
    )


def signal_from_redirect(params) -> PaymentSignal:
    """Redirect-back query parameters map directly onto the signal fields."""
    return normalize_signal(
        payment_id=params.get("payment_id"),
        external_reference=params.get("external_reference"),
        raw_status=params.get("status"),
        collection_status=params.get("collection_status"),
        error_code=params.get("error"),
    )


# ════════════════════════════════════════════════════════════════════
# Classification
# ════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class Resolution:
    """Resolver output: outcome string, canonical status, and the rule that fired."""
    outcome: str
    rule: str
    ambiguous: bool = False

    @property
    def payment_status(self) -> PaymentStatus:
        return outcome_to_payment_status(self.outcome)

    @property
    def notification_kind(self) -> NotificationKind:
        return outcome_to_notification(self.outcome)

    @property
    def is_bare_return(self) -> bool:
        return self.rule == "bare_return"


def classify(signal: PaymentSignal) -> Resolution:
    """Classify a normalized signal. Pure function, no I/O."""
    statuses = signal.statuses()
    has_payment = signal.payment_id is not None
    has_reference = signal.external_reference is not None
    error = signal.error_code

    if has_payment and signal.raw_status == GatewayStatus.APPROVED:
        return Resolution(Outcome.APPROVED.value, "approved")

    if GatewayStatus.CANCELLED in statuses:
        return Resolution(Outcome.USER_CANCELLED.value, "explicit_cancel")

    if not has_payment and statuses == (None, None) and has_reference:
        return Resolution(Outcome.USER_CANCELLED.value, "abandoned_with_reference")

    if not has_payment and not has_reference and error is None:
        return Resolution(Outcome.USER_CANCELLED.value, "bare_return")

    if error is not None and error.lower() in ABANDONMENT_ERROR_CODES:
        return Resolution(Outcome.USER_CANCELLED.value, "abandonment_code")

    if not has_payment and not has_reference:
        return Resolution(error, "uncorrelated_error")

    if error is not None:
        return Resolution(error, "gateway_error_code")

    for status, outcome in (
        (GatewayStatus.APPROVED, Outcome.APPROVED),
        (GatewayStatus.PENDING, Outcome.PENDING),
        (GatewayStatus.REFUNDED, Outcome.REFUNDED),
    ):
        if status in statuses:
            return Resolution(outcome.value, "status")

    if GatewayStatus.REJECTED in statuses:
        return Resolution(Outcome.PAYMENT_FAILED.value, "rejected")

    return Resolution(Outcome.PAYMENT_FAILED.value, "fallback", ambiguous=True)


def outcome_to_payment_status(outcome: str) -> PaymentStatus:
    """Anything that is not a named success/pending/cancel/refund is a failure."""
    return _OUTCOME_TO_PAYMENT_STATUS.get(outcome, PaymentStatus.FAILED)


def outcome_to_notification(outcome: str) -> NotificationKind:
    return _OUTCOME_TO_NOTIFICATION.get(outcome, NotificationKind.REJECTED)


# ════════════════════════════════════════════════════════════════════
# Transition guard
# ════════════════════════════════════════════════════════════════════

# Webhooks are retried and may arrive after the redirect (or vice versa),
# so a late "pending" must never undo a "paid".
_ALLOWED_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PAID, PaymentStatus.FAILED,
        PaymentStatus.CANCELLED, PaymentStatus.REFUNDED,
    },
    PaymentStatus.FAILED: {PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.CANCELLED},
    PaymentStatus.CANCELLED: {PaymentStatus.PENDING, PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.REFUNDED: set(),
}


def can_transition(current, target) -> bool:
    """True when moving from current to target is a real, allowed change."""
    current = PaymentStatus(current)
    target = PaymentStatus(target)
    return target in _ALLOWED_TRANSITIONS[current]

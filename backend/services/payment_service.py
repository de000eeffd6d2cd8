"""
Payment Reconciliation Service — applies classified payment signals to orders.

Every entry point (gateway webhook, shopper redirect, client cancellation
report, status check, daily verification) ends in reconcile():

    signal ─► classify ─► find order ─► guarded status update ─► commit
                                                            └─► notification gate

The status update is committed before the notification gate runs, so an
email failure never undoes a status change; the notification is simply left
unflagged and a later signal for the same order retries it.

Dependencies (settings, email sender, gateway clients, metrics) are injected at
construction; main.lifespan builds one reconciler per process.
"""
import logging
from dataclasses import asdict, dataclass, replace
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order, Payment, PaymentEvent
from domain.constants import CLASSIFICATION_AMBIGUOUS, ORDER_NOT_FOUND, PAYMENT_STATUS_MESSAGES
from domain.enums import EventSource, Gateway, Outcome, OrderStatus, PaymentStatus
from domain.errors import GatewayError, GatewayNotConfiguredError, NotFoundError
from services.email_service import CustomerContact, OrderSnapshot
from services.notification_gate import NotificationGate
from services.payment_resolver import (
    PaymentSignal,
    Resolution,
    can_transition,
    classify,
    normalize_signal,
    normalize_status,
    signal_from_redirect,
)
from services.resolver_metrics import ResolverMetrics, get_resolver_metrics
from services.webhook_events import (
    BoldPaymentEvent,
    EpaycoConfirmation,
    GatewayEvent,
    MercadoPagoPaymentEvent,
    UnrecognizedEvent,
)

logger = logging.getLogger(__name__)

# Gateway lookups that may fail without failing the caller
_LOOKUP_ERRORS = (GatewayError, GatewayNotConfiguredError, NotFoundError)


@dataclass
class ReconciliationResult:
    outcome: str
    rule: str
    order_number: Optional[str] = None
    payment_status: Optional[str] = None
    status_changed: bool = False
    email_sent: bool = False
    already_sent: bool = False
    verified: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "rule": self.rule,
            "orderNumber": self.order_number,
            "paymentStatus": self.payment_status,
            "statusChanged": self.status_changed,
            "emailSent": self.email_sent,
            "alreadySent": self.already_sent,
            "verified": self.verified,
            "error": self.error,
        }


def signal_from_payment(payment: dict, fallback_reference: Optional[str] = None) -> PaymentSignal:
    """
    MercadoPago payment record → signal.

    A rejected payment's status_detail (e.g. cc_rejected_insufficient_amount)
    is the decline code the shopper needs to see, so it travels as error_code.
    """
    status = payment.get("status")
    return normalize_signal(
        payment_id=payment.get("id"),
        external_reference=payment.get("external_reference") or fallback_reference,
        raw_status=status,
        error_code=payment.get("status_detail") if status == "rejected" else None,
    )


def payment_status_message(status: Optional[str], status_detail: Optional[str] = None) -> str:
    return PAYMENT_STATUS_MESSAGES.get(status) or f"Estado del pago: {status} ({status_detail})"


def _verification(status: Optional[str], status_detail: Optional[str], source: str) -> dict:
    return {
        "is_approved": status == "approved",
        "is_pending": status in ("pending", "in_process"),
        "is_rejected": status in ("rejected", "cancelled"),
        "message": payment_status_message(status, status_detail),
        "source": source,
    }


class PaymentReconciler:
    """Orchestrates classification, persistence and notifications for payment signals."""

    def __init__(
        self,
        settings,
        email_sender,
        gateway_client=None,
        metrics: Optional[ResolverMetrics] = None,
        gate: Optional[NotificationGate] = None,
        bold_client=None,
    ):
        self.settings = settings
        self.gateway_client = gateway_client
        self.bold_client = bold_client
        self.metrics = metrics or get_resolver_metrics()
        self.gate = gate or NotificationGate(
            email_sender,
            metrics=self.metrics,
            claim_ttl_seconds=settings.notification_claim_ttl_seconds,
        )

    # ════════════════════════════════════════════════════════════════
    # Core
    # ════════════════════════════════════════════════════════════════

    async def reconcile(
        self,
        db: AsyncSession,
        signal: PaymentSignal,
        *,
        source: EventSource,
        gateway: Optional[str] = None,
        event_type: Optional[str] = None,
        payload: Optional[dict] = None,
        customer: Optional[CustomerContact] = None,
    ) -> ReconciliationResult:
        """
        Classify a signal and apply it to its order.

        The notification gate runs whenever the order ends up at the signal's
        status, changed by this call or not, so a redelivered signal retries an
        email whose earlier dispatch failed. The gate suppresses duplicates.
        """
        resolution = classify(signal)
        self._observe(resolution, signal, source)

        result = ReconciliationResult(
            outcome=resolution.outcome,
            rule=resolution.rule,
            order_number=signal.external_reference,
            payment_status=resolution.payment_status.value,
        )

        if signal.external_reference is None:
            logger.info(f"{source.value} signal without order reference → {resolution.outcome}")
            return result

        order = await self._find_order(db, signal.external_reference)
        if order is None:
            self.metrics.record_order_not_found()
            logger.warning(
                f"{ORDER_NOT_FOUND}: {source.value} signal for unknown order "
                f"{signal.external_reference} ({resolution.outcome})"
            )
            result.error = ORDER_NOT_FOUND
            return result

        db.add(self._audit_event(signal, resolution, source, gateway, event_type, payload))
        changed = await self._apply_status(db, order, resolution.payment_status, signal.payment_id)
        current_status = order.payment_status
        snapshot = OrderSnapshot.from_order(order)
        await db.commit()
        result.status_changed = changed

        target = resolution.payment_status.value
        if changed or current_status == target:
            gate_result = await self.gate.dispatch(
                db,
                replace(snapshot, payment_status=target),
                resolution.notification_kind,
                customer,
            )
            result.email_sent = gate_result.email_sent
            result.already_sent = gate_result.already_sent
            result.error = gate_result.error

        logger.info(
            f"Reconciled {snapshot.order_number}: {resolution.outcome} via {resolution.rule} "
            f"(changed={changed}, emailSent={result.email_sent}, alreadySent={result.already_sent})"
        )
        return result

    def _observe(self, resolution: Resolution, signal: PaymentSignal, source: EventSource) -> None:
        self.metrics.record_outcome(resolution.outcome, resolution.rule)
        if resolution.is_bare_return:
            logger.warning(
                f"Bare {source.value} with no payment id, reference or error classified as "
                f"cancellation; check the gateway integration if this keeps happening"
            )
        if resolution.ambiguous:
            self.metrics.record_ambiguous()
            logger.warning(
                f"{CLASSIFICATION_AMBIGUOUS}: {source.value} signal {asdict(signal)} "
                f"defaulted to {Outcome.PAYMENT_FAILED.value}"
            )

    async def _find_order(self, db: AsyncSession, order_number: str) -> Optional[Order]:
        res = await db.execute(
            select(Order)
            .where(Order.order_number == order_number)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def _apply_status(
        self,
        db: AsyncSession,
        order: Order,
        target: PaymentStatus,
        payment_id: Optional[str],
    ) -> bool:
        """Guarded conditional update; True only if this call changed the status."""
        current = order.payment_status
        if current == target.value:
            if payment_id and not order.payment_id:
                order.payment_id = payment_id
            return False

        if not can_transition(current, target):
            self.metrics.record_ignored_transition()
            logger.info(f"Ignoring {current} → {target.value} for {order.order_number}")
            return False

        values = {"payment_status": target.value}
        if payment_id:
            values["payment_id"] = payment_id
        if target == PaymentStatus.PAID and order.status == OrderStatus.PENDING.value:
            values["status"] = OrderStatus.CONFIRMED.value

        # Conditional on the status we read, so a concurrent writer wins cleanly.
        res = await db.execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_status == current)
            .values(**values)
        )
        if res.rowcount != 1:
            logger.info(f"{order.order_number} changed concurrently; skipping {current} → {target.value}")
            return False

        self.metrics.record_status_change()
        logger.info(f"Order {order.order_number} payment status {current} → {target.value}")
        return True

    @staticmethod
    def _audit_event(signal, resolution, source, gateway, event_type, payload) -> PaymentEvent:
        return PaymentEvent(
            source=source.value,
            gateway=gateway,
            event_type=event_type,
            payment_id=signal.payment_id,
            external_reference=signal.external_reference,
            raw_status=signal.raw_status.value if signal.raw_status else None,
            collection_status=signal.collection_status.value if signal.collection_status else None,
            error_code=signal.error_code,
            outcome=resolution.outcome,
            rule=resolution.rule,
            payload=payload,
        )

    # ════════════════════════════════════════════════════════════════
    # Entry points
    # ════════════════════════════════════════════════════════════════

    async def handle_webhook(self, db: AsyncSession, event: GatewayEvent) -> dict:
        """Process a parsed gateway webhook. Unrecognized events are acknowledged and dropped."""
        if isinstance(event, UnrecognizedEvent):
            self.metrics.record_unrecognized_event()
            logger.info(f"Ignoring {event.gateway} webhook: {event.reason}")
            return {"received": True, "processed": False, "reason": event.reason}

        if isinstance(event, MercadoPagoPaymentEvent):
            payment = await self._require_gateway().get_payment(event.payment_id)
            await self._upsert_payment(db, payment, event.gateway, webhook_verified=True)
            signal = signal_from_payment(payment)
            payload = {"action": event.action, "status": payment.get("status"),
                       "status_detail": payment.get("status_detail")}
            event_type = event.action
        elif isinstance(event, (BoldPaymentEvent, EpaycoConfirmation)):
            signal = event.to_signal()
            payload = asdict(event)
            event_type = getattr(event, "event", None) or f"x_cod_response_{event.response_code}"
        else:
            raise TypeError(f"Unsupported gateway event: {event!r}")

        result = await self.reconcile(
            db, signal,
            source=EventSource.WEBHOOK,
            gateway=event.gateway,
            event_type=event_type,
            payload=payload,
        )
        return {"received": True, "processed": True, **result.to_dict()}

    async def handle_redirect(self, db: AsyncSession, params) -> ReconciliationResult:
        """
        Resolve the shopper's redirect back to the store.

        Query strings are trivially forged, so an "approved" redirect is only
        applied once the gateway confirms the payment; otherwise the outcome
        is reported with verified=False and nothing is changed.
        """
        signal = signal_from_redirect(params)
        preview = classify(signal)
        payload = {k: params.get(k) for k in
                   ("payment_id", "external_reference", "status", "collection_status", "error")}

        if preview.outcome == Outcome.APPROVED.value and self.settings.verify_redirect_approvals:
            payment = await self._confirm_payment(signal)
            if payment is None:
                self._observe(preview, signal, EventSource.REDIRECT)
                return ReconciliationResult(
                    outcome=preview.outcome,
                    rule=preview.rule,
                    order_number=signal.external_reference,
                    payment_status=preview.payment_status.value,
                    verified=False,
                )
            await self._upsert_payment(db, payment, Gateway.MERCADOPAGO.value, webhook_verified=False)
            signal = signal_from_payment(payment, fallback_reference=signal.external_reference)

        return await self.reconcile(
            db, signal,
            source=EventSource.REDIRECT,
            gateway=Gateway.MERCADOPAGO.value,
            event_type="redirect",
            payload=payload,
        )

    async def report_cancellation(
        self,
        db: AsyncSession,
        order_number: str,
        customer_info: Optional[dict] = None,
        reason: Optional[str] = None,
    ) -> dict:
        """Client-initiated cancellation (POST /api/payment-cancelled)."""
        signal = normalize_signal(external_reference=order_number, raw_status="cancelled")
        order = await self._find_order(db, signal.external_reference) if signal.external_reference else None
        if order is None:
            self.metrics.record_order_not_found()
            logger.warning(f"{ORDER_NOT_FOUND}: cancellation reported for unknown order {order_number!r}")
            return {"success": False, "error": ORDER_NOT_FOUND}

        customer = CustomerContact.from_payload(customer_info, OrderSnapshot.from_order(order).customer)
        result = await self.reconcile(
            db, signal,
            source=EventSource.CLIENT_REPORT,
            event_type="payment_cancelled",
            payload={"reason": reason, "customerInfo": customer_info},
            customer=customer,
        )
        response = {
            "success": result.error != ORDER_NOT_FOUND,
            "emailSent": result.email_sent,
            "alreadySent": result.already_sent,
            "orderNumber": result.order_number,
            "statusChanged": result.status_changed,
        }
        if result.error:
            response["error"] = result.error
        return response

    async def get_payment_status(self, db: AsyncSession, payment_id: str) -> dict:
        """
        Dual verification: a webhook-verified record wins; otherwise ask the
        gateway, store the answer and reconcile the order with it.
        """
        res = await db.execute(select(Payment).where(Payment.payment_id == str(payment_id)))
        stored = res.scalar_one_or_none()
        if stored is not None and stored.webhook_verified:
            return {
                "payment": _payment_record(stored),
                "verification": _verification(stored.status, stored.status_detail, "webhook_verified"),
            }

        payment = await self._require_gateway().get_payment(payment_id)
        await self._upsert_payment(db, payment, Gateway.MERCADOPAGO.value, webhook_verified=False)

        reconciliation = None
        if payment.get("external_reference"):
            result = await self.reconcile(
                db, signal_from_payment(payment),
                source=EventSource.VERIFICATION,
                gateway=Gateway.MERCADOPAGO.value,
                event_type="status_check",
                payload={"status": payment.get("status"), "status_detail": payment.get("status_detail")},
            )
            reconciliation = result.to_dict()

        return {
            "payment": _payment_fields(payment),
            "verification": _verification(payment.get("status"), payment.get("status_detail"), "api_verified"),
            "reconciliation": reconciliation,
        }

    async def get_bold_payment_status(self, db: AsyncSession, integration_id: str) -> dict:
        """Ask Bold for a link payment, store it and reconcile its order."""
        if self.bold_client is None or not self.bold_client.configured:
            raise GatewayNotConfiguredError("Bold")

        payment = await self.bold_client.get_payment(integration_id)
        record = _bold_payment_record(payment, integration_id)
        await self._upsert_payment(db, record, Gateway.BOLD.value, webhook_verified=False)

        reconciliation = None
        if record["external_reference"]:
            result = await self.reconcile(
                db,
                normalize_signal(
                    payment_id=integration_id,
                    external_reference=record["external_reference"],
                    raw_status=payment.get("status"),
                ),
                source=EventSource.VERIFICATION,
                gateway=Gateway.BOLD.value,
                event_type="status_check",
                payload={"status": payment.get("status")},
            )
            reconciliation = result.to_dict()

        return {
            "payment": _payment_fields(record),
            "verification": _verification(record["status"], record["status_detail"], "api_verified"),
            "reconciliation": reconciliation,
        }

    async def verify_pending_payments(self, db: AsyncSession) -> dict:
        """Re-check every pending order that has a gateway payment id."""
        res = await db.execute(
            select(Order.order_number, Order.payment_id)
            .where(
                Order.payment_status == PaymentStatus.PENDING.value,
                Order.payment_id.isnot(None),
            )
            .order_by(Order.created_at)
        )
        pending = res.all()
        logger.info(f"Verifying {len(pending)} pending payments")

        gateway = self._require_gateway()
        results, verified, errors = [], 0, 0
        for order_number, payment_id in pending:
            try:
                payment = await gateway.get_payment(payment_id)
            except _LOOKUP_ERRORS as e:
                errors += 1
                logger.error(f"Verification failed for {order_number} ({payment_id}): {e.message}")
                results.append({"orderNumber": order_number, "paymentId": payment_id, "error": e.message})
                continue

            await self._upsert_payment(db, payment, Gateway.MERCADOPAGO.value, webhook_verified=False)
            result = await self.reconcile(
                db, signal_from_payment(payment, fallback_reference=order_number),
                source=EventSource.VERIFICATION,
                gateway=Gateway.MERCADOPAGO.value,
                event_type="daily_verification",
                payload={"status": payment.get("status")},
            )
            verified += 1
            results.append({"paymentId": payment_id, "gatewayStatus": payment.get("status"), **result.to_dict()})

        summary = {"total": len(pending), "verified": verified, "errors": errors, "results": results}
        logger.info(f"Pending payment verification done: {verified} verified, {errors} errors")
        return summary

    # ════════════════════════════════════════════════════════════════
    # Gateway helpers
    # ════════════════════════════════════════════════════════════════

    def _require_gateway(self):
        if self.gateway_client is None:
            raise GatewayNotConfiguredError("MercadoPago")
        return self.gateway_client

    async def _confirm_payment(self, signal: PaymentSignal) -> Optional[dict]:
        """Fetch the payment behind an approved redirect; None when it cannot be confirmed."""
        if self.gateway_client is None or signal.payment_id is None:
            return None
        try:
            payment = await self.gateway_client.get_payment(signal.payment_id)
        except _LOOKUP_ERRORS as e:
            logger.warning(f"Could not confirm redirect payment {signal.payment_id}: {e.message}")
            return None

        reference = payment.get("external_reference")
        if signal.external_reference and reference and reference != signal.external_reference:
            logger.warning(
                f"Redirect for {signal.external_reference} carried payment {signal.payment_id} "
                f"belonging to {reference}; not applying"
            )
            return None
        return payment

    async def _upsert_payment(self, db: AsyncSession, payment: dict, gateway: str, webhook_verified: bool) -> None:
        payment_id = str(payment.get("id"))
        values = _payment_fields(payment)
        values.pop("payment_id")
        values["gateway"] = gateway

        res = await db.execute(select(Payment).where(Payment.payment_id == payment_id))
        existing = res.scalar_one_or_none()
        if existing is None:
            db.add(Payment(payment_id=payment_id, webhook_verified=webhook_verified, **values))
            try:
                await db.commit()
                return
            except IntegrityError:
                # Same payment inserted by a concurrent delivery
                await db.rollback()
                res = await db.execute(
                    select(Payment)
                    .where(Payment.payment_id == payment_id)
                    .execution_options(populate_existing=True)
                )
                existing = res.scalar_one()

        for key, value in values.items():
            setattr(existing, key, value)
        existing.webhook_verified = bool(existing.webhook_verified or webhook_verified)
        await db.commit()


def _payment_fields(payment: dict) -> dict:
    payer = payment.get("payer") or {}
    return {
        "payment_id": str(payment.get("id")),
        "order_number": payment.get("external_reference"),
        "status": payment.get("status") or "unknown",
        "status_detail": payment.get("status_detail"),
        "transaction_amount": payment.get("transaction_amount"),
        "currency_id": payment.get("currency_id"),
        "payment_method_id": payment.get("payment_method_id"),
        "payer_email": payer.get("email"),
        "date_created": payment.get("date_created"),
        "date_approved": payment.get("date_approved"),
    }


def _bold_payment_record(payment: dict, integration_id: str) -> dict:
    """Bold payment payload → the MercadoPago-shaped record the payments table stores."""
    status = normalize_status(payment.get("status"))
    amount = payment.get("amount") or {}
    metadata = payment.get("metadata") or {}
    return {
        "id": integration_id,
        "external_reference": payment.get("reference") or metadata.get("reference"),
        "status": status.value if status else "unknown",
        "status_detail": payment.get("status"),
        "transaction_amount": amount.get("total"),
        "currency_id": amount.get("currency"),
        "payment_method_id": payment.get("payment_method"),
        "payer": {"email": payment.get("payer_email")},
        "date_created": payment.get("created_at"),
        "date_approved": None,
    }


def _payment_record(payment: Payment) -> dict:
    return {
        "payment_id": payment.payment_id,
        "order_number": payment.order_number,
        "status": payment.status,
        "status_detail": payment.status_detail,
        "transaction_amount": float(payment.transaction_amount) if payment.transaction_amount is not None else None,
        "currency_id": payment.currency_id,
        "payment_method_id": payment.payment_method_id,
        "payer_email": payment.payer_email,
        "date_created": payment.date_created,
        "date_approved": payment.date_approved,
        "webhook_verified": payment.webhook_verified,
    }

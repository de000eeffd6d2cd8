"""
Notification gate — at most one email per (order_number, kind).

Webhooks are retried by the gateways and can race the shopper's redirect, so
the same "payment approved" email could otherwise go out several times. The
gate serializes dispatch through the email_notifications table:

    1. claim    INSERT (order_number, kind, state='sending'); the unique
                constraint lets exactly one worker win, across processes.
    2. send     call the email sender (never raises out of the gate)
    3. record   success → state='sent', then orders.email_status is rebuilt
                from every sent row (conditional on email_status_version)
                failure → delete the claim so a later call can retry

A claim left in 'sending' by a crashed worker is taken over after
claim_ttl_seconds with a conditional UPDATE on the old claim token.

Callers must commit their own work before dispatch(): a lost claim race rolls
the session back.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import EmailNotification, Order, utcnow
from domain.constants import NOTIFICATION_DISPATCH_FAILED
from domain.enums import NotificationKind
from services.email_service import CustomerContact, OrderSnapshot, SendResult

logger = logging.getLogger(__name__)

STATE_SENDING = "sending"
STATE_SENT = "sent"

_PROJECTION_ATTEMPTS = 5


@dataclass
class GateResult:
    email_sent: bool = False
    already_sent: bool = False
    error: Optional[str] = None
    detail: Optional[str] = None


class NotificationGate:
    """Idempotent wrapper around an email sender."""

    def __init__(self, sender, metrics=None, claim_ttl_seconds: int = 300):
        self.sender = sender
        self.metrics = metrics
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)

    async def dispatch(
        self,
        db: AsyncSession,
        order: OrderSnapshot,
        kind,
        customer: Optional[CustomerContact] = None,
    ) -> GateResult:
        """Send the `kind` notification for `order` unless it already went out."""
        kind = NotificationKind(kind).value
        customer = customer or order.customer

        token = await self._claim(db, order.order_number, kind)
        if token is None:
            logger.info(f"{kind} email for {order.order_number} already sent, skipping")
            if self.metrics:
                self.metrics.record_notification_suppressed()
            return GateResult(already_sent=True)

        try:
            result = await self.sender.send(kind, order, customer)
        except Exception as e:
            # The sender is an opaque dependency; its failure must not fail the caller.
            logger.error(f"Email sender raised for {order.order_number}/{kind}: {e}", exc_info=True)
            result = SendResult(success=False, error=str(e))

        if not result.success:
            await self._release(db, order.order_number, kind, token)
            logger.warning(
                f"{kind} email for {order.order_number} not sent ({result.error}); "
                f"left unflagged for retry"
            )
            if self.metrics:
                self.metrics.record_notification_failed()
            return GateResult(error=NOTIFICATION_DISPATCH_FAILED, detail=result.error)

        await self._mark_sent(db, order.order_number, kind, token, result.message_id)
        if self.metrics:
            self.metrics.record_notification_sent()
        return GateResult(email_sent=True)

    # ── Claim / record / release ────────────────────────────────────

    async def _claim(self, db: AsyncSession, order_number: str, kind: str) -> Optional[str]:
        """Return a claim token if this caller may send, else None."""
        for _ in range(2):
            now = utcnow()
            token = uuid.uuid4().hex
            try:
                await db.execute(
                    insert(EmailNotification).values(
                        order_number=order_number,
                        kind=kind,
                        state=STATE_SENDING,
                        claim_token=token,
                        claimed_at=now,
                        attempts=1,
                    )
                )
                await db.commit()
                return token
            except IntegrityError:
                await db.rollback()

            row = await self._get_row(db, order_number, kind)
            if row is None:
                # Claim was released between our insert and this read; try again.
                continue
            if row.state == STATE_SENT:
                return None
            if row.claimed_at > now - self.claim_ttl:
                return None  # someone else is sending right now

            result = await db.execute(
                update(EmailNotification)
                .where(
                    EmailNotification.id == row.id,
                    EmailNotification.state == STATE_SENDING,
                    EmailNotification.claim_token == row.claim_token,
                )
                .values(claim_token=token, claimed_at=now, attempts=row.attempts + 1)
            )
            await db.commit()
            if result.rowcount == 1:
                logger.warning(f"Took over stale {kind} claim for {order_number}")
                return token
            return None
        return None

    async def _mark_sent(
        self,
        db: AsyncSession,
        order_number: str,
        kind: str,
        token: str,
        message_id: Optional[str],
    ) -> None:
        now = utcnow()
        result = await db.execute(
            update(EmailNotification)
            .where(
                EmailNotification.order_number == order_number,
                EmailNotification.kind == kind,
                EmailNotification.claim_token == token,
            )
            .values(state=STATE_SENT, sent_at=now, message_id=message_id)
        )
        if result.rowcount != 1:
            logger.warning(f"{kind} claim for {order_number} changed hands while sending")
        await db.commit()

        await self._project_email_status(db, order_number)

    async def _project_email_status(self, db: AsyncSession, order_number: str) -> None:
        """
        Rebuild orders.email_status from the sent rows.

        Gates for different kinds on one order can finish concurrently, so the
        write is conditional on email_status_version. A writer that loses
        re-reads and rebuilds, which picks up the winner's row as well.
        """
        for _ in range(_PROJECTION_ATTEMPTS):
            current = await self._read_email_status(db, order_number)
            if current is None:
                await db.commit()
                return
            email_status, version = current
            if await self._write_email_status(db, order_number, email_status, version):
                return

        logger.error(f"Could not record email_status for {order_number} after {_PROJECTION_ATTEMPTS} attempts")

    async def _read_email_status(self, db: AsyncSession, order_number: str) -> Optional[tuple[dict, int]]:
        """Current flags merged with every sent row, plus the version they were read at."""
        current = (
            await db.execute(
                select(Order.email_status, Order.email_status_version)
                .where(Order.order_number == order_number)
            )
        ).first()
        if current is None:
            return None
        existing, version = current

        sent = await db.execute(
            select(EmailNotification.kind, EmailNotification.sent_at).where(
                EmailNotification.order_number == order_number,
                EmailNotification.state == STATE_SENT,
            )
        )
        flags = {
            row_kind: {"sent": True, "sentAt": sent_at.isoformat() if sent_at else None}
            for row_kind, sent_at in sent.all()
        }
        return {**(existing or {}), **flags}, version

    async def _write_email_status(self, db: AsyncSession, order_number: str, email_status: dict, version: int) -> bool:
        result = await db.execute(
            update(Order)
            .where(
                Order.order_number == order_number,
                Order.email_status_version == version,
            )
            .values(email_status=email_status, email_status_version=version + 1)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1

    async def _release(self, db: AsyncSession, order_number: str, kind: str, token: str) -> None:
        await db.execute(
            delete(EmailNotification).where(
                EmailNotification.order_number == order_number,
                EmailNotification.kind == kind,
                EmailNotification.claim_token == token,
                EmailNotification.state == STATE_SENDING,
            )
        )
        await db.commit()

    async def _get_row(self, db: AsyncSession, order_number: str, kind: str) -> Optional[EmailNotification]:
        res = await db.execute(
            select(EmailNotification)
            .where(
                EmailNotification.order_number == order_number,
                EmailNotification.kind == kind,
            )
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()


async def was_sent(db: AsyncSession, order_number: str, kind) -> bool:
    """True when the `kind` notification has been delivered for this order."""
    res = await db.execute(
        select(EmailNotification.id).where(
            EmailNotification.order_number == order_number,
            EmailNotification.kind == NotificationKind(kind).value,
            EmailNotification.state == STATE_SENT,
        )
    )
    return res.first() is not None

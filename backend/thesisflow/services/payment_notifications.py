"""Asynchronous payment confirmation (Midtrans HTTP notifications).

Midtrans delivers at least once, so every (order_id, transaction_status)
pair is claimed before it is processed. A duplicate delivery is
acknowledged without touching the ledger.
"""

from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thesisflow.db.models.payment_notification import PaymentNotification
from thesisflow.domain.orders import parse_order_id
from thesisflow.integrations.payments import verify_signature
from thesisflow.services.drafts import UserDirectory
from thesisflow.services.ledger import SubscriptionLedger

logger = structlog.get_logger(__name__)

FAILURE_STATUSES = frozenset({"deny", "cancel", "expire", "failure"})

_SETTLED = or_(
    PaymentNotification.transaction_status == "settlement",
    and_(PaymentNotification.transaction_status == "capture", PaymentNotification.fraud_status == "accept"),
)


class MidtransNotification(BaseModel):
    """Fields we read from a Midtrans notification body."""

    model_config = ConfigDict(extra="ignore")

    order_id: str
    transaction_status: str
    fraud_status: str | None = None
    gross_amount: str | None = None
    status_code: str | None = None
    signature_key: str | None = None
    transaction_id: str | None = None
    payment_type: str | None = None

    @property
    def is_success(self) -> bool:
        if self.transaction_status == "capture":
            return self.fraud_status == "accept"
        return self.transaction_status == "settlement"

    @property
    def is_failure(self) -> bool:
        return self.transaction_status in FAILURE_STATUSES


def _parse_amount(gross_amount: str | None) -> int:
    try:
        return int(Decimal(gross_amount or "0"))
    except InvalidOperation:
        return 0


class PaymentNotificationProcessor:
    """Verifies, deduplicates, and applies payment notifications."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        subscriptions: SubscriptionLedger,
        users: UserDirectory,
        server_key: str = "",
        strict_signature: bool = True,
    ):
        self.session_factory = session_factory
        self.subscriptions = subscriptions
        self.users = users
        self.server_key = server_key
        self.strict_signature = strict_signature

    async def process(self, notification: MidtransNotification) -> str:
        """Apply one notification and return a short outcome label.

        Outcomes: ``rejected``, ``duplicate``, ``ignored``, ``activated``,
        ``already_active``, ``top_up_settled``, ``failed``, ``pending``.
        """
        log = logger.bind(order_id=notification.order_id, transaction_status=notification.transaction_status)

        signature_valid = self._check_signature(notification)
        if signature_valid is False:
            log.error("midtrans_signature_mismatch", strict=self.strict_signature)
            if self.strict_signature:
                return "rejected"

        if not await self._claim(notification, signature_valid):
            log.info("midtrans_duplicate_notification_ignored")
            return "duplicate"

        try:
            return await self._apply(notification, log)
        except Exception:
            # Let the gateway's next delivery retry this status
            await self._release(notification)
            raise

    async def has_failed(self, order_id: str) -> bool:
        """True if a deny/cancel/expire/failure notification was recorded for ``order_id``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentNotification.order_id).where(
                    PaymentNotification.order_id == order_id,
                    PaymentNotification.transaction_status.in_(FAILURE_STATUSES),
                )
            )
            return result.first() is not None

    async def record_settlement(
        self, order_id: str, transaction_id: str, amount: int, payment_type: str | None = None
    ) -> bool:
        """Record a payment that settled at checkout, without a gateway notification."""
        notification = MidtransNotification(
            order_id=order_id,
            transaction_status="settlement",
            transaction_id=transaction_id,
            gross_amount=str(amount),
            payment_type=payment_type,
        )
        return await self._claim(notification, None)

    async def redeem_top_up(self, transaction_id: str, user_id: UUID, now: datetime | None = None) -> str | None:
        """Mark a settled top-up payment of ``user_id`` as redeemed.

        ``transaction_id`` may be the gateway transaction id or the order id.

        Returns:
            The top-up order id, or None if nothing settled matches, the order
            belongs to someone else, or it was already redeemed
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentNotification.order_id)
                .where(
                    or_(
                        PaymentNotification.transaction_id == transaction_id,
                        PaymentNotification.order_id == transaction_id,
                    ),
                    _SETTLED,
                )
                .limit(1)
            )
            order_id = result.scalar_one_or_none()
            reference = parse_order_id(order_id) if order_id else None
            if reference is None or not reference.is_top_up or reference.user_id != user_id:
                logger.warning("top_up_redemption_unmatched", transaction_id=transaction_id, user_id=str(user_id))
                return None

            # Capture and settlement rows of one order count as a single payment
            redeemed = await session.execute(
                select(PaymentNotification.order_id).where(
                    PaymentNotification.order_id == order_id,
                    PaymentNotification.redeemed_at.is_not(None),
                )
            )
            if redeemed.first() is not None:
                logger.warning("top_up_already_redeemed", order_id=order_id, transaction_id=transaction_id)
                return None

            claimed = await session.execute(
                update(PaymentNotification)
                .where(
                    PaymentNotification.order_id == order_id,
                    PaymentNotification.redeemed_at.is_(None),
                    _SETTLED,
                )
                .values(redeemed_at=now)
            )
            await session.commit()

        if not claimed.rowcount:
            return None
        logger.info("top_up_redeemed", order_id=order_id, transaction_id=transaction_id)
        return order_id

    def _check_signature(self, notification: MidtransNotification) -> bool | None:
        """None when there is nothing to check against."""
        if not self.server_key or not notification.signature_key:
            return None
        return verify_signature(
            notification.order_id,
            notification.status_code or "",
            notification.gross_amount or "",
            self.server_key,
            notification.signature_key,
        )

    async def _claim(self, notification: MidtransNotification, signature_valid: bool | None) -> bool:
        """Return True if this (order, status) pair is new (claimed). False if duplicate."""
        async with self.session_factory() as session:
            try:
                session.add(
                    PaymentNotification(
                        order_id=notification.order_id,
                        transaction_status=notification.transaction_status,
                        transaction_id=notification.transaction_id,
                        fraud_status=notification.fraud_status,
                        gross_amount=notification.gross_amount,
                        status_code=notification.status_code,
                        signature_valid=signature_valid,
                    )
                )
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def _release(self, notification: MidtransNotification) -> None:
        async with self.session_factory() as session:
            await session.execute(
                delete(PaymentNotification).where(
                    PaymentNotification.order_id == notification.order_id,
                    PaymentNotification.transaction_status == notification.transaction_status,
                )
            )
            await session.commit()

    async def _apply(self, notification: MidtransNotification, log) -> str:
        if notification.is_failure:
            log.warning("midtrans_payment_failed", fraud_status=notification.fraud_status)
            return "failed"

        if not notification.is_success:
            log.info("midtrans_payment_pending", fraud_status=notification.fraud_status)
            return "pending"

        reference = parse_order_id(notification.order_id)
        if reference is None:
            log.warning("midtrans_order_unrecognized")
            return "ignored"

        if reference.is_top_up:
            # Credits are applied when the client redeems the transaction id
            log.info("midtrans_top_up_settled", user_id=str(reference.user_id))
            return "top_up_settled"

        user = await self.users.get_user(reference.user_id)
        if user is None:
            log.warning("midtrans_order_user_missing", user_id=str(reference.user_id))
            return "ignored"

        transaction_id = notification.transaction_id or notification.order_id
        # Card payments report capture and later settlement for the same transaction
        if await self.subscriptions.find_by_transaction(transaction_id) is not None:
            log.info("midtrans_subscription_already_active", transaction_id=transaction_id)
            return "already_active"

        subscription = await self.subscriptions.create_subscription(
            reference.user_id,
            transaction_id,
            _parse_amount(notification.gross_amount),
            payment_method=notification.payment_type,
        )
        log.info(
            "midtrans_subscription_activated",
            user_id=str(reference.user_id),
            subscription_id=str(subscription.id),
            transaction_id=transaction_id,
        )
        return "activated"

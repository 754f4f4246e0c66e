"""Quota & Subscription Ledger.

SubscriptionLedger: time-bounded access windows with lazy expiry on read.
RevisionLedger: per-section revision counters, top-ups, and history.

All methods accept an optional ``now`` for deterministic testing.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thesisflow.core.exceptions import PersistenceError, QuotaExhausted
from thesisflow.db.models.revision import RevisionHistory, RevisionPurchase
from thesisflow.db.models.subscription import Subscription
from thesisflow.db.models.thesis import ThesisSection

logger = structlog.get_logger(__name__)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends without tz support."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SubscriptionLedger:
    """Service layer for subscriptions (one row per access window)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window_days: int = 30,
        renewal_price: int = 399_000,
    ):
        self.session_factory = session_factory
        self.window_days = window_days
        self.renewal_price = renewal_price

    async def check_status(self, user_id: UUID, now: datetime | None = None) -> Subscription | None:
        """Return the user's most recent subscription, expiring it lazily.

        If the window has passed while the row still says ``active``, the row
        is flipped to ``expired`` before it is returned.
        """
        now = now or datetime.now(UTC)

        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .order_by(Subscription.created_at.desc(), Subscription.payment_date.desc())
                .limit(1)
            )
            subscription = result.scalar_one_or_none()
            if subscription is None:
                return None

            if subscription.status == "active" and as_utc(subscription.expiry_date) < now:
                subscription.status = "expired"
                try:
                    await session.commit()
                except SQLAlchemyError as exc:
                    await session.rollback()
                    raise PersistenceError(
                        "Failed to expire subscription", {"subscription_id": str(subscription.id)}
                    ) from exc
                await session.refresh(subscription)
                logger.info("subscription_expired_on_read", user_id=str(user_id), subscription_id=str(subscription.id))

            return subscription

    async def create_subscription(
        self,
        user_id: UUID,
        transaction_id: str,
        amount: int,
        payment_method: str | None = None,
        now: datetime | None = None,
    ) -> Subscription:
        """Open a new access window starting now. Renewals also land here."""
        now = now or datetime.now(UTC)

        async with self.session_factory() as session:
            subscription = Subscription(
                user_id=user_id,
                payment_date=now,
                expiry_date=now + timedelta(days=self.window_days),
                amount=amount,
                status="active",
                payment_method=payment_method,
                transaction_id=transaction_id,
            )
            session.add(subscription)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(
                    "Failed to create subscription", {"transaction_id": transaction_id}
                ) from exc
            await session.refresh(subscription)

        logger.info(
            "subscription_created",
            user_id=str(user_id),
            subscription_id=str(subscription.id),
            transaction_id=transaction_id,
            payment_method=payment_method,
        )
        return subscription

    async def find_by_transaction(self, transaction_id: str) -> Subscription | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscription).where(Subscription.transaction_id == transaction_id).limit(1)
            )
            return result.scalar_one_or_none()

    async def renew_subscription(self, user_id: UUID, transaction_id: str, now: datetime | None = None) -> Subscription:
        return await self.create_subscription(user_id, transaction_id, self.renewal_price, now=now)

    async def is_active(self, user_id: UUID, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        subscription = await self.check_status(user_id, now=now)
        if subscription is None:
            return False
        return subscription.status == "active" and as_utc(subscription.expiry_date) > now

    async def expire_overdue(self, now: datetime | None = None) -> int:
        """Periodic sweep: expire every active subscription past its window.

        Returns:
            Number of rows transitioned to ``expired``
        """
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                update(Subscription)
                .where(Subscription.status == "active", Subscription.expiry_date < now)
                .values(status="expired", updated_at=now)
            )
            await session.commit()
        count = result.rowcount or 0
        logger.info("subscriptions_expired_by_sweep", count=count)
        return count

    async def expiring_within(self, days: int, now: datetime | None = None) -> list[Subscription]:
        """Active subscriptions whose window ends within ``days`` days."""
        now = now or datetime.now(UTC)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Subscription)
                .where(
                    Subscription.status == "active",
                    Subscription.expiry_date > now,
                    Subscription.expiry_date <= now + timedelta(days=days),
                )
                .order_by(Subscription.expiry_date)
            )
            return list(result.scalars().all())


class RevisionLedger:
    """Service layer for per-section revision quotas."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        top_up_amount: int = 5,
        top_up_price: int = 99_000,
    ):
        self.session_factory = session_factory
        self.top_up_amount = top_up_amount
        self.top_up_price = top_up_price

    async def _get_section(self, session: AsyncSession, section_id: UUID) -> ThesisSection:
        result = await session.execute(select(ThesisSection).where(ThesisSection.id == section_id))
        section = result.scalar_one_or_none()
        if section is None:
            raise PersistenceError("Section not found", {"section_id": str(section_id)})
        return section

    async def get_revision_count(self, section_id: UUID) -> int:
        async with self.session_factory() as session:
            section = await self._get_section(session, section_id)
            return section.revision_count or 0

    async def purchase_revisions(self, section_id: UUID, transaction_id: str, user_id: UUID | None = None) -> int:
        """Record a top-up and add ``top_up_amount`` revisions.

        Idempotency is the caller's concern: every call with a fresh
        transaction id adds another batch.

        Returns:
            New revision count
        """
        async with self.session_factory() as session:
            section = await self._get_section(session, section_id)
            session.add(
                RevisionPurchase(
                    user_id=user_id,
                    section_id=section_id,
                    amount=self.top_up_price,
                    revisions_added=self.top_up_amount,
                    transaction_id=transaction_id,
                )
            )
            section.revision_count = (section.revision_count or 0) + self.top_up_amount
            new_count = section.revision_count
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(
                    "Failed to record revision purchase", {"transaction_id": transaction_id}
                ) from exc

        logger.info("revisions_purchased", section_id=str(section_id), transaction_id=transaction_id, count=new_count)
        return new_count

    async def decrement_revision_count(self, section_id: UUID) -> int:
        """Consume one revision.

        Raises:
            QuotaExhausted: count is already 0 (never clamps)
        """
        async with self.session_factory() as session:
            section = await self._get_section(session, section_id)
            new_count = self._consume(section)
            await session.commit()
            return new_count

    async def record_revision(self, section_id: UUID, feedback: str, previous_content: str, new_content: str) -> int:
        """Consume one revision and append a history row in one transaction.

        Returns:
            New revision count
        """
        async with self.session_factory() as session:
            section = await self._get_section(session, section_id)
            new_count = self._consume(section)
            section.content = new_content
            session.add(
                RevisionHistory(
                    section_id=section_id,
                    feedback=feedback,
                    previous_content=previous_content,
                    new_content=new_content,
                )
            )
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("Failed to record revision", {"section_id": str(section_id)}) from exc
            return new_count

    async def get_revision_history(self, section_id: UUID) -> list[RevisionHistory]:
        """Revision history for a section, newest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(RevisionHistory)
                .where(RevisionHistory.section_id == section_id)
                .order_by(RevisionHistory.created_at.desc())
            )
            return list(result.scalars().all())

    @staticmethod
    def _consume(section: ThesisSection) -> int:
        if (section.revision_count or 0) <= 0:
            raise QuotaExhausted(
                "No revisions remaining for this section",
                {"section_id": str(section.id), "section": section.section_type},
            )
        section.revision_count -= 1
        return section.revision_count

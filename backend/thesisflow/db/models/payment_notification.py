"""PaymentNotification model for webhook idempotency tracking."""

from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, String

from thesisflow.db.base import Base


class PaymentNotification(Base):
    """One row per processed (order_id, transaction_status) pair.

    The gateway delivers at least once; a second delivery of the same status
    for the same order is acknowledged without reprocessing. Settled top-up
    rows are also the redemption record: ``redeemed_at`` is set once the
    revisions have been granted.
    """

    __tablename__ = "payment_notifications"

    order_id = Column(String(255), primary_key=True)
    transaction_status = Column(String(50), primary_key=True)
    transaction_id = Column(String(255), nullable=True, index=True)
    fraud_status = Column(String(50), nullable=True)
    gross_amount = Column(String(50), nullable=True)
    status_code = Column(String(10), nullable=True)
    signature_valid = Column(Boolean, nullable=True)  # NULL = not checked
    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    redeemed_at = Column(DateTime(timezone=True), nullable=True)

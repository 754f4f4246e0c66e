"""Subscription model: one row per paid 30-day access window.

Renewals insert a new row; history is never rewritten except for the lazy
active -> expired status flip.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Uuid

from thesisflow.db.base import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)

    payment_date = Column(DateTime(timezone=True), nullable=False)
    expiry_date = Column(DateTime(timezone=True), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="active")  # active, expired, cancelled
    payment_method = Column(String(50), nullable=True)  # midtrans, simulated
    transaction_id = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

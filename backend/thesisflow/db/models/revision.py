"""Revision quota top-ups and revision history."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, Uuid

from thesisflow.db.base import Base


class RevisionPurchase(Base):
    """Append-only record of a revision top-up."""

    __tablename__ = "revision_purchases"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    section_id = Column(Uuid, ForeignKey("thesis_sections.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    revisions_added = Column(Integer, nullable=False)
    transaction_id = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))


class RevisionHistory(Base):
    __tablename__ = "revision_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    section_id = Column(Uuid, ForeignKey("thesis_sections.id"), nullable=False, index=True)
    feedback = Column(Text, nullable=False)
    previous_content = Column(Text, nullable=False)
    new_content = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

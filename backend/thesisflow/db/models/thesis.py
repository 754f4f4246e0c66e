"""ThesisDraft aggregate and its per-section rows."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid

from thesisflow.db.base import Base


class ThesisDraft(Base):
    __tablename__ = "thesis_drafts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id"), nullable=True)

    title = Column(Text, nullable=False)
    faculty = Column(String(255), nullable=False)
    department = Column(String(255), nullable=False)
    specialization = Column(String(255), nullable=True)

    # Denormalized {section: {content, revisions_remaining, is_complete}} for fast rehydration
    sections_data = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )


class ThesisSection(Base):
    __tablename__ = "thesis_sections"
    __table_args__ = (UniqueConstraint("thesis_id", "section_type", name="uq_thesis_section_type"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    thesis_id = Column(Uuid, ForeignKey("thesis_drafts.id"), nullable=False, index=True)
    section_type = Column(String(30), nullable=False)

    content = Column(Text, nullable=False, default="")
    revision_count = Column(Integer, nullable=False, default=5)
    is_complete = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

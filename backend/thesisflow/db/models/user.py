"""User model: lead profile captured before payment."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, Uuid

from thesisflow.db.base import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String(255), unique=True, nullable=False, index=True)
    faculty = Column(String(255), nullable=True)
    department = Column(String(255), nullable=True)
    specialization = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC), onupdate=lambda: datetime.now(UTC)
    )

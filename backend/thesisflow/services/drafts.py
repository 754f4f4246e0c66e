"""Persistence Collaborator for users, thesis drafts, and section rows."""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import flag_modified

from thesisflow.core.exceptions import PersistenceError
from thesisflow.db.models.thesis import ThesisDraft, ThesisSection
from thesisflow.db.models.user import User
from thesisflow.domain.funnel import LeadProfile, SectionRecord
from thesisflow.domain.sections import SECTION_ORDER, Section

logger = structlog.get_logger(__name__)


class UserDirectory:
    """Minimal user registry keyed by email.

    Identity proper (passwords, sessions, login) belongs to the external auth
    provider; this only anchors subscriptions and drafts to a stable id.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_or_create_user(self, lead: LeadProfile) -> User:
        email = lead.email.strip().lower()
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.email == email))
            user = result.scalar_one_or_none()
            if user is not None:
                return user

            user = User(
                email=email,
                faculty=lead.faculty,
                department=lead.department,
                specialization=lead.specialization,
            )
            session.add(user)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("Failed to create user account", {"email": email}) from exc
            await session.refresh(user)
            logger.info("user_created", user_id=str(user.id))
            return user

    async def get_user(self, user_id: UUID) -> User | None:
        async with self.session_factory() as session:
            result = await session.execute(select(User).where(User.id == user_id))
            return result.scalar_one_or_none()


class DraftRepository:
    """CRUD over ThesisDraft and its ThesisSection rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], initial_revisions: int = 5):
        self.session_factory = session_factory
        self.initial_revisions = initial_revisions

    async def create_draft(
        self, user_id: UUID, subscription_id: UUID | None, title: str, lead: LeadProfile
    ) -> ThesisDraft:
        """Create a draft with one row per section, each with the initial quota."""
        async with self.session_factory() as session:
            draft = ThesisDraft(
                user_id=user_id,
                subscription_id=subscription_id,
                title=title,
                faculty=lead.faculty,
                department=lead.department,
                specialization=lead.specialization,
            )
            session.add(draft)
            await session.flush()

            for section in SECTION_ORDER:
                session.add(
                    ThesisSection(
                        thesis_id=draft.id,
                        section_type=section.value,
                        content="",
                        revision_count=self.initial_revisions,
                        is_complete=False,
                    )
                )
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("Failed to create thesis draft", {"user_id": str(user_id)}) from exc
            await session.refresh(draft)

        logger.info("thesis_draft_created", thesis_id=str(draft.id), user_id=str(user_id))
        return draft

    async def get_draft(self, thesis_id: UUID) -> ThesisDraft | None:
        async with self.session_factory() as session:
            result = await session.execute(select(ThesisDraft).where(ThesisDraft.id == thesis_id))
            return result.scalar_one_or_none()

    async def latest_draft_for_user(self, user_id: UUID) -> ThesisDraft | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ThesisDraft)
                .where(ThesisDraft.user_id == user_id)
                .order_by(ThesisDraft.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def section_rows(self, thesis_id: UUID) -> dict[Section, ThesisSection]:
        async with self.session_factory() as session:
            result = await session.execute(select(ThesisSection).where(ThesisSection.thesis_id == thesis_id))
            rows = result.scalars().all()
        return {Section(row.section_type): row for row in rows}

    async def section_row_id(self, thesis_id: UUID, section: Section) -> UUID | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(ThesisSection.id).where(
                    ThesisSection.thesis_id == thesis_id,
                    ThesisSection.section_type == section.value,
                )
            )
            return result.scalar_one_or_none()

    async def update_section_content(self, section_id: UUID, content: str) -> None:
        await self._update_section(section_id, content=content)

    async def complete_section(self, section_id: UUID) -> None:
        await self._update_section(section_id, is_complete=True)

    async def _update_section(self, section_id: UUID, **values) -> None:
        async with self.session_factory() as session:
            result = await session.execute(select(ThesisSection).where(ThesisSection.id == section_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise PersistenceError("Section not found", {"section_id": str(section_id)})
            for key, value in values.items():
                setattr(row, key, value)
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("Failed to update section", {"section_id": str(section_id)}) from exc

    async def save_sections_snapshot(self, thesis_id: UUID, sections: dict[Section, SectionRecord]) -> None:
        """Store the denormalized sections map on the draft."""
        async with self.session_factory() as session:
            result = await session.execute(select(ThesisDraft).where(ThesisDraft.id == thesis_id))
            draft = result.scalar_one_or_none()
            if draft is None:
                raise PersistenceError("Thesis draft not found", {"thesis_id": str(thesis_id)})
            draft.sections_data = {section.value: record.model_dump() for section, record in sections.items()}
            flag_modified(draft, "sections_data")
            try:
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError("Failed to save sections snapshot", {"thesis_id": str(thesis_id)}) from exc

"""Tests for the subscription and revision ledgers (in-memory SQLite)."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from thesisflow.core.exceptions import PersistenceError, QuotaExhausted
from thesisflow.domain.sections import Section
from thesisflow.services.ledger import as_utc

pytestmark = pytest.mark.integration

NOW = datetime(2026, 5, 1, 9, 30, tzinfo=UTC)


@pytest.fixture
async def user(users, lead):
    return await users.get_or_create_user(lead)


@pytest.fixture
async def section_id(drafts, user, lead):
    draft = await drafts.create_draft(user.id, None, "X", lead)
    return await drafts.section_row_id(draft.id, Section.CHAPTER_1)


class TestSubscriptionLedger:
    async def test_create_sets_thirty_day_window(self, subscriptions, user):
        subscription = await subscriptions.create_subscription(user.id, "T-1", 399000, now=NOW)

        assert subscription.status == "active"
        assert as_utc(subscription.payment_date) == NOW
        assert as_utc(subscription.expiry_date) - as_utc(subscription.payment_date) == timedelta(days=30)

    async def test_no_subscription(self, subscriptions, user):
        assert await subscriptions.check_status(user.id) is None
        assert await subscriptions.is_active(user.id) is False

    async def test_is_active_within_window(self, subscriptions, user):
        await subscriptions.create_subscription(user.id, "T-1", 399000, now=NOW)
        assert await subscriptions.is_active(user.id, now=NOW + timedelta(days=29))

    async def test_lazy_expiry_on_read(self, subscriptions, user):
        await subscriptions.create_subscription(user.id, "T-1", 399000, now=NOW)
        later = NOW + timedelta(days=31)

        first = await subscriptions.check_status(user.id, now=later)
        assert first.status == "expired"

        # The flip is persisted: a read at the original time still sees it
        second = await subscriptions.check_status(user.id, now=NOW)
        assert second.status == "expired"
        assert await subscriptions.is_active(user.id, now=NOW) is False

    async def test_renewal_is_new_row(self, subscriptions, user):
        first = await subscriptions.create_subscription(user.id, "T-1", 399000, now=NOW)
        renewed = await subscriptions.renew_subscription(user.id, "T-2", now=NOW + timedelta(days=31))

        assert renewed.id != first.id
        assert renewed.amount == 399000
        latest = await subscriptions.check_status(user.id, now=NOW + timedelta(days=32))
        assert latest.id == renewed.id
        assert latest.status == "active"

    async def test_find_by_transaction(self, subscriptions, user):
        created = await subscriptions.create_subscription(user.id, "T-9", 399000)
        assert (await subscriptions.find_by_transaction("T-9")).id == created.id
        assert await subscriptions.find_by_transaction("T-0") is None

    async def test_sweep_and_expiring_soon(self, subscriptions, users, lead):
        old_user = await users.get_or_create_user(lead)
        soon_user = await users.get_or_create_user(lead.model_copy(update={"email": "soon@b.com"}))
        fresh_user = await users.get_or_create_user(lead.model_copy(update={"email": "fresh@b.com"}))

        await subscriptions.create_subscription(old_user.id, "T-old", 1, now=NOW - timedelta(days=40))
        soon = await subscriptions.create_subscription(soon_user.id, "T-soon", 1, now=NOW - timedelta(days=28))
        await subscriptions.create_subscription(fresh_user.id, "T-fresh", 1, now=NOW)

        assert await subscriptions.expire_overdue(now=NOW) == 1
        assert (await subscriptions.check_status(old_user.id, now=NOW)).status == "expired"

        expiring = await subscriptions.expiring_within(3, now=NOW)
        assert [s.id for s in expiring] == [soon.id]


class TestRevisionLedger:
    async def test_initial_count(self, revisions, section_id):
        assert await revisions.get_revision_count(section_id) == 5

    async def test_decrement_fails_at_zero(self, revisions, section_id):
        for expected in (4, 3, 2, 1, 0):
            assert await revisions.decrement_revision_count(section_id) == expected

        with pytest.raises(QuotaExhausted):
            await revisions.decrement_revision_count(section_id)
        assert await revisions.get_revision_count(section_id) == 0

    async def test_purchase_adds_five_beyond_initial(self, revisions, section_id, user):
        assert await revisions.purchase_revisions(section_id, "T-top-1", user_id=user.id) == 10
        assert await revisions.purchase_revisions(section_id, "T-top-2", user_id=user.id) == 15

    async def test_record_revision_appends_history(self, revisions, section_id):
        assert await revisions.record_revision(section_id, "shorter", "v1", "v2") == 4
        assert await revisions.record_revision(section_id, "cite more", "v2", "v3") == 3

        history = await revisions.get_revision_history(section_id)
        assert [h.feedback for h in history] == ["cite more", "shorter"]
        assert history[0].previous_content == "v2"
        assert history[0].new_content == "v3"

    async def test_unknown_section(self, revisions):
        with pytest.raises(PersistenceError):
            await revisions.get_revision_count(uuid.uuid4())

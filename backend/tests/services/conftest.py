"""Service-level fixtures: ledgers, repositories, and fully wired services."""

import pytest

from thesisflow.integrations.payments import SimulatedPaymentGateway
from thesisflow.services.drafts import DraftRepository, UserDirectory
from thesisflow.services.funnel_service import FunnelService
from thesisflow.services.ledger import RevisionLedger, SubscriptionLedger
from thesisflow.services.payment_notifications import PaymentNotificationProcessor
from thesisflow.services.section_service import SectionOrchestrator
from thesisflow.services.session_store import FunnelSessionStore, GenerationLock

SESSION_ID = "session-001"


@pytest.fixture
def store(redis):
    return FunnelSessionStore(redis, ttl_seconds=3600)


@pytest.fixture
def lock(redis):
    return GenerationLock(redis, ttl_seconds=60)


@pytest.fixture
def subscriptions(session_factory):
    return SubscriptionLedger(session_factory)


@pytest.fixture
def revisions(session_factory):
    return RevisionLedger(session_factory)


@pytest.fixture
def drafts(session_factory):
    return DraftRepository(session_factory)


@pytest.fixture
def users(session_factory):
    return UserDirectory(session_factory)


@pytest.fixture
def notifications(session_factory, subscriptions, users):
    return PaymentNotificationProcessor(session_factory, subscriptions, users)


@pytest.fixture
def payments():
    return SimulatedPaymentGateway()


@pytest.fixture
def funnel(store, content_fake, payments, subscriptions, drafts, users, notifications):
    return FunnelService(
        store=store,
        content=content_fake,
        payments=payments,
        subscriptions=subscriptions,
        drafts=drafts,
        users=users,
        notifications=notifications,
    )


@pytest.fixture
def orchestrator(store, lock, content_fake, payments, drafts, revisions, subscriptions, notifications):
    return SectionOrchestrator(
        store=store,
        lock=lock,
        content=content_fake,
        payments=payments,
        drafts=drafts,
        revisions=revisions,
        subscriptions=subscriptions,
        notifications=notifications,
    )


@pytest.fixture
async def paid_session(funnel, lead):
    """Session id of a funnel that has completed (simulated) payment."""
    await funnel.start(SESSION_ID)
    await funnel.submit_lead(SESSION_ID, lead)
    await funnel.confirm_and_pay(SESSION_ID, "X")
    return SESSION_ID

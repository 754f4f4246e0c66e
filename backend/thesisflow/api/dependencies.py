"""FastAPI dependencies: funnel session cookie, gateways, and service wiring.

Override ``get_content_gateway``, ``get_payment_gateway`` and ``get_redis``
in tests via ``app.dependency_overrides``.
"""

import uuid

import redis.asyncio as redis
from fastapi import Depends, Request, Response

from thesisflow.core.config import get_settings
from thesisflow.db.base import get_session_factory
from thesisflow.db.redis import get_redis
from thesisflow.integrations.content_gateway import AnthropicContentGateway, ContentGateway, ContentGatewayFake
from thesisflow.integrations.payments import PaymentGateway, build_payment_gateway
from thesisflow.services.drafts import DraftRepository, UserDirectory
from thesisflow.services.funnel_service import FunnelService
from thesisflow.services.ledger import RevisionLedger, SubscriptionLedger
from thesisflow.services.payment_notifications import PaymentNotificationProcessor
from thesisflow.services.section_service import SectionOrchestrator
from thesisflow.services.session_store import FunnelSessionStore, GenerationLock


def get_session_id(request: Request, response: Response) -> str:
    """Return the funnel session id from its cookie, issuing one on first visit."""
    settings = get_settings()
    session_id = request.cookies.get(settings.session_cookie_name)
    if not session_id:
        session_id = uuid.uuid4().hex
        response.set_cookie(
            settings.session_cookie_name,
            session_id,
            max_age=settings.session_ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=settings.frontend_url.startswith("https"),
        )
    return session_id


def get_content_gateway() -> ContentGateway:
    """Anthropic in production (when ANTHROPIC_API_KEY is set).

    Falls back to ContentGatewayFake for local dev without an API key.
    """
    settings = get_settings()
    if settings.anthropic_api_key:
        return AnthropicContentGateway(
            api_key=settings.anthropic_api_key,
            model=settings.content_model,
            timeout=settings.content_timeout_seconds,
        )
    return ContentGatewayFake()


def get_payment_gateway() -> PaymentGateway:
    return build_payment_gateway(get_settings())


def get_session_store(redis_client: redis.Redis = Depends(get_redis)) -> FunnelSessionStore:
    settings = get_settings()
    return FunnelSessionStore(redis_client, settings.session_ttl_seconds, settings.initial_revisions)


def get_generation_lock(redis_client: redis.Redis = Depends(get_redis)) -> GenerationLock:
    return GenerationLock(redis_client, get_settings().generation_lock_ttl_seconds)


def get_subscription_ledger() -> SubscriptionLedger:
    settings = get_settings()
    return SubscriptionLedger(get_session_factory(), settings.subscription_days, settings.subscription_price)


def get_revision_ledger() -> RevisionLedger:
    settings = get_settings()
    return RevisionLedger(get_session_factory(), settings.revision_top_up_amount, settings.revision_top_up_price)


def get_notification_processor(
    subscriptions: SubscriptionLedger = Depends(get_subscription_ledger),
) -> PaymentNotificationProcessor:
    settings = get_settings()
    return PaymentNotificationProcessor(
        get_session_factory(),
        subscriptions,
        UserDirectory(get_session_factory()),
        server_key=settings.midtrans_server_key,
        strict_signature=settings.midtrans_strict_signature,
    )


def get_funnel_service(
    store: FunnelSessionStore = Depends(get_session_store),
    content: ContentGateway = Depends(get_content_gateway),
    payments: PaymentGateway = Depends(get_payment_gateway),
    subscriptions: SubscriptionLedger = Depends(get_subscription_ledger),
    notifications: PaymentNotificationProcessor = Depends(get_notification_processor),
) -> FunnelService:
    settings = get_settings()
    factory = get_session_factory()
    return FunnelService(
        store=store,
        content=content,
        payments=payments,
        subscriptions=subscriptions,
        drafts=DraftRepository(factory, settings.initial_revisions),
        users=UserDirectory(factory),
        notifications=notifications,
        subscription_price=settings.subscription_price,
        title_candidate_count=settings.title_candidate_count,
    )


def get_section_orchestrator(
    store: FunnelSessionStore = Depends(get_session_store),
    lock: GenerationLock = Depends(get_generation_lock),
    content: ContentGateway = Depends(get_content_gateway),
    payments: PaymentGateway = Depends(get_payment_gateway),
    revisions: RevisionLedger = Depends(get_revision_ledger),
    subscriptions: SubscriptionLedger = Depends(get_subscription_ledger),
    notifications: PaymentNotificationProcessor = Depends(get_notification_processor),
) -> SectionOrchestrator:
    settings = get_settings()
    return SectionOrchestrator(
        store=store,
        lock=lock,
        content=content,
        payments=payments,
        drafts=DraftRepository(get_session_factory(), settings.initial_revisions),
        revisions=revisions,
        subscriptions=subscriptions,
        notifications=notifications,
        context_excerpt_chars=settings.context_excerpt_chars,
    )

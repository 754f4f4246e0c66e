"""Funnel service: runs transitions, calls collaborators, persists snapshots.

Each public method loads the session's FunnelState, applies exactly one
transition (plus whatever collaborator calls it needs), and saves the new
state only after the transition has succeeded. A failure leaves the stored
snapshot as it was.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog

from thesisflow.core.exceptions import AccessDenied, InvalidTransition, PersistenceError, ValidationError
from thesisflow.domain.export import export_text
from thesisflow.domain.funnel import (
    FunnelEvent,
    FunnelState,
    FunnelStep,
    LeadProfile,
    PaymentStatus,
    SectionRecord,
    TitleCandidate,
    transition,
)
from thesisflow.domain.orders import build_order_id
from thesisflow.domain.sections import SECTION_ORDER, Section
from thesisflow.integrations.content_gateway import ContentGateway
from thesisflow.integrations.payments import PaymentGateway, PaymentSession
from thesisflow.integrations.prompts import GenerationKind, GenerationRequest, SubjectMetadata, parse_title_lines
from thesisflow.services.drafts import DraftRepository, UserDirectory
from thesisflow.services.ledger import SubscriptionLedger
from thesisflow.services.payment_notifications import PaymentNotificationProcessor
from thesisflow.services.session_store import FunnelSessionStore

logger = structlog.get_logger(__name__)


def drift_warning(transaction_id: str | None) -> str:
    reference = f" (transaction {transaction_id})" if transaction_id else ""
    return (
        "Your progress was saved for this session, but we could not store it permanently. "
        f"Please contact support{reference} so we can reconcile your account."
    )


@dataclass(frozen=True)
class CheckoutResult:
    state: FunnelState
    payment: PaymentSession
    warning: str | None = None


@dataclass(frozen=True)
class ConfirmResult:
    state: FunnelState
    warning: str | None = None


class FunnelService:
    def __init__(
        self,
        store: FunnelSessionStore,
        content: ContentGateway,
        payments: PaymentGateway,
        subscriptions: SubscriptionLedger,
        drafts: DraftRepository,
        users: UserDirectory,
        notifications: PaymentNotificationProcessor,
        subscription_price: int = 399_000,
        title_candidate_count: int = 10,
    ):
        self.store = store
        self.content = content
        self.payments = payments
        self.subscriptions = subscriptions
        self.drafts = drafts
        self.users = users
        self.notifications = notifications
        self.subscription_price = subscription_price
        self.title_candidate_count = title_candidate_count

    async def load(self, session_id: str) -> FunnelState:
        return await self.store.load(session_id)

    async def save(self, session_id: str, state: FunnelState) -> FunnelState:
        await self.store.save(session_id, state)
        return state

    async def start(self, session_id: str) -> FunnelState:
        state = await self.load(session_id)
        return await self.save(session_id, transition(state, FunnelEvent.START))

    async def submit_lead(self, session_id: str, lead: LeadProfile) -> FunnelState:
        """Validate the lead, generate title candidates, advance to title selection.

        Raises:
            ValidationError: required lead fields are empty (no state change)
            InvalidTransition: not at the lead form
            ContentProviderError: title generation failed (no state change)
        """
        state = await self.load(session_id)

        missing = lead.missing_fields()
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"fields": missing})
        if state.step != FunnelStep.LEAD_FORM:
            raise InvalidTransition(state.step.value, FunnelEvent.SUBMIT_LEAD.value)

        text = await self.content.generate(
            GenerationRequest(
                kind=GenerationKind.TITLE_IDEATION,
                subject=SubjectMetadata(
                    faculty=lead.faculty,
                    department=lead.department,
                    specialization=lead.specialization,
                ),
                candidate_count=self.title_candidate_count,
            )
        )
        titles = [
            TitleCandidate(id=f"title-{index}", text=title)
            for index, title in enumerate(parse_title_lines(text, self.title_candidate_count), start=1)
        ]

        state = transition(state, FunnelEvent.SUBMIT_LEAD, {"lead": lead, "titles": titles})
        logger.info("title_candidates_generated", count=len(titles), department=lead.department)
        return await self.save(session_id, state)

    async def select_title(self, session_id: str, title: str) -> FunnelState:
        state = await self.load(session_id)
        return await self.save(session_id, transition(state, FunnelEvent.SELECT_TITLE, {"title": title}))

    async def confirm_and_pay(self, session_id: str, title: str) -> CheckoutResult:
        """Confirm the title and open a payment transaction.

        With a settling strategy (simulated payments) the funnel moves straight
        to chapter writing. Otherwise it waits at the payment step until
        ``confirm_payment`` sees the asynchronous confirmation.
        """
        state = await self.load(session_id)
        state = transition(state, FunnelEvent.CONFIRM_AND_PAY, {"title": title})

        user = await self.users.get_or_create_user(state.lead_profile)
        order_id = build_order_id(user.id)
        payment = await self.payments.open_transaction(order_id, self.subscription_price, state.lead_profile.email)

        state = state.model_copy(update={"user_id": user.id, "order_id": order_id})
        logger.info(
            "checkout_opened",
            user_id=str(user.id),
            order_id=order_id,
            simulated=payment.simulated,
        )

        warning = None
        if payment.settled:
            method = "simulated" if payment.simulated else "midtrans"
            state, warning = await self._activate(state, payment.transaction_id, payment_method=method)

        await self.save(session_id, state)
        return CheckoutResult(state=state, payment=payment, warning=warning)

    async def confirm_payment(self, session_id: str) -> ConfirmResult:
        """Re-check an open order after the gateway's asynchronous confirmation.

        Moves to chapter writing once the ledger reports an active
        subscription, records PAYMENT_FAILED if the gateway reported a denial,
        and otherwise leaves the state pending.
        """
        state = await self.load(session_id)
        if state.payment_status == PaymentStatus.PAID:
            return ConfirmResult(state=state)
        if state.step != FunnelStep.PAYMENT or state.user_id is None or state.order_id is None:
            raise InvalidTransition(state.step.value, FunnelEvent.PAYMENT_SUCCEEDED.value, "no open order")

        subscription = await self.subscriptions.check_status(state.user_id)
        if subscription is not None and await self.subscriptions.is_active(state.user_id):
            state, warning = await self._open_workspace(state, subscription.id, subscription.transaction_id)
            await self.save(session_id, state)
            return ConfirmResult(state=state, warning=warning)

        if await self.notifications.has_failed(state.order_id):
            state = transition(state, FunnelEvent.PAYMENT_FAILED)
            logger.warning("payment_failed", user_id=str(state.user_id), order_id=state.order_id)
            await self.save(session_id, state)

        return ConfirmResult(state=state)

    async def request_access(self, session_id: str) -> FunnelState:
        state = await self.load(session_id)
        return await self.save(session_id, transition(state, FunnelEvent.REQUEST_ACCESS))

    async def reset(self, session_id: str) -> FunnelState:
        await self.store.clear(session_id)
        return await self.load(session_id)

    async def resume(self, session_id: str, user_id: UUID) -> FunnelState:
        """Rebuild a paid funnel from the user's latest draft.

        Raises:
            AccessDenied: no active subscription, or no draft to resume
        """
        subscription = await self.subscriptions.check_status(user_id)
        if subscription is None or not await self.subscriptions.is_active(user_id):
            raise AccessDenied("No active subscription for this account", {"user_id": str(user_id)})

        draft = await self.drafts.latest_draft_for_user(user_id)
        if draft is None:
            raise AccessDenied("No thesis draft to resume", {"user_id": str(user_id)})

        user = await self.users.get_user(user_id)
        sections = await self._restore_sections(draft.id, draft.sections_data)
        active = next((section for section in SECTION_ORDER if not sections[section].is_complete), SECTION_ORDER[-1])

        state = FunnelState(
            step=FunnelStep.CHAPTER_WRITING,
            lead_profile=LeadProfile(
                faculty=draft.faculty,
                department=draft.department,
                specialization=draft.specialization,
                email=user.email if user else "",
            ),
            selected_title=draft.title,
            payment_status=PaymentStatus.PAID,
            sections=sections,
            active_section=active,
            user_id=user_id,
            thesis_id=draft.id,
            subscription_id=subscription.id,
            transaction_id=subscription.transaction_id,
        )
        logger.info("funnel_resumed", user_id=str(user_id), thesis_id=str(draft.id), active_section=active.value)
        return await self.save(session_id, state)

    async def export(self, session_id: str) -> str:
        state = await self.load(session_id)
        if state.payment_status != PaymentStatus.PAID:
            raise AccessDenied("Export requires an active subscription")
        return export_text(state)

    # ── Internals ───────────────────────────────────────────────────

    async def _activate(
        self, state: FunnelState, transaction_id: str | None, payment_method: str
    ) -> tuple[FunnelState, str | None]:
        """Record a settled payment: subscription row, then draft, then PAYMENT_SUCCEEDED."""
        try:
            subscription = await self.subscriptions.create_subscription(
                state.user_id, transaction_id, self.subscription_price, payment_method=payment_method
            )
        except PersistenceError as exc:
            logger.error(
                "persistence_drift",
                operation="create_subscription",
                transaction_id=transaction_id,
                error=exc.message,
            )
            state = transition(state, FunnelEvent.PAYMENT_SUCCEEDED, {"transaction_id": transaction_id})
            return state, drift_warning(transaction_id)

        return await self._open_workspace(state, subscription.id, transaction_id)

    async def _open_workspace(
        self, state: FunnelState, subscription_id: UUID, transaction_id: str | None
    ) -> tuple[FunnelState, str | None]:
        payload = {"subscription_id": subscription_id, "transaction_id": transaction_id}
        warning = None
        if state.thesis_id is not None:
            state = transition(state, FunnelEvent.PAYMENT_SUCCEEDED, payload)
            logger.info("subscription_renewed", user_id=str(state.user_id), thesis_id=str(state.thesis_id))
            return state, warning
        try:
            draft = await self.drafts.create_draft(state.user_id, subscription_id, state.selected_title, state.lead_profile)
            payload["thesis_id"] = draft.id
        except PersistenceError as exc:
            logger.error(
                "persistence_drift",
                operation="create_draft",
                transaction_id=transaction_id,
                error=exc.message,
            )
            warning = drift_warning(transaction_id)

        state = transition(state, FunnelEvent.PAYMENT_SUCCEEDED, payload)
        logger.info(
            "payment_succeeded",
            user_id=str(state.user_id),
            thesis_id=str(state.thesis_id) if state.thesis_id else None,
            transaction_id=transaction_id,
        )
        return state, warning

    async def _restore_sections(self, thesis_id: UUID, snapshot: dict | None) -> dict[Section, SectionRecord]:
        if snapshot and all(section.value in snapshot for section in SECTION_ORDER):
            try:
                return {section: SectionRecord.model_validate(snapshot[section.value]) for section in SECTION_ORDER}
            except ValueError as exc:
                logger.warning("sections_snapshot_unusable", thesis_id=str(thesis_id), error=str(exc))

        rows = await self.drafts.section_rows(thesis_id)
        return {
            section: SectionRecord(
                content=row.content or "",
                revisions_remaining=row.revision_count,
                is_complete=row.is_complete,
            )
            for section, row in rows.items()
        }

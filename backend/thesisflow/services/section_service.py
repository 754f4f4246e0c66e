"""Section Generation Orchestrator.

Drives per-section generation, completion, revision, and revision top-ups
on top of the session's FunnelState. The session snapshot is the source of
truth for what the user sees; durable rows are written after the snapshot
and a failed durable write only produces a warning.
"""

from dataclasses import dataclass
from uuid import UUID, uuid4

import structlog

from thesisflow.core.exceptions import (
    AccessDenied,
    ContentProviderError,
    GenerationInProgress,
    PersistenceError,
    QuotaExhausted,
    SectionLocked,
    ValidationError,
)
from thesisflow.db.models.revision import RevisionHistory
from thesisflow.domain.citations import extract_citations
from thesisflow.domain.funnel import (
    FunnelEvent,
    FunnelState,
    FunnelStep,
    PaymentStatus,
    begin_generation,
    end_generation,
    is_unlocked,
    transition,
    with_active_section,
    with_revision_applied,
    with_revisions_remaining,
    with_section_completed,
    with_section_content,
)
from thesisflow.domain.orders import build_order_id
from thesisflow.domain.sections import SECTION_LABELS, Section, preceding_sections
from thesisflow.integrations.content_gateway import ContentGateway
from thesisflow.integrations.payments import PaymentGateway, PaymentSession
from thesisflow.integrations.prompts import GenerationKind, GenerationRequest, SubjectMetadata
from thesisflow.services.drafts import DraftRepository
from thesisflow.services.funnel_service import drift_warning
from thesisflow.services.ledger import RevisionLedger, SubscriptionLedger
from thesisflow.services.payment_notifications import PaymentNotificationProcessor
from thesisflow.services.session_store import FunnelSessionStore, GenerationLock

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SectionResult:
    state: FunnelState
    warning: str | None = None


class SectionOrchestrator:
    def __init__(
        self,
        store: FunnelSessionStore,
        lock: GenerationLock,
        content: ContentGateway,
        payments: PaymentGateway,
        drafts: DraftRepository,
        revisions: RevisionLedger,
        subscriptions: SubscriptionLedger,
        notifications: PaymentNotificationProcessor,
        context_excerpt_chars: int = 500,
    ):
        self.store = store
        self.lock = lock
        self.content = content
        self.payments = payments
        self.drafts = drafts
        self.revisions = revisions
        self.subscriptions = subscriptions
        self.notifications = notifications
        self.context_excerpt_chars = context_excerpt_chars

    # ── Operations ──────────────────────────────────────────────────

    async def start_section(self, session_id: str, section: Section) -> SectionResult:
        """Generate ``section`` if it is empty, otherwise just navigate to it.

        Raises:
            AccessDenied: no active subscription (funnel is sent back to payment)
            SectionLocked: the preceding section is not complete
            GenerationInProgress: a request for this section is already in flight
            ContentProviderError: generation failed; content is unchanged
        """
        state = await self.store.load(session_id)
        state = await self._require_access(session_id, state, section)

        if not is_unlocked(state, section):
            raise SectionLocked(
                f"Complete the previous section before starting {SECTION_LABELS[section]}",
                {"section": section.value},
            )

        if state.section(section).content:
            state = with_active_section(state, section)
            await self.store.save(session_id, state)
            return SectionResult(state=state)

        prior_context = self._prior_context(state, section)
        request = GenerationRequest(
            kind=GenerationKind.SECTION_GENERATION,
            subject=self._subject(state),
            section=section,
            prior_context=prior_context,
        )
        text = await self._generate(session_id, state, section, request)

        state = with_section_content(await self.store.load(session_id), section, text)
        await self.store.save(session_id, state)
        logger.info("section_generated", section=section.value, chars=len(text))

        warning = await self._persist(state, section, "update_section_content", content=text)
        return SectionResult(state=state, warning=warning)

    async def complete_section(self, session_id: str, section: Section) -> SectionResult:
        """Mark ``section`` complete and move to the next one.

        Raises:
            ValidationError: the section has no content yet
        """
        state = await self.store.load(session_id)
        state = await self._require_access(session_id, state, section)

        if not state.section(section).content:
            raise ValidationError(
                f"{SECTION_LABELS[section]} has no content to complete",
                {"section": section.value},
            )

        state = with_section_completed(state, section)
        await self.store.save(session_id, state)
        logger.info("section_completed", section=section.value, next_section=state.active_section.value)

        warning = await self._persist(state, section, "complete_section")
        return SectionResult(state=state, warning=warning)

    async def revise_section(self, session_id: str, section: Section, feedback: str) -> SectionResult:
        """Rewrite ``section`` according to ``feedback``, consuming one revision.

        Raises:
            AccessDenied: no active subscription
            ValidationError: empty feedback, or nothing to revise yet
            QuotaExhausted: no revisions left; buy a top-up first
            ContentProviderError: revision failed; content and quota are unchanged
        """
        state = await self.store.load(session_id)
        state = await self._require_access(session_id, state, section)

        feedback = (feedback or "").strip()
        if not feedback:
            raise ValidationError("Feedback must not be empty", {"section": section.value})

        record = state.section(section)
        if not record.content:
            raise ValidationError(
                f"Generate {SECTION_LABELS[section]} before revising it",
                {"section": section.value},
            )

        section_id = await self._section_row_id(state, section)
        remaining = record.revisions_remaining
        if remaining <= 0 or (section_id is not None and await self.revisions.get_revision_count(section_id) <= 0):
            raise QuotaExhausted(
                f"No revisions left for {SECTION_LABELS[section]}",
                {"section": section.value},
            )

        request = GenerationRequest(
            kind=GenerationKind.SECTION_REVISION,
            subject=self._subject(state),
            section=section,
            current_content=record.content,
            feedback=feedback,
            preserve=extract_citations(record.content),
        )
        text = await self._generate(session_id, state, section, request)

        state = with_revision_applied(await self.store.load(session_id), section, text, remaining - 1)
        await self.store.save(session_id, state)
        logger.info("section_revised", section=section.value, revisions_remaining=remaining - 1)

        warning = None
        if section_id is not None:
            try:
                await self.revisions.record_revision(section_id, feedback, record.content, text)
            except (PersistenceError, QuotaExhausted) as exc:
                warning = self._drift(state, section, "record_revision", exc)
        warning = await self._save_snapshot(state, section) or warning
        return SectionResult(state=state, warning=warning)

    async def open_top_up(self, session_id: str, section: Section) -> PaymentSession:
        """Open a payment transaction for a revision top-up on ``section``."""
        state = await self.store.load(session_id)
        state = await self._require_access(session_id, state, section)
        if state.user_id is None or state.lead_profile is None:
            raise ValidationError("Account is not linked to this session; contact support to buy revisions")

        order_id = build_order_id(state.user_id, top_up=True)
        payment = await self.payments.open_transaction(
            order_id,
            self.revisions.top_up_price,
            state.lead_profile.email,
            item_name=f"{self.revisions.top_up_amount} extra revisions - {SECTION_LABELS[section]}",
        )
        if payment.settled:
            await self.notifications.record_settlement(
                order_id,
                payment.transaction_id,
                self.revisions.top_up_price,
                payment_type="simulated" if payment.simulated else None,
            )
        logger.info("top_up_checkout_opened", section=section.value, order_id=order_id, simulated=payment.simulated)
        return payment

    async def purchase_revision_top_up(self, session_id: str, section: Section, transaction_id: str) -> SectionResult:
        """Add a batch of revisions to ``section`` for a settled top-up payment.

        ``transaction_id`` must belong to a settled ``TFR-`` order of this
        session's user. Each payment is redeemed at most once.

        Raises:
            ValidationError: no transaction id, or no unredeemed settled top-up matches it
        """
        state = await self.store.load(session_id)
        state = await self._require_access(session_id, state, section)

        transaction_id = (transaction_id or "").strip()
        if not transaction_id:
            raise ValidationError("Transaction id is required", {"section": section.value})
        if state.user_id is None:
            raise ValidationError("Account is not linked to this session; contact support to buy revisions")

        if await self.notifications.redeem_top_up(transaction_id, state.user_id) is None:
            logger.warning("revision_top_up_rejected", section=section.value, transaction_id=transaction_id)
            raise ValidationError(
                "No settled top-up payment matches this transaction",
                {"section": section.value, "transaction_id": transaction_id},
            )

        remaining = state.section(section).revisions_remaining + self.revisions.top_up_amount
        state = with_revisions_remaining(state, section, remaining)
        await self.store.save(session_id, state)
        logger.info(
            "revision_top_up_applied",
            section=section.value,
            transaction_id=transaction_id,
            revisions_remaining=remaining,
        )

        warning = None
        section_id = await self._section_row_id(state, section)
        if section_id is not None:
            try:
                await self.revisions.purchase_revisions(section_id, transaction_id, user_id=state.user_id)
            except PersistenceError as exc:
                warning = self._drift(state, section, "purchase_revisions", exc, transaction_id)
        warning = await self._save_snapshot(state, section) or warning
        return SectionResult(state=state, warning=warning)

    async def revision_history(self, session_id: str, section: Section) -> list[RevisionHistory]:
        state = await self.store.load(session_id)
        state = await self._require_access(session_id, state, section)
        section_id = await self._section_row_id(state, section)
        if section_id is None:
            return []
        return await self.revisions.get_revision_history(section_id)

    # ── Internals ───────────────────────────────────────────────────

    async def _require_access(self, session_id: str, state: FunnelState, section: Section) -> FunnelState:
        """Return ``state`` if the session may work on chapters, else send it back to payment.

        A paid snapshot is re-checked against the subscription ledger so the
        access window ends on time. Snapshots without a recorded subscription
        (a drifted activation) keep the access the user was shown.
        """
        if state.payment_status == PaymentStatus.PAID:
            if state.user_id is None or state.subscription_id is None:
                return state
            if await self.subscriptions.is_active(state.user_id):
                return state
            logger.info("subscription_window_ended", user_id=str(state.user_id), section=section.value)
            await self.store.save(session_id, transition(state, FunnelEvent.SUBSCRIPTION_EXPIRED))
        elif state.step == FunnelStep.CHAPTER_WRITING:
            await self.store.save(session_id, transition(state, FunnelEvent.REQUEST_ACCESS))
        logger.info("section_access_denied", section=section.value, step=state.step.value)
        raise AccessDenied(
            "An active subscription is required to work on chapters",
            {"section": section.value, "step": FunnelStep.PAYMENT.value},
        )

    async def _generate(self, session_id: str, state: FunnelState, section: Section, request: GenerationRequest) -> str:
        """Call the content gateway under the per-section single-flight lock."""
        owner = uuid4().hex
        if not await self.lock.acquire(session_id, section, owner):
            raise GenerationInProgress(
                f"{SECTION_LABELS[section]} is already being generated",
                {"section": section.value},
            )

        try:
            await self.store.save(session_id, begin_generation(state, section))
            try:
                return await self.content.generate(request)
            except ContentProviderError as exc:
                await self.store.save(session_id, end_generation(await self.store.load(session_id)))
                logger.warning(
                    "section_generation_failed",
                    section=section.value,
                    kind=request.kind.value,
                    error_code=exc.code,
                )
                raise
        finally:
            await self.lock.release(session_id, section, owner)

    def _prior_context(self, state: FunnelState, section: Section) -> str:
        excerpts = []
        for previous in preceding_sections(section):
            content = state.section(previous).content
            if content:
                excerpts.append(f"{SECTION_LABELS[previous]}:\n{content[: self.context_excerpt_chars]}")
        return "\n\n".join(excerpts)

    @staticmethod
    def _subject(state: FunnelState) -> SubjectMetadata:
        lead = state.lead_profile
        return SubjectMetadata(
            faculty=lead.faculty if lead else "",
            department=lead.department if lead else "",
            specialization=lead.specialization if lead else None,
            title=state.selected_title,
        )

    async def _section_row_id(self, state: FunnelState, section: Section) -> UUID | None:
        if state.thesis_id is None:
            return None
        return await self.drafts.section_row_id(state.thesis_id, section)

    async def _persist(self, state: FunnelState, section: Section, operation: str, **values) -> str | None:
        """Mirror a section change into its durable row and the draft snapshot."""
        section_id = await self._section_row_id(state, section)
        if section_id is None:
            return None
        try:
            if operation == "complete_section":
                await self.drafts.complete_section(section_id)
            else:
                await self.drafts.update_section_content(section_id, values["content"])
        except PersistenceError as exc:
            return self._drift(state, section, operation, exc)
        return await self._save_snapshot(state, section)

    async def _save_snapshot(self, state: FunnelState, section: Section) -> str | None:
        if state.thesis_id is None:
            return None
        try:
            await self.drafts.save_sections_snapshot(state.thesis_id, state.sections)
        except PersistenceError as exc:
            return self._drift(state, section, "save_sections_snapshot", exc)
        return None

    @staticmethod
    def _drift(
        state: FunnelState, section: Section, operation: str, exc: Exception, transaction_id: str | None = None
    ) -> str:
        transaction_id = transaction_id or state.transaction_id
        logger.error(
            "persistence_drift",
            operation=operation,
            section=section.value,
            thesis_id=str(state.thesis_id) if state.thesis_id else None,
            transaction_id=transaction_id,
            error=str(exc),
        )
        return drift_warning(transaction_id)

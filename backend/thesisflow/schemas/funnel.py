"""Funnel and section Pydantic schemas: API contracts for the thesis funnel."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from thesisflow.domain.funnel import FunnelState, LeadProfile, TitleCandidate, is_unlocked
from thesisflow.domain.sections import SECTION_LABELS, SECTION_ORDER


# ── Requests ────────────────────────────────────────────────────────


class LeadRequest(BaseModel):
    """Lead form submission. Emptiness is checked by the funnel, not here."""

    faculty: str = ""
    department: str = ""
    specialization: str | None = None
    email: str = ""

    def to_profile(self) -> LeadProfile:
        return LeadProfile(
            faculty=self.faculty.strip(),
            department=self.department.strip(),
            specialization=(self.specialization or "").strip() or None,
            email=self.email.strip(),
        )


class TitleRequest(BaseModel):
    title: str = ""


class FeedbackRequest(BaseModel):
    feedback: str = ""


class TopUpRequest(BaseModel):
    transaction_id: str = Field(..., description="Transaction id of the settled top-up payment")


# ── Responses ───────────────────────────────────────────────────────


class SectionView(BaseModel):
    section: str
    label: str
    content: str
    revisions_remaining: int
    is_complete: bool
    is_unlocked: bool


class FunnelView(BaseModel):
    """Client-facing projection of FunnelState."""

    step: str
    lead_profile: LeadProfile | None = None
    title_candidates: list[TitleCandidate] = []
    selected_title: str | None = None
    payment_status: str
    sections: list[SectionView]
    active_section: str
    is_generating: bool = False
    thesis_id: UUID | None = None
    order_id: str | None = None
    transaction_id: str | None = None

    @classmethod
    def from_state(cls, state: FunnelState, is_generating: bool = False) -> "FunnelView":
        return cls(
            step=state.step.value,
            lead_profile=state.lead_profile,
            title_candidates=list(state.title_candidates),
            selected_title=state.selected_title,
            payment_status=state.payment_status.value,
            sections=[
                SectionView(
                    section=section.value,
                    label=SECTION_LABELS[section],
                    content=state.sections[section].content,
                    revisions_remaining=state.sections[section].revisions_remaining,
                    is_complete=state.sections[section].is_complete,
                    is_unlocked=is_unlocked(state, section),
                )
                for section in SECTION_ORDER
            ],
            active_section=state.active_section.value,
            is_generating=is_generating or state.is_generating,
            thesis_id=state.thesis_id,
            order_id=state.order_id,
            transaction_id=state.transaction_id,
        )


class FunnelResponse(BaseModel):
    state: FunnelView
    warning: str | None = None


class PaymentView(BaseModel):
    order_id: str
    token: str
    redirect_url: str | None = None
    transaction_id: str | None = None
    simulated: bool = False


class CheckoutResponse(FunnelResponse):
    payment: PaymentView


class RevisionHistoryItem(BaseModel):
    id: UUID
    feedback: str
    previous_content: str
    new_content: str
    created_at: datetime


class RevisionHistoryResponse(BaseModel):
    section: str
    revisions: list[RevisionHistoryItem]

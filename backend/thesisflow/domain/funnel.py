"""Funnel state model and transition function.

FunnelState is immutable: every transition returns a new instance built with
``model_copy``. Persistence is the caller's job and happens strictly after a
transition has succeeded.
"""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from thesisflow.core.exceptions import InvalidTransition, ValidationError
from thesisflow.domain.sections import (
    FIRST_SECTION,
    SECTION_ORDER,
    Section,
    next_section,
    position,
)

DEFAULT_REVISIONS = 5


class FunnelStep(str, Enum):
    LANDING = "landing"
    LEAD_FORM = "lead-form"
    TITLE_SELECTION = "title-selection"
    PAYMENT = "payment"
    CHAPTER_WRITING = "chapter-writing"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class FunnelEvent(str, Enum):
    START = "start"
    SUBMIT_LEAD = "submit"
    SELECT_TITLE = "select_title"
    CONFIRM_AND_PAY = "confirm_and_pay"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    REQUEST_ACCESS = "request_access"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


class LeadProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    faculty: str
    department: str
    specialization: str | None = None
    email: str

    def missing_fields(self) -> list[str]:
        """Names of required fields that are empty after stripping."""
        return [name for name in ("faculty", "department", "email") if not getattr(self, name).strip()]


class TitleCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str


class SectionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str = ""
    revisions_remaining: int = DEFAULT_REVISIONS
    is_complete: bool = False


def _default_sections(revisions: int = DEFAULT_REVISIONS) -> dict[Section, SectionRecord]:
    return {section: SectionRecord(revisions_remaining=revisions) for section in SECTION_ORDER}


class FunnelState(BaseModel):
    """Root aggregate of a funnel session."""

    model_config = ConfigDict(frozen=True)

    step: FunnelStep = FunnelStep.LANDING
    lead_profile: LeadProfile | None = None
    title_candidates: tuple[TitleCandidate, ...] = ()
    selected_title: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    sections: dict[Section, SectionRecord] = Field(default_factory=lambda: _default_sections())
    active_section: Section = FIRST_SECTION
    is_generating: bool = False

    # Links into the durable store, set once payment succeeds
    user_id: UUID | None = None
    thesis_id: UUID | None = None
    subscription_id: UUID | None = None
    order_id: str | None = None
    transaction_id: str | None = None

    @field_validator("sections", mode="after")
    @classmethod
    def _all_sections_present(cls, value: dict[Section, SectionRecord]) -> dict[Section, SectionRecord]:
        if len(value) == len(SECTION_ORDER):
            return value
        filled = _default_sections()
        filled.update(value)
        return {section: filled[section] for section in SECTION_ORDER}

    def section(self, section: Section) -> SectionRecord:
        return self.sections[section]


def initial_state(revisions: int = DEFAULT_REVISIONS) -> FunnelState:
    """Fresh state for a first visit: landing step, every section empty."""
    return FunnelState(sections=_default_sections(revisions))


# Events accepted at each step
TRANSITIONS: dict[FunnelStep, set[FunnelEvent]] = {
    FunnelStep.LANDING: {FunnelEvent.START},
    FunnelStep.LEAD_FORM: {FunnelEvent.SUBMIT_LEAD},
    FunnelStep.TITLE_SELECTION: {FunnelEvent.SELECT_TITLE, FunnelEvent.CONFIRM_AND_PAY},
    FunnelStep.PAYMENT: {
        FunnelEvent.CONFIRM_AND_PAY,
        FunnelEvent.PAYMENT_SUCCEEDED,
        FunnelEvent.PAYMENT_FAILED,
    },
    FunnelStep.CHAPTER_WRITING: {FunnelEvent.REQUEST_ACCESS, FunnelEvent.SUBSCRIPTION_EXPIRED},
}


def transition(state: FunnelState, event: FunnelEvent, payload: dict[str, Any] | None = None) -> FunnelState:
    """Apply ``event`` to ``state`` and return the next state.

    Pure function: no I/O, ``state`` is never mutated.

    Payload keys by event:
        SUBMIT_LEAD: ``lead`` (LeadProfile), ``titles`` (list[TitleCandidate])
        SELECT_TITLE / CONFIRM_AND_PAY: ``title`` (str)
        PAYMENT_SUCCEEDED: optional ``user_id``, ``thesis_id``, ``subscription_id``,
            ``transaction_id``

    Raises:
        InvalidTransition: event not accepted at the current step, or a guard failed
        ValidationError: payload is incomplete
    """
    payload = payload or {}

    # REQUEST_ACCESS is a no-op once paid
    if event == FunnelEvent.REQUEST_ACCESS and state.payment_status == PaymentStatus.PAID:
        return state

    if event not in TRANSITIONS[state.step]:
        raise InvalidTransition(state.step.value, event.value)

    if event == FunnelEvent.START:
        return state.model_copy(update={"step": FunnelStep.LEAD_FORM})

    if event == FunnelEvent.SUBMIT_LEAD:
        lead: LeadProfile | None = payload.get("lead")
        if lead is None:
            raise ValidationError("Lead profile is required")
        missing = lead.missing_fields()
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {"fields": missing},
            )
        titles = tuple(payload.get("titles") or ())
        if not titles:
            raise InvalidTransition(state.step.value, event.value, "no title candidates were generated")
        return state.model_copy(
            update={
                "step": FunnelStep.TITLE_SELECTION,
                "lead_profile": lead,
                "title_candidates": titles,
                "is_generating": False,
            }
        )

    if event == FunnelEvent.SELECT_TITLE:
        return state.model_copy(update={"selected_title": _require_title(payload)})

    if event == FunnelEvent.CONFIRM_AND_PAY:
        title = _require_title(payload)
        if state.lead_profile is None:
            raise InvalidTransition(state.step.value, event.value, "lead profile is missing")
        if state.payment_status != PaymentStatus.PENDING:
            raise InvalidTransition(
                state.step.value, event.value, f"payment is already {state.payment_status.value}"
            )
        return state.model_copy(update={"step": FunnelStep.PAYMENT, "selected_title": title})

    if event == FunnelEvent.PAYMENT_SUCCEEDED:
        _require_pending(state, event)
        update: dict[str, Any] = {
            "step": FunnelStep.CHAPTER_WRITING,
            "payment_status": PaymentStatus.PAID,
            # A renewal keeps the draft and the section the user was on
            "active_section": state.active_section if state.thesis_id else FIRST_SECTION,
        }
        for key in ("user_id", "thesis_id", "subscription_id", "transaction_id"):
            if payload.get(key) is not None:
                update[key] = payload[key]
        return state.model_copy(update=update)

    if event == FunnelEvent.PAYMENT_FAILED:
        _require_pending(state, event)
        return state.model_copy(update={"payment_status": PaymentStatus.FAILED})

    if event == FunnelEvent.SUBSCRIPTION_EXPIRED:
        # Drafted sections stay; the next payment renews into the same draft
        return state.model_copy(
            update={
                "step": FunnelStep.PAYMENT,
                "payment_status": PaymentStatus.PENDING,
                "subscription_id": None,
                "order_id": None,
                "is_generating": False,
            }
        )

    # REQUEST_ACCESS while unpaid
    return state.model_copy(update={"step": FunnelStep.PAYMENT, "is_generating": False})


def _require_title(payload: dict[str, Any]) -> str:
    title = (payload.get("title") or "").strip()
    if not title:
        raise ValidationError("Title must not be empty")
    return title


def _require_pending(state: FunnelState, event: FunnelEvent) -> None:
    if state.payment_status != PaymentStatus.PENDING:
        raise InvalidTransition(state.step.value, event.value, f"payment is already {state.payment_status.value}")


# ── Section helpers ─────────────────────────────────────────────────


def is_unlocked(state: FunnelState, section: Section) -> bool:
    """Section i is unlocked iff i == 0 or section i-1 is complete."""
    idx = position(section)
    if idx == 0:
        return True
    return state.sections[SECTION_ORDER[idx - 1]].is_complete


def all_complete(state: FunnelState) -> bool:
    return all(record.is_complete for record in state.sections.values())


def _replace_section(state: FunnelState, section: Section, **changes: Any) -> dict[Section, SectionRecord]:
    sections = dict(state.sections)
    sections[section] = sections[section].model_copy(update=changes)
    return sections


def with_active_section(state: FunnelState, section: Section) -> FunnelState:
    return state.model_copy(update={"active_section": section})


def begin_generation(state: FunnelState, section: Section) -> FunnelState:
    return state.model_copy(update={"active_section": section, "is_generating": True})


def end_generation(state: FunnelState) -> FunnelState:
    return state.model_copy(update={"is_generating": False})


def with_section_content(state: FunnelState, section: Section, content: str) -> FunnelState:
    return state.model_copy(
        update={"sections": _replace_section(state, section, content=content), "is_generating": False}
    )


def with_section_completed(state: FunnelState, section: Section) -> FunnelState:
    following = next_section(section)
    return state.model_copy(
        update={
            "sections": _replace_section(state, section, is_complete=True),
            "active_section": following or section,
        }
    )


def with_revision_applied(state: FunnelState, section: Section, content: str, revisions_remaining: int) -> FunnelState:
    return state.model_copy(
        update={
            "sections": _replace_section(
                state, section, content=content, revisions_remaining=revisions_remaining
            ),
            "is_generating": False,
        }
    )


def with_revisions_remaining(state: FunnelState, section: Section, revisions_remaining: int) -> FunnelState:
    return state.model_copy(
        update={"sections": _replace_section(state, section, revisions_remaining=revisions_remaining)}
    )


# ── Snapshot codec ──────────────────────────────────────────────────


def serialize_state(state: FunnelState) -> str:
    return state.model_dump_json()


def deserialize_state(blob: str | bytes) -> FunnelState:
    """Parse a persisted snapshot.

    ``is_generating`` is always reset: a persisted in-flight flag belongs to a
    request that no longer exists.

    Raises:
        pydantic.ValidationError: blob is not a valid snapshot
    """
    state = FunnelState.model_validate_json(blob)
    return state.model_copy(update={"is_generating": False})

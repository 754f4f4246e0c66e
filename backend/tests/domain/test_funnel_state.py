"""Tests for the funnel state model, transition function, and snapshot codec."""

import json
import uuid

import pytest
from pydantic import ValidationError as PydanticValidationError

from thesisflow.core.exceptions import InvalidTransition, ValidationError
from thesisflow.domain.funnel import (
    FunnelEvent,
    FunnelState,
    FunnelStep,
    LeadProfile,
    PaymentStatus,
    SectionRecord,
    TitleCandidate,
    all_complete,
    begin_generation,
    deserialize_state,
    initial_state,
    is_unlocked,
    serialize_state,
    transition,
    with_revision_applied,
    with_section_completed,
    with_section_content,
)
from thesisflow.domain.sections import FIRST_SECTION, SECTION_ORDER, Section

pytestmark = pytest.mark.unit

TITLES = [TitleCandidate(id=f"title-{i}", text=f"Title {i}") for i in range(1, 11)]


def _at_title_selection(lead: LeadProfile) -> FunnelState:
    state = transition(initial_state(), FunnelEvent.START)
    return transition(state, FunnelEvent.SUBMIT_LEAD, {"lead": lead, "titles": TITLES})


def _paid(lead: LeadProfile) -> FunnelState:
    state = transition(_at_title_selection(lead), FunnelEvent.CONFIRM_AND_PAY, {"title": "X"})
    return transition(state, FunnelEvent.PAYMENT_SUCCEEDED)


class TestInitialState:
    def test_starts_at_landing_with_empty_sections(self):
        state = initial_state()
        assert state.step == FunnelStep.LANDING
        assert state.payment_status == PaymentStatus.PENDING
        assert state.is_generating is False
        assert list(state.sections) == list(SECTION_ORDER)
        assert all(record == SectionRecord(revisions_remaining=5) for record in state.sections.values())

    def test_custom_revision_quota(self):
        state = initial_state(revisions=3)
        assert state.section(Section.CHAPTER_3).revisions_remaining == 3

    def test_missing_sections_are_filled_in(self):
        state = FunnelState(sections={Section.CHAPTER_1: SectionRecord(content="intro")})
        assert len(state.sections) == len(SECTION_ORDER)
        assert state.section(Section.CHAPTER_1).content == "intro"
        assert state.section(Section.BIBLIOGRAPHY).content == ""


class TestTransitions:
    def test_start_moves_to_lead_form(self):
        state = transition(initial_state(), FunnelEvent.START)
        assert state.step == FunnelStep.LEAD_FORM

    def test_transition_does_not_mutate_input(self):
        original = initial_state()
        transition(original, FunnelEvent.START)
        assert original.step == FunnelStep.LANDING

    def test_submit_lead_scenario(self, lead):
        """Scenario A: valid lead with generated titles lands on title selection."""
        state = _at_title_selection(lead)
        assert state.step == FunnelStep.TITLE_SELECTION
        assert len(state.title_candidates) == 10
        assert state.lead_profile == lead

    def test_submit_lead_with_missing_fields_fails(self):
        state = transition(initial_state(), FunnelEvent.START)
        lead = LeadProfile(faculty="Engineering", department="  ", email="")
        with pytest.raises(ValidationError) as exc_info:
            transition(state, FunnelEvent.SUBMIT_LEAD, {"lead": lead, "titles": TITLES})
        assert exc_info.value.context["fields"] == ["department", "email"]

    def test_submit_lead_without_titles_stays(self, lead):
        state = transition(initial_state(), FunnelEvent.START)
        with pytest.raises(InvalidTransition):
            transition(state, FunnelEvent.SUBMIT_LEAD, {"lead": lead, "titles": []})

    def test_select_title_records_without_advancing(self, lead):
        state = transition(_at_title_selection(lead), FunnelEvent.SELECT_TITLE, {"title": "X"})
        assert state.step == FunnelStep.TITLE_SELECTION
        assert state.selected_title == "X"

    def test_select_empty_title_fails(self, lead):
        with pytest.raises(ValidationError):
            transition(_at_title_selection(lead), FunnelEvent.SELECT_TITLE, {"title": "   "})

    def test_confirm_and_pay_moves_to_payment(self, lead):
        state = transition(_at_title_selection(lead), FunnelEvent.CONFIRM_AND_PAY, {"title": "X"})
        assert state.step == FunnelStep.PAYMENT
        assert state.selected_title == "X"

    def test_confirm_and_pay_requires_lead_profile(self):
        state = FunnelState(step=FunnelStep.TITLE_SELECTION)
        with pytest.raises(InvalidTransition, match="lead profile"):
            transition(state, FunnelEvent.CONFIRM_AND_PAY, {"title": "X"})

    def test_payment_succeeded_scenario(self, lead):
        """Scenario B: successful payment opens chapter writing at the first section."""
        user_id = uuid.uuid4()
        state = transition(_at_title_selection(lead), FunnelEvent.CONFIRM_AND_PAY, {"title": "X"})
        state = state.model_copy(update={"active_section": Section.CHAPTER_4})
        state = transition(state, FunnelEvent.PAYMENT_SUCCEEDED, {"user_id": user_id, "transaction_id": "T-1"})

        assert state.payment_status == PaymentStatus.PAID
        assert state.step == FunnelStep.CHAPTER_WRITING
        assert state.active_section == FIRST_SECTION
        assert state.user_id == user_id
        assert state.transaction_id == "T-1"

    def test_payment_failed_is_terminal(self, lead):
        state = transition(_at_title_selection(lead), FunnelEvent.CONFIRM_AND_PAY, {"title": "X"})
        state = transition(state, FunnelEvent.PAYMENT_FAILED)
        assert state.payment_status == PaymentStatus.FAILED
        assert state.step == FunnelStep.PAYMENT

        with pytest.raises(InvalidTransition):
            transition(state, FunnelEvent.PAYMENT_SUCCEEDED)
        with pytest.raises(InvalidTransition):
            transition(state, FunnelEvent.CONFIRM_AND_PAY, {"title": "X"})

    def test_request_access_while_unpaid_returns_to_payment(self):
        state = FunnelState(step=FunnelStep.CHAPTER_WRITING, is_generating=True)
        state = transition(state, FunnelEvent.REQUEST_ACCESS)
        assert state.step == FunnelStep.PAYMENT
        assert state.is_generating is False

    def test_request_access_when_paid_is_noop(self, lead):
        state = _paid(lead)
        assert transition(state, FunnelEvent.REQUEST_ACCESS) == state

    def test_subscription_expired_returns_to_payment_keeping_draft(self, lead):
        thesis_id = uuid.uuid4()
        state = transition(
            transition(_at_title_selection(lead), FunnelEvent.CONFIRM_AND_PAY, {"title": "X"}),
            FunnelEvent.PAYMENT_SUCCEEDED,
            {"thesis_id": thesis_id, "subscription_id": uuid.uuid4()},
        )
        state = with_section_completed(with_section_content(state, Section.CHAPTER_1, "Intro"), Section.CHAPTER_1)

        expired = transition(state, FunnelEvent.SUBSCRIPTION_EXPIRED)

        assert expired.step == FunnelStep.PAYMENT
        assert expired.payment_status == PaymentStatus.PENDING
        assert expired.subscription_id is None
        assert expired.thesis_id == thesis_id
        assert expired.sections == state.sections

        renewed = transition(
            transition(expired, FunnelEvent.CONFIRM_AND_PAY, {"title": "X"}), FunnelEvent.PAYMENT_SUCCEEDED
        )
        assert renewed.step == FunnelStep.CHAPTER_WRITING
        assert renewed.active_section == Section.CHAPTER_2

    def test_subscription_expired_only_while_writing(self, lead):
        with pytest.raises(InvalidTransition):
            transition(_at_title_selection(lead), FunnelEvent.SUBSCRIPTION_EXPIRED)

    @pytest.mark.parametrize(
        "step,event",
        [
            (FunnelStep.LANDING, FunnelEvent.SUBMIT_LEAD),
            (FunnelStep.LEAD_FORM, FunnelEvent.START),
            (FunnelStep.TITLE_SELECTION, FunnelEvent.PAYMENT_SUCCEEDED),
            (FunnelStep.CHAPTER_WRITING, FunnelEvent.START),
        ],
    )
    def test_event_not_allowed_at_step(self, step, event):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(FunnelState(step=step), event)
        assert exc_info.value.context == {"step": step.value, "event": event.value}


class TestSectionHelpers:
    def test_first_section_always_unlocked(self):
        assert is_unlocked(initial_state(), FIRST_SECTION)

    def test_unlock_follows_previous_completion(self, lead):
        state = _paid(lead)
        assert not is_unlocked(state, Section.CHAPTER_2)

        state = with_section_content(state, Section.CHAPTER_1, "intro")
        state = with_section_completed(state, Section.CHAPTER_1)
        assert is_unlocked(state, Section.CHAPTER_2)
        assert not is_unlocked(state, Section.CHAPTER_3)

    def test_completion_advances_active_section(self, lead):
        state = with_section_completed(_paid(lead), Section.CHAPTER_1)
        assert state.active_section == Section.CHAPTER_2

    def test_completing_last_section_stays(self, lead):
        state = _paid(lead)
        for section in SECTION_ORDER:
            state = with_section_completed(with_section_content(state, section, "text"), section)
        assert state.active_section == Section.BIBLIOGRAPHY
        assert all_complete(state)

    def test_revision_keeps_completion_flag(self, lead):
        state = with_section_completed(with_section_content(_paid(lead), Section.CHAPTER_1, "v1"), Section.CHAPTER_1)
        state = with_revision_applied(state, Section.CHAPTER_1, "v2", 4)
        record = state.section(Section.CHAPTER_1)
        assert record.content == "v2"
        assert record.revisions_remaining == 4
        assert record.is_complete is True


class TestSnapshotCodec:
    def test_round_trip_equal(self, lead):
        state = with_section_content(_paid(lead), Section.CHAPTER_1, "Intro (Smith, 2021)")
        assert deserialize_state(serialize_state(state)) == state

    def test_is_generating_reset_on_load(self, lead):
        state = begin_generation(_paid(lead), Section.CHAPTER_1)
        assert state.is_generating is True

        restored = deserialize_state(serialize_state(state))
        assert restored.is_generating is False
        assert restored == state.model_copy(update={"is_generating": False})

    def test_snapshot_is_json(self, lead):
        data = json.loads(serialize_state(_paid(lead)))
        assert data["step"] == "chapter-writing"
        assert data["sections"]["chapter-1"]["revisions_remaining"] == 5

    @pytest.mark.parametrize("blob", ["not json", "{\"step\": \"nowhere\"}", "[]"])
    def test_malformed_snapshot_raises(self, blob):
        with pytest.raises(PydanticValidationError):
            deserialize_state(blob)

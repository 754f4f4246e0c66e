"""Tests for order ids, citation extraction, and plain-text export."""

import uuid
from datetime import UTC, datetime

import pytest

from thesisflow.domain.citations import extract_citations
from thesisflow.domain.export import export_text
from thesisflow.domain.funnel import initial_state, with_section_content
from thesisflow.domain.orders import build_order_id, parse_order_id
from thesisflow.domain.sections import Section

pytestmark = pytest.mark.unit


class TestOrderIds:
    def test_user_is_recoverable(self):
        user_id = uuid.uuid4()
        now = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        order_id = build_order_id(user_id, now=now)

        assert order_id.startswith("TF-")
        reference = parse_order_id(order_id)
        assert reference.user_id == user_id
        assert reference.issued_at == now
        assert reference.is_top_up is False

    def test_top_up_prefix(self):
        user_id = uuid.uuid4()
        reference = parse_order_id(build_order_id(user_id, top_up=True))
        assert reference.is_top_up is True
        assert reference.user_id == user_id

    @pytest.mark.parametrize(
        "order_id",
        [
            "",
            "ORDER-123",
            "TF-not-a-uuid-1700000000000",
            f"TF-{uuid.uuid4()}-1700000000000",  # dashed uuid carries the delimiter
            f"TF-{uuid.uuid4().hex}-1700000000000-extra",
        ],
    )
    def test_foreign_ids_are_rejected(self, order_id):
        assert parse_order_id(order_id) is None


class TestCitations:
    def test_extracts_unique_markers_in_order(self):
        content = (
            "Prior work (Smith, 2021) and (Chen & Wang, 2019) agree. "
            "As noted (Smith, 2021), results vary (Lee et al., 2020)."
        )
        assert extract_citations(content) == ["(Smith, 2021)", "(Chen & Wang, 2019)", "(Lee et al., 2020)"]

    def test_ignores_parentheses_without_year(self):
        assert extract_citations("A note (see appendix) and (Table 2)") == []

    def test_empty_content(self):
        assert extract_citations("") == []


class TestExport:
    def test_concatenates_in_order_skipping_empty(self):
        state = initial_state()
        state = with_section_content(state, Section.CHAPTER_2, "Two")
        state = with_section_content(state, Section.CHAPTER_1, "One")
        state = with_section_content(state, Section.BIBLIOGRAPHY, "Refs")

        assert export_text(state) == "One\n\nTwo\n\nRefs"

    def test_empty_draft_exports_empty_text(self):
        assert export_text(initial_state()) == ""

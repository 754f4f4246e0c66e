"""Prompt shaping for the three kinds of content request.

Each kind gets its own system prompt and token budget. Section prompts pull
their label and guideline text from the exhaustive tables in
``thesisflow.domain.sections``.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from thesisflow.domain.sections import SECTION_GUIDELINES, SECTION_LABELS, SECTION_MAX_TOKENS, Section


class GenerationKind(str, Enum):
    TITLE_IDEATION = "title-ideation"
    SECTION_GENERATION = "section-generation"
    SECTION_REVISION = "section-revision"


@dataclass(frozen=True)
class SubjectMetadata:
    faculty: str
    department: str
    specialization: str | None = None
    title: str | None = None


@dataclass(frozen=True)
class GenerationRequest:
    """Structured request handed to a content gateway."""

    kind: GenerationKind
    subject: SubjectMetadata
    section: Section | None = None
    prior_context: str = ""
    current_content: str = ""
    feedback: str = ""
    preserve: list[str] = field(default_factory=list)
    candidate_count: int = 10


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str
    max_tokens: int


TITLE_SYSTEM = (
    "You are an academic assistant helping undergraduate students choose strong, "
    "specific thesis titles."
)

SECTION_SYSTEM = (
    "You are an undergraduate thesis writing assistant. Write formal academic prose, "
    "cite sources inline as (Author, Year), and keep each chapter consistent with the "
    "chapters that precede it."
)

REVISION_SYSTEM = (
    "You are an academic revision assistant. Apply the requested feedback, keep the "
    "existing structure, and never drop the citations you are asked to preserve."
)


def _subject_lines(subject: SubjectMetadata) -> str:
    lines = [f"Faculty: {subject.faculty}", f"Department: {subject.department}"]
    if subject.specialization:
        lines.append(f"Specialization: {subject.specialization}")
    if subject.title:
        lines.append(f"Thesis title: {subject.title}")
    return "\n".join(lines)


def build_prompt(request: GenerationRequest) -> Prompt:
    """Shape a GenerationRequest into system/user text and a token budget.

    Raises:
        ValueError: if a section request carries no section
    """
    if request.kind == GenerationKind.TITLE_IDEATION:
        user = (
            f"Propose {request.candidate_count} thesis titles for this student.\n\n"
            f"{_subject_lines(request.subject)}\n\n"
            "Each title must be specific, name a clear research method, and be "
            "achievable within four to six months. Output one title per line."
        )
        return Prompt(system=TITLE_SYSTEM, user=user, max_tokens=800)

    if request.section is None:
        raise ValueError(f"{request.kind.value} request requires a section")

    label = SECTION_LABELS[request.section]

    if request.kind == GenerationKind.SECTION_GENERATION:
        parts = [
            f"Write {label}.",
            _subject_lines(request.subject),
            f"Guidelines:\n{SECTION_GUIDELINES[request.section]}",
        ]
        if request.prior_context:
            parts.append(f"Context from earlier chapters:\n{request.prior_context}")
        return Prompt(
            system=SECTION_SYSTEM,
            user="\n\n".join(parts),
            max_tokens=SECTION_MAX_TOKENS[request.section],
        )

    parts = [
        f"Revise {label} according to the feedback below.",
        f"Current content:\n{request.current_content}",
    ]
    if request.preserve:
        parts.append("Citations that must be preserved:\n" + "\n".join(request.preserve))
    parts.append(f"Feedback:\n{request.feedback}")
    return Prompt(
        system=REVISION_SYSTEM,
        user="\n\n".join(parts),
        max_tokens=SECTION_MAX_TOKENS[request.section],
    )


_LIST_MARKER = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s*")


def parse_title_lines(text: str, limit: int) -> list[str]:
    """Split a title-ideation response into at most ``limit`` clean titles."""
    titles = []
    for line in text.splitlines():
        title = _LIST_MARKER.sub("", line).strip().strip('"').strip()
        if title:
            titles.append(title)
    return titles[:limit]

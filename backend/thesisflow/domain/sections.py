"""Section enumeration, fixed ordering, and per-section tables.

Pure domain logic with no external dependencies.
"""

from collections.abc import Mapping
from enum import Enum


class Section(str, Enum):
    """The six ordered content units of a thesis draft."""

    CHAPTER_1 = "chapter-1"
    CHAPTER_2 = "chapter-2"
    CHAPTER_3 = "chapter-3"
    CHAPTER_4 = "chapter-4"
    CHAPTER_5 = "chapter-5"
    BIBLIOGRAPHY = "bibliography"


SECTION_ORDER: tuple[Section, ...] = (
    Section.CHAPTER_1,
    Section.CHAPTER_2,
    Section.CHAPTER_3,
    Section.CHAPTER_4,
    Section.CHAPTER_5,
    Section.BIBLIOGRAPHY,
)

SECTION_LABELS: dict[Section, str] = {
    Section.CHAPTER_1: "Chapter I - Introduction",
    Section.CHAPTER_2: "Chapter II - Literature Review",
    Section.CHAPTER_3: "Chapter III - Research Methodology",
    Section.CHAPTER_4: "Chapter IV - Results and Discussion",
    Section.CHAPTER_5: "Chapter V - Conclusions and Recommendations",
    Section.BIBLIOGRAPHY: "Bibliography",
}

SECTION_MAX_TOKENS: dict[Section, int] = {
    Section.CHAPTER_1: 4000,
    Section.CHAPTER_2: 4000,
    Section.CHAPTER_3: 4000,
    Section.CHAPTER_4: 4000,
    Section.CHAPTER_5: 4000,
    Section.BIBLIOGRAPHY: 2000,
}

SECTION_GUIDELINES: dict[Section, str] = {
    Section.CHAPTER_1: (
        "Subsections: background, problem statement, research objectives, "
        "benefits, scope and limitations, outline of the thesis."
    ),
    Section.CHAPTER_2: (
        "Subsections: theoretical foundation, prior research (at least five "
        "relevant studies), conceptual framework. Support every concept with "
        "an (Author, Year) citation."
    ),
    Section.CHAPTER_3: (
        "Subsections: research design, location and time, population and "
        "sample, data collection, instruments, analysis technique, research stages."
    ),
    Section.CHAPTER_4: (
        "Subsections: results (data, tables), discussion, analysis of findings. "
        "Use citations to support the interpretation."
    ),
    Section.CHAPTER_5: (
        "Subsections: conclusions answering the research objectives of Chapter I, "
        "recommendations for further work."
    ),
    Section.BIBLIOGRAPHY: (
        "APA 7th edition, sorted alphabetically by author surname. Include every "
        "source cited in chapters I to V."
    ),
}


def _check_tables(*tables: Mapping[Section, object]) -> None:
    for table in tables:
        missing = set(Section) - set(table)
        if missing:
            raise RuntimeError(f"Section table missing entries: {sorted(s.value for s in missing)}")
    if set(SECTION_ORDER) != set(Section) or len(SECTION_ORDER) != len(Section):
        raise RuntimeError("SECTION_ORDER must list every section exactly once")


_check_tables(SECTION_LABELS, SECTION_MAX_TOKENS, SECTION_GUIDELINES)


FIRST_SECTION = SECTION_ORDER[0]


def position(section: Section) -> int:
    """Ordinal position of a section in the fixed order."""
    return SECTION_ORDER.index(section)


def next_section(section: Section) -> Section | None:
    """Section following ``section``, or None if it is the last one."""
    idx = position(section)
    if idx + 1 < len(SECTION_ORDER):
        return SECTION_ORDER[idx + 1]
    return None


def preceding_sections(section: Section) -> tuple[Section, ...]:
    """All sections strictly before ``section`` in the fixed order."""
    return SECTION_ORDER[: position(section)]

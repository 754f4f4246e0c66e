"""Plain-text export of a thesis draft."""

from thesisflow.domain.funnel import FunnelState
from thesisflow.domain.sections import SECTION_ORDER

EXPORT_FILENAME = "thesis-draft.txt"


def export_text(state: FunnelState) -> str:
    """Concatenate section contents in the fixed order, skipping empty ones."""
    parts = [state.sections[section].content for section in SECTION_ORDER if state.sections[section].content]
    return "\n\n".join(parts)

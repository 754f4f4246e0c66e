"""Citation marker extraction for revision preserve-lists."""

import re

# "(Name, 2020)", "(Smith et al., 2021)", "(Chen & Wang, 2019)"
CITATION_RE = re.compile(r"\(([^()]+,\s*\d{4})\)")


def extract_citations(content: str) -> list[str]:
    """Return unique parenthesized "Name, Year" markers in first-seen order."""
    seen: dict[str, None] = {}
    for match in CITATION_RE.finditer(content or ""):
        seen.setdefault(match.group(0), None)
    return list(seen)

"""
Document type vocabulary and keyword detection.
"""

from __future__ import annotations

from typing import Optional

PRD = "PRD"
TECHNICAL_SPEC = "TechnicalSpec"
FEATURE_REQUEST = "FeatureRequest"
JOURNAL = "Journal"
DOCUMENTATION = "Documentation"

# Evaluated in order; the first rule with any matching keyword wins.
DOCUMENT_TYPE_RULES: list[tuple[str, tuple[str, ...]]] = [
    (PRD, ("product requirements", "user stories", "acceptance criteria")),
    (TECHNICAL_SPEC, ("technical specification", "architecture", "api reference")),
    (FEATURE_REQUEST, ("feature request", "user story")),
    (JOURNAL, ("journal",)),
]

_CANONICAL_BY_KEY = {
    "".join(name.lower().split()).replace("_", "").replace("-", ""): name
    for name in (PRD, TECHNICAL_SPEC, FEATURE_REQUEST, JOURNAL, DOCUMENTATION)
}


def canonical_document_type(value: Optional[str]) -> Optional[str]:
    """
    Map a caller-supplied type onto the known spelling.

    ``prd``, ``technical_spec`` and ``Technical Spec`` all resolve to their
    canonical names. Unknown types are returned stripped; blank input gives None.
    """
    if value is None or not value.strip():
        return None
    stripped = value.strip()
    key = "".join(stripped.lower().split()).replace("_", "").replace("-", "")
    return _CANONICAL_BY_KEY.get(key, stripped)


def detect_document_type(text: str, default: str = DOCUMENTATION) -> str:
    lowered = text.lower()
    for document_type, keywords in DOCUMENT_TYPE_RULES:
        if any(keyword in lowered for keyword in keywords):
            return document_type
    return default

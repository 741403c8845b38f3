"""
Document types and the static cue registry used to classify energy contracts.

Cues are weighted keywords (or regexes) tied to one document type. A positive
weight votes for the type, a negative weight penalises it. Cues never consume
text, so overlapping cues all fire.
"""
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional, Pattern
import re


class DocumentType(Enum):
    """Closed set of contract document types."""
    FRAMEWORK_AGREEMENT = "framework_agreement"
    LEASE_SUPPLEMENT = "lease_supplement"
    EPC_ADDENDUM = "epc_addendum"
    PURCHASE_AGREEMENT = "purchase_agreement"
    OM_AGREEMENT = "om_agreement"
    UNCLASSIFIED = "unclassified"


@lru_cache(maxsize=None)
def compile_cue_pattern(pattern: str) -> Pattern:
    """Compile a regex cue once. Raises re.error for malformed patterns."""
    return re.compile(pattern, re.IGNORECASE)


@dataclass(frozen=True)
class Cue:
    """A weighted pattern associated with one document type."""
    pattern: str
    weight: float
    applies_to: DocumentType
    is_regex: bool = False
    name: Optional[str] = None

    @property
    def identifier(self) -> str:
        return self.name or self.pattern

    @property
    def is_negative(self) -> bool:
        return self.weight < 0

    def matches(self, text: str) -> bool:
        """Case-insensitive substring or regex match."""
        if self.is_regex:
            return compile_cue_pattern(self.pattern).search(text) is not None
        return self.pattern.lower() in text.lower()

    def matches_filename(self, filename: str) -> bool:
        """Filename hint: plain cue with whitespace removed, found in the filename."""
        if self.is_regex or not filename:
            return False
        compact = re.sub(r'\s+', '', self.pattern.lower())
        return bool(compact) and compact in filename.lower()


HEADER_WEIGHT = 10.0
NEGATIVE_WEIGHT = -15.0

# Header cues per type
HEADER_CUES: Dict[DocumentType, List[str]] = {
    DocumentType.FRAMEWORK_AGREEMENT: [
        'Framework Agreement', 'Master Energy Services Agreement',
        'Master Services Framework',
    ],
    DocumentType.LEASE_SUPPLEMENT: [
        'Lease Supplement', 'Equipment Lease Supplement', 'Supplement to Master Lease',
    ],
    DocumentType.EPC_ADDENDUM: [
        'EPC Addendum', 'Engineering, Procurement and Construction',
        'Addendum to EPC',
    ],
    DocumentType.PURCHASE_AGREEMENT: [
        'Power Purchase Agreement', 'Energy Purchase Agreement', 'Equipment Purchase Agreement',
    ],
    DocumentType.OM_AGREEMENT: [
        'Operations and Maintenance Agreement', 'O&M Agreement', 'Service and Maintenance Agreement',
    ],
}

# Phrases that indicate the document is NOT of the given type
NEGATIVE_CUES: Dict[DocumentType, List[str]] = {
    DocumentType.FRAMEWORK_AGREEMENT: ['Supplement No.', 'this Addendum amends'],
    DocumentType.LEASE_SUPPLEMENT: ['Power Purchase Agreement'],
    DocumentType.PURCHASE_AGREEMENT: ['Lessor', 'Lease Supplement'],
}

REGEX_CUES = [
    Cue(r'\bsupplement\s+no\.?\s*\d+', 5.0, DocumentType.LEASE_SUPPLEMENT,
        is_regex=True, name='supplement-number'),
    Cue(r'\baddendum\s+(?:no\.?\s*)?\d+\s+to\b', 5.0, DocumentType.EPC_ADDENDUM,
        is_regex=True, name='addendum-number'),
    Cue(r'\$\s*[\d.,]+\s*(?:per|/)\s*kwh', 3.0, DocumentType.PURCHASE_AGREEMENT,
        is_regex=True, name='energy-rate'),
]


def build_cue_registry() -> List[Cue]:
    """Build the default cue registry (header, negative, then regex cues)."""
    cues = []
    for doc_type, phrases in HEADER_CUES.items():
        cues.extend(Cue(p, HEADER_WEIGHT, doc_type) for p in phrases)
    for doc_type, phrases in NEGATIVE_CUES.items():
        cues.extend(Cue(p, NEGATIVE_WEIGHT, doc_type) for p in phrases)
    cues.extend(REGEX_CUES)
    return cues


DEFAULT_CUES = build_cue_registry()

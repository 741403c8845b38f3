"""
Pattern-based candidate field extraction.

Candidates are provisional values: every pattern hit is kept (with its
source span and surrounding context) so the merge step can see provenance.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple
import logging
import re

from contract_engine.classification.cues import DocumentType
from contract_engine.extraction.field_registry import FieldRegistry

logger = logging.getLogger(__name__)

VALUE_GROUPS = ("value", "val", "name", "date", "rule")
CONTEXT_CHARS = 50


class ExtractionMethod(Enum):
    PATTERN = "pattern"
    AI = "ai"


@dataclass(frozen=True)
class CandidateField:
    """A provisional value for one field from one extraction method."""
    field_name: str
    raw_value: str
    extraction_method: ExtractionMethod = ExtractionMethod.PATTERN
    source_span: Optional[Tuple[int, int]] = None
    context: str = ""
    pattern: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "field_name": self.field_name,
            "raw_value": self.raw_value,
            "extraction_method": self.extraction_method.value,
            "source_span": list(self.source_span) if self.source_span else None,
            "context": self.context,
        }


def _match_value(match: "re.Match") -> Optional[str]:
    groups = match.groupdict()
    for name in VALUE_GROUPS:
        if groups.get(name):
            return groups[name]
    if match.re.groups:
        return match.group(1)
    return match.group(0)


class CandidateExtractor:
    """
    Run the field patterns registered for a document type over document text.

    A pattern miss contributes nothing; an invalid pattern is logged once and
    skipped.
    """

    def __init__(self, registry: Optional[FieldRegistry] = None):
        self.registry = registry or FieldRegistry()
        self._pattern_cache: Dict[str, Optional[Pattern]] = {}

    def _compile(self, pattern: str) -> Optional[Pattern]:
        if pattern not in self._pattern_cache:
            try:
                self._pattern_cache[pattern] = re.compile(pattern, re.IGNORECASE | re.MULTILINE)
            except re.error as e:
                logger.warning(f"Invalid pattern skipped: {pattern!r} ({e})")
                self._pattern_cache[pattern] = None
        return self._pattern_cache[pattern]

    def extract_candidates(self, text: str, document_type: DocumentType) -> List[CandidateField]:
        """
        Extract candidate values for every field of the document type.

        Args:
            text: Document text
            document_type: Classified type (Unclassified uses the generic field set)

        Returns:
            Candidates grouped by field (registry order), earliest match first
        """
        text = text or ""
        candidates: List[CandidateField] = []

        for definition in self.registry.fields_for(document_type):
            field_candidates = []
            for pattern in definition.patterns:
                regex = self._compile(pattern)
                if regex is None:
                    continue
                for match in regex.finditer(text):
                    value = _match_value(match)
                    if not value or not value.strip():
                        continue
                    start, end = match.span()
                    context = text[max(0, start - CONTEXT_CHARS):min(len(text), end + CONTEXT_CHARS)]
                    field_candidates.append(CandidateField(
                        field_name=definition.name,
                        raw_value=value.strip(),
                        source_span=(start, end),
                        context=" ".join(context.split()),
                        pattern=pattern,
                    ))
            field_candidates.sort(key=lambda c: c.source_span[0])
            candidates.extend(field_candidates)

        logger.debug(
            f"[EXTRACT] {len(candidates)} candidates for {document_type.value} "
            f"across {len({c.field_name for c in candidates})} fields"
        )
        return candidates


def group_by_field(candidates: List[CandidateField]) -> Dict[str, List[CandidateField]]:
    grouped: Dict[str, List[CandidateField]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.field_name, []).append(candidate)
    return grouped


def build_context_snippets(candidates: List[CandidateField], max_snippets: int = 20) -> List[str]:
    """Format candidates as short hint lines for the AI prompt."""
    snippets = []
    for candidate in candidates:
        if len(snippets) >= max_snippets:
            break
        snippets.append(f"{candidate.field_name}: \"{candidate.raw_value}\" (context: ...{candidate.context}...)")
    return snippets

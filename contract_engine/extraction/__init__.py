"""
Extraction module - pattern-based candidate values per document type.
"""

from contract_engine.extraction.field_registry import (
    FieldDefinition,
    FieldRegistry,
    FIELD_DEFINITIONS,
)
from contract_engine.extraction.candidate_extractor import (
    CandidateExtractor,
    CandidateField,
    ExtractionMethod,
    build_context_snippets,
    group_by_field,
)

__all__ = [
    "FieldDefinition",
    "FieldRegistry",
    "FIELD_DEFINITIONS",
    "CandidateExtractor",
    "CandidateField",
    "ExtractionMethod",
    "build_context_snippets",
    "group_by_field",
]

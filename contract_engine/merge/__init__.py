"""
Merge module - reconciles extraction signals into ExtractionResults.
"""

from contract_engine.merge.models import (
    UNRESOLVED,
    AIExtractionResult,
    BusinessRule,
    ExtractionResult,
    is_empty,
    rule_fingerprint,
)
from contract_engine.merge.merge_engine import (
    ExtractionComparison,
    FieldChange,
    MergeEngine,
    compare_extractions,
    merge_rules,
)

__all__ = [
    "UNRESOLVED",
    "AIExtractionResult",
    "BusinessRule",
    "ExtractionResult",
    "is_empty",
    "rule_fingerprint",
    "MergeEngine",
    "merge_rules",
    "compare_extractions",
    "ExtractionComparison",
    "FieldChange",
]

"""
Rule & Field Merge Engine.

Reconciles pattern candidates and AI output field-by-field into one
ExtractionResult, merges it against a previous result without ever degrading
resolved fields, and deduplicates business rules by fingerprint. Re-extractions
can also be compared field by field (improved, changed or same).

The engine is pure: no I/O and no state besides its configuration.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from contract_engine.classification.classifier import ClassificationResult
from contract_engine.config import EngineConfig
from contract_engine.extraction.candidate_extractor import CandidateField, ExtractionMethod
from contract_engine.extraction.field_registry import FieldRegistry
from contract_engine.merge.models import (
    UNRESOLVED,
    AIExtractionResult,
    BusinessRule,
    ExtractionResult,
    is_empty,
)

logger = logging.getLogger(__name__)

DEFAULT_AI_CONFIDENCE = 0.7
AGREEMENT_BONUS = 0.1
MAX_PATTERN_CONFIDENCE = 0.9


def _same_value(a: Any, b: Any) -> bool:
    return " ".join(str(a).split()).casefold() == " ".join(str(b).split()).casefold()


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, float(value)))


def merge_rules(existing: Iterable[BusinessRule], incoming: Iterable[BusinessRule]) -> List[BusinessRule]:
    """
    Deduplicate rules by fingerprint, existing rules first.

    A duplicate keeps the first statement's position, unions the source field
    references and keeps the higher confidence.
    """
    merged: Dict[str, BusinessRule] = {}
    for rule in list(existing) + list(incoming):
        key = rule.fingerprint
        if key in merged:
            kept = merged[key]
            merged[key] = BusinessRule(
                category=kept.category,
                statement=kept.statement,
                source_field_refs=kept.source_field_refs | rule.source_field_refs,
                confidence=max(kept.confidence, rule.confidence),
            )
        else:
            merged[key] = rule
    return list(merged.values())


class MergeEngine:
    """
    Combine classification, pattern candidates and AI output.

    Usage:
        engine = MergeEngine(EngineConfig())
        result = engine.merge(classification, candidates, ai_result, previous)
    """

    def __init__(self, config: Optional[EngineConfig] = None, registry: Optional[FieldRegistry] = None):
        self.config = config or EngineConfig()
        self.registry = registry or FieldRegistry()

    def merge(
        self,
        classification: ClassificationResult,
        candidates: Sequence[CandidateField],
        ai_result: Optional[AIExtractionResult],
        previous: Optional[ExtractionResult] = None,
        document_id: Optional[str] = None,
        expected_fields: Optional[Sequence[str]] = None,
    ) -> ExtractionResult:
        """
        Merge all extraction signals for one document.

        Args:
            classification: Classifier output
            candidates: Pattern (and optionally AI) candidates
            ai_result: Parsed AI extraction, or None for a pattern-only merge
            previous: Prior result for the same document (re-extraction)
            document_id: Identity of the document (defaults to the previous result's)
            expected_fields: Fields reported even when unresolved
                (defaults to the registry's field set for the document type)

        Returns:
            New ExtractionResult; inputs are never mutated
        """
        if document_id is None:
            document_id = previous.document_id if previous else ""
        if expected_fields is None:
            expected_fields = [f.name for f in self.registry.fields_for(classification.document_type)]

        pattern_by_field: Dict[str, List[CandidateField]] = {}
        ai_candidates: Dict[str, CandidateField] = {}
        for candidate in candidates:
            if candidate.extraction_method is ExtractionMethod.AI:
                ai_candidates.setdefault(candidate.field_name, candidate)
            else:
                pattern_by_field.setdefault(candidate.field_name, []).append(candidate)

        ai_data = dict(ai_result.extracted_data) if ai_result else {}
        ai_conf = dict(ai_result.confidence) if ai_result else {}
        for name, candidate in ai_candidates.items():
            ai_data.setdefault(name, candidate.raw_value)

        field_names = list(dict.fromkeys(
            list(expected_fields) + list(pattern_by_field) + list(ai_data)
        ))

        extracted: Dict[str, Any] = {}
        confidences: Dict[str, float] = {}
        sources: Dict[str, str] = {}
        for name in field_names:
            pattern_value, pattern_conf = self._pattern_choice(pattern_by_field.get(name, []))
            ai_value = ai_data.get(name)
            value, field_conf, source = self._select(
                pattern_value, pattern_conf,
                ai_value, _clamp(ai_conf.get(name, DEFAULT_AI_CONFIDENCE)),
            )
            extracted[name] = value
            sources[name] = source
            confidences[name] = self._combine(classification.confidence, field_conf) if source != "unresolved" else 0.0

        rules = merge_rules([], ai_result.extracted_rules) if ai_result else []

        result = ExtractionResult(
            document_id=document_id,
            extracted_data=extracted,
            confidence_per_field=confidences,
            extracted_rules=rules,
            structured_extraction=classification,
            field_sources=sources,
            ai_notes=ai_result.raw_notes if ai_result else None,
            usage=dict(ai_result.usage) if ai_result else {},
            attempts=list(ai_result.attempts) if ai_result else [],
        )

        resolved = len(field_names) - len(result.unresolved_fields)
        logger.info(
            f"[MERGE] {document_id}: {resolved}/{len(field_names)} fields resolved, "
            f"{len(rules)} rules"
        )

        if previous is not None:
            return self.merge_with_previous(result, previous)
        return result

    def _pattern_choice(self, candidates: List[CandidateField]) -> Tuple[Any, float]:
        """Earliest candidate wins; each agreeing extra candidate adds a small bonus."""
        non_empty = [c for c in candidates if not is_empty(c.raw_value)]
        if not non_empty:
            return None, 0.0
        chosen = non_empty[0].raw_value
        agreeing = sum(1 for c in non_empty if _same_value(c.raw_value, chosen))
        confidence = self.config.pattern_confidence + AGREEMENT_BONUS * (agreeing - 1)
        return chosen, min(confidence, max(MAX_PATTERN_CONFIDENCE, self.config.pattern_confidence))

    def _select(self, pattern_value, pattern_conf, ai_value, ai_conf) -> Tuple[Any, float, str]:
        has_pattern = not is_empty(pattern_value)
        has_ai = not is_empty(ai_value)

        if has_ai and has_pattern:
            if ai_conf >= self.config.ai_confidence_floor:
                if _same_value(ai_value, pattern_value):
                    return ai_value, max(ai_conf, pattern_conf), "ai"
                return ai_value, ai_conf, "ai"
            return pattern_value, pattern_conf, "pattern"
        if has_ai:
            return ai_value, ai_conf, "ai"
        if has_pattern:
            return pattern_value, pattern_conf, "pattern"
        return UNRESOLVED, 0.0, "unresolved"

    def _combine(self, classifier_conf: float, field_conf: float) -> float:
        cw = self.config.classifier_weight
        fw = self.config.field_weight
        return round(_clamp((cw * classifier_conf + fw * field_conf) / (cw + fw)), 6)

    def merge_with_previous(self, new: ExtractionResult, previous: ExtractionResult) -> ExtractionResult:
        """
        Monotonic-improvement merge of a new result against a previous one.

        A field resolved in the previous result is replaced only by a non-empty
        value with strictly higher confidence. Fields only the previous result
        knows are carried forward. Rules are deduplicated across both.
        """
        extracted: Dict[str, Any] = {}
        confidences: Dict[str, float] = {}
        sources: Dict[str, str] = {}
        kept = improved = 0

        for name in list(dict.fromkeys(list(new.extracted_data) + list(previous.extracted_data))):
            in_new = name in new.extracted_data
            prev_value = previous.extracted_data.get(name, UNRESOLVED)
            prev_conf = previous.confidence_per_field.get(name, 0.0)

            if not is_empty(prev_value):
                new_value = new.extracted_data.get(name, UNRESOLVED)
                new_conf = new.confidence_per_field.get(name, 0.0)
                if in_new and not is_empty(new_value) and new_conf > prev_conf:
                    extracted[name], confidences[name] = new_value, new_conf
                    sources[name] = new.field_sources.get(name, "ai")
                    improved += 1
                else:
                    extracted[name], confidences[name] = prev_value, prev_conf
                    sources[name] = previous.field_sources.get(name, "previous")
                    kept += 1
            elif in_new:
                extracted[name] = new.extracted_data[name]
                confidences[name] = new.confidence_per_field.get(name, 0.0)
                sources[name] = new.field_sources.get(name, "unresolved")
            else:
                extracted[name], confidences[name] = UNRESOLVED, 0.0
                sources[name] = "unresolved"

        logger.info(
            f"[MERGE] {new.document_id or previous.document_id}: "
            f"{improved} fields improved, {kept} kept from previous extraction"
        )

        return ExtractionResult(
            document_id=new.document_id or previous.document_id,
            extracted_data=extracted,
            confidence_per_field=confidences,
            extracted_rules=merge_rules(previous.extracted_rules, new.extracted_rules),
            structured_extraction=new.structured_extraction,
            field_sources=sources,
            warnings=list(new.warnings),
            ai_notes=new.ai_notes if new.ai_notes is not None else previous.ai_notes,
            usage=dict(new.usage),
            attempts=list(new.attempts),
        )


# =============================================================================
# Re-extraction comparison
# =============================================================================

class FieldChange(Enum):
    IMPROVED = "improved"  # previously empty, now has a value
    CHANGED = "changed"
    SAME = "same"


@dataclass
class FieldComparison:
    field_name: str
    status: FieldChange
    previous_value: Any
    new_value: Any
    previous_confidence: float = 0.0
    new_confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field_name,
            "status": self.status.value,
            "previous_value": None if self.previous_value is UNRESOLVED else self.previous_value,
            "new_value": None if self.new_value is UNRESOLVED else self.new_value,
            "previous_confidence": self.previous_confidence,
            "new_confidence": self.new_confidence,
        }


@dataclass
class ExtractionComparison:
    """Field-by-field and rule-level differences between two extractions."""
    document_id: str
    fields: List[FieldComparison]
    rules_added: List[BusinessRule]
    rules_removed: List[BusinessRule]
    previous_rule_count: int
    new_rule_count: int

    def count(self, status: FieldChange) -> int:
        return sum(1 for f in self.fields if f.status is status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "summary": {status.value: self.count(status) for status in FieldChange},
            "fields": [f.to_dict() for f in self.fields],
            "rules": {
                "previous": self.previous_rule_count,
                "new": self.new_rule_count,
                "added": [r.to_dict() for r in self.rules_added],
                "removed": [r.to_dict() for r in self.rules_removed],
            },
        }


def _field_change(previous_value: Any, new_value: Any) -> FieldChange:
    if is_empty(previous_value) and not is_empty(new_value):
        return FieldChange.IMPROVED
    if is_empty(previous_value) and is_empty(new_value):
        return FieldChange.SAME
    if is_empty(new_value) or not _same_value(previous_value, new_value):
        return FieldChange.CHANGED
    return FieldChange.SAME


def compare_extractions(new: ExtractionResult, previous: ExtractionResult) -> ExtractionComparison:
    """
    Compare a re-extraction with the previous result for the same document.

    Usage:
        report = compare_extractions(second, first)
        report.count(FieldChange.IMPROVED)
    """
    fields = []
    for name in dict.fromkeys(list(previous.extracted_data) + list(new.extracted_data)):
        previous_value = previous.extracted_data.get(name, UNRESOLVED)
        new_value = new.extracted_data.get(name, UNRESOLVED)
        fields.append(FieldComparison(
            field_name=name,
            status=_field_change(previous_value, new_value),
            previous_value=previous_value,
            new_value=new_value,
            previous_confidence=previous.confidence_per_field.get(name, 0.0),
            new_confidence=new.confidence_per_field.get(name, 0.0),
        ))

    previous_keys = {r.fingerprint for r in previous.extracted_rules}
    new_keys = {r.fingerprint for r in new.extracted_rules}
    comparison = ExtractionComparison(
        document_id=new.document_id or previous.document_id,
        fields=fields,
        rules_added=[r for r in new.extracted_rules if r.fingerprint not in previous_keys],
        rules_removed=[r for r in previous.extracted_rules if r.fingerprint not in new_keys],
        previous_rule_count=len(previous.extracted_rules),
        new_rule_count=len(new.extracted_rules),
    )
    logger.info(
        f"[COMPARE] {comparison.document_id}: {comparison.count(FieldChange.IMPROVED)} improved, "
        f"{comparison.count(FieldChange.CHANGED)} changed, {comparison.count(FieldChange.SAME)} same"
    )
    return comparison

"""
Rule Store interface.

The engine only needs to upsert deduplicated rules and look up the prior
extraction for a document; storage schema and transactions belong to the
implementation. Upserts for different documents may run concurrently.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import threading

from contract_engine.merge.models import UNRESOLVED, BusinessRule, ExtractionResult

logger = logging.getLogger(__name__)


@dataclass
class UpsertOutcome:
    """Result of upserting one document's rules."""
    document_id: str
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


def has_low_confidence(
    result: Optional[ExtractionResult],
    rules: Iterable[BusinessRule],
    min_confidence: float,
) -> bool:
    """True if a resolved field or a stored rule is below min_confidence."""
    if result is not None:
        for name, value in result.extracted_data.items():
            if value is not UNRESOLVED and result.confidence_per_field.get(name, 0.0) < min_confidence:
                return True
    return any(rule.confidence < min_confidence for rule in rules)


class RuleStore(ABC):
    """Persistence capability consumed by the pipeline."""

    @abstractmethod
    def upsert_rules(self, document_id: str, rules: Sequence[BusinessRule]) -> UpsertOutcome:
        """
        Insert new rules keyed by fingerprint.

        A known rule is updated (refs unioned, confidence raised, occurrences
        bumped) only when it brings new refs or a higher confidence. Exact
        duplicates are left as they are.
        """
        pass

    @abstractmethod
    def find_prior(self, document_id: str) -> Optional[ExtractionResult]:
        """Most recent stored ExtractionResult for the document, if any."""
        pass

    @abstractmethod
    def save_result(self, result: ExtractionResult) -> None:
        """Append a result; earlier results are retained for audit."""
        pass

    @abstractmethod
    def get_rules(self, document_id: str) -> List[BusinessRule]:
        pass

    @abstractmethod
    def find_low_confidence(self, min_confidence: float) -> List[str]:
        """IDs of stored documents whose latest result or rules fall below min_confidence."""
        pass


class InMemoryRuleStore(RuleStore):
    """Process-local store for tests and single-process use."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rules: Dict[str, Dict[str, Tuple[BusinessRule, int]]] = {}
        self._results: Dict[str, List[ExtractionResult]] = {}

    def upsert_rules(self, document_id, rules):
        outcome = UpsertOutcome(document_id=document_id)
        with self._lock:
            stored = self._rules.setdefault(document_id, {})
            for rule in rules:
                key = rule.fingerprint
                if key not in stored:
                    stored[key] = (rule, 1)
                    outcome.inserted += 1
                    continue

                existing, occurrences = stored[key]
                refs = existing.source_field_refs | rule.source_field_refs
                if refs == existing.source_field_refs and rule.confidence <= existing.confidence:
                    outcome.unchanged += 1
                    continue
                stored[key] = (
                    BusinessRule(
                        category=existing.category,
                        statement=existing.statement,
                        source_field_refs=refs,
                        confidence=max(existing.confidence, rule.confidence),
                    ),
                    occurrences + 1,
                )
                outcome.updated += 1
        logger.debug(
            f"Upserted rules for {document_id}: {outcome.inserted} new, "
            f"{outcome.updated} updated, {outcome.unchanged} unchanged"
        )
        return outcome

    def find_prior(self, document_id):
        with self._lock:
            history = self._results.get(document_id)
            return history[-1] if history else None

    def save_result(self, result):
        with self._lock:
            self._results.setdefault(result.document_id, []).append(result)

    def get_rules(self, document_id):
        with self._lock:
            return [rule for rule, _ in self._rules.get(document_id, {}).values()]

    def find_low_confidence(self, min_confidence):
        with self._lock:
            document_ids = list(dict.fromkeys(list(self._results) + list(self._rules)))
            return [
                document_id for document_id in document_ids
                if has_low_confidence(
                    self._results[document_id][-1] if self._results.get(document_id) else None,
                    [rule for rule, _ in self._rules.get(document_id, {}).values()],
                    min_confidence,
                )
            ]

    def occurrences(self, document_id: str, fingerprint: str) -> int:
        with self._lock:
            entry = self._rules.get(document_id, {}).get(fingerprint)
            return entry[1] if entry else 0

    def history(self, document_id: str) -> List[ExtractionResult]:
        with self._lock:
            return list(self._results.get(document_id, []))

"""
Result models shared by the AI adapter, merge engine, pipeline and stores.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
import hashlib
import re

from contract_engine.classification.classifier import ClassificationResult

NOT_SPECIFIED = "NOT SPECIFIED"


class _Unresolved:
    """Sentinel for a field no source could resolve."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNRESOLVED"

    def __reduce__(self):
        return (_Unresolved, ())

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


UNRESOLVED = _Unresolved()


def is_empty(value: Any) -> bool:
    """True for None, UNRESOLVED, blank strings, "NOT SPECIFIED" and empty containers."""
    if value is None or value is UNRESOLVED:
        return True
    if isinstance(value, str):
        stripped = value.strip()
        return not stripped or stripped.upper() == NOT_SPECIFIED
    if isinstance(value, (list, dict, tuple, set)):
        return len(value) == 0
    return False


def normalize_statement(statement: str) -> str:
    return re.sub(r'\s+', ' ', (statement or "").strip())


def normalize_category(category: str) -> str:
    return (category or "").strip().casefold() or "general"


def rule_fingerprint(category: str, statement: str) -> str:
    """Identity of a rule: (case-folded category, normalized case-folded statement)."""
    key = f"{normalize_category(category)}|{normalize_statement(statement).casefold()}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class BusinessRule:
    """A discrete contractual constraint."""
    category: str
    statement: str
    source_field_refs: FrozenSet[str] = frozenset()
    confidence: float = 0.7

    @classmethod
    def create(
        cls,
        category: str,
        statement: str,
        source_field_refs: Iterable[str] = (),
        confidence: float = 0.7,
    ) -> "BusinessRule":
        """Build a normalized rule (trimmed statement, case-folded category, clamped confidence)."""
        return cls(
            category=normalize_category(category),
            statement=normalize_statement(statement),
            source_field_refs=frozenset(r for r in source_field_refs if r),
            confidence=min(1.0, max(0.0, float(confidence))),
        )

    @property
    def fingerprint(self) -> str:
        return rule_fingerprint(self.category, self.statement)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "statement": self.statement,
            "source_field_refs": sorted(self.source_field_refs),
            "confidence": self.confidence,
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessRule":
        return cls.create(
            category=data.get("category", ""),
            statement=data.get("statement", ""),
            source_field_refs=data.get("source_field_refs", []),
            confidence=data.get("confidence", 0.7),
        )


@dataclass
class AIExtractionResult:
    """Parsed output of one successful AI extraction call."""
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    confidence: Dict[str, float] = field(default_factory=dict)
    extracted_rules: List[BusinessRule] = field(default_factory=list)
    raw_notes: Optional[str] = None
    usage: Dict[str, int] = field(default_factory=lambda: {"input_units": 0, "output_units": 0})
    backend: Optional[str] = None
    citations: List[Any] = field(default_factory=list)
    # Every backend attempt, in order: {"backend", "attempt", "outcome"}
    attempts: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ExtractionResult:
    """
    The persisted unit of one extraction attempt.

    Every key in extracted_data has a matching key in confidence_per_field.
    Unresolved fields hold the UNRESOLVED sentinel with confidence 0.
    """
    document_id: str
    extracted_data: Dict[str, Any]
    confidence_per_field: Dict[str, float]
    extracted_rules: List[BusinessRule]
    structured_extraction: ClassificationResult

    # Provenance per field: "ai", "pattern", "previous" or "unresolved"
    field_sources: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    ai_notes: Optional[str] = None

    # Audit only, excluded from equality
    usage: Dict[str, int] = field(default_factory=dict, compare=False)
    attempts: List[Dict[str, Any]] = field(default_factory=list, compare=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc), compare=False)

    @property
    def unresolved_fields(self) -> List[str]:
        return [name for name, value in self.extracted_data.items() if value is UNRESOLVED]

    @property
    def document_type(self):
        return self.structured_extraction.document_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "document_type": self.structured_extraction.document_type.value,
            "extracted_data": {
                k: (None if v is UNRESOLVED else v) for k, v in self.extracted_data.items()
            },
            "unresolved_fields": self.unresolved_fields,
            "confidence_per_field": dict(self.confidence_per_field),
            "extracted_rules": [r.to_dict() for r in self.extracted_rules],
            "structured_extraction": self.structured_extraction.to_dict(),
            "field_sources": dict(self.field_sources),
            "warnings": list(self.warnings),
            "ai_notes": self.ai_notes,
            "usage": dict(self.usage),
            "attempts": list(self.attempts),
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionResult":
        unresolved = set(data.get("unresolved_fields", []))
        extracted = {
            k: (UNRESOLVED if k in unresolved else v)
            for k, v in data.get("extracted_data", {}).items()
        }
        timestamp = data.get("timestamp")
        return cls(
            document_id=data["document_id"],
            extracted_data=extracted,
            confidence_per_field={k: float(v) for k, v in data.get("confidence_per_field", {}).items()},
            extracted_rules=[BusinessRule.from_dict(r) for r in data.get("extracted_rules", [])],
            structured_extraction=ClassificationResult.from_dict(data["structured_extraction"]),
            field_sources=dict(data.get("field_sources", {})),
            warnings=list(data.get("warnings", [])),
            ai_notes=data.get("ai_notes"),
            usage=dict(data.get("usage", {})),
            attempts=list(data.get("attempts", [])),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(timezone.utc),
        )

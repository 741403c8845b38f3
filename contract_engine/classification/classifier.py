"""
Cue-based document classifier.

Keyword matching (not LLM) for consistency: every cue is checked
independently, weights are summed per document type, and the winning type's
share of the total score becomes the confidence.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import re

from contract_engine.classification.cues import Cue, DocumentType, DEFAULT_CUES, compile_cue_pattern
from contract_engine.exceptions import ClassificationAmbiguous

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResult:
    """Outcome of classifying one document."""
    document_type: DocumentType
    confidence: float
    detected_cues: List[str] = field(default_factory=list)

    # Diagnostics
    penalized_by: List[str] = field(default_factory=list)
    alternative_types: List[Tuple[DocumentType, float]] = field(default_factory=list)
    scores: Dict[str, float] = field(default_factory=dict)
    ambiguous: bool = False

    @property
    def is_unclassified(self) -> bool:
        return self.document_type is DocumentType.UNCLASSIFIED

    def to_dict(self) -> Dict:
        return {
            "document_type": self.document_type.value,
            "confidence": self.confidence,
            "detected_cues": list(self.detected_cues),
            "penalized_by": list(self.penalized_by),
            "alternative_types": [
                {"document_type": t.value, "confidence": c} for t, c in self.alternative_types
            ],
            "scores": dict(self.scores),
            "ambiguous": self.ambiguous,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ClassificationResult":
        return cls(
            document_type=DocumentType(data["document_type"]),
            confidence=float(data.get("confidence", 0.0)),
            detected_cues=list(data.get("detected_cues", [])),
            penalized_by=list(data.get("penalized_by", [])),
            alternative_types=[
                (DocumentType(a["document_type"]), float(a["confidence"]))
                for a in data.get("alternative_types", [])
            ],
            scores=dict(data.get("scores", {})),
            ambiguous=bool(data.get("ambiguous", False)),
        )


def unclassified(ambiguous: bool = False, **kwargs) -> ClassificationResult:
    return ClassificationResult(
        document_type=DocumentType.UNCLASSIFIED,
        confidence=0.0,
        ambiguous=ambiguous,
        **kwargs
    )


class CueClassifier:
    """
    Classify documents by summing weighted cue matches per document type.

    Args:
        cues: Cue registry (defaults to the built-in energy contract cues)
        scan_limit: Only the first N characters are scanned (None = whole text)
        max_alternatives: Number of runner-up types reported

    Regex cues that do not compile are logged and skipped.
    """

    def __init__(
        self,
        cues: Optional[Sequence[Cue]] = None,
        scan_limit: Optional[int] = None,
        max_alternatives: int = 2,
    ):
        self.cues = [c for c in (DEFAULT_CUES if cues is None else cues) if self._usable(c)]
        self.scan_limit = scan_limit
        self.max_alternatives = max_alternatives

    @staticmethod
    def _usable(cue: Cue) -> bool:
        if not cue.is_regex:
            return True
        try:
            compile_cue_pattern(cue.pattern)
        except re.error as e:
            logger.warning(f"Invalid cue pattern skipped: {cue.pattern!r} ({e})")
            return False
        return True

    def classify(self, text: str, filename: str = "", strict: bool = False) -> ClassificationResult:
        """
        Classify document text.

        Args:
            text: Document text
            filename: Optional filename, cue hits there score half weight
            strict: Raise on a tie instead of returning an ambiguous Unclassified

        Returns:
            ClassificationResult. Never raises for unmatched text.

        Raises:
            ClassificationAmbiguous: strict=True and two or more types tied
        """
        text = text or ""
        if self.scan_limit is not None:
            text = text[:self.scan_limit]

        raw_scores: Dict[DocumentType, float] = {}
        matched: Dict[DocumentType, List[str]] = {}
        penalized: Dict[DocumentType, List[str]] = {}

        for cue in self.cues:
            if cue.applies_to is DocumentType.UNCLASSIFIED:
                continue
            if cue.matches(text):
                raw_scores[cue.applies_to] = raw_scores.get(cue.applies_to, 0.0) + cue.weight
                bucket = penalized if cue.is_negative else matched
                bucket.setdefault(cue.applies_to, []).append(cue.identifier)
            if not cue.is_negative and cue.matches_filename(filename):
                raw_scores[cue.applies_to] = raw_scores.get(cue.applies_to, 0.0) + cue.weight / 2
                matched.setdefault(cue.applies_to, []).append(f"filename:{cue.identifier}")

        # Penalties cannot push a type below zero
        scores = {t: max(0.0, s) for t, s in raw_scores.items()}
        total = sum(scores.values())
        score_view = {t.value: s for t, s in scores.items()}

        if total <= 0:
            logger.info("[CLASSIFY] No cues matched, document is unclassified")
            return unclassified(scores=score_view)

        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        best_type, best_score = ranked[0]
        tied = [t for t, s in ranked if s == best_score]

        if len(tied) > 1:
            if strict:
                raise ClassificationAmbiguous(
                    f"Document types tied at score {best_score}: {[t.value for t in tied]}",
                    candidates=[t.value for t in tied],
                )
            logger.info(
                f"[CLASSIFY] Tie between {[t.value for t in tied]} "
                f"(score={best_score}), returning unclassified"
            )
            alternatives = [(t, round(s / total, 4)) for t, s in ranked if s > 0]
            return unclassified(
                ambiguous=True,
                alternative_types=alternatives[:max(self.max_alternatives, len(tied))],
                scores=score_view,
            )

        confidence = best_score / total
        alternatives = [
            (t, s / total) for t, s in ranked[1:] if s > 0
        ][:self.max_alternatives]

        logger.info(
            f"[CLASSIFY] {best_type.value} (confidence: {confidence:.0%}), "
            f"cues: {matched.get(best_type, [])}"
        )

        return ClassificationResult(
            document_type=best_type,
            confidence=confidence,
            detected_cues=matched.get(best_type, []),
            penalized_by=penalized.get(best_type, []),
            alternative_types=alternatives,
            scores=score_view,
        )


def create_classifier(cues: Optional[Sequence[Cue]] = None, scan_limit: Optional[int] = 5000) -> CueClassifier:
    """Create a classifier that scans the document header (first 5000 chars by default)."""
    return CueClassifier(cues=cues, scan_limit=scan_limit)

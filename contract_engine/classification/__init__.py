"""
Classification module - assigns a DocumentType from raw text using weighted cues.
"""

from contract_engine.classification.cues import (
    Cue,
    DocumentType,
    DEFAULT_CUES,
    build_cue_registry,
)
from contract_engine.classification.classifier import (
    ClassificationResult,
    CueClassifier,
    create_classifier,
)

__all__ = [
    "Cue",
    "DocumentType",
    "DEFAULT_CUES",
    "build_cue_registry",
    "ClassificationResult",
    "CueClassifier",
    "create_classifier",
]

"""Validation gates on merged extraction output. Gates only warn, never fail."""
from typing import Any, Dict, List, Optional

from contract_engine.classification.cues import DocumentType
from contract_engine.extraction.field_registry import FieldRegistry
from contract_engine.merge.models import is_empty


def validate_extraction(
    extracted_data: Dict[str, Any],
    document_type: DocumentType,
    registry: Optional[FieldRegistry] = None,
) -> List[str]:
    """
    Check mandatory fields and unit consistency.

    Returns:
        Warning messages (empty when everything passes)
    """
    registry = registry or FieldRegistry()
    warnings = []

    for name in registry.mandatory_for(document_type):
        if is_empty(extracted_data.get(name)):
            warnings.append(f"Missing mandatory field: {name}")

    for name, value in extracted_data.items():
        definition = registry.get(name)
        if definition is None or not definition.required_units or is_empty(value):
            continue
        text = str(value)
        if not any(unit.lower() in text.lower() for unit in definition.required_units):
            units = " or ".join(definition.required_units)
            warnings.append(f"Field {name} should include unit: {units}")

    return warnings

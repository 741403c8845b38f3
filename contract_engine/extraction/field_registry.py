"""
Field definitions and the per-document-type field sets.

Each field carries the regex patterns used for candidate extraction. Patterns
expose the value through a named group (value, val, name, date or rule) or,
failing that, the first capture group.
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from contract_engine.classification.cues import DocumentType


@dataclass(frozen=True)
class FieldDefinition:
    """A structured field and how to find it in text."""
    name: str
    description: str
    patterns: Tuple[str, ...] = ()
    # At least one of these must appear in the value (validation warning otherwise)
    required_units: Tuple[str, ...] = ()


_DATE = r'(?:[A-Z][a-z]+\s+\d{1,2},?\s+\d{4}|\d{1,2}/\d{1,2}/\d{4})'
_PARTY = r'[A-Z][\w&.,\- ]+?'

FIELD_DEFINITIONS: Dict[str, FieldDefinition] = {f.name: f for f in [
    FieldDefinition(
        "system_capacity", "Rated system capacity",
        patterns=(
            r'(?:rated|system|nameplate)\s+capacity\s*(?:of|:|is)?\s*(?P<value>[\d,.]+\s*(?:kW|MW))\b',
            r'(?P<value>[\d,.]+\s*(?:kW|MW))\s+(?:system|facility|installation)',
        ),
        required_units=("kW", "MW"),
    ),
    FieldDefinition(
        "contract_term", "Contract term length",
        patterns=(
            r'term\s+of\s+(?P<value>\d+\s*(?:years?|months?))',
            r'(?P<value>\d+)[\s-]+year\s+term',
        ),
    ),
    FieldDefinition(
        "base_rate", "Base energy rate",
        patterns=(
            r'(?:base|energy)\s+rate\s*(?:of|:|is)?\s*(?P<value>\$\s*[\d.,]+\s*(?:per|/)\s*kWh)',
        ),
        required_units=("kWh",),
    ),
    FieldDefinition(
        "annual_escalation", "Annual rate escalation",
        patterns=(
            r'escalat\w*\s+(?:of|at|by)?\s*(?P<value>[\d.]+\s*%)',
            r'(?P<value>[\d.]+\s*%)\s+(?:annual|per\s+year|per\s+annum)\s+escalat',
        ),
        required_units=("%",),
    ),
    FieldDefinition(
        "efficiency_warranty", "Guaranteed electrical efficiency",
        patterns=(
            r'efficiency\s+(?:warranty|guarantee)\s*(?:of|:|is)?\s*(?P<value>[\d.]+\s*%)',
        ),
        required_units=("%",),
    ),
    FieldDefinition(
        "availability_guarantee", "Guaranteed system availability",
        patterns=(
            r'availability\s+(?:guarantee|of)\s*(?:of|:|is)?\s*(?P<value>[\d.]+\s*%)',
        ),
        required_units=("%",),
    ),
    FieldDefinition(
        "buyer", "Purchasing party",
        patterns=(
            rf'(?:Customer|Buyer|Purchaser|Lessee)\s*:\s*(?P<name>{_PARTY})\s*(?:\n|;|$)',
        ),
    ),
    FieldDefinition(
        "seller", "Selling party",
        patterns=(
            rf'(?:Seller|Provider|Supplier|Lessor)\s*:\s*(?P<name>{_PARTY})\s*(?:\n|;|$)',
        ),
    ),
    FieldDefinition(
        "effective_date", "Effective date",
        patterns=(
            rf'effective\s+(?:as\s+of\s+)?(?:date\s*:?\s*)?(?P<date>{_DATE})',
            rf'dated\s+(?:as\s+of\s+)?({_DATE})',
        ),
    ),
    FieldDefinition(
        "system_type", "Generation technology",
        patterns=(
            r'(?P<value>solid\s+oxide\s+fuel\s+cells?|fuel\s+cells?|solar\s+PV|battery\s+storage)',
        ),
    ),
    FieldDefinition(
        "voltage", "Interconnection voltage",
        patterns=(
            r'(?P<value>\d+(?:\.\d+)?\s*kV)\b',
            r'(?P<val>\d{3}\s*V)\s+(?:service|interconnection)',
        ),
        required_units=("V",),
    ),
]}

_COMMERCIAL = ["buyer", "seller", "effective_date", "contract_term"]
_TECHNICAL = ["system_capacity", "system_type", "voltage"]
_PERFORMANCE = ["efficiency_warranty", "availability_guarantee"]
_PRICING = ["base_rate", "annual_escalation"]

FIELDS_BY_TYPE: Dict[DocumentType, List[str]] = {
    DocumentType.FRAMEWORK_AGREEMENT: _COMMERCIAL + _PRICING + _PERFORMANCE,
    DocumentType.LEASE_SUPPLEMENT: _COMMERCIAL + _TECHNICAL + _PRICING,
    DocumentType.EPC_ADDENDUM: _COMMERCIAL + _TECHNICAL,
    DocumentType.PURCHASE_AGREEMENT: _COMMERCIAL + _TECHNICAL + _PRICING + _PERFORMANCE,
    DocumentType.OM_AGREEMENT: _COMMERCIAL + _PERFORMANCE,
}

# Fallback for Unclassified documents
GENERIC_FIELDS: List[str] = _COMMERCIAL + ["system_capacity", "base_rate"]

MANDATORY_FIELDS: Dict[DocumentType, List[str]] = {
    DocumentType.FRAMEWORK_AGREEMENT: ["buyer", "seller", "effective_date"],
    DocumentType.LEASE_SUPPLEMENT: ["buyer", "system_capacity", "contract_term"],
    DocumentType.EPC_ADDENDUM: ["buyer", "system_capacity"],
    DocumentType.PURCHASE_AGREEMENT: ["buyer", "seller", "base_rate", "contract_term"],
    DocumentType.OM_AGREEMENT: ["buyer", "availability_guarantee"],
}


class FieldRegistry:
    """Lookup of field definitions scoped by document type."""

    def __init__(
        self,
        definitions: Optional[Dict[str, FieldDefinition]] = None,
        fields_by_type: Optional[Dict[DocumentType, Sequence[str]]] = None,
        generic_fields: Optional[Sequence[str]] = None,
        mandatory_fields: Optional[Dict[DocumentType, Sequence[str]]] = None,
    ):
        self.definitions = dict(FIELD_DEFINITIONS if definitions is None else definitions)
        self.fields_by_type = dict(FIELDS_BY_TYPE if fields_by_type is None else fields_by_type)
        self.generic_fields = list(GENERIC_FIELDS if generic_fields is None else generic_fields)
        self.mandatory_fields = dict(MANDATORY_FIELDS if mandatory_fields is None else mandatory_fields)

    def fields_for(self, document_type: DocumentType) -> List[FieldDefinition]:
        """Field set for a type; Unclassified (or unknown) falls back to the generic set."""
        names = self.fields_by_type.get(document_type) or self.generic_fields
        return [self.definitions[n] for n in names if n in self.definitions]

    def mandatory_for(self, document_type: DocumentType) -> List[str]:
        return list(self.mandatory_fields.get(document_type, []))

    def get(self, name: str) -> Optional[FieldDefinition]:
        return self.definitions.get(name)

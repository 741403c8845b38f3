"""
Prompt templates for AI-assisted contract extraction.

Pattern candidates are embedded as hints so the model can confirm or
correct them instead of searching blind.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from contract_engine.classification.cues import DocumentType
from contract_engine.extraction.candidate_extractor import CandidateField, group_by_field
from contract_engine.extraction.field_registry import FieldDefinition

MAX_HINTS_PER_FIELD = 3

SYSTEM_PROMPT = """You are an expert business rules analyst specializing in energy contracts and service agreements.
Extract specific contract values AND actionable business rules from contract documents."""

EXTRACTION_PROMPT = """{system}

DOCUMENT: {filename}
DOCUMENT TYPE: {document_type}

**Extract the following fields:**
{field_lines}
{hint_section}
**Rules:**
- If a field is not found, use "NOT SPECIFIED"
- Provide a confidence score (0-1) for each field
- Extract exact values from the document, don't infer
- Keep units with numeric values (kW, $/kWh, %, kV)
- Each business rule needs a category (financial, technical, operating, compliance) and a single-sentence statement
- List the field names each rule depends on in "sourceFields"

**Return valid JSON only** (no markdown, no code blocks):
{{
  "extractedData": {{"<field_name>": "value", ...}},
  "confidence": {{"<field_name>": 0.95, ...}},
  "extractedRules": [
    {{"category": "financial", "statement": "rule text", "sourceFields": ["base_rate"], "confidence": 0.9}}
  ],
  "notes": "any relevant observations"
}}"""


@dataclass
class ExtractionHints:
    """What the AI should look for in one document."""
    document_type: DocumentType = DocumentType.UNCLASSIFIED
    fields: List[FieldDefinition] = field(default_factory=list)
    candidates: List[CandidateField] = field(default_factory=list)
    filename: Optional[str] = None


def format_candidate_hints(
    candidates: Sequence[CandidateField],
    max_per_field: int = MAX_HINTS_PER_FIELD,
) -> str:
    """Up to max_per_field candidate values per field, as prompt lines."""
    lines = []
    for name, field_candidates in group_by_field(list(candidates)).items():
        values = list(dict.fromkeys(c.raw_value for c in field_candidates))[:max_per_field]
        quoted = ", ".join(f'"{v}"' for v in values)
        lines.append(f"- {name}: {quoted}")
    return "\n".join(lines)


def build_extraction_prompt(hints: ExtractionHints) -> str:
    """Render the extraction instructions for one document."""
    if hints.fields:
        field_lines = "\n".join(f"- {f.name}: {f.description}" for f in hints.fields)
    else:
        field_lines = "- any contract values you can identify (use snake_case field names)"

    candidate_lines = format_candidate_hints(hints.candidates)
    hint_section = ""
    if candidate_lines:
        hint_section = (
            "\n**Candidate values found by pattern matching (verify, do not copy blindly):**\n"
            f"{candidate_lines}\n"
        )

    return EXTRACTION_PROMPT.format(
        system=SYSTEM_PROMPT,
        filename=hints.filename or "document",
        document_type=hints.document_type.value,
        field_lines=field_lines,
        hint_section=hint_section,
    )


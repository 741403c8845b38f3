"""
AI Extraction Adapter.

Owns the fallback and retry policy over an ordered list of backends:

- Throttled/timeout: one retry with exponential backoff on the same backend,
  then fall through to the next backend
- Auth, payload-too-large, unavailable: fall through immediately
- Every backend failed: AllBackendsExhausted (never fabricated data)
- Unparseable response: AIResponseParseError, reported separately from call failures

API path selection is a pure function of payload size.
"""
from enum import Enum
from typing import Annotated, Any, Callable, Dict, List, Optional, Sequence, Union
import json
import logging
import re
import time

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from contract_engine.ai.backends import AIBackend, BackendResponse, DocumentPayload
from contract_engine.ai.prompts import ExtractionHints, build_extraction_prompt
from contract_engine.config import EngineConfig
from contract_engine.exceptions import (
    AIBackendError,
    AIBackendThrottled,
    AIPayloadTooLarge,
    AIResponseParseError,
    AllBackendsExhausted,
    ConfigurationError,
)
from contract_engine.merge.models import AIExtractionResult, BusinessRule, is_empty

logger = logging.getLogger(__name__)

# One initial call plus one retry on throttling
MAX_ATTEMPTS_PER_BACKEND = 2
DEFAULT_RULE_CONFIDENCE = 0.7


class ApiPath(Enum):
    """Which request flavour a payload size allows."""
    CITATIONS = "citations"
    STANDARD = "standard"


def select_api_path(size_bytes: int, threshold_bytes: int, hard_max_bytes: int) -> ApiPath:
    """
    Pick the API path for a payload size.

    Raises:
        AIPayloadTooLarge: size exceeds the hard cap (checked before any network call)
    """
    if size_bytes > hard_max_bytes:
        raise AIPayloadTooLarge(
            f"Document is {size_bytes / (1024 * 1024):.1f}MB, "
            f"maximum is {hard_max_bytes / (1024 * 1024):.1f}MB"
        )
    if size_bytes <= threshold_bytes:
        return ApiPath.CITATIONS
    return ApiPath.STANDARD


# =============================================================================
# Response parsing
# =============================================================================

class _RuleModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    category: Optional[str] = None
    statement: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    condition: Optional[str] = None
    action: Optional[str] = None
    source_fields: List[str] = Field(default_factory=list, alias="sourceFields")
    confidence: Optional[float] = None

    def rule_statement(self) -> str:
        if self.statement:
            return self.statement
        if self.condition and self.action:
            return f"IF {self.condition} THEN {self.action}"
        return self.description or self.name or ""


class StructuredResponse(BaseModel):
    """Expected shape of the model's JSON answer."""
    model_config = ConfigDict(extra="ignore")

    extractedData: Dict[str, Any]
    confidence: Dict[str, Annotated[float, Field(ge=0.0, le=1.0)]] = Field(default_factory=dict)
    notes: Optional[Any] = None
    extractedRules: List[_RuleModel] = Field(default_factory=list)


_CAMEL_BOUNDARY = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_CODE_FENCE = re.compile(r'```(?:json)?\s*(.*?)```', re.DOTALL)


def to_field_name(key: str) -> str:
    """Normalize camelCase / spaced keys to snake_case field names."""
    key = _CAMEL_BOUNDARY.sub('_', key.strip())
    return re.sub(r'[\s\-]+', '_', key).lower()


def _json_body(text: str) -> str:
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    start, end = text.find('{'), text.rfind('}')
    if start == -1 or end <= start:
        raise ValueError("no JSON object found")
    return text[start:end + 1]


def parse_structured_response(text: str, backend: Optional[str] = None) -> AIExtractionResult:
    """
    Parse the backend's structured text.

    Tolerates markdown code fences and surrounding prose. "NOT SPECIFIED"
    values are dropped so they count as missing.

    Raises:
        AIResponseParseError: text is not valid per the expected shape
    """
    try:
        parsed = StructuredResponse.model_validate(json.loads(_json_body(text or "")))
    except (ValueError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        raise AIResponseParseError(
            f"Unparseable response from {backend or 'backend'}: {e}",
            backend=backend,
            raw_text=text or "",
        ) from e

    extracted, confidence = {}, {}
    for key, value in parsed.extractedData.items():
        if is_empty(value):
            continue
        name = to_field_name(key)
        extracted[name] = value
        if key in parsed.confidence:
            confidence[name] = parsed.confidence[key]

    rules = []
    for raw_rule in parsed.extractedRules:
        statement = raw_rule.rule_statement()
        if is_empty(statement):
            continue
        rule_conf = DEFAULT_RULE_CONFIDENCE if raw_rule.confidence is None else raw_rule.confidence
        rules.append(BusinessRule.create(
            category=raw_rule.category or "general",
            statement=statement,
            source_field_refs=[to_field_name(f) for f in raw_rule.source_fields],
            confidence=rule_conf,
        ))

    notes = parsed.notes
    if notes is not None and not isinstance(notes, str):
        notes = json.dumps(notes)

    return AIExtractionResult(
        extracted_data=extracted,
        confidence=confidence,
        extracted_rules=rules,
        raw_notes=notes,
        backend=backend,
    )


# =============================================================================
# Adapter
# =============================================================================

class AIExtractionAdapter:
    """
    Normalize extraction calls over interchangeable backends.

    Usage:
        adapter = AIExtractionAdapter(create_backends(config), config)
        result = adapter.extract(document_bytes, ExtractionHints(...))
    """

    def __init__(
        self,
        backends: Sequence[AIBackend],
        config: Optional[EngineConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not backends:
            raise ConfigurationError("AIExtractionAdapter needs at least one backend")
        self.backends = list(backends)
        self.config = config or EngineConfig()
        self._sleep = sleep

    @property
    def min_requests_per_minute(self) -> int:
        """Most restrictive published request limit among the backends."""
        return min(b.requests_per_minute for b in self.backends)

    def extract(
        self,
        document: Union[DocumentPayload, str, bytes],
        hints: Optional[ExtractionHints] = None,
        start_after: Optional[str] = None,
    ) -> AIExtractionResult:
        """
        Extract structured data and rules from a document.

        Args:
            document: Payload, plain text, or raw PDF bytes
            hints: Document type, expected fields and pattern candidates
            start_after: Skip backends up to and including this one
                (e.g. the backend named by an AIResponseParseError)

        Returns:
            AIExtractionResult from the first backend that succeeds

        Raises:
            AIPayloadTooLarge: over the hard cap, or rejected as too large by every backend
            AIResponseParseError: a backend answered with unparseable text
            AllBackendsExhausted: every backend failed, or none is left after start_after
        """
        payload = self._as_payload(document)
        path = select_api_path(
            payload.size_bytes,
            self.config.size_threshold_bytes,
            self.config.hard_max_size_bytes,
        )
        backends = self._backends_after(start_after)
        if not backends:
            raise AllBackendsExhausted(f"No backends left after {start_after}")
        instructions = build_extraction_prompt(hints or ExtractionHints(filename=payload.filename))

        attempts: List[Dict[str, Any]] = []
        failures: List[AIBackendError] = []

        for backend in backends:
            logger.info(f"[AI] Trying {backend.name} ({path.value} path, {payload.size_bytes} bytes)")
            try:
                response = self._submit_with_retry(
                    backend, payload, instructions, path is ApiPath.CITATIONS, attempts
                )
            except AIBackendError as e:
                logger.warning(f"[AI] {backend.name} failed ({e.kind}): {e}, falling through")
                failures.append(e)
                continue

            try:
                result = parse_structured_response(response.structured_text, backend=backend.name)
            except AIResponseParseError as e:
                attempts[-1]["outcome"] = e.kind
                e.attempts = attempts
                logger.warning(f"[AI] {backend.name} returned an unparseable response")
                raise
            result.usage = dict(response.usage)
            result.citations = list(response.citations)
            result.attempts = attempts
            logger.info(
                f"[AI] {backend.name} extracted {len(result.extracted_data)} fields, "
                f"{len(result.extracted_rules)} rules "
                f"({result.usage.get('input_units', 0)} in / {result.usage.get('output_units', 0)} out)"
            )
            return result

        if failures and all(isinstance(e, AIPayloadTooLarge) for e in failures):
            raise AIPayloadTooLarge("Every backend rejected the document as too large")

        summary = ", ".join(f"{a['backend']}#{a['attempt']}={a['outcome']}" for a in attempts)
        logger.error(f"[AI] All backends exhausted: {summary}")
        raise AllBackendsExhausted(f"All backends failed: {summary}", attempts=attempts)

    def _submit_with_retry(
        self,
        backend: AIBackend,
        payload: DocumentPayload,
        instructions: str,
        with_citations: bool,
        attempts: List[Dict[str, Any]],
    ) -> BackendResponse:
        backoff = self.config.retry_backoff_seconds

        def log_retry(retry_state):
            logger.warning(
                f"[AI] {backend.name} throttled, retrying in "
                f"{retry_state.next_action.sleep:.1f}s"
            )

        retryer = Retrying(
            retry=retry_if_exception_type(AIBackendThrottled),
            stop=stop_after_attempt(MAX_ATTEMPTS_PER_BACKEND),
            wait=wait_exponential(multiplier=backoff, max=backoff * 8),
            sleep=self._sleep,
            before_sleep=log_retry,
            reraise=True,
        )
        return retryer(self._attempt, backend, payload, instructions, with_citations, attempts)

    @staticmethod
    def _attempt(backend, payload, instructions, with_citations, attempts) -> BackendResponse:
        number = sum(1 for a in attempts if a["backend"] == backend.name) + 1
        try:
            response = backend.submit(payload, instructions, with_citations=with_citations)
        except AIBackendError as e:
            if e.backend is None:
                e.backend = backend.name
            attempts.append({
                "backend": backend.name, "attempt": number,
                "outcome": e.kind, "message": str(e),
            })
            raise
        attempts.append({"backend": backend.name, "attempt": number, "outcome": "success"})
        return response

    def _backends_after(self, name: Optional[str]) -> List[AIBackend]:
        if name is None:
            return list(self.backends)
        names = [b.name for b in self.backends]
        if name not in names:
            raise ConfigurationError(f"Unknown backend: {name}")
        return self.backends[names.index(name) + 1:]

    @staticmethod
    def _as_payload(document) -> DocumentPayload:
        if isinstance(document, DocumentPayload):
            return document
        if isinstance(document, bytes):
            return DocumentPayload(data=document)
        return DocumentPayload(text=str(document))

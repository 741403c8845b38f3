"""
Document Extraction Pipeline - single entry point for one document.

Complete Flow:
==============
1. LOAD      → document bytes to text (Unstructured.io for PDFs)
2. CLASSIFY  → cue-based document type
3. EXTRACT   → pattern candidates for the type's field set
4. AI        → structured extraction with candidate hints (optional)
5. MERGE     → field-by-field reconciliation, monotonic merge with prior result
6. STORE     → rule upsert and result history (optional)

The pipeline fails outright only when every AI backend is exhausted or the
payload is too large; parse errors and pattern misses degrade to a
pattern-only result with warnings.
"""
from dataclasses import replace
from typing import List, Optional, Sequence
import logging
import time

from contract_engine.ai.adapter import AIExtractionAdapter, select_api_path
from contract_engine.ai.backends import AIBackend, create_backends
from contract_engine.ai.prompts import ExtractionHints
from contract_engine.classification.classifier import ClassificationResult, CueClassifier, create_classifier
from contract_engine.config import EngineConfig
from contract_engine.exceptions import AIResponseParseError, ConfigurationError
from contract_engine.extraction.candidate_extractor import CandidateExtractor
from contract_engine.extraction.field_registry import FieldRegistry
from contract_engine.extraction.validation import validate_extraction
from contract_engine.ingestion.document_loader import Document, DocumentLoader
from contract_engine.merge.merge_engine import ExtractionComparison, MergeEngine, compare_extractions
from contract_engine.merge.models import AIExtractionResult, ExtractionResult
from contract_engine.storage.rule_store import RuleStore

logger = logging.getLogger(__name__)


class ExtractionPipeline:
    """
    Classification and rule extraction for a single document.

    Usage:
        pipeline = create_pipeline(EngineConfig.from_settings())
        result = pipeline.classify_and_extract(Document.from_path("lease_supplement.pdf"))
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        classifier: Optional[CueClassifier] = None,
        extractor: Optional[CandidateExtractor] = None,
        adapter: Optional[AIExtractionAdapter] = None,
        merge_engine: Optional[MergeEngine] = None,
        rule_store: Optional[RuleStore] = None,
        loader: Optional[DocumentLoader] = None,
        registry: Optional[FieldRegistry] = None,
    ):
        self.config = config or EngineConfig()
        self.registry = registry or FieldRegistry()
        self.classifier = classifier or create_classifier()
        self.extractor = extractor or CandidateExtractor(self.registry)
        self.adapter = adapter
        self.merge_engine = merge_engine or MergeEngine(self.config, self.registry)
        self.rule_store = rule_store
        self.loader = loader or DocumentLoader()

    @property
    def ai_enabled(self) -> bool:
        return self.config.ai_extraction_enabled and self.adapter is not None

    @property
    def min_requests_per_minute(self) -> Optional[int]:
        return self.adapter.min_requests_per_minute if self.ai_enabled else None

    def classify(self, text: str, filename: str = "", strict: bool = False) -> ClassificationResult:
        return self.classifier.classify(text, filename, strict=strict)

    def classify_and_extract(self, document: Document) -> ExtractionResult:
        """
        Run the full pipeline for one document.

        Args:
            document: Document with bytes and/or text

        Returns:
            ExtractionResult (possibly with unresolved fields and warnings)

        Raises:
            AIPayloadTooLarge: payload over the hard cap (checked before any work)
            AllBackendsExhausted: every AI backend failed
            DocumentLoadError: document could not be read
        """
        start_time = time.time()
        name = document.filename or document.document_id
        warnings: List[str] = []

        if self.ai_enabled:
            select_api_path(
                document.size_bytes,
                self.config.size_threshold_bytes,
                self.config.hard_max_size_bytes,
            )

        logger.info(f"[1/5] Loading {name}")
        text = self.loader.load_text(document)

        logger.info("[2/5] Classifying document")
        classification = self.classifier.classify(text, document.filename)
        if classification.ambiguous:
            warnings.append("Document type is ambiguous; using generic field set")

        logger.info("[3/5] Extracting pattern candidates")
        candidates = self.extractor.extract_candidates(text, classification.document_type)
        fields = self.registry.fields_for(classification.document_type)

        ai_result: Optional[AIExtractionResult] = None
        parse_attempts: List[dict] = []
        if self.ai_enabled:
            logger.info("[4/5] Running AI extraction")
            hints = ExtractionHints(
                document_type=classification.document_type,
                fields=fields,
                candidates=candidates,
                filename=document.filename,
            )
            try:
                ai_result = self.adapter.extract(self.loader.to_payload(document), hints)
            except AIResponseParseError as e:
                logger.warning(f"[AI] {e}; continuing with pattern-only merge")
                parse_attempts = e.attempts
                warnings.append(f"AI response could not be parsed ({e.backend}); pattern-only result")
        else:
            logger.info("[4/5] Skipping AI extraction (disabled)")
            warnings.append("AI extraction disabled; pattern-only result")

        logger.info("[5/5] Merging extraction signals")
        previous = self.rule_store.find_prior(document.document_id) if self.rule_store else None
        result = self.merge_engine.merge(
            classification,
            candidates,
            ai_result,
            previous=previous,
            document_id=document.document_id,
            expected_fields=[f.name for f in fields],
        )
        warnings.extend(validate_extraction(result.extracted_data, classification.document_type, self.registry))
        result = replace(result, warnings=warnings, attempts=result.attempts or parse_attempts)

        if self.rule_store is not None:
            self.rule_store.upsert_rules(document.document_id, result.extracted_rules)
            self.rule_store.save_result(result)

        logger.info(
            f"[COMPLETE] {name}: {classification.document_type.value}, "
            f"{len(result.extracted_data) - len(result.unresolved_fields)} fields, "
            f"{len(result.extracted_rules)} rules in {time.time() - start_time:.2f}s"
        )
        return result

    def merge_with_previous(self, new: ExtractionResult, previous: ExtractionResult) -> ExtractionResult:
        """Standalone monotonic merge, for re-extraction comparisons."""
        return self.merge_engine.merge_with_previous(new, previous)

    def compare_extractions(self, new: ExtractionResult, previous: ExtractionResult) -> ExtractionComparison:
        """Field-by-field report of what a re-extraction improved or changed."""
        return compare_extractions(new, previous)


def create_pipeline(
    config: Optional[EngineConfig] = None,
    backends: Optional[Sequence[AIBackend]] = None,
    rule_store: Optional[RuleStore] = None,
    loader: Optional[DocumentLoader] = None,
) -> ExtractionPipeline:
    """
    Factory function to create a configured pipeline.

    Args:
        config: Engine configuration (defaults to the environment)
        backends: AI backends in fallback order (defaults to config.backend_order)
        rule_store: Where rules and results are persisted
        loader: Document loader
    """
    config = config or EngineConfig.from_settings()

    adapter = None
    if config.ai_extraction_enabled:
        if backends is None:
            try:
                backends = create_backends(config)
            except ConfigurationError as e:
                logger.warning(f"AI extraction not available: {e}")
                backends = []
        if backends:
            adapter = AIExtractionAdapter(backends, config)

    return ExtractionPipeline(
        config=config,
        adapter=adapter,
        rule_store=rule_store,
        loader=loader,
    )

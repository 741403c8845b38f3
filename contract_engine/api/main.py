"""
FastAPI application for the contract extraction engine.

Provides REST API endpoints for:
- Document classification
- Single-document extraction (text or upload)
- Standalone merge and comparison of a re-extraction against a previous result
- Batch extraction jobs with status, cancellation and low-confidence re-extraction
- Health checks
"""
from collections import OrderedDict
from typing import List, Dict, Any, Optional
from contextlib import asynccontextmanager
import logging
import threading

from dotenv import load_dotenv
load_dotenv()  # Load .env file

from fastapi import FastAPI, File, UploadFile, HTTPException, Form
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field
import uvicorn

from contract_engine.config import EngineConfig, Settings, configure_logging
from contract_engine.exceptions import (
    AIPayloadTooLarge,
    AIResponseParseError,
    AllBackendsExhausted,
    ClassificationAmbiguous,
    ConfigurationError,
    DocumentLoadError,
    EngineError,
)
from contract_engine.ingestion.document_loader import Document
from contract_engine.merge.models import ExtractionResult
from contract_engine.pipeline.batch_orchestrator import BatchOrchestrator
from contract_engine.pipeline.document_pipeline import create_pipeline
from contract_engine.storage.sql_rule_store import create_rule_store

logger = logging.getLogger(__name__)


class DocumentRegistry:
    """
    Most recently used documents, kept so later batches can refer to them by id.

    Bounded: the least recently used document is evicted once max_entries is reached.
    """

    def __init__(self, max_entries: int = 100):
        self.max_entries = max_entries
        self._documents: "OrderedDict[str, Document]" = OrderedDict()
        self._lock = threading.Lock()

    def put(self, document: Document) -> None:
        with self._lock:
            self._documents[document.document_id] = document
            self._documents.move_to_end(document.document_id)
            while len(self._documents) > max(0, self.max_entries):
                evicted, _ = self._documents.popitem(last=False)
                logger.debug(f"Evicted document {evicted} from registry")

    def get(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            if document is not None:
                self._documents.move_to_end(document_id)
            return document

    def __contains__(self, document_id: str) -> bool:
        with self._lock:
            return document_id in self._documents

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


# Global instances (initialized on startup unless already injected)
pipeline = None
orchestrator = None
documents = DocumentRegistry()


def resolve_document(document_id: str) -> Document:
    """Look up a registered document for batch processing."""
    document = documents.get(document_id)
    if document is None:
        raise DocumentLoadError(f"Unknown document: {document_id}")
    return document


# ============================================================================
# Pydantic Models
# ============================================================================

class ClassifyRequest(BaseModel):
    """Classification request body."""
    text: str = Field(..., min_length=1)
    filename: Optional[str] = None
    strict: bool = False


class ClassifyResponse(BaseModel):
    document_type: str
    confidence: float
    detected_cues: List[str] = []
    penalized_by: List[str] = []
    alternative_types: List[Dict[str, Any]] = []
    ambiguous: bool = False


class ExtractRequest(BaseModel):
    """Extraction request for plain text."""
    text: str = Field(..., min_length=1)
    document_id: Optional[str] = None
    filename: Optional[str] = None


class ExtractionResponse(BaseModel):
    document_id: str
    document_type: str
    extracted_data: Dict[str, Any]
    unresolved_fields: List[str] = []
    confidence_per_field: Dict[str, float]
    extracted_rules: List[Dict[str, Any]] = []
    structured_extraction: Dict[str, Any]
    field_sources: Dict[str, str] = {}
    warnings: List[str] = []
    ai_notes: Optional[str] = None
    usage: Dict[str, int] = {}
    attempts: List[Dict[str, Any]] = []
    timestamp: str


class MergeRequest(BaseModel):
    """Two serialized ExtractionResults for the same document."""
    new: Dict[str, Any]
    previous: Dict[str, Any]


class BatchRequest(BaseModel):
    document_ids: List[str] = Field(..., min_length=1)
    max_concurrency: Optional[int] = Field(default=None, ge=1, le=32)
    inter_call_delay_ms: Optional[int] = Field(default=None, ge=0)


class ReextractRequest(BaseModel):
    """Re-extract stored documents whose fields or rules fall below min_confidence."""
    min_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    max_concurrency: Optional[int] = Field(default=None, ge=1, le=32)
    inter_call_delay_ms: Optional[int] = Field(default=None, ge=0)


class HealthResponse(BaseModel):
    status: str
    ai_enabled: bool
    backends: List[str] = []
    rule_store: Optional[str] = None
    documents_registered: int = 0


# ============================================================================
# Error mapping
# ============================================================================

def raise_http_error(error: EngineError):
    """Translate engine errors to HTTP responses."""
    if isinstance(error, AIPayloadTooLarge):
        status = 413
    elif isinstance(error, (AllBackendsExhausted, AIResponseParseError)):
        status = 502
    elif isinstance(error, ClassificationAmbiguous):
        status = 409
    elif isinstance(error, (DocumentLoadError, ConfigurationError)):
        status = 422
    else:
        status = 500
    raise HTTPException(status_code=status, detail={"kind": error.kind, "message": str(error)})


def _require_pipeline():
    if pipeline is None:
        raise HTTPException(status_code=503, detail="Extraction service not initialized")
    return pipeline


# ============================================================================
# Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup."""
    global pipeline, orchestrator

    if pipeline is None:
        settings = Settings()
        configure_logging(settings.LOG_LEVEL)
        documents.max_entries = settings.DOCUMENT_REGISTRY_SIZE
        logger.info("Initializing extraction services...")
        try:
            config = EngineConfig.from_settings(settings)
            pipeline = create_pipeline(config, rule_store=create_rule_store(settings.DATABASE_URL))
            logger.info(f"  - AI extraction: {'enabled' if pipeline.ai_enabled else 'disabled'}")
            logger.info(f"  - Rule store: {type(pipeline.rule_store).__name__}")
        except EngineError as e:
            logger.error(f"Failed to initialize services: {e}", exc_info=True)
            # Allow startup but endpoints will return errors

    if orchestrator is None and pipeline is not None:
        orchestrator = BatchOrchestrator(pipeline, resolver=resolve_document)

    yield

    logger.info("Shutting down extraction services...")
    if orchestrator is not None:
        for job in orchestrator.list_jobs():
            if not job.done:
                job.cancel()


# ============================================================================
# FastAPI App
# ============================================================================

app = FastAPI(
    title="Contract Rule Extraction API",
    description="Classify energy contracts, extract structured fields and business rules.",
    version="1.0.0",
    lifespan=lifespan
)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Check service status."""
    if pipeline is None:
        return HealthResponse(status="unavailable", ai_enabled=False)
    backends = [b.name for b in pipeline.adapter.backends] if pipeline.adapter else []
    return HealthResponse(
        status="healthy",
        ai_enabled=pipeline.ai_enabled,
        backends=backends,
        rule_store=type(pipeline.rule_store).__name__ if pipeline.rule_store else None,
        documents_registered=len(documents),
    )


@app.post("/classify", response_model=ClassifyResponse, tags=["Extraction"])
async def classify(request: ClassifyRequest):
    """Classify document text by cue matching."""
    try:
        result = _require_pipeline().classify(request.text, request.filename or "", strict=request.strict)
    except ClassificationAmbiguous as e:
        raise_http_error(e)
    data = result.to_dict()
    return ClassifyResponse(
        document_type=data["document_type"],
        confidence=data["confidence"],
        detected_cues=data["detected_cues"],
        penalized_by=data["penalized_by"],
        alternative_types=data["alternative_types"],
        ambiguous=data["ambiguous"],
    )


async def _extract(document: Document) -> Dict[str, Any]:
    active = _require_pipeline()
    try:
        result = await run_in_threadpool(active.classify_and_extract, document)
    except EngineError as e:
        logger.warning(f"Extraction failed for {document.document_id}: {e}")
        # Oversized documents can never be batched
        if not isinstance(e, AIPayloadTooLarge):
            documents.put(document)
        raise_http_error(e)
    documents.put(document)
    return result.to_dict()


@app.post("/extract", response_model=ExtractionResponse, tags=["Extraction"])
async def extract(request: ExtractRequest):
    """Classify and extract from plain text."""
    document = Document.from_text(
        request.text,
        document_id=request.document_id,
        filename=request.filename or "",
    )
    return await _extract(document)


@app.post("/documents/upload", response_model=ExtractionResponse, tags=["Extraction"])
async def upload_document(
    file: UploadFile = File(...),
    document_id: Optional[str] = Form(default=None),
):
    """
    Upload a contract and run extraction.

    The document stays registered (most recently used first) so it can be
    included in later batches.
    """
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    document = Document.from_bytes(
        content,
        filename=file.filename or "upload",
        document_id=document_id,
        media_type=file.content_type if file.content_type not in (None, "application/octet-stream") else None,
    )
    return await _extract(document)


def _parse_pair(request: MergeRequest):
    try:
        return ExtractionResult.from_dict(request.new), ExtractionResult.from_dict(request.previous)
    except (KeyError, ValueError, TypeError) as e:
        raise HTTPException(status_code=422, detail=f"Invalid extraction result: {e}")


@app.post("/merge", response_model=ExtractionResponse, tags=["Extraction"])
async def merge(request: MergeRequest):
    """Monotonic merge of a re-extraction against a previous result."""
    active = _require_pipeline()
    new, previous = _parse_pair(request)
    return active.merge_with_previous(new, previous).to_dict()


@app.post("/compare", tags=["Extraction"])
async def compare(request: MergeRequest):
    """Report which fields a re-extraction improved, changed or left the same."""
    active = _require_pipeline()
    new, previous = _parse_pair(request)
    return active.compare_extractions(new, previous).to_dict()


@app.post("/batches", status_code=202, tags=["Batches"])
async def start_batch(request: BatchRequest):
    """Start a background batch over registered documents."""
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Batch service not initialized")
    try:
        config = orchestrator.config.with_overrides(
            max_concurrency=request.max_concurrency,
            inter_call_delay_ms=request.inter_call_delay_ms,
        )
    except ConfigurationError as e:
        raise_http_error(e)
    job = orchestrator.run_batch(request.document_ids, config=config)
    return job.to_dict()


@app.post("/batches/reextract", status_code=202, tags=["Batches"])
async def reextract_low_confidence(request: ReextractRequest):
    """Start a background re-extraction of stored documents with weak results."""
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Batch service not initialized")
    try:
        config = orchestrator.config.with_overrides(
            max_concurrency=request.max_concurrency,
            inter_call_delay_ms=request.inter_call_delay_ms,
        )
        job = await run_in_threadpool(
            orchestrator.reextract_low_confidence, request.min_confidence, config
        )
    except ConfigurationError as e:
        raise_http_error(e)
    return job.to_dict()


@app.get("/batches/{job_id}", tags=["Batches"])
async def get_batch(job_id: str):
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Batch service not initialized")
    job = orchestrator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Batch job not found")
    return job.to_dict()


@app.post("/batches/{job_id}/cancel", tags=["Batches"])
async def cancel_batch(job_id: str):
    """Stop starting new documents; in-flight documents complete."""
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Batch service not initialized")
    job = orchestrator.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Batch job not found")
    job.cancel()
    return job.to_dict()


@app.delete("/batches/{job_id}", tags=["Batches"])
async def discard_batch(job_id: str):
    """Forget a finished job after its final status has been read."""
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Batch service not initialized")
    try:
        discarded = orchestrator.discard_job(job_id)
    except EngineError as e:
        raise HTTPException(status_code=409, detail={"kind": e.kind, "message": str(e)})
    if not discarded:
        raise HTTPException(status_code=404, detail="Batch job not found")
    return {"job_id": job_id, "discarded": True}


# ============================================================================
# Run
# ============================================================================

if __name__ == "__main__":
    uvicorn.run(
        "contract_engine.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

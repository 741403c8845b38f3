"""
Batch Orchestrator - extraction across many documents.

Runs document pipelines concurrently on a bounded worker pool, spaces AI
calls by a minimum interval, isolates per-document failures and emits
progress events in the order outcomes become available.

Job state machine:
    Pending → Running → {Completed | PartiallyFailed | Failed}

Cancellation lets in-flight documents finish; documents not yet started are
skipped.
"""
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union
import logging
import math
import threading
import time
import uuid

from contract_engine.config import EngineConfig
from contract_engine.exceptions import ConfigurationError, EngineError
from contract_engine.ingestion.document_loader import Document
from contract_engine.merge.models import BusinessRule, ExtractionResult
from contract_engine.pipeline.document_pipeline import ExtractionPipeline
from contract_engine.pipeline.progress import (
    DOCUMENT_PROCESSED,
    JOB_COMPLETED,
    JOB_STARTED,
    ProgressBroadcaster,
)

logger = logging.getLogger(__name__)


class JobStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.PARTIALLY_FAILED, JobStatus.FAILED}

# Forward-only transitions; Pending may finish directly when nothing ran
_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.COMPLETED},
    JobStatus.RUNNING: TERMINAL_STATUSES,
}


@dataclass
class FailureRecord:
    """Why one document in a batch failed."""
    document_id: str
    error_kind: str
    message: str
    attempts: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "document_id": self.document_id,
            "error_kind": self.error_kind,
            "message": self.message,
            "attempts": list(self.attempts),
        }


Outcome = Union[ExtractionResult, FailureRecord]

# Lower bound of each rule confidence band, highest first
CONFIDENCE_BANDS = [
    ("very_high", 0.9),
    ("high", 0.8),
    ("medium", 0.6),
    ("low", 0.4),
    ("very_low", 0.0),
]


def confidence_band(confidence: float) -> str:
    for label, lower in CONFIDENCE_BANDS:
        if confidence >= lower:
            return label
    return "very_low"


def rule_statistics(rules: Iterable[BusinessRule]) -> Dict[str, Dict[str, int]]:
    """Confidence-band and category counts for a set of extracted rules."""
    bands = {label: 0 for label, _ in CONFIDENCE_BANDS}
    categories: Dict[str, int] = {}
    for rule in rules:
        bands[confidence_band(rule.confidence)] += 1
        categories[rule.category] = categories.get(rule.category, 0) + 1
    return {"confidence_distribution": bands, "category_distribution": categories}


@dataclass
class BatchJob:
    """
    One batch run. Owns its document list for its lifetime; results are
    emitted for the caller to persist.
    """
    job_id: str
    document_ids: List[str]
    status: JobStatus = JobStatus.PENDING
    per_document_outcome: Dict[str, Outcome] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._done = threading.Event()

    # State machine
    def _transition(self, new_status: JobStatus) -> None:
        with self._lock:
            self._apply(new_status)

    def _apply(self, new_status: JobStatus) -> None:
        # Caller holds self._lock
        if new_status not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise EngineError(f"Invalid job transition {self.status.value} -> {new_status.value}")
        self.status = new_status
        if new_status is JobStatus.RUNNING:
            self.started_at = datetime.now(timezone.utc)
        if new_status in TERMINAL_STATUSES:
            self.completed_at = datetime.now(timezone.utc)

    def _mark_running(self) -> None:
        with self._lock:
            if self.status is JobStatus.PENDING:
                self._apply(JobStatus.RUNNING)

    def _record(self, document_id: str, outcome: Outcome) -> None:
        with self._lock:
            self.per_document_outcome[document_id] = outcome

    def _finish(self) -> None:
        failed = self.failed_count
        processed = len(self.per_document_outcome)
        if processed == 0 or failed == 0:
            final = JobStatus.COMPLETED
        elif failed == processed:
            final = JobStatus.FAILED
        else:
            final = JobStatus.PARTIALLY_FAILED
        self._transition(final)
        self._done.set()

    # Caller-facing
    def cancel(self) -> None:
        """Stop starting new documents; in-flight documents complete."""
        if not self._cancel.is_set():
            logger.info(f"[BATCH] Cancellation requested for job {self.job_id}")
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the job reaches a terminal status."""
        return self._done.wait(timeout)

    @property
    def succeeded_count(self) -> int:
        return sum(1 for o in list(self.per_document_outcome.values()) if isinstance(o, ExtractionResult))

    @property
    def failed_count(self) -> int:
        return sum(1 for o in list(self.per_document_outcome.values()) if isinstance(o, FailureRecord))

    def summary(self) -> Dict[str, Any]:
        outcomes = list(self.per_document_outcome.values())
        rules = [r for o in outcomes if isinstance(o, ExtractionResult) for r in o.extracted_rules]
        elapsed = None
        if self.started_at:
            end = self.completed_at or datetime.now(timezone.utc)
            elapsed = (end - self.started_at).total_seconds()
        return {
            "total": len(self.document_ids),
            "processed": len(outcomes),
            "succeeded": self.succeeded_count,
            "failed": self.failed_count,
            "skipped": len(self.skipped),
            "rules_extracted": len(rules),
            "elapsed_seconds": elapsed,
            **rule_statistics(rules),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "document_ids": list(self.document_ids),
            "cancelled": self.cancel_requested,
            "skipped": list(self.skipped),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "summary": self.summary(),
            "outcomes": {
                doc_id: (
                    {"status": "success", "result": outcome.to_dict()}
                    if isinstance(outcome, ExtractionResult)
                    else {"status": "failed", "failure": outcome.to_dict()}
                )
                for doc_id, outcome in list(self.per_document_outcome.items())
            },
        }


class CallThrottle:
    """
    Enforce a minimum interval between call starts across worker threads.

    Each caller reserves the next free slot under the lock and sleeps outside it.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot: Optional[float] = None

    def acquire(self) -> float:
        """Wait for this caller's slot. Returns the time slept."""
        if self.min_interval <= 0:
            return 0.0
        with self._lock:
            now = self._clock()
            slot = now if self._next_slot is None else max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        delay = slot - now
        if delay > 0:
            self._sleep(delay)
        return delay


def derive_inter_call_delay_ms(requests_per_minute: Optional[int]) -> int:
    """Minimum spacing that stays under a published per-minute limit."""
    if not requests_per_minute or requests_per_minute <= 0:
        return 0
    return math.ceil(60000 / requests_per_minute)


class BatchOrchestrator:
    """
    Drive the extraction pipeline over a set of documents.

    Usage:
        orchestrator = BatchOrchestrator(pipeline, resolver=registry.get)
        subscription = orchestrator.progress.subscribe()
        job = orchestrator.run_batch(["doc-1", "doc-2"])
        job.wait()
    """

    def __init__(
        self,
        pipeline: ExtractionPipeline,
        resolver: Optional[Callable[[str], Document]] = None,
        config: Optional[EngineConfig] = None,
        progress: Optional[ProgressBroadcaster] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.pipeline = pipeline
        self.resolver = resolver
        self.config = config or pipeline.config
        self.progress = progress or ProgressBroadcaster(self.config.progress_queue_size)
        self._clock = clock
        self._sleep = sleep
        self._jobs: Dict[str, BatchJob] = {}
        self._jobs_lock = threading.Lock()

    def inter_call_delay_ms(self, config: Optional[EngineConfig] = None) -> int:
        """Configured delay, or one derived from the most restrictive backend limit."""
        config = config or self.config
        if config.inter_call_delay_ms is not None:
            return config.inter_call_delay_ms
        return derive_inter_call_delay_ms(self.pipeline.min_requests_per_minute)

    def get_job(self, job_id: str) -> Optional[BatchJob]:
        with self._jobs_lock:
            return self._jobs.get(job_id)

    def list_jobs(self) -> List[BatchJob]:
        with self._jobs_lock:
            return list(self._jobs.values())

    def discard_job(self, job_id: str) -> bool:
        """
        Forget a finished job once its final status has been consumed.

        Returns:
            True if the job was removed, False if unknown

        Raises:
            EngineError: the job is still running
        """
        with self._jobs_lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if not job.done:
                raise EngineError(f"Job {job_id} is still {job.status.value}")
            del self._jobs[job_id]
        logger.debug(f"[BATCH] Discarded job {job_id}")
        return True

    def _prune_finished_jobs(self, retention: int) -> None:
        # Oldest finished jobs go first; running jobs are never pruned
        with self._jobs_lock:
            finished = [job_id for job_id, job in self._jobs.items() if job.done]
            for job_id in finished[:max(0, len(finished) - retention)]:
                del self._jobs[job_id]

    def run_batch(
        self,
        documents: Sequence[Union[str, Document]],
        config: Optional[EngineConfig] = None,
        wait: bool = False,
    ) -> BatchJob:
        """
        Start a batch job.

        Args:
            documents: Document IDs (looked up via the resolver) or Documents
            config: Per-batch overrides for concurrency and delay
            wait: Run in the calling thread and return the finished job

        Returns:
            BatchJob (Pending or Running unless wait=True)
        """
        config = config or self.config
        by_id: Dict[str, Optional[Document]] = {}
        for item in documents:
            if isinstance(item, Document):
                by_id[item.document_id] = item
            else:
                by_id.setdefault(str(item), None)

        self._prune_finished_jobs(config.finished_job_retention)
        job = BatchJob(job_id=str(uuid.uuid4()), document_ids=list(by_id))
        with self._jobs_lock:
            self._jobs[job.job_id] = job

        if wait:
            self._run(job, by_id, config)
        else:
            worker = threading.Thread(
                target=self._run, args=(job, by_id, config),
                name=f"batch-{job.job_id[:8]}", daemon=True,
            )
            worker.start()
        return job

    def reextract_low_confidence(
        self,
        min_confidence: float = 0.6,
        config: Optional[EngineConfig] = None,
        wait: bool = False,
    ) -> BatchJob:
        """
        Re-run extraction for stored documents with weak results.

        A document qualifies when its latest result has a resolved field, or
        its stored rules have a rule, with confidence below min_confidence.
        Re-extraction merges monotonically with the stored result, so weak
        values can only improve.
        """
        store = self.pipeline.rule_store
        if store is None:
            raise ConfigurationError("Low-confidence re-extraction needs a rule store")

        document_ids = store.find_low_confidence(min_confidence)
        logger.info(
            f"[BATCH] {len(document_ids)} documents below confidence {min_confidence} "
            f"queued for re-extraction"
        )
        return self.run_batch(document_ids, config=config, wait=wait)

    def _run(self, job: BatchJob, documents: Dict[str, Optional[Document]], config: EngineConfig) -> None:
        delay_ms = self.inter_call_delay_ms(config)
        throttle = CallThrottle(delay_ms / 1000.0, clock=self._clock, sleep=self._sleep)

        logger.info(
            f"[BATCH] Job {job.job_id}: {len(job.document_ids)} documents "
            f"(max_concurrency={config.max_concurrency}, inter_call_delay={delay_ms}ms)"
        )
        self.progress.publish(JOB_STARTED, job.job_id, {"total": len(job.document_ids)})

        try:
            with ThreadPoolExecutor(max_workers=config.max_concurrency) as executor:
                futures = {
                    executor.submit(self._process_one, job, doc_id, documents.get(doc_id), throttle): doc_id
                    for doc_id in job.document_ids
                }
                for future in as_completed(futures):
                    doc_id = futures[future]
                    outcome = future.result()
                    if outcome is None:
                        job.skipped.append(doc_id)
                        continue
                    job._record(doc_id, outcome)
                    success = isinstance(outcome, ExtractionResult)
                    self.progress.publish(DOCUMENT_PROCESSED, job.job_id, {
                        "document_id": doc_id,
                        "status": "success" if success else "failed",
                        "error_kind": None if success else outcome.error_kind,
                        "processed": len(job.per_document_outcome),
                        "total": len(job.document_ids),
                    })
        finally:
            # Keep skipped documents in submission order
            job.skipped.sort(key=job.document_ids.index)
            job._finish()
            summary = job.summary()
            logger.info(
                f"[BATCH] Job {job.job_id} {job.status.value}: {summary['succeeded']} succeeded, "
                f"{summary['failed']} failed, {summary['skipped']} skipped"
            )
            self.progress.publish(JOB_COMPLETED, job.job_id, {
                "status": job.status.value,
                "cancelled": job.cancel_requested,
                **summary,
            })

    def _process_one(
        self,
        job: BatchJob,
        document_id: str,
        document: Optional[Document],
        throttle: CallThrottle,
    ) -> Optional[Outcome]:
        """Run one document; never raises. None means skipped after cancellation."""
        if job.cancel_requested:
            return None

        try:
            if document is None:
                if self.resolver is None:
                    raise EngineError(f"No document resolver configured for {document_id}")
                document = self.resolver(document_id)
            if self.pipeline.ai_enabled:
                throttle.acquire()
            # Cancellation may have arrived while waiting for the call slot
            if job.cancel_requested:
                return None
            job._mark_running()
            return self.pipeline.classify_and_extract(document)
        except EngineError as e:
            job._mark_running()
            logger.warning(f"[BATCH] {document_id} failed ({e.kind}): {e}")
            return FailureRecord(
                document_id=document_id,
                error_kind=e.kind,
                message=str(e),
                attempts=list(getattr(e, "attempts", [])),
            )
        except Exception as e:
            job._mark_running()
            logger.error(f"[BATCH] {document_id} failed unexpectedly: {e}", exc_info=True)
            return FailureRecord(
                document_id=document_id,
                error_kind="unexpected_error",
                message=str(e),
            )

"""
Pipeline Module - document extraction and batch orchestration.

Primary Exports:
- ExtractionPipeline / create_pipeline: single-document classify and extract
- BatchOrchestrator: concurrent extraction over many documents
- ProgressBroadcaster: bounded, non-blocking progress events

Usage:
    from contract_engine.pipeline import create_pipeline, BatchOrchestrator

    pipeline = create_pipeline()
    orchestrator = BatchOrchestrator(pipeline, resolver=documents.__getitem__)
    job = orchestrator.run_batch(["lease-2024-01", "epc-addendum-3"], wait=True)
"""

from contract_engine.pipeline.document_pipeline import (
    ExtractionPipeline,
    create_pipeline,
)
from contract_engine.pipeline.progress import (
    ProgressBroadcaster,
    ProgressEvent,
    Subscription,
    JOB_STARTED,
    DOCUMENT_PROCESSED,
    JOB_COMPLETED,
)
from contract_engine.pipeline.batch_orchestrator import (
    BatchJob,
    BatchOrchestrator,
    CallThrottle,
    FailureRecord,
    JobStatus,
    derive_inter_call_delay_ms,
    rule_statistics,
)

__all__ = [
    "ExtractionPipeline",
    "create_pipeline",
    "ProgressBroadcaster",
    "ProgressEvent",
    "Subscription",
    "JOB_STARTED",
    "DOCUMENT_PROCESSED",
    "JOB_COMPLETED",
    "BatchJob",
    "BatchOrchestrator",
    "CallThrottle",
    "FailureRecord",
    "JobStatus",
    "derive_inter_call_delay_ms",
    "rule_statistics",
]

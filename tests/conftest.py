import pytest

from contract_engine.ai.adapter import AIExtractionAdapter
from contract_engine.config import EngineConfig
from contract_engine.ingestion.document_loader import Document
from contract_engine.pipeline.document_pipeline import ExtractionPipeline
from contract_engine.storage.rule_store import InMemoryRuleStore

from fakes import LEASE_AI_RESPONSE, LEASE_TEXT, FakeBackend


@pytest.fixture
def lease_text():
    return LEASE_TEXT


@pytest.fixture
def lease_document():
    return Document.from_text(LEASE_TEXT, document_id="lease-3", filename="lease_3.txt")


@pytest.fixture
def engine_config():
    return EngineConfig(
        backend_order=("fake",),
        retry_backoff_seconds=0.0,
        inter_call_delay_ms=0,
    )


@pytest.fixture
def fake_backend():
    return FakeBackend(name="fake", script=[LEASE_AI_RESPONSE])


@pytest.fixture
def rule_store():
    return InMemoryRuleStore()


@pytest.fixture
def make_pipeline(engine_config, rule_store):
    """Build a pipeline around the given backends (no backends = AI disabled)."""
    def _make(*backends, config=None, store=rule_store):
        config = config or engine_config
        adapter = AIExtractionAdapter(list(backends), config, sleep=lambda s: None) if backends else None
        return ExtractionPipeline(config=config, adapter=adapter, rule_store=store)
    return _make

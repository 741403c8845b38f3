import pytest

from contract_engine.classification.cues import DocumentType
from contract_engine.config import EngineConfig
from contract_engine.exceptions import (
    AIBackendUnavailable,
    AIPayloadTooLarge,
    AllBackendsExhausted,
    DocumentLoadError,
)
from contract_engine.ingestion.document_loader import Document, DocumentLoader, generate_document_id
from contract_engine.merge.merge_engine import FieldChange
from contract_engine.pipeline.document_pipeline import create_pipeline

from fakes import FakeBackend


def test_classify_and_extract(make_pipeline, fake_backend, lease_document, rule_store):
    result = make_pipeline(fake_backend).classify_and_extract(lease_document)

    assert result.document_id == "lease-3"
    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert result.extracted_data["system_capacity"] == "2800 kW"
    assert result.field_sources["system_capacity"] == "ai"
    assert result.extracted_data["seller"] == "Bloom Energy Corporation"
    assert result.field_sources["seller"] == "pattern"
    assert result.extracted_data["voltage"] == "12.47 kV"
    assert result.ai_notes == "Lease supplement for a single site"
    assert result.warnings == []
    assert len(result.extracted_rules) == 2
    assert set(result.extracted_data) == set(result.confidence_per_field)

    assert rule_store.find_prior("lease-3") is result
    assert len(rule_store.get_rules("lease-3")) == 2


def test_pattern_candidates_are_sent_as_hints(make_pipeline, fake_backend, lease_document):
    make_pipeline(fake_backend).classify_and_extract(lease_document)

    instructions = fake_backend.instructions[0]
    assert "DOCUMENT TYPE: lease_supplement" in instructions
    assert '- system_capacity: "2800 kW"' in instructions
    assert fake_backend.payloads[0].text.startswith("LEASE SUPPLEMENT NO. 3")


def test_re_extraction_is_idempotent(make_pipeline, fake_backend, lease_document, rule_store):
    pipeline = make_pipeline(fake_backend)
    first = pipeline.classify_and_extract(lease_document)
    second = pipeline.classify_and_extract(lease_document)

    assert second == first
    assert len(rule_store.history("lease-3")) == 2
    # Carried-forward rules are not counted again
    assert all(rule_store.occurrences("lease-3", r.fingerprint) == 1 for r in first.extracted_rules)
    assert len(rule_store.get_rules("lease-3")) == 2


def test_compare_re_extraction(make_pipeline, fake_backend, lease_document):
    pipeline = make_pipeline(fake_backend)
    first = pipeline.classify_and_extract(lease_document)
    second = pipeline.classify_and_extract(lease_document)

    report = pipeline.compare_extractions(second, first)

    assert report.count(FieldChange.SAME) == len(report.fields)
    assert report.rules_added == [] and report.rules_removed == []


def test_parse_error_degrades_to_pattern_only(make_pipeline, lease_document):
    backend = FakeBackend(script=["Sorry, I cannot help with that."])
    result = make_pipeline(backend).classify_and_extract(lease_document)

    assert result.extracted_data["system_capacity"] == "2800 kW"
    assert result.field_sources["system_capacity"] == "pattern"
    assert result.extracted_rules == []
    assert any("could not be parsed" in w for w in result.warnings)
    assert [(a["backend"], a["outcome"]) for a in result.attempts] == [("fake", "ai_response_parse_error")]


def test_all_backends_failing_raises(make_pipeline, lease_document, rule_store):
    backend = FakeBackend(script=[AIBackendUnavailable("down")])

    with pytest.raises(AllBackendsExhausted):
        make_pipeline(backend).classify_and_extract(lease_document)

    assert rule_store.find_prior("lease-3") is None


def test_ai_disabled_runs_pattern_only(make_pipeline, fake_backend, lease_document):
    config = EngineConfig(ai_extraction_enabled=False)
    result = make_pipeline(fake_backend, config=config).classify_and_extract(lease_document)

    assert fake_backend.calls == 0
    assert result.extracted_data["buyer"] == "Acme Data Centers LLC"
    assert "AI extraction disabled; pattern-only result" in result.warnings


def test_oversized_document_rejected_before_any_work(make_pipeline, fake_backend):
    config = EngineConfig(size_threshold_bytes=500, hard_max_size_bytes=1000)
    document = Document.from_bytes(b"x" * 1001, "big.txt", document_id="big")

    with pytest.raises(AIPayloadTooLarge):
        make_pipeline(fake_backend, config=config).classify_and_extract(document)

    assert fake_backend.calls == 0


def test_validation_warnings_for_missing_fields(make_pipeline):
    document = Document.from_text("Lease Supplement for the Equipment.", document_id="thin")
    result = make_pipeline().classify_and_extract(document)

    assert result.document_type is DocumentType.LEASE_SUPPLEMENT
    assert "Missing mandatory field: buyer" in result.warnings
    assert result.extracted_data["buyer"] is not None
    assert "buyer" in result.unresolved_fields


def test_ambiguous_document_warns(make_pipeline):
    document = Document.from_text("Framework Agreement and EPC Addendum", document_id="mixed")
    result = make_pipeline().classify_and_extract(document)

    assert result.document_type is DocumentType.UNCLASSIFIED
    assert any("ambiguous" in w for w in result.warnings)


def test_create_pipeline_with_explicit_backends(fake_backend, engine_config):
    pipeline = create_pipeline(engine_config, backends=[fake_backend])

    assert pipeline.ai_enabled
    assert pipeline.min_requests_per_minute == 600
    assert pipeline.rule_store is None


class TestDocumentLoader:
    def test_text_bytes_are_decoded(self):
        document = Document.from_bytes(b"Lease Supplement", "notes.txt")
        assert document.media_type == "text/plain"
        assert DocumentLoader().load_text(document) == "Lease Supplement"

    def test_invalid_utf8_raises(self):
        document = Document.from_bytes(b"\xff\xfe\xfa", "notes.txt")
        with pytest.raises(DocumentLoadError):
            DocumentLoader().load_text(document)

    def test_document_needs_content(self):
        with pytest.raises(DocumentLoadError):
            Document(document_id="empty")

    def test_pdf_payload_keeps_bytes(self):
        document = Document.from_bytes(b"%PDF-1.7 fake", "contract.pdf")
        payload = DocumentLoader().to_payload(document)

        assert payload.has_binary
        assert payload.data == b"%PDF-1.7 fake"

    def test_generated_ids_are_stable(self):
        assert generate_document_id("a/lease.pdf", b"abc") == generate_document_id("lease.pdf", b"abc")
        assert generate_document_id("lease.pdf", b"abc") != generate_document_id("lease.pdf", b"abd")
        assert generate_document_id("lease.pdf", b"abc").startswith("lease_")

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(DocumentLoadError):
            Document.from_path(str(tmp_path / "missing.pdf"))

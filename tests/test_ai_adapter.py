import pytest

from contract_engine.ai.adapter import (
    AIExtractionAdapter,
    ApiPath,
    parse_structured_response,
    select_api_path,
    to_field_name,
)
from contract_engine.ai.backends import DocumentPayload
from contract_engine.ai.prompts import ExtractionHints, build_extraction_prompt
from contract_engine.classification.cues import DocumentType
from contract_engine.config import EngineConfig
from contract_engine.exceptions import (
    AIAuthError,
    AIBackendThrottled,
    AIBackendUnavailable,
    AIPayloadTooLarge,
    AIResponseParseError,
    AllBackendsExhausted,
    ConfigurationError,
)
from contract_engine.extraction.candidate_extractor import CandidateField

from fakes import FakeBackend, ai_response

MB = 1024 * 1024

OK_RESPONSE = ai_response(
    data={"systemCapacity": "2800 kW"},
    confidence={"systemCapacity": 0.9},
)


@pytest.fixture
def config():
    return EngineConfig(backend_order=("a", "b"), retry_backoff_seconds=1.0)


class TestSelectApiPath:
    def test_small_payload_uses_citations(self):
        assert select_api_path(1 * MB, int(4.5 * MB), 20 * MB) is ApiPath.CITATIONS

    def test_threshold_is_inclusive(self):
        assert select_api_path(int(4.5 * MB), int(4.5 * MB), 20 * MB) is ApiPath.CITATIONS

    def test_large_payload_uses_standard(self):
        assert select_api_path(10 * MB, int(4.5 * MB), 20 * MB) is ApiPath.STANDARD

    def test_over_hard_max_raises(self):
        with pytest.raises(AIPayloadTooLarge):
            select_api_path(25 * MB, int(4.5 * MB), 20 * MB)


class TestFallback:
    def test_throttled_twice_then_next_backend(self, config):
        sleeps = []
        a = FakeBackend("a", script=[AIBackendThrottled("rate limited")])
        b = FakeBackend("b", script=[OK_RESPONSE])
        adapter = AIExtractionAdapter([a, b], config, sleep=sleeps.append)

        result = adapter.extract("Lease text")

        assert result.backend == "b"
        assert result.extracted_data == {"system_capacity": "2800 kW"}
        assert a.calls == 2
        assert b.calls == 1
        assert sleeps == [1.0]
        assert [(x["backend"], x["attempt"], x["outcome"]) for x in result.attempts] == [
            ("a", 1, "ai_backend_throttled"),
            ("a", 2, "ai_backend_throttled"),
            ("b", 1, "success"),
        ]

    def test_throttle_then_success_on_same_backend(self, config):
        a = FakeBackend("a", script=[AIBackendThrottled("busy"), OK_RESPONSE])
        b = FakeBackend("b", script=[OK_RESPONSE])

        result = AIExtractionAdapter([a, b], config, sleep=lambda s: None).extract("text")

        assert result.backend == "a"
        assert a.calls == 2
        assert b.calls == 0

    @pytest.mark.parametrize("error", [
        AIAuthError("bad key"),
        AIBackendUnavailable("down"),
        AIPayloadTooLarge("too big for this provider"),
    ])
    def test_non_transient_errors_fall_through_without_retry(self, config, error):
        a = FakeBackend("a", script=[error])
        b = FakeBackend("b", script=[OK_RESPONSE])

        result = AIExtractionAdapter([a, b], config, sleep=lambda s: None).extract("text")

        assert result.backend == "b"
        assert a.calls == 1

    def test_all_backends_exhausted_carries_attempts(self, config):
        a = FakeBackend("a", script=[AIBackendUnavailable("down")])
        b = FakeBackend("b", script=[AIAuthError("bad key")])

        with pytest.raises(AllBackendsExhausted) as exc_info:
            AIExtractionAdapter([a, b], config, sleep=lambda s: None).extract("text")

        outcomes = [(x["backend"], x["outcome"]) for x in exc_info.value.attempts]
        assert outcomes == [("a", "ai_backend_unavailable"), ("b", "ai_auth_error")]

    def test_every_backend_too_large(self, config):
        a = FakeBackend("a", script=[AIPayloadTooLarge("too big")])
        b = FakeBackend("b", script=[AIPayloadTooLarge("too big")])

        with pytest.raises(AIPayloadTooLarge):
            AIExtractionAdapter([a, b], config, sleep=lambda s: None).extract("text")

    def test_oversized_payload_rejected_before_any_call(self):
        config = EngineConfig(backend_order=("a",), hard_max_size_bytes=20 * MB)
        a = FakeBackend("a", script=[OK_RESPONSE])
        payload = DocumentPayload(data=b"0" * (25 * MB), filename="huge.pdf")

        with pytest.raises(AIPayloadTooLarge):
            AIExtractionAdapter([a], config).extract(payload)

        assert a.calls == 0

    def test_citations_requested_only_below_threshold(self):
        config = EngineConfig(backend_order=("a",), size_threshold_bytes=100, hard_max_size_bytes=1000)
        a = FakeBackend("a", script=[OK_RESPONSE])
        adapter = AIExtractionAdapter([a], config)

        adapter.extract(DocumentPayload(data=b"x" * 50))
        adapter.extract(DocumentPayload(data=b"x" * 500))

        assert a.citation_flags == [True, False]

    def test_parse_error_is_distinct_from_call_failure(self, config):
        a = FakeBackend("a", script=["I could not find any contract values."])
        b = FakeBackend("b", script=[OK_RESPONSE])

        with pytest.raises(AIResponseParseError) as exc_info:
            AIExtractionAdapter([a, b], config).extract("text")

        assert exc_info.value.backend == "a"
        assert b.calls == 0
        assert [(x["backend"], x["outcome"]) for x in exc_info.value.attempts] == [
            ("a", "ai_response_parse_error"),
        ]

    def test_start_after_skips_earlier_backends(self, config):
        a = FakeBackend("a", script=[OK_RESPONSE])
        b = FakeBackend("b", script=[OK_RESPONSE])

        result = AIExtractionAdapter([a, b], config).extract("text", start_after="a")

        assert result.backend == "b"
        assert a.calls == 0
        assert b.calls == 1

    def test_start_after_unknown_backend(self, config):
        adapter = AIExtractionAdapter([FakeBackend("a"), FakeBackend("b")], config)
        with pytest.raises(ConfigurationError):
            adapter.extract("text", start_after="c")

    def test_start_after_last_backend_leaves_nothing(self, config):
        b = FakeBackend("b", script=[OK_RESPONSE])
        adapter = AIExtractionAdapter([FakeBackend("a"), b], config)
        with pytest.raises(AllBackendsExhausted):
            adapter.extract("text", start_after="b")
        assert b.calls == 0

    def test_usage_is_reported(self, config):
        a = FakeBackend("a", script=[OK_RESPONSE])
        result = AIExtractionAdapter([a], config).extract("text")
        assert result.usage == {"input_units": 100, "output_units": 20}

    def test_requires_a_backend(self):
        with pytest.raises(ConfigurationError):
            AIExtractionAdapter([], EngineConfig())

    def test_min_requests_per_minute(self, config):
        adapter = AIExtractionAdapter([
            FakeBackend("a", requests_per_minute=50),
            FakeBackend("b", requests_per_minute=500),
        ], config)
        assert adapter.min_requests_per_minute == 50


class TestParseStructuredResponse:
    def test_camel_case_keys_and_not_specified(self):
        result = parse_structured_response(ai_response(
            data={"baseRate": "$0.12/kWh", "voltage": "NOT SPECIFIED", "buyer": ""},
            confidence={"baseRate": 0.8, "voltage": 0.1},
        ))

        assert result.extracted_data == {"base_rate": "$0.12/kWh"}
        assert result.confidence == {"base_rate": 0.8}

    def test_code_fences_and_prose_are_tolerated(self):
        text = "Here is the result:\n```json\n" + OK_RESPONSE + "\n```\nLet me know."
        result = parse_structured_response(text)
        assert result.extracted_data == {"system_capacity": "2800 kW"}

    def test_rules_are_normalized(self):
        result = parse_structured_response(ai_response(
            data={"baseRate": "$0.12/kWh"},
            rules=[
                {"category": " Financial ", "statement": "Pay  within 30 days", "sourceFields": ["baseRate"]},
                {"category": "technical", "condition": "output drops", "action": "seller repairs",
                 "confidence": 1.5},
                {"category": "technical", "statement": "  "},
            ],
        ))

        first, second = result.extracted_rules
        assert first.category == "financial"
        assert first.statement == "Pay within 30 days"
        assert first.source_field_refs == frozenset({"base_rate"})
        assert first.confidence == 0.7
        assert second.statement == "IF output drops THEN seller repairs"
        assert second.confidence == 1.0

    @pytest.mark.parametrize("text", [
        "",
        "no json here",
        '{"confidence": {}}',
        '{"extractedData": {"a": "b"}, "confidence": {"a": 1.7}}',
        '{"extractedData": {"a": "b"',
    ])
    def test_invalid_responses_raise(self, text):
        with pytest.raises(AIResponseParseError):
            parse_structured_response(text, backend="a")

    def test_to_field_name(self):
        assert to_field_name("systemCapacity") == "system_capacity"
        assert to_field_name("Annual Escalation") == "annual_escalation"
        assert to_field_name("base_rate") == "base_rate"


def test_prompt_includes_fields_and_candidate_hints():
    hints = ExtractionHints(
        document_type=DocumentType.LEASE_SUPPLEMENT,
        candidates=[
            CandidateField("system_capacity", "2800 kW"),
            CandidateField("system_capacity", "2800 kW"),
            CandidateField("buyer", "Acme"),
        ],
        filename="lease.pdf",
    )
    prompt = build_extraction_prompt(hints)

    assert "DOCUMENT TYPE: lease_supplement" in prompt
    assert '- system_capacity: "2800 kW"\n' in prompt
    assert '- buyer: "Acme"' in prompt
    assert "NOT SPECIFIED" in prompt

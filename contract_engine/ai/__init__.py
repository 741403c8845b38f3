"""
AI module - backend capability, extraction prompts and the fallback adapter.
"""

from contract_engine.ai.backends import (
    AIBackend,
    AnthropicBackend,
    BackendResponse,
    DocumentPayload,
    GeminiBackend,
    OpenAIBackend,
    create_backend,
    create_backends,
)
from contract_engine.ai.prompts import ExtractionHints, build_extraction_prompt
from contract_engine.ai.adapter import (
    AIExtractionAdapter,
    ApiPath,
    parse_structured_response,
    select_api_path,
)

__all__ = [
    "AIBackend",
    "AnthropicBackend",
    "BackendResponse",
    "DocumentPayload",
    "GeminiBackend",
    "OpenAIBackend",
    "create_backend",
    "create_backends",
    "ExtractionHints",
    "build_extraction_prompt",
    "AIExtractionAdapter",
    "ApiPath",
    "parse_structured_response",
    "select_api_path",
]

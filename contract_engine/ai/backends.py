"""
Interchangeable AI backends behind a single ``submit`` capability.

Every backend translates its SDK's exceptions into the engine taxonomy
(AIBackendThrottled, AIAuthError, AIPayloadTooLarge, AIBackendUnavailable),
so the adapter never needs to know which provider it is talking to.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import base64
import logging

from contract_engine.config import EngineConfig
from contract_engine.exceptions import (
    AIAuthError,
    AIBackendThrottled,
    AIBackendUnavailable,
    AIPayloadTooLarge,
    ConfigurationError,
)

logger = logging.getLogger(__name__)


@dataclass
class DocumentPayload:
    """Document content submitted to a backend: raw bytes, text, or both."""
    text: Optional[str] = None
    data: Optional[bytes] = None
    media_type: str = "application/pdf"
    filename: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        if self.data is not None:
            return len(self.data)
        return len((self.text or "").encode("utf-8"))

    @property
    def has_binary(self) -> bool:
        return self.data is not None and self.media_type == "application/pdf"


@dataclass
class BackendResponse:
    """Raw structured text returned by a backend, plus accounting."""
    structured_text: str
    usage: Dict[str, int] = field(default_factory=lambda: {"input_units": 0, "output_units": 0})
    citations: List[Any] = field(default_factory=list)


class AIBackend(ABC):
    """Base class for AI inference backends."""

    name: str = "backend"
    # Published request limit used to derive the default inter-call delay
    REQUESTS_PER_MINUTE: int = 60

    @property
    def requests_per_minute(self) -> int:
        return self.REQUESTS_PER_MINUTE

    @abstractmethod
    def submit(
        self,
        payload: DocumentPayload,
        instructions: str,
        with_citations: bool = False,
    ) -> BackendResponse:
        """
        Submit a document and extraction instructions.

        Raises:
            AIBackendThrottled, AIPayloadTooLarge, AIAuthError, AIBackendUnavailable
        """
        pass

    def __repr__(self):
        return f"{type(self).__name__}(name={self.name!r})"


def _status_error(backend: str, status: Optional[int], message: str):
    """Map an HTTP status from a provider error to the engine taxonomy."""
    if status == 413:
        return AIPayloadTooLarge(message, backend=backend)
    if status in (401, 403):
        return AIAuthError(message, backend=backend)
    if status in (408, 429, 529):
        return AIBackendThrottled(message, backend=backend)
    return AIBackendUnavailable(message, backend=backend)


class AnthropicBackend(AIBackend):
    """
    Claude via the Anthropic Messages API.

    PDFs are sent as base64 document blocks; citations are enabled on the
    document block when requested.
    """

    name = "anthropic"
    REQUESTS_PER_MINUTE = 50

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-5",
        max_tokens: int = 8000,
        timeout: float = 120.0,
    ):
        try:
            import anthropic
            self._sdk = anthropic
        except ImportError:
            raise ImportError(
                "anthropic is required for the Anthropic backend. "
                "Install with: pip install anthropic"
            )

        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is required for the anthropic backend")

        self.model = model
        self.max_tokens = max_tokens
        self._client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        logger.info(f"Initialized Anthropic backend with model: {model}")

    def _document_block(self, payload: DocumentPayload, with_citations: bool) -> Dict[str, Any]:
        if payload.has_binary:
            source = {
                "type": "base64",
                "media_type": "application/pdf",
                "data": base64.standard_b64encode(payload.data).decode("ascii"),
            }
        else:
            source = {"type": "text", "media_type": "text/plain", "data": payload.text or ""}
        block = {"type": "document", "source": source}
        if with_citations:
            block["citations"] = {"enabled": True}
        return block

    def submit(self, payload, instructions, with_citations=False):
        content = [
            self._document_block(payload, with_citations),
            {"type": "text", "text": instructions},
        ]
        sdk = self._sdk
        try:
            response = self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": content}],
            )
        except sdk.APITimeoutError as e:
            raise AIBackendThrottled(f"Timed out: {e}", backend=self.name) from e
        except sdk.RateLimitError as e:
            raise AIBackendThrottled(f"Rate limited: {e}", backend=self.name) from e
        except (sdk.AuthenticationError, sdk.PermissionDeniedError) as e:
            raise AIAuthError(str(e), backend=self.name) from e
        except sdk.APIStatusError as e:
            raise _status_error(self.name, e.status_code, str(e)) from e
        except sdk.APIError as e:
            raise AIBackendUnavailable(str(e), backend=self.name) from e

        texts, citations = [], []
        for block in response.content:
            if getattr(block, "type", None) == "text":
                texts.append(block.text)
                for citation in getattr(block, "citations", None) or []:
                    citations.append({
                        "cited_text": getattr(citation, "cited_text", None),
                        "text": block.text,
                    })

        return BackendResponse(
            structured_text="".join(texts),
            usage={
                "input_units": response.usage.input_tokens,
                "output_units": response.usage.output_tokens,
            },
            citations=citations,
        )


class OpenAIBackend(AIBackend):
    """OpenAI chat completions with JSON output. No citation support."""

    name = "openai"
    REQUESTS_PER_MINUTE = 500

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gpt-4o",
        max_tokens: int = 8000,
        timeout: float = 120.0,
    ):
        try:
            import openai
            self._sdk = openai
        except ImportError:
            raise ImportError(
                "openai is required for the OpenAI backend. "
                "Install with: pip install openai"
            )

        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai backend")

        self.model = model
        self.max_tokens = max_tokens
        self._client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        logger.info(f"Initialized OpenAI backend with model: {model}")

    def submit(self, payload, instructions, with_citations=False):
        if payload.has_binary:
            encoded = base64.b64encode(payload.data).decode("ascii")
            document = {
                "type": "file",
                "file": {
                    "filename": payload.filename or "document.pdf",
                    "file_data": f"data:application/pdf;base64,{encoded}",
                },
            }
        else:
            document = {"type": "text", "text": payload.text or ""}

        sdk = self._sdk
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0,
                response_format={"type": "json_object"},
                messages=[{
                    "role": "user",
                    "content": [document, {"type": "text", "text": instructions}],
                }],
            )
        except sdk.APITimeoutError as e:
            raise AIBackendThrottled(f"Timed out: {e}", backend=self.name) from e
        except sdk.RateLimitError as e:
            raise AIBackendThrottled(f"Rate limited: {e}", backend=self.name) from e
        except (sdk.AuthenticationError, sdk.PermissionDeniedError) as e:
            raise AIAuthError(str(e), backend=self.name) from e
        except sdk.APIStatusError as e:
            raise _status_error(self.name, e.status_code, str(e)) from e
        except sdk.APIError as e:
            raise AIBackendUnavailable(str(e), backend=self.name) from e

        usage = response.usage
        return BackendResponse(
            structured_text=response.choices[0].message.content or "",
            usage={
                "input_units": getattr(usage, "prompt_tokens", 0) or 0,
                "output_units": getattr(usage, "completion_tokens", 0) or 0,
            },
        )


class GeminiBackend(AIBackend):
    """Google Gemini via google-generativeai."""

    name = "gemini"
    REQUESTS_PER_MINUTE = 15

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.0-flash",
        max_tokens: int = 8000,
        timeout: float = 120.0,
    ):
        try:
            import google.generativeai as genai
            from google.api_core import exceptions as google_exceptions
            self._genai = genai
            self._errors = google_exceptions
        except ImportError:
            raise ImportError(
                "google-generativeai is required for the Gemini backend. "
                "Install with: pip install google-generativeai"
            )

        if not api_key:
            raise ConfigurationError("GOOGLE_API_KEY is required for the gemini backend")

        genai.configure(api_key=api_key)
        self.model_name = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.model = genai.GenerativeModel(model_name=model)
        logger.info(f"Initialized Gemini backend with model: {model}")

    def submit(self, payload, instructions, with_citations=False):
        if payload.has_binary:
            document = {"mime_type": "application/pdf", "data": payload.data}
        else:
            document = payload.text or ""

        errors = self._errors
        try:
            response = self.model.generate_content(
                [document, instructions],
                generation_config={
                    "max_output_tokens": self.max_tokens,
                    "temperature": 0,
                    "response_mime_type": "application/json",
                },
                request_options={"timeout": self.timeout},
            )
            text = response.text
        except (errors.ResourceExhausted, errors.DeadlineExceeded, errors.TooManyRequests) as e:
            raise AIBackendThrottled(str(e), backend=self.name) from e
        except (errors.Unauthenticated, errors.PermissionDenied) as e:
            raise AIAuthError(str(e), backend=self.name) from e
        except errors.GoogleAPICallError as e:
            raise _status_error(self.name, getattr(e, "code", None), str(e)) from e
        except (errors.GoogleAPIError, ValueError) as e:
            # ValueError: blocked or empty candidate
            raise AIBackendUnavailable(str(e), backend=self.name) from e

        metadata = getattr(response, "usage_metadata", None)
        return BackendResponse(
            structured_text=text or "",
            usage={
                "input_units": getattr(metadata, "prompt_token_count", 0) or 0,
                "output_units": getattr(metadata, "candidates_token_count", 0) or 0,
            },
        )


BACKEND_CLASSES = {
    AnthropicBackend.name: AnthropicBackend,
    OpenAIBackend.name: OpenAIBackend,
    GeminiBackend.name: GeminiBackend,
}


def create_backend(name: str, config: EngineConfig) -> AIBackend:
    """
    Factory function to create a backend by identifier.

    Args:
        name: Backend identifier (anthropic, openai, gemini)
        config: Engine configuration holding keys, models and limits
    """
    try:
        backend_class = BACKEND_CLASSES[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown backend '{name}'. Available: {sorted(BACKEND_CLASSES)}"
        )
    kwargs = {
        "api_key": config.api_keys.get(name),
        "max_tokens": config.max_output_tokens,
        "timeout": config.timeout_seconds,
    }
    if config.models.get(name):
        kwargs["model"] = config.models[name]
    return backend_class(**kwargs)


def create_backends(config: EngineConfig) -> List[AIBackend]:
    """Create the configured backends in order, skipping those that cannot be initialized."""
    backends = []
    for name in config.backend_order:
        try:
            backends.append(create_backend(name, config))
        except (ConfigurationError, ImportError) as e:
            logger.warning(f"[AI] Backend '{name}' not available: {e}")
    if not backends:
        raise ConfigurationError(
            f"No AI backend could be initialized from {list(config.backend_order)}"
        )
    return backends

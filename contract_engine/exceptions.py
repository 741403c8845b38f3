"""
Exceptions raised by the contract extraction engine.

Each error carries a stable ``kind`` string that is recorded in batch
failure records and API error payloads.
"""
from typing import List, Optional


class EngineError(Exception):
    """Base exception for all engine errors"""
    kind = "engine_error"


class ConfigurationError(EngineError):
    """Invalid engine configuration"""
    kind = "configuration_error"


class DocumentLoadError(EngineError):
    """Raised when a document cannot be loaded or converted to text"""
    kind = "document_load_error"


class ClassificationAmbiguous(EngineError):
    """
    Informational: two or more document types tied for the top score.

    By default the classifier returns a low-confidence Unclassified result
    instead; it raises this only when called with strict=True.
    """
    kind = "classification_ambiguous"

    def __init__(self, message: str, candidates: Optional[List[str]] = None):
        super().__init__(message)
        self.candidates = list(candidates or [])


class AIBackendError(EngineError):
    """Base class for failures of a single AI backend call"""
    kind = "ai_backend_error"
    transient = False

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message)
        self.backend = backend


class AIBackendThrottled(AIBackendError):
    """Rate-limited or timed out; retried once on the same backend"""
    kind = "ai_backend_throttled"
    transient = True


class AIBackendUnavailable(AIBackendError):
    """Backend unreachable or failing; falls through without retry"""
    kind = "ai_backend_unavailable"


class AIAuthError(AIBackendError):
    """Credentials or configuration rejected; falls through without retry"""
    kind = "ai_auth_error"


class AIPayloadTooLarge(AIBackendError):
    """Document payload exceeds what a backend (or the hard cap) accepts"""
    kind = "ai_payload_too_large"


class AIResponseParseError(EngineError):
    """
    The backend answered, but not in the expected structured shape.

    ``attempts`` holds the adapter's attempt log up to the failing call, and
    ``backend`` can be passed back as ``start_after`` to try the remaining
    backends.
    """
    kind = "ai_response_parse_error"

    def __init__(
        self,
        message: str,
        backend: Optional[str] = None,
        raw_text: str = "",
        attempts: Optional[List] = None,
    ):
        super().__init__(message)
        self.backend = backend
        self.raw_text = raw_text
        self.attempts = list(attempts or [])


class AllBackendsExhausted(EngineError):
    """Every configured backend failed for this document"""
    kind = "all_backends_exhausted"

    def __init__(self, message: str, attempts: Optional[List] = None):
        super().__init__(message)
        self.attempts = list(attempts or [])

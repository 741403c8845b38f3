"""Configuration settings for the contract extraction engine."""
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict

from contract_engine.exceptions import ConfigurationError

MIB = 1024 * 1024


class Settings(BaseSettings):
    # AI backends, tried in this order
    BACKEND_ORDER: List[str] = ["anthropic", "openai"]
    ANTHROPIC_API_KEY: Optional[str] = None
    ANTHROPIC_MODEL: str = "claude-sonnet-4-5"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o"
    GOOGLE_API_KEY: Optional[str] = None
    GEMINI_MODEL: str = "gemini-2.0-flash"
    AI_EXTRACTION_ENABLED: bool = True
    AI_MAX_OUTPUT_TOKENS: int = 8000
    AI_TIMEOUT_SECONDS: float = 120.0
    RETRY_BACKOFF_SECONDS: float = 2.0

    # Payload routing
    SIZE_THRESHOLD_BYTES: int = int(4.5 * MIB)  # citations path up to here
    HARD_MAX_SIZE_BYTES: int = 20 * MIB

    # Merge weighting
    AI_CONFIDENCE_FLOOR: float = 0.6
    PATTERN_CONFIDENCE: float = 0.6
    CLASSIFIER_WEIGHT: float = 0.25
    FIELD_WEIGHT: float = 0.75

    # Batch throttling
    MAX_CONCURRENCY: int = 3
    INTER_CALL_DELAY_MS: Optional[int] = None
    PROGRESS_QUEUE_SIZE: int = 100
    FINISHED_JOB_RETENTION: int = 100

    # API document registry (most recently used uploads kept for batches)
    DOCUMENT_REGISTRY_SIZE: int = 100

    # Rule store
    DATABASE_URL: Optional[str] = None

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@dataclass(frozen=True)
class EngineConfig:
    """
    Explicit engine configuration passed into every component constructor.

    Built from Settings (environment) or directly in code and tests.
    """
    backend_order: Tuple[str, ...] = ("anthropic", "openai")
    max_concurrency: int = 3
    inter_call_delay_ms: Optional[int] = None
    ai_confidence_floor: float = 0.6
    size_threshold_bytes: int = int(4.5 * MIB)
    hard_max_size_bytes: int = 20 * MIB

    pattern_confidence: float = 0.6
    classifier_weight: float = 0.25
    field_weight: float = 0.75

    ai_extraction_enabled: bool = True
    retry_backoff_seconds: float = 2.0
    progress_queue_size: int = 100
    finished_job_retention: int = 100

    # Provider credentials and models, keyed by backend name
    api_keys: dict = field(default_factory=dict, compare=False, repr=False)
    models: dict = field(default_factory=dict, compare=False)
    max_output_tokens: int = 8000
    timeout_seconds: float = 120.0

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "EngineConfig":
        """Build an EngineConfig from environment-backed Settings."""
        settings = settings or Settings()
        config = cls(
            backend_order=tuple(name.strip().lower() for name in settings.BACKEND_ORDER),
            max_concurrency=settings.MAX_CONCURRENCY,
            inter_call_delay_ms=settings.INTER_CALL_DELAY_MS,
            ai_confidence_floor=settings.AI_CONFIDENCE_FLOOR,
            size_threshold_bytes=settings.SIZE_THRESHOLD_BYTES,
            hard_max_size_bytes=settings.HARD_MAX_SIZE_BYTES,
            pattern_confidence=settings.PATTERN_CONFIDENCE,
            classifier_weight=settings.CLASSIFIER_WEIGHT,
            field_weight=settings.FIELD_WEIGHT,
            ai_extraction_enabled=settings.AI_EXTRACTION_ENABLED,
            retry_backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
            progress_queue_size=settings.PROGRESS_QUEUE_SIZE,
            finished_job_retention=settings.FINISHED_JOB_RETENTION,
            api_keys={
                "anthropic": settings.ANTHROPIC_API_KEY,
                "openai": settings.OPENAI_API_KEY,
                "gemini": settings.GOOGLE_API_KEY,
            },
            models={
                "anthropic": settings.ANTHROPIC_MODEL,
                "openai": settings.OPENAI_MODEL,
                "gemini": settings.GEMINI_MODEL,
            },
            max_output_tokens=settings.AI_MAX_OUTPUT_TOKENS,
            timeout_seconds=settings.AI_TIMEOUT_SECONDS,
        )
        return config.validate()

    def with_overrides(self, **overrides) -> "EngineConfig":
        """Return a copy with the given fields replaced (e.g. per-batch config)."""
        overrides = {k: v for k, v in overrides.items() if v is not None}
        if "backend_order" in overrides:
            overrides["backend_order"] = tuple(overrides["backend_order"])
        return replace(self, **overrides).validate()

    def validate(self) -> "EngineConfig":
        if not self.backend_order:
            raise ConfigurationError("backend_order must name at least one backend")
        if self.max_concurrency < 1:
            raise ConfigurationError("max_concurrency must be >= 1")
        if self.finished_job_retention < 0:
            raise ConfigurationError("finished_job_retention must be >= 0")
        if self.inter_call_delay_ms is not None and self.inter_call_delay_ms < 0:
            raise ConfigurationError("inter_call_delay_ms must be >= 0")
        for name in ("ai_confidence_floor", "pattern_confidence"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if self.classifier_weight < 0 or self.field_weight <= 0:
            raise ConfigurationError("field_weight must be > 0 and classifier_weight >= 0")
        if self.size_threshold_bytes <= 0 or self.hard_max_size_bytes <= 0:
            raise ConfigurationError("size limits must be positive")
        if self.size_threshold_bytes > self.hard_max_size_bytes:
            raise ConfigurationError("size_threshold_bytes cannot exceed hard_max_size_bytes")
        return self


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for entry points (API server, scripts)."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


settings = Settings()

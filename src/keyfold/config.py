"""Configuration helpers for the keyfold deduplication engine."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import TYPE_CHECKING, Final

from dotenv import load_dotenv

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .clustering import MatchOptions
    from .engine import DedupEngine
    from .observability import MetricsRecorder
    from .synonyms import SynonymTable

load_dotenv()

_DEFAULT_INPUT_PATH: Final[str] = "data/input/input.csv"
_DEFAULT_OUTPUT_PATH: Final[str] = "data/output/output.csv"
_DEFAULT_VOSVIEWER_EXPORT_PATH: Final[str] = "data/input/origin.txt"
_DEFAULT_INPUT_DELIMITER: Final[str] = ","
_DEFAULT_OUTPUT_ORDER: Final[str] = "score"
_DEFAULT_MATCH_SHORT_TERM_LENGTH: Final[int] = 6
_DEFAULT_MATCH_SHORT_MAX_DISTANCE: Final[int] = 1
_DEFAULT_MATCH_LONG_MAX_DISTANCE: Final[int] = 2
_DEFAULT_MATCH_MAX_DISTANCE_RATIO: Final[float] = 0.2
_DEFAULT_SUBSUMPTION_MIN_SHARED_TOKENS: Final[int] = 2
_DEFAULT_SUBSUMPTION_MAX_EXTRA_TOKENS: Final[int] = 3
_DEFAULT_CHAT_BACKEND: Final[str] = "openai"
_DEFAULT_OPENAI_CHAT_MODEL: Final[str] = "gpt-4o-mini"
_DEFAULT_OLLAMA_URL: Final[str] = "http://localhost:11434"
_DEFAULT_OLLAMA_MODEL: Final[str] = "llama3.1:8b"
_DEFAULT_OLLAMA_TIMEOUT: Final[float] = 120.0
_DEFAULT_VLLM_URL: Final[str] = "http://localhost:8000"
_DEFAULT_VLLM_MODEL: Final[str] = "meta-llama/Meta-Llama-3-8B-Instruct"
_DEFAULT_VLLM_TIMEOUT: Final[float] = 120.0
_DEFAULT_REMOTE_MAX_ATTEMPTS: Final[int] = 3
_DEFAULT_REMOTE_BACKOFF_SECONDS: Final[float] = 10.0

OUTPUT_ORDERS: Final[frozenset[str]] = frozenset({"score", "input"})


class ConfigurationError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


def _env_optional_bool(name: str) -> bool | None:
    """Read an optional boolean environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    msg = f"Environment variable {name} must be a boolean value (true/false)."
    raise ValueError(msg)


def _env_optional_int(name: str) -> int | None:
    """Read an optional integer environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer") from exc


def _env_optional_float(name: str) -> float | None:
    """Read an optional float environment variable."""

    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be a float") from exc


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_float(name: str, default: float) -> float:
    """Read a float environment variable with a fallback (preserving zero)."""

    value = _env_optional_float(name)
    return default if value is None else value


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean environment variable with a fallback."""

    value = _env_optional_bool(name)
    if value is None:
        return default
    return value


def _env_optional_path(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    value = raw.strip()
    return value or None


def normalize_vllm_base_url(url: str | None) -> str:
    """Strip trailing API suffixes so callers can append ``/v1/...`` paths."""

    base = (url or "").strip().rstrip("/")
    for suffix in ("/v1/chat/completions", "/chat/completions", "/v1"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    return base.rstrip("/")


def validate_output_order(order: str) -> str:
    value = (order or "").strip().lower()
    if value not in OUTPUT_ORDERS:
        allowed = ", ".join(sorted(OUTPUT_ORDERS))
        raise ConfigurationError(f"Output order '{order}' is not supported (expected one of: {allowed})")
    return value


@dataclass(slots=True)
class Settings:
    """Runtime settings loaded from environment variables."""

    synonym_table_path: str | None = None
    distinct_terms_path: str | None = None
    input_path: str = _DEFAULT_INPUT_PATH
    output_path: str = _DEFAULT_OUTPUT_PATH
    vosviewer_export_path: str = _DEFAULT_VOSVIEWER_EXPORT_PATH
    input_delimiter: str = _DEFAULT_INPUT_DELIMITER
    output_order: str = _DEFAULT_OUTPUT_ORDER
    match_short_term_length: int = _DEFAULT_MATCH_SHORT_TERM_LENGTH
    match_short_max_distance: int = _DEFAULT_MATCH_SHORT_MAX_DISTANCE
    match_long_max_distance: int = _DEFAULT_MATCH_LONG_MAX_DISTANCE
    match_max_distance_ratio: float = _DEFAULT_MATCH_MAX_DISTANCE_RATIO
    subsumption_enabled: bool = True
    subsumption_min_shared_tokens: int = _DEFAULT_SUBSUMPTION_MIN_SHARED_TOKENS
    subsumption_max_extra_tokens: int = _DEFAULT_SUBSUMPTION_MAX_EXTRA_TOKENS
    contextual_folding_enabled: bool = True
    chat_backend: str = _DEFAULT_CHAT_BACKEND
    openai_api_key: str | None = None
    openai_chat_model: str = _DEFAULT_OPENAI_CHAT_MODEL
    ollama_base_url: str = _DEFAULT_OLLAMA_URL
    ollama_model: str = _DEFAULT_OLLAMA_MODEL
    ollama_request_timeout: float = _DEFAULT_OLLAMA_TIMEOUT
    vllm_base_url: str = _DEFAULT_VLLM_URL
    vllm_model: str = _DEFAULT_VLLM_MODEL
    vllm_api_key: str | None = None
    vllm_request_timeout: float = _DEFAULT_VLLM_TIMEOUT
    remote_max_attempts: int = _DEFAULT_REMOTE_MAX_ATTEMPTS
    remote_backoff_seconds: float = _DEFAULT_REMOTE_BACKOFF_SECONDS
    observability_metrics_enabled: bool = True
    observability_namespace: str = "keyfold"
    observability_prometheus_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings by reading environment variables."""

        metrics_enabled = _env_optional_bool("OBSERVABILITY_METRICS_ENABLED")

        return cls(
            synonym_table_path=_env_optional_path("SYNONYM_TABLE_PATH"),
            distinct_terms_path=_env_optional_path("DISTINCT_TERMS_PATH"),
            input_path=os.getenv("KEYWORD_INPUT_PATH", _DEFAULT_INPUT_PATH),
            output_path=os.getenv("KEYWORD_OUTPUT_PATH", _DEFAULT_OUTPUT_PATH),
            vosviewer_export_path=os.getenv("VOSVIEWER_EXPORT_PATH", _DEFAULT_VOSVIEWER_EXPORT_PATH),
            input_delimiter=os.getenv("KEYWORD_INPUT_DELIMITER", _DEFAULT_INPUT_DELIMITER) or _DEFAULT_INPUT_DELIMITER,
            output_order=validate_output_order(os.getenv("KEYWORD_OUTPUT_ORDER", _DEFAULT_OUTPUT_ORDER)),
            match_short_term_length=max(
                1, _env_int("MATCH_SHORT_TERM_LENGTH", _DEFAULT_MATCH_SHORT_TERM_LENGTH)
            ),
            match_short_max_distance=max(
                0, _env_int("MATCH_SHORT_MAX_DISTANCE", _DEFAULT_MATCH_SHORT_MAX_DISTANCE)
            ),
            match_long_max_distance=max(
                0, _env_int("MATCH_LONG_MAX_DISTANCE", _DEFAULT_MATCH_LONG_MAX_DISTANCE)
            ),
            match_max_distance_ratio=_env_float(
                "MATCH_MAX_DISTANCE_RATIO", _DEFAULT_MATCH_MAX_DISTANCE_RATIO
            ),
            subsumption_enabled=_env_bool("SUBSUMPTION_ENABLED", True),
            subsumption_min_shared_tokens=max(
                1,
                _env_int("SUBSUMPTION_MIN_SHARED_TOKENS", _DEFAULT_SUBSUMPTION_MIN_SHARED_TOKENS),
            ),
            subsumption_max_extra_tokens=max(
                0,
                _env_int("SUBSUMPTION_MAX_EXTRA_TOKENS", _DEFAULT_SUBSUMPTION_MAX_EXTRA_TOKENS),
            ),
            contextual_folding_enabled=_env_bool("CONTEXTUAL_FOLDING_ENABLED", True),
            chat_backend=os.getenv("CHAT_BACKEND", _DEFAULT_CHAT_BACKEND),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_chat_model=os.getenv("OPENAI_CHAT_MODEL", _DEFAULT_OPENAI_CHAT_MODEL),
            ollama_base_url=os.getenv("OLLAMA_BASE_URL", _DEFAULT_OLLAMA_URL),
            ollama_model=os.getenv("OLLAMA_MODEL", _DEFAULT_OLLAMA_MODEL),
            ollama_request_timeout=_env_float("OLLAMA_TIMEOUT", _DEFAULT_OLLAMA_TIMEOUT),
            vllm_base_url=os.getenv("VLLM_BASE_URL", _DEFAULT_VLLM_URL),
            vllm_model=os.getenv("VLLM_MODEL", _DEFAULT_VLLM_MODEL),
            vllm_api_key=os.getenv("VLLM_API_KEY"),
            vllm_request_timeout=_env_float("VLLM_TIMEOUT", _DEFAULT_VLLM_TIMEOUT),
            remote_max_attempts=max(1, _env_int("REMOTE_MAX_ATTEMPTS", _DEFAULT_REMOTE_MAX_ATTEMPTS)),
            remote_backoff_seconds=max(
                0.0, _env_float("REMOTE_BACKOFF_SECONDS", _DEFAULT_REMOTE_BACKOFF_SECONDS)
            ),
            observability_metrics_enabled=metrics_enabled if metrics_enabled is not None else True,
            observability_namespace=os.getenv("OBSERVABILITY_NAMESPACE", "keyfold"),
            observability_prometheus_enabled=_env_bool("OBSERVABILITY_PROMETHEUS_ENABLED", False),
        )

    @property
    def is_openai_chat_backend(self) -> bool:
        """Return True when using the OpenAI Responses API for remote deduplication."""

        return self.chat_backend.lower() == "openai"

    @property
    def is_ollama_chat_backend(self) -> bool:
        """Return True when the chat backend is configured for an Ollama-hosted model."""

        return self.chat_backend.lower() == "ollama"

    @property
    def is_vllm_chat_backend(self) -> bool:
        """Return True when the chat backend is configured for a vLLM-hosted model."""

        return self.chat_backend.lower() == "vllm"

    def match_options(self) -> "MatchOptions":
        """Return the clustering thresholds configured for this run."""

        from .clustering import MatchOptions

        return MatchOptions(
            short_term_length=self.match_short_term_length,
            short_max_distance=self.match_short_max_distance,
            long_max_distance=self.match_long_max_distance,
            max_distance_ratio=self.match_max_distance_ratio,
            subsumption_enabled=self.subsumption_enabled,
            min_shared_tokens=self.subsumption_min_shared_tokens,
            max_extra_tokens=self.subsumption_max_extra_tokens,
            contextual_folding=self.contextual_folding_enabled,
            distinct_pairs=self.load_distinct_pairs(),
        )

    def load_synonym_table(self) -> "SynonymTable":
        """Load the configured synonym table (an empty table when none is configured)."""

        from .synonyms import SynonymTable, load_synonym_table

        if not self.synonym_table_path:
            return SynonymTable()
        return load_synonym_table(self.synonym_table_path)

    def load_distinct_pairs(self) -> frozenset[frozenset[str]]:
        from .synonyms import load_distinct_pairs

        if not self.distinct_terms_path:
            return frozenset()
        return load_distinct_pairs(self.distinct_terms_path)

    def build_metrics_recorder(self) -> "MetricsRecorder":
        """Instantiate the configured metrics recorder."""

        from .observability import MetricsRecorder

        return MetricsRecorder(
            enabled=self.observability_metrics_enabled,
            namespace=self.observability_namespace,
            prometheus_enabled=self.observability_prometheus_enabled,
        )

    def build_engine(self, *, metrics: "MetricsRecorder | None" = None) -> "DedupEngine":
        """Create a dedupe engine; fails fast when the synonym table cannot be loaded."""

        from .engine import DedupEngine

        return DedupEngine(
            synonyms=self.load_synonym_table(),
            options=self.match_options(),
            output_order=validate_output_order(self.output_order),
            metrics=metrics,
        )


__all__ = [
    "ConfigurationError",
    "OUTPUT_ORDERS",
    "Settings",
    "normalize_vllm_base_url",
    "validate_output_order",
]

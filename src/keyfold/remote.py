"""Optional hosted-model deduplication backend.

The deterministic engine in :mod:`keyfold.engine` is the primary path. This
module sends the keyword table plus the merge rules to the configured chat
backend instead and parses the ``[{"k": ..., "t": ...}]`` array it returns.
All timeout and retry handling lives here, outside the core.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Sequence, Tuple, Type, TypeVar

import httpx
import openai
from openai import OpenAI

from .config import Settings, normalize_vllm_base_url
from .observability import MetricsRecorder
from .records import KeywordRecord, format_keyword_records, records_from_payload

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)

_SYSTEM_PROMPT = (
    "You deduplicate bibliometric keyword tables. You answer with a JSON array only, "
    "no prose and no code fences."
)

_MERGE_RULES = """\
The attached table lists keywords and their total link strength. Several keywords
repeat the same meaning. For every group of keywords with the same meaning keep only
the one with the largest total link strength and drop the others.

Treat keywords as the same when they differ only by:
- plural or singular form (systems / system, cities / city, facade / facades)
- tense or word form (efficiency / efficient)
- abbreviations (si and si(111) both abbreviate silicon)
- dash, underscore or spacing (demand side management / demand-side)
- British or American spelling (decarbonisation / decarbonization)
- an extra qualifier on the same concept (beta-ga2o3 single-crystals / beta-ga2o3,
  climate change / climate change mitigation, doherty amplifier / doherty power-amplifier)

Example of one group: zero-energy building, zero-energy buildings, zero energy building,
zero energy building (zeb), zero energy buildings and zero energy house are the same;
keep only the one with the largest value.

Return every remaining keyword as an array of objects with "k" (the keyword exactly
as written in the table) and "t" (its total link strength as an integer), e.g.
[{"k": "adaptation", "t": 63}, {"k": "adoption", "t": 105}, {"k": "air", "t": 103}]
"""


class RemoteDedupError(RuntimeError):
    """Raised when the hosted model cannot produce a usable keyword array."""


def build_instruction(records: Sequence[KeywordRecord]) -> dict[str, str]:
    """Return the system/user prompt pair for ``records``."""

    table = format_keyword_records(records)
    user = f"{_MERGE_RULES}\nKeyword table:\n{table}"
    return {"system": _SYSTEM_PROMPT, "user": user}


def parse_model_payload(text: str) -> List[KeywordRecord]:
    """Parse the model's JSON array, tolerating code fences and a ``keywords`` wrapper."""

    cleaned = (text or "").strip()
    fenced = _CODE_FENCE_RE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise RemoteDedupError(f"Model response is not valid JSON: {exc}") from exc
    if isinstance(data, dict):
        data = data.get("keywords")
    if not isinstance(data, list):
        raise RemoteDedupError("Model response must be a JSON array of {k, t} objects")
    parsed = records_from_payload(data)
    if parsed.errors:
        logger.warning("remote.payload.skipped entries=%s", len(parsed.errors))
    return parsed.records


def call_with_retries(
    func: Callable[[], T],
    *,
    attempts: int,
    backoff_seconds: float,
    retry_on: Tuple[Type[BaseException], ...] = (httpx.HTTPError, openai.APIError, RemoteDedupError),
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[T, int]:
    """Call ``func`` up to ``attempts`` times with exponential backoff.

    Returns the result and the number of attempts used. The last error is
    re-raised as :class:`RemoteDedupError` once attempts are exhausted.
    """

    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return func(), attempt
        except retry_on as exc:
            if attempt == attempts:
                raise RemoteDedupError(f"Remote deduplication failed after {attempts} attempts: {exc}") from exc
            delay = max(0.0, backoff_seconds) * (2 ** (attempt - 1))
            logger.warning(
                "remote.retry attempt=%s/%s delay=%.1fs error=%s", attempt, attempts, delay, exc
            )
            sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover


@dataclass(slots=True)
class RemoteDedupReport:
    entries: List[KeywordRecord]
    backend: str | None
    attempts: int
    unknown_keys: List[str] = field(default_factory=list)

    def to_payload(self) -> list[dict[str, Any]]:
        return [record.to_payload() for record in self.entries]


class RemoteDedupClient:
    """Send keyword tables to the configured chat backend (OpenAI, Ollama or vLLM)."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: httpx.Client | None = None,
        metrics: MetricsRecorder | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._settings = settings
        self._http = http_client or httpx.Client()
        self._owns_http = http_client is None
        self._metrics = metrics
        self._sleep = sleep
        self._backend: str | None = None
        self._openai_client: OpenAI | None = None
        self._disable_reason: str | None = None

        if settings.is_openai_chat_backend:
            if not settings.openai_api_key:
                self._disable_reason = "missing-openai-key"
            else:
                self._openai_client = OpenAI(api_key=settings.openai_api_key)
                self._backend = "openai"
        elif settings.is_ollama_chat_backend:
            if settings.ollama_base_url and settings.ollama_model:
                self._backend = "ollama"
            else:
                self._disable_reason = "missing-ollama-config"
        elif settings.is_vllm_chat_backend:
            if normalize_vllm_base_url(settings.vllm_base_url) and settings.vllm_model:
                self._backend = "vllm"
            else:
                self._disable_reason = "missing-vllm-config"
        else:
            self._disable_reason = f"unsupported-backend:{settings.chat_backend}"

        if self._backend:
            logger.info("remote.backend_ready backend=%s", self._backend)
        else:
            logger.info("remote.disabled reason=%s", self._disable_reason)

    @property
    def enabled(self) -> bool:
        return self._backend is not None

    @property
    def backend(self) -> str | None:
        return self._backend

    @property
    def disable_reason(self) -> str | None:
        return self._disable_reason

    def close(self) -> None:
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "RemoteDedupClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def deduplicate(self, records: Sequence[KeywordRecord]) -> RemoteDedupReport:
        if not records:
            return RemoteDedupReport(entries=[], backend=self._backend, attempts=0)
        if not self.enabled:
            raise RemoteDedupError(f"Remote backend is disabled ({self._disable_reason})")

        prompt = build_instruction(records)

        def _attempt() -> List[KeywordRecord]:
            return parse_model_payload(self._invoke_backend(prompt))

        start = time.perf_counter()
        entries, attempts = call_with_retries(
            _attempt,
            attempts=self._settings.remote_max_attempts,
            backoff_seconds=self._settings.remote_backoff_seconds,
            sleep=self._sleep,
        )

        known = {record.key for record in records}
        accepted = [entry for entry in entries if entry.key in known]
        unknown = [entry.key for entry in entries if entry.key not in known]
        if unknown:
            logger.warning("remote.unknown_keys count=%s sample=%s", len(unknown), unknown[:5])
        if self._metrics is not None:
            self._metrics.record_timing("remote.duration", time.perf_counter() - start, backend=self._backend)
            self._metrics.increment("remote.attempts", value=attempts, backend=self._backend)
        logger.info(
            "remote.complete backend=%s records=%s returned=%s attempts=%s",
            self._backend,
            len(records),
            len(accepted),
            attempts,
        )
        return RemoteDedupReport(
            entries=accepted,
            backend=self._backend,
            attempts=attempts,
            unknown_keys=unknown,
        )

    def _invoke_backend(self, prompt: dict[str, str]) -> str:
        messages = [
            {"role": "system", "content": prompt["system"]},
            {"role": "user", "content": prompt["user"]},
        ]

        if self._backend == "openai" and self._openai_client is not None:
            response = self._openai_client.responses.create(
                model=self._settings.openai_chat_model,
                input=messages,
            )
            texts: list[str] = []
            for item in getattr(response, "output", []):
                if getattr(item, "type", "") == "output_text":
                    texts.append(getattr(item, "text", ""))
            if texts:
                return "\n".join(texts).strip()
            if getattr(response, "output_text", None):
                return str(response.output_text).strip()
            raise RemoteDedupError("OpenAI response did not include text output")

        if self._backend == "ollama":
            url = f"{self._settings.ollama_base_url.rstrip('/')}/api/chat"
            payload = {"model": self._settings.ollama_model, "messages": messages, "stream": False}
            response = self._http.post(url, json=payload, timeout=self._settings.ollama_request_timeout)
            response.raise_for_status()
            data = response.json()
            message = data.get("message") or {}
            content = message.get("content") or data.get("response")
            if not content:
                raise RemoteDedupError("Ollama response did not include content")
            return str(content).strip()

        if self._backend == "vllm":
            url = f"{normalize_vllm_base_url(self._settings.vllm_base_url)}/v1/chat/completions"
            headers = {"Content-Type": "application/json"}
            if self._settings.vllm_api_key:
                headers["Authorization"] = f"Bearer {self._settings.vllm_api_key}"
            payload = {"model": self._settings.vllm_model, "messages": messages, "stream": False}
            response = self._http.post(
                url, json=payload, headers=headers, timeout=self._settings.vllm_request_timeout
            )
            response.raise_for_status()
            data = response.json()
            for choice in data.get("choices") or []:
                content = (choice.get("message") or {}).get("content")
                if content:
                    return str(content).strip()
            raise RemoteDedupError("vLLM response did not include content")

        raise RemoteDedupError("Remote backend is not correctly configured")


__all__ = [
    "RemoteDedupClient",
    "RemoteDedupError",
    "RemoteDedupReport",
    "build_instruction",
    "call_with_retries",
    "parse_model_payload",
]

# appforge/llm_client.py
from __future__ import annotations

import logging
import os
import random
import re
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Union

import httpx
import jsonschema
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)

from .config import DEFAULT_CONFIG, ConfigError, get_model_for_stage
from .llm_utils import ParseError, parse_json_object

logger = logging.getLogger(__name__)

Prompt = Union[str, List[Dict[str, str]]]

# Transport failures while a stream is being consumed: "keep what arrived".
_ABORT_ERRORS = (APIConnectionError, APITimeoutError, httpx.TransportError)

_RETRYABLE_STATUS = (429, 500, 502, 503, 504)


class StreamAborted(RuntimeError):
    """The fragment producer stopped early (cancelled, or the connection dropped)."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"stream aborted: {reason}")
        self.reason = reason


class ModelResponseError(RuntimeError):
    """The model returned output that could not be parsed or failed its schema."""

    def __init__(self, stage: str, message: str, diagnostic: str = "") -> None:
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.message = message
        self.diagnostic = diagnostic


class ModelClient(Protocol):
    """What the flows need from a generative model."""

    def stream_text(
        self,
        prompt: Prompt,
        *,
        stage: str,
        instructions: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[str]:
        ...

    def chat_json(
        self,
        prompt: Prompt,
        *,
        schema: Dict[str, Any],
        stage: str,
        instructions: Optional[str] = None,
    ) -> Dict[str, Any]:
        ...


@dataclass
class CallStats:
    model: str
    latency_ms: float
    tokens_in: int = 0
    tokens_out: int = 0


def _safe_truncate(s: Any, limit: int = 400) -> str:
    text = str(s or "")
    return text if len(text) <= limit else text[:limit].rstrip() + "..."


def _retry_after_seconds(exc: Exception) -> Optional[float]:
    resp = getattr(exc, "response", None)
    headers = getattr(resp, "headers", None)
    if not headers:
        return None
    raw = headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, (RateLimitError, APITimeoutError, APIConnectionError, InternalServerError)):
        return True
    if isinstance(exc, APIStatusError):
        return getattr(exc, "status_code", None) in _RETRYABLE_STATUS
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException, httpx.RemoteProtocolError))


def _sanitize_format_name(name: Any, fallback: str = "response", max_len: int = 64) -> str:
    """Responses API requires text.format.name to match ^[a-zA-Z0-9_-]+$."""
    s = re.sub(r"[^a-zA-Z0-9_-]+", "_", str(name or "").strip()).strip("_-")
    return (s[:max_len].rstrip("_-") if s else "") or fallback


def _first_text_from_response(resp: Any) -> str:
    text = getattr(resp, "output_text", None)
    if isinstance(text, str) and text.strip():
        return text
    chunks: List[str] = []
    for item in getattr(resp, "output", None) or []:
        for part in getattr(item, "content", None) or []:
            t = getattr(part, "text", None)
            if isinstance(t, str) and t.strip():
                chunks.append(t)
    return "\n".join(chunks)


def _usage_numbers(resp: Any) -> tuple:
    usage = getattr(resp, "usage", None)
    return (
        int(getattr(usage, "input_tokens", 0) or 0),
        int(getattr(usage, "output_tokens", 0) or 0),
    )


class LLMClient:
    """
    OpenAI client adapter (Responses API).

    - ``stream_text`` yields text deltas in arrival order; iteration is the
      pull-based "next fragment" interface the parser loop consumes.
    - ``chat_json`` performs one structured (JSON Schema) call and validates
      the result before returning it.
    """

    def __init__(
        self,
        cfg: Optional[Dict[str, Any]] = None,
        *,
        api_key: Optional[str] = None,
        backoff_base: float = 1.2,
        backoff_cap: float = 10.0,
    ) -> None:
        self.cfg = cfg or DEFAULT_CONFIG
        llm = self.cfg.get("llm") or {}
        key_env = llm.get("api_key_env") or "OPENAI_API_KEY"
        self.api_key = api_key or os.getenv(key_env)
        self.base_url = llm.get("base_url") or None
        self.timeout = float(llm.get("timeout_sec") or 600.0)
        self.max_retries = max(0, int(llm.get("max_retries") or 0))
        self.max_output_tokens = int(llm.get("max_output_tokens") or 32000)
        self.backoff_base = float(backoff_base)
        self.backoff_cap = float(backoff_cap)

        if not self.api_key:
            raise ConfigError(f"Missing {key_env}; set it in the environment or a .env file.")

        self._http_client = httpx.Client(timeout=httpx.Timeout(timeout=self.timeout, connect=30.0))
        kwargs: Dict[str, Any] = {"api_key": self.api_key, "http_client": self._http_client, "max_retries": 0}
        if self.base_url:
            kwargs["base_url"] = self.base_url
        self._client = OpenAI(**kwargs)
        self._closed = False

        logger.info(
            "LLM client ready",
            extra={"meta": {"base_url": self.base_url or "default", "model": llm.get("model"), "timeout_sec": self.timeout}},
        )

    def close(self) -> None:
        if not self._closed:
            self._http_client.close()
            self._closed = True

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def model_for(self, stage: str) -> str:
        return get_model_for_stage(stage, self.cfg)

    # ----------------- streaming -----------------

    def stream_text(
        self,
        prompt: Prompt,
        *,
        stage: str,
        instructions: Optional[str] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[str]:
        model = self.model_for(stage)
        params: Dict[str, Any] = {"model": model, "input": prompt, "max_output_tokens": self.max_output_tokens}
        if instructions:
            params["instructions"] = instructions

        t0 = time.perf_counter()
        chars = 0
        try:
            with self._client.responses.stream(**params) as stream:
                for event in stream:
                    if cancel is not None and cancel.is_set():
                        raise StreamAborted("cancelled by caller")
                    if event.type == "response.output_text.delta":
                        chars += len(event.delta)
                        yield event.delta
                    elif event.type in ("response.failed", "error"):
                        raise ModelResponseError(stage, "model reported a failure mid-stream", _safe_truncate(event))
        except _ABORT_ERRORS as e:
            logger.warning(
                "stream transport failure",
                extra={"meta": {"stage": stage, "model": model, "chars": chars, "err": str(e)}},
            )
            raise StreamAborted(str(e) or type(e).__name__) from e
        logger.info(
            "stream finished",
            extra={
                "meta": {
                    "stage": stage,
                    "model": model,
                    "chars": chars,
                    "latency_ms": round((time.perf_counter() - t0) * 1000, 1),
                }
            },
        )

    # ----------------- structured -----------------

    def chat_json(
        self,
        prompt: Prompt,
        *,
        schema: Dict[str, Any],
        stage: str,
        instructions: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not schema:
            raise ValueError(f"chat_json: schema is required (stage={stage!r})")
        model = self.model_for(stage)
        params: Dict[str, Any] = {
            "model": model,
            "input": prompt,
            "max_output_tokens": self.max_output_tokens,
            "text": {"format": self._build_structured_text_format(schema)},
        }
        if instructions:
            params["instructions"] = instructions

        t0 = time.perf_counter()
        resp = self._with_retries(lambda: self._client.responses.create(**params), stage=stage)
        tokens_in, tokens_out = _usage_numbers(resp)
        stats = CallStats(
            model=model,
            latency_ms=round((time.perf_counter() - t0) * 1000, 1),
            tokens_in=tokens_in,
            tokens_out=tokens_out,
        )
        logger.info("structured call finished", extra={"meta": {"stage": stage, **stats.__dict__}})
        return validate_structured(_first_text_from_response(resp), schema, stage=stage)

    @staticmethod
    def _build_structured_text_format(schema: Dict[str, Any]) -> Dict[str, Any]:
        raw_name = schema.get("$id") or schema.get("title") or schema.get("name")
        body = {k: v for k, v in schema.items() if k not in ("$schema", "$id")}
        return {"type": "json_schema", "name": _sanitize_format_name(raw_name), "schema": body, "strict": True}

    def _with_retries(self, call: Callable[[], Any], *, stage: str) -> Any:
        attempt = 0
        while True:
            try:
                return call()
            except Exception as e:
                if attempt >= self.max_retries or not _is_retryable(e):
                    raise
                delay = _retry_after_seconds(e)
                if not delay or delay <= 0:
                    base = min(self.backoff_cap, self.backoff_base * (2**attempt))
                    delay = base * (0.5 + random.random() * 0.5)
                else:
                    delay = min(delay, self.backoff_cap)
                attempt += 1
                logger.warning(
                    "LLM call failed; backing off",
                    extra={
                        "meta": {
                            "stage": stage,
                            "attempt": attempt,
                            "of": self.max_retries + 1,
                            "err": _safe_truncate(e),
                            "sleep_s": round(delay, 3),
                        }
                    },
                )
                time.sleep(delay)


def validate_structured(raw_text: str, schema: Dict[str, Any], *, stage: str) -> Dict[str, Any]:
    """Parse and schema-check a structured model result."""
    if not (raw_text or "").strip():
        raise ModelResponseError(stage, "model returned empty output; expected JSON")
    parsed = parse_json_object(raw_text)
    if isinstance(parsed, ParseError):
        raise ModelResponseError(stage, parsed.message, parsed.snippet)
    try:
        jsonschema.validate(parsed, schema)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ModelResponseError(stage, f"schema validation failed at {where}: {e.message}") from e
    return parsed


__all__ = [
    "CallStats",
    "LLMClient",
    "ModelClient",
    "ModelResponseError",
    "Prompt",
    "StreamAborted",
    "validate_structured",
]

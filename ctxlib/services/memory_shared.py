"""
Shared plumbing for memory services: the embedding provider, the tool error
decorator and call pacing.
"""

from __future__ import annotations

import random
import threading
import time
import uuid
from functools import wraps
from typing import Optional, List, Callable, Union

import httpx

import ctxlib.config as config
from ctxlib.errors import (
    CoreError,
    EmbeddingError,
    ValidationIssue,
)
from ctxlib.validators import (
    validate_required_text as _validate_required_text,
    validate_optional_text as _validate_optional_text,
    validate_limit as _validate_limit,
    validate_threshold as _validate_threshold,
    validate_string_list as _validate_string_list,
    validate_metadata as _validate_metadata,
    validate_metadata_filters as _validate_metadata_filters,
)

logger = config.logger

STATUS_PARTIAL_FAILURE = "partial_failure"
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

http_client: Optional[httpx.Client] = None


# =============================================================================
# Embedding provider
# =============================================================================

def init_http_client() -> None:
    """Open the pooled client used for embedding requests."""
    global http_client
    headers = {"Content-Type": "application/json"}
    if config.OPENAI_API_KEY:
        headers["Authorization"] = f"Bearer {config.OPENAI_API_KEY}"
    http_client = httpx.Client(
        timeout=httpx.Timeout(config.EMBEDDING_TIMEOUT_SECONDS),
        limits=httpx.Limits(max_keepalive_connections=10, max_connections=50),
        headers=headers,
    )
    logger.info("embedding_client_opened", extra={"model": config.EMBEDDING_MODEL})


def cleanup_http_client() -> None:
    global http_client
    if http_client is not None:
        http_client.close()
        http_client = None
        logger.info("embedding_client_closed")


def _embedding_input(text: str) -> str:
    return text[:config.MAX_EMBEDDING_TEXT_LENGTH]


def _request_embedding(client: httpx.Client, text: str) -> Union[List[float], str]:
    """
    Make one embeddings call.

    Returns the vector, or a short failure description when the call may be
    retried. Raises EmbeddingError for failures a retry cannot fix.
    """
    try:
        response = client.post(
            config.EMBEDDING_API_URL,
            json={"model": config.EMBEDDING_MODEL, "input": _embedding_input(text)},
        )
    except httpx.RequestError as exc:
        return f"request error: {exc.__class__.__name__}"

    if response.status_code in RETRYABLE_STATUS_CODES:
        return f"status {response.status_code}"
    if response.status_code >= 400:
        _embedding_failed(f"status {response.status_code}")

    items = response.json().get("data") or []
    vector = items[0].get("embedding") if items else None
    if not vector:
        _embedding_failed("empty embedding")
    return vector


def embed_text_sync(text: str) -> List[float]:
    """Embed ``text`` with the configured provider, retrying transient failures."""
    if not isinstance(text, str) or not text.strip():
        raise EmbeddingError("embedding provider unavailable: nothing to embed")
    if config.EMBEDDING_PROVIDER == "none":
        raise EmbeddingError("embedding provider unavailable: provider disabled")
    if embedding_circuit_breaker.is_open():
        raise EmbeddingError("embedding provider unavailable: circuit breaker open")
    if http_client is None:
        init_http_client()

    attempts = config.EMBEDDING_RETRY_MAX + 1
    failure = "no attempts made"
    for attempt in range(attempts):
        if attempt:
            _sleep_backoff(attempt - 1)
        outcome = _request_embedding(http_client, text)
        if not isinstance(outcome, str):
            embedding_circuit_breaker.record_success()
            return outcome
        failure = outcome
        logger.info(
            "embedding_retryable_failure",
            extra={"attempt": attempt + 1, "attempts": attempts, "detail": failure},
        )
    _embedding_failed(failure)


def _embedding_failed(detail: str) -> None:
    embedding_circuit_breaker.record_failure(detail)
    logger.warning("embedding_unavailable", extra={"detail": detail})
    raise EmbeddingError(f"embedding provider unavailable: {detail}")


def _sleep_backoff(attempt: int) -> None:
    delay = config.EMBEDDING_RETRY_BACKOFF_SECONDS * (2 ** attempt)
    time.sleep(delay + random.uniform(0, config.EMBEDDING_RETRY_JITTER_SECONDS))


def _embed_or_raise(text: str, memory_id: Optional[str] = None) -> List[float]:
    try:
        vector = embed_text_sync(text)
    except EmbeddingError as exc:
        if memory_id and exc.memory_id is None:
            exc.memory_id = memory_id
        raise
    if not vector:
        raise EmbeddingError("Failed to generate vector embedding", memory_id=memory_id)
    return list(vector)


def _new_memory_id() -> str:
    return str(uuid.uuid4())


# =============================================================================
# Tool error handling
# =============================================================================

def _tool_error_payload(tool_name: str, exc: Union[ValidationIssue, CoreError]) -> dict:
    payload = {"status": "error", "tool": tool_name, "message": str(exc)}
    if isinstance(exc, ValidationIssue):
        payload["error_type"] = "validation_error"
        payload["field"] = exc.field
    else:
        payload["error_type"] = exc.error_type
        if exc.memory_id:
            payload["id"] = exc.memory_id
    return payload


def service_tool(fn: Callable[..., dict]) -> Callable[..., dict]:
    """Turn validation and store failures raised by ``fn`` into error payloads."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except ValidationIssue as exc:
            logger.info(
                "tool_validation_error",
                extra={"tool": fn.__name__, "field": exc.field, "error_type": exc.error_type},
            )
            return _tool_error_payload(fn.__name__, exc)
        except CoreError as exc:
            logger.warning(
                "tool_core_error",
                extra={
                    "tool": fn.__name__,
                    "error_type": exc.error_type,
                    "memory_id": exc.memory_id,
                },
            )
            return _tool_error_payload(fn.__name__, exc)
    return wrapper


# =============================================================================
# Provider protection and pacing
# =============================================================================

class EmbeddingCircuitBreaker:
    """
    Stop calling the provider after repeated failures.

    Opens once ``failure_threshold`` consecutive failures are recorded and
    stays open for ``cooldown_seconds``. Any success closes it.
    """

    def __init__(
        self,
        failure_threshold: int,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._threshold = max(1, failure_threshold)
        self._cooldown = max(1.0, float(cooldown_seconds))
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._open_until: Optional[float] = None
        self._last_error: Optional[str] = None

    def _is_open_locked(self) -> bool:
        return self._open_until is not None and self._clock() < self._open_until

    def is_open(self) -> bool:
        with self._lock:
            return self._is_open_locked()

    def record_success(self) -> None:
        with self._lock:
            self._failures = 0
            self._open_until = None

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._failures += 1
            self._last_error = error
            if self._failures >= self._threshold and not self._is_open_locked():
                self._open_until = self._clock() + self._cooldown
                logger.warning(
                    "embedding_circuit_opened",
                    extra={"failures": self._failures, "cooldown_seconds": self._cooldown},
                )

    def reset(self) -> None:
        with self._lock:
            self._failures = 0
            self._open_until = None
            self._last_error = None

    def status(self) -> dict:
        with self._lock:
            remaining = 0.0
            if self._is_open_locked():
                remaining = self._open_until - self._clock()
            return {
                "open": remaining > 0,
                "consecutive_failures": self._failures,
                "cooldown_remaining_seconds": round(remaining, 3),
                "last_error": self._last_error,
            }


embedding_circuit_breaker = EmbeddingCircuitBreaker(
    failure_threshold=config.EMBEDDING_FAILURE_THRESHOLD,
    cooldown_seconds=config.EMBEDDING_COOLDOWN_SECONDS,
)


class IntervalLimiter:
    """
    Enforce a minimum spacing between calls.

    Each acquire() blocks until at least `interval_seconds` have passed since
    the previous acquire() returned. Thread-safe, so a bounded worker pool can
    share one limiter.
    """

    def __init__(
        self,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._interval = max(0.0, interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last: Optional[float] = None

    def acquire(self) -> float:
        """Wait for the next slot and return the seconds spent waiting."""
        with self._lock:
            waited = 0.0
            if self._last is not None and self._interval > 0:
                remaining = self._interval - (self._clock() - self._last)
                if remaining > 0:
                    self._sleep(remaining)
                    waited = remaining
            self._last = self._clock()
            return waited

    def mark(self) -> None:
        """Restart the interval from now, e.g. when a unit of work finishes."""
        with self._lock:
            self._last = self._clock()

import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "json")

import httpx
import pytest

from ctxlib.errors import EmbeddingError
import ctxlib.config as config
from ctxlib.services import memory_shared
from ctxlib.services.memory_shared import (
    EmbeddingCircuitBreaker,
    IntervalLimiter,
    embed_text_sync as provider_embed_text_sync,
)


@pytest.fixture
def openai_client(monkeypatch):
    requests = []
    responses = []

    def handler(request):
        requests.append(request)
        return responses.pop(0)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    monkeypatch.setattr(config, "EMBEDDING_PROVIDER", "openai")
    monkeypatch.setattr(config, "EMBEDDING_RETRY_MAX", 0)
    monkeypatch.setattr(memory_shared, "http_client", client)
    try:
        yield requests, responses
    finally:
        client.close()


def test_embed_returns_provider_vector(openai_client):
    requests, responses = openai_client
    responses.append(httpx.Response(200, json={"data": [{"embedding": [0.1, 0.2, 0.3]}]}))

    vector = provider_embed_text_sync("User prefers dark mode")

    assert vector == [0.1, 0.2, 0.3]
    assert len(requests) == 1
    body = requests[0].read().decode()
    assert "User prefers dark mode" in body
    assert config.EMBEDDING_MODEL in body


def test_embed_truncates_long_input(openai_client, monkeypatch):
    requests, responses = openai_client
    monkeypatch.setattr(config, "MAX_EMBEDDING_TEXT_LENGTH", 10)
    responses.append(httpx.Response(200, json={"data": [{"embedding": [1.0]}]}))

    provider_embed_text_sync("abcdefghijklmnopqrstuvwxyz")

    body = requests[0].read().decode()
    assert "abcdefghij" in body
    assert "abcdefghijk" not in body


def test_embed_accepts_text_longer_than_document_limit(openai_client, monkeypatch):
    requests, responses = openai_client
    monkeypatch.setattr(config, "MAX_DOCUMENT_LENGTH", 20)
    monkeypatch.setattr(config, "MAX_EMBEDDING_TEXT_LENGTH", 30)
    responses.append(httpx.Response(200, json={"data": [{"embedding": [0.5, 0.5]}]}))

    vector = provider_embed_text_sync("[Project: auth | Section: Requirements]\n\nreset by email")

    assert vector == [0.5, 0.5]
    assert len(requests) == 1


def test_embed_blank_text_raises_embedding_error(openai_client):
    requests, _ = openai_client

    with pytest.raises(EmbeddingError):
        provider_embed_text_sync("   ")

    assert requests == []


def test_embed_server_error_raises_and_counts_failure(openai_client):
    _, responses = openai_client
    responses.append(httpx.Response(503, json={"error": "unavailable"}))

    with pytest.raises(EmbeddingError):
        provider_embed_text_sync("anything")

    assert memory_shared.embedding_circuit_breaker.status()["consecutive_failures"] == 1


def test_embed_empty_result_raises(openai_client):
    _, responses = openai_client
    responses.append(httpx.Response(200, json={"data": []}))

    with pytest.raises(EmbeddingError):
        provider_embed_text_sync("anything")


def test_embed_disabled_provider_raises():
    assert config.EMBEDDING_PROVIDER == "none"
    with pytest.raises(EmbeddingError):
        provider_embed_text_sync("anything")


def test_embed_refuses_while_circuit_open(openai_client, monkeypatch):
    requests, _ = openai_client
    monkeypatch.setattr(memory_shared.embedding_circuit_breaker, "is_open", lambda: True)

    with pytest.raises(EmbeddingError):
        provider_embed_text_sync("anything")

    assert requests == []


def test_circuit_breaker_opens_after_threshold_and_closes_on_success():
    breaker = EmbeddingCircuitBreaker(failure_threshold=2, cooldown_seconds=60)

    breaker.record_failure("status 503")
    assert breaker.is_open() is False
    breaker.record_failure("status 503")
    assert breaker.is_open() is True
    assert breaker.status()["last_error"] == "status 503"

    breaker.record_success()
    assert breaker.is_open() is False
    assert breaker.status()["consecutive_failures"] == 0


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def test_interval_limiter_spaces_calls():
    clock = FakeClock()
    limiter = IntervalLimiter(0.5, clock=clock, sleep=clock.sleep)

    assert limiter.acquire() == 0.0
    clock.now += 0.2
    assert limiter.acquire() == pytest.approx(0.3)
    clock.now += 1.0
    assert limiter.acquire() == 0.0
    assert clock.sleeps == [pytest.approx(0.3)]


def test_interval_limiter_mark_restarts_interval():
    clock = FakeClock()
    limiter = IntervalLimiter(2.0, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    clock.now += 5.0
    limiter.mark()
    clock.now += 0.5

    assert limiter.acquire() == pytest.approx(1.5)


def test_interval_limiter_zero_interval_never_sleeps():
    clock = FakeClock()
    limiter = IntervalLimiter(0.0, clock=clock, sleep=clock.sleep)

    for _ in range(3):
        limiter.acquire()

    assert clock.sleeps == []


def test_embed_retries_transient_status(openai_client, monkeypatch):
    requests, responses = openai_client
    monkeypatch.setattr(config, "EMBEDDING_RETRY_MAX", 1)
    backoffs = []
    monkeypatch.setattr(memory_shared, "_sleep_backoff", backoffs.append)
    responses.append(httpx.Response(429, json={"error": "rate limited"}))
    responses.append(httpx.Response(200, json={"data": [{"embedding": [0.5]}]}))

    assert provider_embed_text_sync("anything") == [0.5]
    assert len(requests) == 2
    assert backoffs == [0]
    assert memory_shared.embedding_circuit_breaker.status()["consecutive_failures"] == 0


def test_embed_client_error_is_not_retried(openai_client, monkeypatch):
    requests, responses = openai_client
    monkeypatch.setattr(config, "EMBEDDING_RETRY_MAX", 3)
    responses.append(httpx.Response(401, json={"error": "bad key"}))

    with pytest.raises(EmbeddingError):
        provider_embed_text_sync("anything")

    assert len(requests) == 1


def test_circuit_breaker_closes_after_cooldown():
    clock = FakeClock()
    breaker = EmbeddingCircuitBreaker(failure_threshold=1, cooldown_seconds=30, clock=clock)

    breaker.record_failure("status 500")
    assert breaker.is_open() is True
    assert breaker.status()["cooldown_remaining_seconds"] == 30.0

    clock.now += 31
    assert breaker.is_open() is False

import os
import re

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "json")
os.environ.setdefault("EMBEDDING_PROVIDER", "none")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import ctxlib.config as config
from ctxlib.db import DB
from ctxlib.models import Base
from ctxlib.services import memory_shared

TOKEN_RE = re.compile(r"[a-z0-9]+")


class KeywordEmbedder:
    """Bag-of-words vectors: texts are similar only through shared words."""

    def __init__(self, dim: int = 1024):
        self.dim = dim
        self.vocabulary: dict[str, int] = {}
        self.calls: list[str] = []

    def __call__(self, text: str) -> list[float]:
        self.calls.append(text)
        vector = [0.0] * self.dim
        for token in TOKEN_RE.findall(text.lower()):
            index = self.vocabulary.setdefault(token, len(self.vocabulary) % self.dim)
            vector[index] += 1.0
        return vector


@pytest.fixture
def server_db(tmp_path):
    db_path = tmp_path / "ctxlib.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)

    previous = (DB.engine, DB.SessionLocal, DB.vector_engine, DB.VectorSessionLocal)
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    DB.vector_engine = engine
    DB.VectorSessionLocal = SessionLocal
    try:
        yield engine
    finally:
        DB.engine, DB.SessionLocal, DB.vector_engine, DB.VectorSessionLocal = previous
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def embedder(monkeypatch):
    keyword_embedder = KeywordEmbedder()
    monkeypatch.setattr(memory_shared, "embed_text_sync", keyword_embedder)
    monkeypatch.setattr(config, "RECONCILE_EMBED_INTERVAL_SECONDS", 0.0)
    monkeypatch.setattr(config, "RECONCILE_BATCH_INTERVAL_SECONDS", 0.0)
    monkeypatch.setattr(config, "RECONCILE_TIME_BUDGET_SECONDS", 0.0)
    memory_shared.embedding_circuit_breaker.reset()
    yield keyword_embedder
    memory_shared.embedding_circuit_breaker.reset()

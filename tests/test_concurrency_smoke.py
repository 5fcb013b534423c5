import os
from concurrent.futures import ThreadPoolExecutor

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "json")

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ctxlib.db import DB
from ctxlib.models import Base
from ctxlib.services import memory_service


def _store(text: str) -> dict:
    return memory_service.memory_store(content=text, namespace="concurrency")


def test_memory_store_concurrency(tmp_path):
    db_path = tmp_path / "concurrency.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    try:
        texts = ["Concurrent memory 1", "Concurrent memory 2"]
        with ThreadPoolExecutor(max_workers=2) as executor:
            results = list(executor.map(_store, texts))

        assert all(result["status"] == "stored" for result in results)
        assert len({result["id"] for result in results}) == 2

        listed = memory_service.memory_list_recent(namespace="concurrency", limit=10)
        assert listed["count"] == 2
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        engine.dispose()

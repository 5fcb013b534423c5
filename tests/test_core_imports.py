import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "json")


def test_core_imports():
    import ctxlib.context  # noqa: F401
    import ctxlib.models  # noqa: F401
    import ctxlib.services.memory_service  # noqa: F401


def test_json_backend_selected_for_sqlite():
    import ctxlib.config as config

    assert config._derive_effective_vector_backend("sqlite", "pgvector") == "json"
    assert config._derive_effective_vector_backend("postgres", "json") == "json"
    assert config._derive_effective_vector_backend("postgres", "pgvector") == "pgvector"


def test_core_smoke_lifecycle(server_db):
    import ctxlib.services.memory_service as memory

    stored = memory.memory_store(content="Core import smoke memory", namespace="smoke")
    assert stored["status"] == "stored"

    search_result = memory.memory_search(query="Core import smoke memory", namespace="smoke")
    assert search_result["count"] == 1
    assert search_result["results"][0]["id"] == stored["id"]

    deleted = memory.memory_delete(memory_id=stored["id"], namespace="smoke")
    assert deleted["status"] == "deleted"

    search_after = memory.memory_search(query="Core import smoke memory", namespace="smoke")
    assert search_after["count"] == 0

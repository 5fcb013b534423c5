import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "json")

from ctxlib.errors import EmbeddingError, ValidationIssue, VectorStoreError
from ctxlib.models import Memory, VectorRecord
from ctxlib.services import memory_service, memory_shared
from ctxlib.vector_index import vector_index


def _failing_embedder(text):
    raise EmbeddingError("embedding provider unavailable: test outage")


def test_store_writes_both_stores_under_one_id(server_db, db_session):
    result = memory_service.memory_store(
        content="User prefers dark mode",
        namespace="u1",
        metadata={"source": "chat"},
    )
    assert result["status"] == "stored"
    memory_id = result["id"]

    row = db_session.query(Memory).filter(Memory.id == memory_id).one()
    assert row.namespace == "u1"
    assert row.content == "User prefers dark mode"
    assert row.metadata_ == {"source": "chat"}

    vector = db_session.query(VectorRecord).filter(VectorRecord.id == memory_id).one()
    assert vector.namespace == "u1"
    assert vector.metadata_["content"] == "User prefers dark mode"
    assert vector.metadata_["source"] == "chat"


def test_embedding_failure_keeps_row_and_reports_pending(server_db, db_session, monkeypatch):
    monkeypatch.setattr(memory_shared, "embed_text_sync", _failing_embedder)

    result = memory_service.memory_store(content="Remember the release date", namespace="u1")

    assert result["status"] == "error"
    assert result["error_type"] == "embedding_error"
    assert result["pending_reconciliation"] is True
    memory_id = result["id"]
    assert db_session.query(Memory).filter(Memory.id == memory_id).count() == 1
    assert db_session.query(VectorRecord).filter(VectorRecord.id == memory_id).count() == 0


def test_store_rejects_invalid_input(server_db):
    empty = memory_service.memory_store(content="   ", namespace="u1")
    assert empty["status"] == "error"
    assert empty["error_type"] == "validation_error"
    assert empty["field"] == "content"

    nested = memory_service.memory_store(content="x", namespace="u1", metadata={"a": {"b": 1}})
    assert nested["status"] == "error"
    assert nested["field"] == "metadata"


def test_store_without_database_reports_relational_error():
    result = memory_service.memory_store(content="No database yet", namespace="u1")
    assert result["status"] == "error"
    assert result["error_type"] == "relational_store_error"


def test_remember_detects_document_type(server_db):
    plain = memory_service.memory_remember(content="User prefers dark mode", namespace="u1")
    assert plain["status"] == "stored"
    assert plain["document_type"] == "Memory"

    spec = memory_service.memory_remember(
        content="The architecture uses a queue between services",
        namespace="u1",
        project_name="billing",
        tags=["infra"],
    )
    assert spec["document_type"] == "TechnicalSpec"

    fetched = memory_service.memory_get(memory_id=spec["id"], namespace="u1")
    assert fetched["status"] == "found"
    assert fetched["metadata"]["projectName"] == "billing"
    assert fetched["metadata"]["tags"] == ["infra"]


def test_update_replaces_content_in_both_stores(server_db, db_session):
    stored = memory_service.memory_store(content="User prefers dark mode", namespace="u1")
    memory_id = stored["id"]

    updated = memory_service.memory_update(
        memory_id=memory_id,
        namespace="u1",
        new_content="User prefers light mode",
    )
    assert updated == {"status": "updated", "id": memory_id}

    row = db_session.query(Memory).filter(Memory.id == memory_id).one()
    assert row.content == "User prefers light mode"

    results = memory_service.memory_search(query="light mode", namespace="u1")["results"]
    assert [item["id"] for item in results] == [memory_id]
    assert results[0]["content"] == "User prefers light mode"


def test_update_unknown_id_is_not_found(server_db):
    result = memory_service.memory_update(
        memory_id="does-not-exist",
        namespace="u1",
        new_content="anything",
    )
    assert result["status"] == "error"
    assert result["error_type"] == "not_found"
    assert result["id"] == "does-not-exist"


def test_delete_removes_both_entries(server_db):
    stored = memory_service.memory_store(content="Temporary note about lunch", namespace="u1")
    memory_id = stored["id"]

    deleted = memory_service.memory_delete(memory_id=memory_id, namespace="u1")
    assert deleted["status"] == "deleted"
    assert deleted["vectors_deleted"] == 1

    assert memory_service.memory_get(memory_id=memory_id, namespace="u1")["error_type"] == "not_found"
    assert memory_service.memory_exists(memory_id=memory_id, namespace="u1")["exists"] is False


def test_namespaces_are_isolated(server_db):
    stored = memory_service.memory_store(content="User prefers dark mode", namespace="u1")
    memory_id = stored["id"]

    other = memory_service.memory_search(query="User prefers dark mode", namespace="u2")
    assert other["count"] == 0

    cross_delete = memory_service.memory_delete(memory_id=memory_id, namespace="u2")
    assert cross_delete["error_type"] == "not_found"
    assert memory_service.memory_exists(memory_id=memory_id, namespace="u1")["exists"] is True


def test_list_recent_respects_limit(server_db):
    first = memory_service.memory_store(content="First memory", namespace="u1")
    second = memory_service.memory_store(content="Second memory", namespace="u1")

    listed = memory_service.memory_list_recent(namespace="u1", limit=10)
    assert listed["count"] == 2
    assert {item["id"] for item in listed["memories"]} == {first["id"], second["id"]}

    limited = memory_service.memory_list_recent(namespace="u1", limit=1)
    assert limited["count"] == 1


def _raise_vector_store_error(*args, **kwargs):
    raise VectorStoreError("vector upsert failed: OperationalError")


def test_vector_write_failure_keeps_row_and_reports_pending(server_db, db_session, monkeypatch):
    monkeypatch.setattr(vector_index, "upsert", _raise_vector_store_error)

    result = memory_service.memory_store(content="Remember the release date", namespace="u1")

    assert result["status"] == "error"
    assert result["error_type"] == "vector_store_error"
    assert result["pending_reconciliation"] is True
    assert db_session.query(Memory).filter(Memory.id == result["id"]).count() == 1


def test_update_with_failed_embedding_leaves_no_stale_vector(server_db, embedder, monkeypatch):
    stored = memory_service.memory_store(content="User prefers dark mode", namespace="u1")
    memory_id = stored["id"]

    monkeypatch.setattr(memory_shared, "embed_text_sync", _failing_embedder)
    updated = memory_service.memory_update(
        memory_id=memory_id,
        namespace="u1",
        new_content="User prefers light mode",
    )
    assert updated["status"] == "error"
    assert updated["error_type"] == "embedding_error"
    assert updated["id"] == memory_id
    assert updated["pending_reconciliation"] is True
    assert memory_service.memory_exists(memory_id=memory_id, namespace="u1")["exists"] is False
    assert memory_service.memory_get(memory_id=memory_id, namespace="u1")["content"] == "User prefers light mode"

    monkeypatch.setattr(memory_shared, "embed_text_sync", embedder)
    reconciled = memory_service.memory_reconcile(namespace="u1")
    assert reconciled["restored"] == 1

    fresh = memory_service.memory_search(query="light mode", namespace="u1", threshold=0.0)
    assert [item["content"] for item in fresh["results"]] == ["User prefers light mode"]
    stale = memory_service.memory_search(query="dark", namespace="u1", threshold=0.0)
    assert stale["count"] == 0


def test_update_with_rejected_embedding_input_reports_pending(server_db, monkeypatch):
    stored = memory_service.memory_store(content="User prefers dark mode", namespace="u1")

    def rejecting(text):
        raise ValidationIssue("text too long", field="text", error_type="too_long")

    monkeypatch.setattr(memory_shared, "embed_text_sync", rejecting)
    updated = memory_service.memory_update(
        memory_id=stored["id"],
        namespace="u1",
        new_content="User prefers light mode",
    )

    assert updated["error_type"] == "embedding_error"
    assert updated["pending_reconciliation"] is True


def test_delete_keeps_row_when_vector_delete_fails(server_db, monkeypatch):
    stored = memory_service.memory_store(content="Temporary note about lunch", namespace="u1")
    memory_id = stored["id"]
    monkeypatch.setattr(vector_index, "delete_by_ids", _raise_vector_store_error)

    deleted = memory_service.memory_delete(memory_id=memory_id, namespace="u1")

    assert deleted["status"] == "error"
    assert deleted["error_type"] == "vector_store_error"
    assert memory_service.memory_get(memory_id=memory_id, namespace="u1")["status"] == "found"


def test_remember_canonicalizes_document_type(server_db):
    result = memory_service.memory_remember(
        content="Reset links expire after thirty minutes",
        namespace="u1",
        document_type="prd",
    )

    assert result["document_type"] == "PRD"
    fetched = memory_service.memory_get(memory_id=result["id"], namespace="u1")
    assert fetched["metadata"]["documentType"] == "PRD"

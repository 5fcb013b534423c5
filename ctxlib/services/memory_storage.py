"""
Dual-store write path: relational system of record + vector index.

Every memory gets its id before the first store write. Writes go relational
row first, then vector; updates and deletes remove the vector first. An id can
therefore be relational-only (recoverable by reconciliation) but never
vector-only or backed by a stale vector.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, List

from sqlalchemy.exc import SQLAlchemyError

from ctxlib.config import (
    MAX_RESULT_LIMIT,
    MAX_SHORT_TEXT_LENGTH,
    MAX_TAG_ITEMS,
    MAX_LIST_ITEM_LENGTH,
    MAX_TEXT_LENGTH,
    MAX_TITLE_LENGTH,
    MAX_DOC_TYPE_LENGTH,
)
from ctxlib.db import DB
from ctxlib.errors import (
    CoreError,
    EmbeddingError,
    NotFound,
    RelationalStoreError,
    ValidationIssue,
    VectorStoreError,
)
from ctxlib.models import Memory, MemoryType
from ctxlib.services.document_types import canonical_document_type, detect_document_type
from ctxlib.services.memory_shared import (
    _embed_or_raise,
    _new_memory_id,
    _validate_required_text,
    _validate_optional_text,
    _validate_limit,
    _validate_metadata,
    _validate_string_list,
    service_tool,
    logger,
)
from ctxlib.vector_index import vector_index


def _validate_namespace(namespace: str) -> None:
    _validate_required_text(namespace, "namespace", MAX_SHORT_TEXT_LENGTH)


def _session():
    if DB.SessionLocal is None:
        raise RelationalStoreError("Database not initialized")
    return DB.SessionLocal()


def _vector_metadata(content: str, memory_type: str, metadata: Optional[dict]) -> dict:
    vector_meta = dict(metadata or {})
    vector_meta["content"] = content
    vector_meta["type"] = memory_type
    return vector_meta


def _insert_row(memory_id: str, namespace: str, content: str, memory_type: str, metadata: dict) -> None:
    db = _session()
    try:
        db.add(
            Memory(
                id=memory_id,
                namespace=namespace,
                content=content,
                memory_type=memory_type,
                metadata_=metadata,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("relational_insert_failed", extra={"memory_id": memory_id, "namespace": namespace})
        raise RelationalStoreError(f"relational insert failed: {exc.__class__.__name__}") from exc
    finally:
        db.close()


def _write_vector(memory_id: str, namespace: str, content: str, memory_type: str, metadata: dict) -> None:
    try:
        vector = _embed_or_raise(content, memory_id=memory_id)
    except ValidationIssue as exc:
        raise EmbeddingError(f"embedding rejected input: {exc}", memory_id=memory_id) from exc
    vector_index.upsert(
        namespace,
        [
            {
                "id": memory_id,
                "vector": vector,
                "metadata": _vector_metadata(content, memory_type, metadata),
            }
        ],
    )


def _store_memory(
    content: str,
    namespace: str,
    metadata: Optional[dict] = None,
    memory_type: str = MemoryType.memory.value,
) -> str:
    """Write one memory to both stores and return its id. Raises on any failure."""
    memory_id = _new_memory_id()
    row_metadata = dict(metadata or {})
    _insert_row(memory_id, namespace, content, memory_type, row_metadata)
    try:
        _write_vector(memory_id, namespace, content, memory_type, row_metadata)
    except (EmbeddingError, VectorStoreError) as exc:
        exc.memory_id = memory_id
        logger.warning(
            "memory_vector_pending",
            extra={"memory_id": memory_id, "namespace": namespace, "error_type": exc.error_type},
        )
        raise
    logger.info("memory_stored", extra={"memory_id": memory_id, "namespace": namespace})
    return memory_id


def _pending_payload(tool_name: str, exc: CoreError) -> dict:
    return {
        "status": "error",
        "error_type": exc.error_type,
        "tool": tool_name,
        "message": str(exc),
        "id": exc.memory_id,
        "pending_reconciliation": True,
    }


def _get_row(db, memory_id: str, namespace: str) -> Memory:
    try:
        row = (
            db.query(Memory)
            .filter(Memory.id == memory_id)
            .filter(Memory.namespace == namespace)
            .first()
        )
    except SQLAlchemyError as exc:
        raise RelationalStoreError(
            f"relational read failed: {exc.__class__.__name__}",
            memory_id=memory_id,
        ) from exc
    if row is None:
        raise NotFound(f"Memory {memory_id} not found", memory_id=memory_id)
    return row


def _rows_for_namespace(namespace: str) -> List[Memory]:
    db = _session()
    try:
        return (
            db.query(Memory)
            .filter(Memory.namespace == namespace)
            .order_by(Memory.created_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise RelationalStoreError(f"relational read failed: {exc.__class__.__name__}") from exc
    finally:
        db.close()


@service_tool
def memory_store(
    content: str,
    namespace: str,
    metadata: Optional[dict] = None,
) -> dict:
    """
    Store a memory in the relational store and the vector index.

    Args:
        content: Memory text
        namespace: Owning user's namespace
        metadata: Optional flat mapping of string keys to string/list values

    Returns:
        {"status": "stored", "id": ...}. When the row was written but the
        embedding or vector write failed, an error payload carrying the id and
        ``pending_reconciliation: True``.
    """
    _validate_required_text(content, "content", MAX_TEXT_LENGTH)
    _validate_namespace(namespace)
    _validate_metadata(metadata, "metadata")

    try:
        memory_id = _store_memory(content, namespace, metadata)
    except (EmbeddingError, VectorStoreError) as exc:
        return _pending_payload("memory_store", exc)
    return {"status": "stored", "id": memory_id}


@service_tool
def memory_remember(
    content: str,
    namespace: str,
    title: Optional[str] = None,
    document_type: Optional[str] = None,
    project_name: Optional[str] = None,
    tags: Optional[List[str]] = None,
) -> dict:
    """Store a client-supplied memory, detecting its document type when not given."""
    _validate_required_text(content, "content", MAX_TEXT_LENGTH)
    _validate_optional_text(title, "title", MAX_TITLE_LENGTH)
    _validate_optional_text(document_type, "document_type", MAX_DOC_TYPE_LENGTH)
    _validate_optional_text(project_name, "project_name", MAX_SHORT_TEXT_LENGTH)
    _validate_string_list(tags, "tags", MAX_TAG_ITEMS, MAX_LIST_ITEM_LENGTH)

    metadata = {
        "documentType": (
            canonical_document_type(document_type)
            or detect_document_type(content, default="Memory")
        ),
        "tags": list(tags or []),
    }
    if title:
        metadata["title"] = title
    if project_name:
        metadata["projectName"] = project_name

    result = memory_store(content, namespace, metadata)
    if result.get("status") == "stored":
        result["document_type"] = metadata["documentType"]
    return result


@service_tool
def memory_update(
    memory_id: str,
    namespace: str,
    new_content: str,
) -> dict:
    """
    Replace a memory's content in both stores, keeping its id.

    The old vector is removed before the row changes, so a failure at any
    later step leaves a relational-only memory that reconciliation rebuilds
    from the current row, never a vector holding stale content.
    """
    _validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    _validate_namespace(namespace)
    _validate_required_text(new_content, "new_content", MAX_TEXT_LENGTH)

    db = _session()
    try:
        row = _get_row(db, memory_id, namespace)
        memory_type = row.memory_type
        row_metadata = dict(row.metadata_ or {})
        vector_index.delete_by_ids(namespace, [memory_id])
        row.content = new_content
        row.updated_at = datetime.utcnow()
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise RelationalStoreError(
            f"relational update failed: {exc.__class__.__name__}",
            memory_id=memory_id,
        ) from exc
    finally:
        db.close()

    try:
        _write_vector(memory_id, namespace, new_content, memory_type, row_metadata)
    except (EmbeddingError, VectorStoreError) as exc:
        exc.memory_id = memory_id
        logger.warning(
            "memory_vector_pending",
            extra={"memory_id": memory_id, "namespace": namespace, "error_type": exc.error_type},
        )
        return _pending_payload("memory_update", exc)
    logger.info("memory_updated", extra={"memory_id": memory_id, "namespace": namespace})
    return {"status": "updated", "id": memory_id}


@service_tool
def memory_delete(
    memory_id: str,
    namespace: str,
) -> dict:
    """Delete a memory from the vector index, then from the relational store."""
    _validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    _validate_namespace(namespace)

    db = _session()
    try:
        row = _get_row(db, memory_id, namespace)
        vectors_deleted = vector_index.delete_by_ids(namespace, [memory_id])
        db.delete(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise RelationalStoreError(
            f"relational delete failed: {exc.__class__.__name__}",
            memory_id=memory_id,
        ) from exc
    finally:
        db.close()

    logger.info(
        "memory_deleted",
        extra={"memory_id": memory_id, "namespace": namespace, "vectors_deleted": vectors_deleted},
    )
    return {"status": "deleted", "id": memory_id, "vectors_deleted": vectors_deleted}


@service_tool
def memory_get(
    memory_id: str,
    namespace: str,
) -> dict:
    _validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    _validate_namespace(namespace)
    db = _session()
    try:
        row = _get_row(db, memory_id, namespace)
        return {"status": "found", **row.to_dict()}
    finally:
        db.close()


@service_tool
def memory_list_recent(
    namespace: str,
    limit: int = 20,
) -> dict:
    """Most recent memories first."""
    _validate_namespace(namespace)
    _validate_limit(limit, "limit", MAX_RESULT_LIMIT)
    db = _session()
    try:
        rows = (
            db.query(Memory)
            .filter(Memory.namespace == namespace)
            .order_by(Memory.created_at.desc())
            .limit(limit)
            .all()
        )
        items = [row.to_dict() for row in rows]
    except SQLAlchemyError as exc:
        raise RelationalStoreError(f"relational read failed: {exc.__class__.__name__}") from exc
    finally:
        db.close()
    return {"status": "ok", "count": len(items), "memories": items}


@service_tool
def memory_list_by_project(
    namespace: str,
    project_name: str,
) -> dict:
    """
    List a project's memories and summarize its artifacts.

    Each artifact entry reports its section count and master index id; a
    ``None`` master index means the artifact's last write did not finish.
    """
    _validate_namespace(namespace)
    _validate_required_text(project_name, "project_name", MAX_SHORT_TEXT_LENGTH)

    rows = [
        row for row in _rows_for_namespace(namespace)
        if (row.metadata_ or {}).get("projectName") == project_name
    ]
    artifacts: dict[str, dict] = {}
    for row in rows:
        meta = row.metadata_ or {}
        if row.memory_type not in {MemoryType.artifact_section.value, MemoryType.master_index.value}:
            continue
        doc_type = meta.get("documentType") or "Documentation"
        entry = artifacts.setdefault(
            doc_type,
            {"document_type": doc_type, "section_count": 0, "master_index_id": None},
        )
        if row.memory_type == MemoryType.master_index.value:
            entry["master_index_id"] = row.id
        else:
            entry["section_count"] += 1

    memories = []
    for row in rows:
        item = row.to_dict()
        item.pop("namespace", None)
        memories.append(item)
    return {
        "status": "ok",
        "project_name": project_name,
        "count": len(memories),
        "memories": memories,
        "artifacts": sorted(artifacts.values(), key=lambda entry: entry["document_type"]),
    }

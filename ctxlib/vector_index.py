"""
Namespace-partitioned vector index.

Entries are keyed by (namespace, id). Two backends share one table layout:

- pgvector: cosine distance computed in PostgreSQL (``<=>``) with JSONB
  containment for metadata filters.
- json: vectors kept in a JSON column; similarity and filtering computed in
  process. Used with SQLite and in tests.
"""

from __future__ import annotations

import json
import math
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import ctxlib.config as config
from ctxlib.db import DB
from ctxlib.errors import VectorStoreError
from ctxlib.models import VectorRecord

logger = config.logger


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def metadata_matches(metadata: Optional[dict], metadata_filter: Optional[dict]) -> bool:
    if not metadata_filter:
        return True
    metadata = metadata or {}
    return all(metadata.get(key) == value for key, value in metadata_filter.items())


class VectorIndex:
    """Vector index operations over the ``vectors`` table."""

    def __init__(
        self,
        session_factory: Optional[Callable] = None,
        backend: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self._backend = backend

    @property
    def backend(self) -> str:
        return self._backend or config.VECTOR_BACKEND_EFFECTIVE

    def _session(self):
        factory = self._session_factory or DB.VectorSessionLocal or DB.SessionLocal
        if factory is None:
            raise VectorStoreError("Vector index not initialized")
        return factory()

    def upsert(self, namespace: str, records: list[dict]) -> int:
        """Insert or replace ``{id, vector, metadata}`` records under a namespace."""
        if not records:
            return 0
        db = self._session()
        try:
            now = datetime.utcnow()
            for record in records:
                db.merge(
                    VectorRecord(
                        namespace=namespace,
                        id=record["id"],
                        embedding=list(record["vector"]),
                        metadata_=dict(record.get("metadata") or {}),
                        updated_at=now,
                    )
                )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "vector_upsert_failed",
                extra={"namespace": namespace, "count": len(records)},
            )
            ids = [record["id"] for record in records]
            raise VectorStoreError(
                f"vector upsert failed: {exc.__class__.__name__}",
                memory_id=ids[0] if len(ids) == 1 else None,
            ) from exc
        finally:
            db.close()
        return len(records)

    def query(
        self,
        namespace: str,
        vector: Sequence[float],
        top_k: int,
        metadata_filter: Optional[dict] = None,
    ) -> list[dict]:
        """Return up to ``top_k`` ``{id, score, metadata}`` matches, best first."""
        db = self._session()
        try:
            if self.backend == "pgvector":
                return self._query_pgvector(db, namespace, vector, top_k, metadata_filter)
            return self._query_json(db, namespace, vector, top_k, metadata_filter)
        except SQLAlchemyError as exc:
            logger.error("vector_query_failed", extra={"namespace": namespace})
            raise VectorStoreError(f"vector query failed: {exc.__class__.__name__}") from exc
        finally:
            db.close()

    def _query_pgvector(self, db, namespace, vector, top_k, metadata_filter) -> list[dict]:
        filter_sql = ""
        params = {
            "embedding": str(list(vector)),
            "namespace": namespace,
            "limit": top_k,
        }
        if metadata_filter:
            filter_sql = "AND v.metadata @> cast(:filter as jsonb)"
            params["filter"] = json.dumps(metadata_filter)
        sql = text(
            """
            SELECT
                v.id,
                v.metadata,
                1 - (v.embedding <=> cast(:embedding as vector)) as similarity
            FROM vectors v
            WHERE v.namespace = :namespace
            """
            + filter_sql
            + """
            ORDER BY v.embedding <=> cast(:embedding as vector)
            LIMIT :limit
            """
        )
        rows = db.execute(sql, params).fetchall()
        return [
            {"id": row.id, "score": float(row.similarity), "metadata": row.metadata or {}}
            for row in rows
        ]

    def _query_json(self, db, namespace, vector, top_k, metadata_filter) -> list[dict]:
        rows = db.query(VectorRecord).filter(VectorRecord.namespace == namespace).all()
        matches = []
        for row in rows:
            if not metadata_matches(row.metadata_, metadata_filter):
                continue
            matches.append(
                {
                    "id": row.id,
                    "score": cosine_similarity(vector, row.embedding or []),
                    "metadata": dict(row.metadata_ or {}),
                }
            )
        matches.sort(key=lambda match: match["score"], reverse=True)
        return matches[:top_k]

    def exists_batch(self, namespace: str, ids: Iterable[str]) -> list[str]:
        """Return the subset of ``ids`` that have a vector in ``namespace``."""
        id_list = list(ids)
        if not id_list:
            return []
        db = self._session()
        try:
            rows = (
                db.query(VectorRecord.id)
                .filter(VectorRecord.namespace == namespace)
                .filter(VectorRecord.id.in_(id_list))
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error("vector_exists_failed", extra={"namespace": namespace})
            raise VectorStoreError(f"vector existence check failed: {exc.__class__.__name__}") from exc
        finally:
            db.close()
        found = {row[0] for row in rows}
        return [memory_id for memory_id in id_list if memory_id in found]

    def delete_by_ids(self, namespace: str, ids: Iterable[str]) -> int:
        """Delete vectors by id, scoped to ``namespace``."""
        id_list = list(ids)
        if not id_list:
            return 0
        db = self._session()
        try:
            deleted = (
                db.query(VectorRecord)
                .filter(VectorRecord.namespace == namespace)
                .filter(VectorRecord.id.in_(id_list))
                .delete(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("vector_delete_failed", extra={"namespace": namespace})
            raise VectorStoreError(
                f"vector delete failed: {exc.__class__.__name__}",
                memory_id=id_list[0] if len(id_list) == 1 else None,
            ) from exc
        finally:
            db.close()
        return deleted


vector_index = VectorIndex()

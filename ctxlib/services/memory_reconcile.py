"""
Vector reconciliation: restore vector entries missing for relational rows.

The relational store is the system of record. Rows are processed in small
batches, one existence check and one upsert per batch, with embedding calls and
batches paced so a run stays under the provider's outbound call ceiling.
"""

from __future__ import annotations

import time
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

import ctxlib.config as config
from ctxlib.db import DB
from ctxlib.errors import CoreError, RelationalStoreError, ValidationIssue
from ctxlib.models import Memory
from ctxlib.services.memory_shared import (
    IntervalLimiter,
    STATUS_PARTIAL_FAILURE,
    _embed_or_raise,
    _validate_required_text,
    embedding_circuit_breaker,
    service_tool,
    logger,
)
from ctxlib.vector_index import vector_index


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


def _load_rows(namespace: str) -> list[tuple[str, str, str, dict]]:
    if DB.SessionLocal is None:
        raise RelationalStoreError("Database not initialized")
    db = DB.SessionLocal()
    try:
        rows = (
            db.query(Memory.id, Memory.content, Memory.memory_type, Memory.metadata_)
            .filter(Memory.namespace == namespace)
            .order_by(Memory.created_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise RelationalStoreError(f"relational read failed: {exc.__class__.__name__}") from exc
    finally:
        db.close()
    return [(row[0], row[1], row[2], dict(row[3] or {})) for row in rows]


def _batches(items: list, size: int) -> list[list]:
    return [items[start:start + size] for start in range(0, len(items), size)]


def _restore_batch(
    namespace: str,
    batch: list[tuple[str, str, str, dict]],
    embed_limiter: IntervalLimiter,
    errors: list[dict],
) -> int:
    ids = [memory_id for memory_id, _, _, _ in batch]
    try:
        existing = set(vector_index.exists_batch(namespace, ids))
    except CoreError as exc:
        errors.extend({"id": memory_id, "reason": f"Batch check failed: {exc}"} for memory_id in ids)
        return 0

    missing = [row for row in batch if row[0] not in existing]
    if not missing:
        return 0

    records = []
    for memory_id, content, memory_type, metadata in missing:
        embed_limiter.acquire()
        try:
            vector = _embed_or_raise(content, memory_id=memory_id)
        except (CoreError, ValidationIssue) as exc:
            errors.append({"id": memory_id, "reason": f"Failed to generate embedding: {exc}"})
            continue
        vector_meta = dict(metadata)
        vector_meta["content"] = content
        vector_meta["type"] = memory_type
        records.append({"id": memory_id, "vector": vector, "metadata": vector_meta})

    if not records:
        return 0
    try:
        vector_index.upsert(namespace, records)
    except CoreError as exc:
        errors.extend({"id": record["id"], "reason": f"Batch upsert failed: {exc}"} for record in records)
        return 0
    return len(records)


@service_tool
def memory_reconcile(
    namespace: str,
    time_budget_seconds: Optional[float] = None,
) -> dict:
    """
    Regenerate vectors for relational rows that have none.

    Args:
        namespace: Namespace to repair
        time_budget_seconds: Stop between batches once this much time has
            elapsed (default RECONCILE_TIME_BUDGET_SECONDS, 0 means unlimited)

    Returns:
        {"status", "restored", "errors": [{"id", "reason"}], "total",
        "batches", "batches_processed", "complete"}
    """
    _validate_required_text(namespace, "namespace", config.MAX_SHORT_TEXT_LENGTH)
    budget = config.RECONCILE_TIME_BUDGET_SECONDS if time_budget_seconds is None else time_budget_seconds
    started = time.monotonic()

    rows = _load_rows(namespace)
    batches = _batches(rows, max(1, config.RECONCILE_BATCH_SIZE))
    logger.info(
        "reconcile_started",
        extra={"namespace": namespace, "total": len(rows), "batches": len(batches)},
    )

    restored = 0
    errors: list[dict] = []
    processed = 0
    stop_reason = None
    batch_limiter = IntervalLimiter(config.RECONCILE_BATCH_INTERVAL_SECONDS, sleep=_sleep)

    for batch_number, batch in enumerate(batches, start=1):
        if batch_number > 1:
            if budget and time.monotonic() - started >= budget:
                stop_reason = "time_budget_exhausted"
                break
            batch_limiter.acquire()
        if embedding_circuit_breaker.is_open():
            stop_reason = "circuit_open"
            break

        embed_limiter = IntervalLimiter(config.RECONCILE_EMBED_INTERVAL_SECONDS, sleep=_sleep)
        batch_restored = _restore_batch(namespace, batch, embed_limiter, errors)
        restored += batch_restored
        processed += 1
        batch_limiter.mark()
        logger.info(
            "reconcile_batch_complete",
            extra={
                "namespace": namespace,
                "batch": batch_number,
                "batches": len(batches),
                "restored": batch_restored,
            },
        )

    complete = stop_reason is None
    result = {
        "status": "ok" if complete and not errors else STATUS_PARTIAL_FAILURE,
        "namespace": namespace,
        "restored": restored,
        "errors": errors,
        "total": len(rows),
        "batches": len(batches),
        "batches_processed": processed,
        "complete": complete,
    }
    if stop_reason:
        result["stop_reason"] = stop_reason
    logger.info(
        "reconcile_finished",
        extra={
            "namespace": namespace,
            "restored": restored,
            "error_count": len(errors),
            "complete": complete,
        },
    )
    return result


def _list_namespaces() -> list[str]:
    if DB.SessionLocal is None:
        raise RelationalStoreError("Database not initialized")
    db = DB.SessionLocal()
    try:
        rows = db.query(Memory.namespace).distinct().order_by(Memory.namespace.asc()).all()
    except SQLAlchemyError as exc:
        raise RelationalStoreError(f"relational read failed: {exc.__class__.__name__}") from exc
    finally:
        db.close()
    return [row[0] for row in rows]


@service_tool
def reconcile_all_namespaces() -> dict:
    """Run reconciliation for every namespace that has relational rows."""
    summaries = []
    restored = 0
    error_count = 0
    for namespace in _list_namespaces():
        summary = memory_reconcile(namespace)
        restored += summary.get("restored", 0)
        error_count += len(summary.get("errors", []))
        summaries.append(
            {
                "namespace": namespace,
                "status": summary.get("status"),
                "restored": summary.get("restored", 0),
                "error_count": len(summary.get("errors", [])),
            }
        )
    return {
        "status": "ok" if error_count == 0 else STATUS_PARTIAL_FAILURE,
        "restored": restored,
        "error_count": error_count,
        "namespaces": summaries,
    }

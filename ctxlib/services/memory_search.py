"""
Semantic retrieval services.
"""

from __future__ import annotations

from typing import Optional

import ctxlib.config as config
from ctxlib.config import MAX_QUERY_LENGTH, MAX_RESULT_LIMIT, MAX_SHORT_TEXT_LENGTH
from ctxlib.services.memory_shared import (
    _embed_or_raise,
    _validate_required_text,
    _validate_limit,
    _validate_threshold,
    _validate_metadata_filters,
    service_tool,
    logger,
)
from ctxlib.vector_index import vector_index


def missing_content_placeholder(memory_id: Optional[str]) -> str:
    if memory_id:
        return f"Missing memory content (ID: {memory_id})"
    return "Missing memory content"


def validate_memory_search_inputs(
    *,
    query: str,
    namespace: str,
    metadata_filters: Optional[dict],
    top_k: int,
    threshold: float,
) -> None:
    _validate_required_text(query, "query", MAX_QUERY_LENGTH)
    _validate_required_text(namespace, "namespace", MAX_SHORT_TEXT_LENGTH)
    _validate_metadata_filters(metadata_filters, "metadata_filters")
    _validate_limit(top_k, "top_k", MAX_RESULT_LIMIT)
    _validate_threshold(threshold, "threshold")


def rank_matches(matches: list[dict], threshold: float) -> list[dict]:
    """Drop matches at or below ``threshold`` and order the rest by score."""
    results = []
    for match in matches:
        score = match.get("score") or 0.0
        if score <= threshold:
            continue
        memory_id = match.get("id")
        content = (match.get("metadata") or {}).get("content")
        if not isinstance(content, str):
            content = missing_content_placeholder(memory_id)
        results.append({"id": memory_id, "content": content, "score": float(score)})
    results.sort(key=lambda item: item["score"], reverse=True)
    return results


def _search_matches(
    query: str,
    namespace: str,
    metadata_filters: Optional[dict],
    top_k: int,
) -> list[dict]:
    query_vector = _embed_or_raise(query)
    return vector_index.query(namespace, query_vector, top_k, metadata_filters or None)


def _search_memory_impl(
    query: str,
    namespace: str,
    metadata_filters: Optional[dict] = None,
    top_k: int = config.SEARCH_DEFAULT_TOP_K,
    threshold: float = config.SEARCH_DEFAULT_THRESHOLD,
    with_metadata: bool = False,
) -> list[dict]:
    matches = _search_matches(query, namespace, metadata_filters, top_k)
    results = rank_matches(matches, threshold)
    if with_metadata:
        metadata_by_id = {match.get("id"): match.get("metadata") or {} for match in matches}
        for item in results:
            item["metadata"] = dict(metadata_by_id.get(item["id"], {}))
    return results


@service_tool
def memory_search(
    query: str,
    namespace: str,
    metadata_filters: Optional[dict] = None,
    top_k: int = config.SEARCH_DEFAULT_TOP_K,
    threshold: float = config.SEARCH_DEFAULT_THRESHOLD,
) -> dict:
    """
    Search a namespace by semantic similarity.

    Args:
        query: Free text to match by meaning
        namespace: Owning user's namespace
        metadata_filters: Exact-match equality per metadata key
        top_k: Maximum number of candidates fetched from the vector index
        threshold: Matches scoring at or below this value are dropped

    Returns:
        {"status": "ok", "count": n, "results": [{"id", "content", "score"}]}
    """
    validate_memory_search_inputs(
        query=query,
        namespace=namespace,
        metadata_filters=metadata_filters,
        top_k=top_k,
        threshold=threshold,
    )
    results = _search_memory_impl(
        query=query,
        namespace=namespace,
        metadata_filters=metadata_filters,
        top_k=top_k,
        threshold=threshold,
    )
    logger.info(
        "memory_search_complete",
        extra={"namespace": namespace, "result_count": len(results)},
    )
    return {"status": "ok", "count": len(results), "results": results}


@service_tool
def memory_exists(
    memory_id: str,
    namespace: str,
) -> dict:
    """Report whether ``memory_id`` has a vector in ``namespace``."""
    _validate_required_text(memory_id, "memory_id", MAX_SHORT_TEXT_LENGTH)
    _validate_required_text(namespace, "namespace", MAX_SHORT_TEXT_LENGTH)
    exists = bool(vector_index.exists_batch(namespace, [memory_id]))
    return {"status": "ok", "id": memory_id, "exists": exists}

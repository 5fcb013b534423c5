"""
MCP server wiring and tool registration.

Tools resolve the caller's namespace from the request context set by the
external auth layer and delegate to the service functions. Without a context,
as under the stdio console script, CTXLIB_NAMESPACE supplies the namespace.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from fastmcp import FastMCP

import ctxlib.config as config
from ctxlib.context import RequestContext, get_current_request_context, resolve_namespace
from ctxlib.db import init_db, dispose_db
from ctxlib.errors import ValidationIssue
from ctxlib.services import memory_service
from ctxlib.services.document_types import canonical_document_type
from ctxlib.services.memory_shared import _tool_error_payload, logger

READ_ONLY_TOOL_ANNOTATIONS = {"readOnlyHint": True}
DESTRUCTIVE_TOOL_ANNOTATIONS = {"destructiveHint": True}

mcp = FastMCP(config.MCP_SERVER_NAME)

_REGISTERED_TOOLS: list[tuple[Callable[..., dict], tuple[Any, ...], dict[str, Any]]] = []


def mcp_tool(*args, **kwargs):
    """Register a tool with FastMCP and keep a local registry."""
    def decorator(fn: Callable[..., dict]):
        _REGISTERED_TOOLS.append((fn, args, kwargs))
        mcp.tool(*args, **kwargs)(fn)
        return fn
    return decorator


def registered_tool_names() -> list[str]:
    return sorted(fn.__name__ for fn, _, _ in _REGISTERED_TOOLS)


def _request_context() -> Optional[RequestContext]:
    context = get_current_request_context()
    if context is None and config.MCP_NAMESPACE:
        return RequestContext(namespace=config.MCP_NAMESPACE, source="stdio")
    return context


def _call_in_namespace(tool_name: str, service: Callable[..., dict], **kwargs) -> dict:
    try:
        namespace = resolve_namespace(_request_context())
    except ValidationIssue as exc:
        return _tool_error_payload(tool_name, exc)
    return service(namespace=namespace, **kwargs)


@mcp_tool()
def add_to_memory(
    thing_to_remember: str,
    title: Optional[str] = None,
    document_type: Optional[str] = None,
    project_name: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> dict:
    """
    Store important user information in persistent memory.

    Use it when the user asks to remember something, when preferences, traits
    or project details emerge that matter in future sessions, or when
    significant documentation is produced.
    """
    return _call_in_namespace(
        "add_to_memory",
        memory_service.memory_remember,
        content=thing_to_remember,
        title=title,
        document_type=document_type,
        project_name=project_name,
        tags=tags,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def search_memory(
    information_to_get: str,
    project_name: Optional[str] = None,
    document_type: Optional[str] = None,
    top_k: int = config.SEARCH_DEFAULT_TOP_K,
    threshold: float = config.SEARCH_DEFAULT_THRESHOLD,
) -> dict:
    """
    Search persistent memory by meaning rather than exact keywords.

    Use it for historical context, preferences, or anything the user
    previously asked to remember.
    """
    filters = {}
    if project_name:
        filters["projectName"] = project_name
    if document_type:
        filters["documentType"] = canonical_document_type(document_type)
    return _call_in_namespace(
        "search_memory",
        memory_service.memory_search,
        query=information_to_get,
        metadata_filters=filters or None,
        top_k=top_k,
        threshold=threshold,
    )


@mcp_tool()
def update_memory(memory_id: str, new_content: str) -> dict:
    return _call_in_namespace(
        "update_memory",
        memory_service.memory_update,
        memory_id=memory_id,
        new_content=new_content,
    )


@mcp_tool(annotations=DESTRUCTIVE_TOOL_ANNOTATIONS)
def delete_memory(memory_id: str) -> dict:
    return _call_in_namespace("delete_memory", memory_service.memory_delete, memory_id=memory_id)


@mcp_tool()
def store_document(
    document: str,
    document_type: Optional[str] = None,
    project_name: Optional[str] = None,
    priority: Optional[str] = None,
    tags: Optional[list[str]] = None,
) -> dict:
    """Store a PRD, technical spec or other document as searchable sections."""
    return _call_in_namespace(
        "store_document",
        memory_service.artifact_decompose,
        raw_text=document,
        document_type=document_type,
        project_name=project_name,
        priority=priority,
        tags=tags,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def get_document(project_name: str, document_type: str) -> dict:
    """Reassemble a stored document from its sections."""
    return _call_in_namespace(
        "get_document",
        memory_service.artifact_reconstruct,
        project_name=project_name,
        document_type=document_type,
    )


@mcp_tool(annotations=READ_ONLY_TOOL_ANNOTATIONS)
def list_project(project_name: str) -> dict:
    return _call_in_namespace(
        "list_project",
        memory_service.memory_list_by_project,
        project_name=project_name,
    )


@mcp_tool()
def restore_vectors() -> dict:
    """Restore search index entries missing for stored memories."""
    return _call_in_namespace("restore_vectors", memory_service.memory_reconcile)


def main() -> None:
    if not config.MCP_NAMESPACE:
        logger.warning("mcp_namespace_unset", extra={"env": "CTXLIB_NAMESPACE"})
    init_db()
    memory_service.init_http_client()
    try:
        mcp.run()
    finally:
        memory_service.cleanup_http_client()
        dispose_db()


if __name__ == "__main__":
    main()

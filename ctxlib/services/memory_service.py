"""
Public service surface.

Every operation takes an already-authenticated namespace; no authentication
happens here.
"""

from ctxlib.services.memory_shared import (  # noqa: F401
    init_http_client,
    cleanup_http_client,
    embedding_circuit_breaker,
)
from ctxlib.services.memory_storage import (  # noqa: F401
    memory_store,
    memory_remember,
    memory_update,
    memory_delete,
    memory_get,
    memory_list_recent,
    memory_list_by_project,
)
from ctxlib.services.memory_search import (  # noqa: F401
    memory_search,
    memory_exists,
)
from ctxlib.services.artifact_decompose import artifact_decompose  # noqa: F401
from ctxlib.services.artifact_reconstruct import artifact_reconstruct  # noqa: F401
from ctxlib.services.memory_reconcile import (  # noqa: F401
    memory_reconcile,
    reconcile_all_namespaces,
)

__all__ = [
    "init_http_client",
    "cleanup_http_client",
    "embedding_circuit_breaker",
    "memory_store",
    "memory_remember",
    "memory_update",
    "memory_delete",
    "memory_get",
    "memory_list_recent",
    "memory_list_by_project",
    "memory_search",
    "memory_exists",
    "artifact_decompose",
    "artifact_reconstruct",
    "memory_reconcile",
    "reconcile_all_namespaces",
]

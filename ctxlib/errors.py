"""
Shared error types for core services.
"""

from typing import Optional


class ValidationIssue(ValueError):
    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message)
        self.field = field
        self.error_type = error_type
        self.error_code = error_code
        self.data = data


class CoreError(RuntimeError):
    """Base for store and provider failures surfaced to callers."""

    error_type = "core_error"

    def __init__(self, message: str, memory_id: Optional[str] = None):
        super().__init__(message)
        self.memory_id = memory_id


class EmbeddingError(CoreError):
    """Raised when the embedding provider is unavailable or returns nothing."""

    error_type = "embedding_error"


class VectorStoreError(CoreError):
    error_type = "vector_store_error"


class RelationalStoreError(CoreError):
    error_type = "relational_store_error"


class NotFound(CoreError):
    error_type = "not_found"

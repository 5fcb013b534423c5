"""
Shared configuration for ctxlib.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("ctxlib")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_vector_backend(db_backend: str, vector_backend: str) -> str:
    if vector_backend == "pgvector" and db_backend == "postgres":
        return "pgvector"
    return "json"


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/ctxlib.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
VECTOR_DATABASE_URL = os.environ.get("VECTOR_DATABASE_URL")
VECTOR_BACKEND_EFFECTIVE = _derive_effective_vector_backend(DB_BACKEND, VECTOR_BACKEND)

# Embedding settings
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "openai").strip().lower()
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_DIM = _get_int("EMBEDDING_DIM", 1536)
EMBEDDING_API_URL = os.environ.get("EMBEDDING_API_URL", "https://api.openai.com/v1/embeddings")

# MCP surface
# Namespace used by the stdio console script, which has no auth layer.
MCP_NAMESPACE = (os.environ.get("CTXLIB_NAMESPACE") or "").strip() or None
MCP_SERVER_NAME = os.environ.get("MCP_NAME", "MCP Context Library")

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("CTXLIB_MAX_RESULT_LIMIT", 100)
MAX_QUERY_LENGTH = _get_int("CTXLIB_MAX_QUERY_LENGTH", 4000)
MAX_TEXT_LENGTH = _get_int("CTXLIB_MAX_TEXT_LENGTH", 32000)
MAX_DOCUMENT_LENGTH = _get_int("CTXLIB_MAX_DOCUMENT_LENGTH", 400000)
MAX_SHORT_TEXT_LENGTH = _get_int("CTXLIB_MAX_SHORT_TEXT_LENGTH", 255)
MAX_TITLE_LENGTH = _get_int("CTXLIB_MAX_TITLE_LENGTH", 500)
MAX_DOC_TYPE_LENGTH = _get_int("CTXLIB_MAX_DOC_TYPE_LENGTH", 50)
MAX_METADATA_BYTES = _get_int("CTXLIB_MAX_METADATA_BYTES", 20000)
MAX_TAG_ITEMS = _get_int("CTXLIB_MAX_TAG_ITEMS", 50)
MAX_LIST_ITEM_LENGTH = _get_int("CTXLIB_MAX_LIST_ITEM_LENGTH", 1000)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("CTXLIB_MAX_EMBEDDING_TEXT_LENGTH", 8000)

# OpenAI retry/backoff
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 30.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 2)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.5)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.25)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)

# Retrieval
SEARCH_DEFAULT_TOP_K = _get_int("SEARCH_DEFAULT_TOP_K", 10)
SEARCH_DEFAULT_THRESHOLD = _get_float("SEARCH_DEFAULT_THRESHOLD", 0.5)
RECONSTRUCT_TOP_K = _get_int("RECONSTRUCT_TOP_K", 100)

# Decomposition
DECOMPOSE_MIN_PARAGRAPH_LENGTH = _get_int("DECOMPOSE_MIN_PARAGRAPH_LENGTH", 50)
DEFAULT_PROJECT_NAME = os.environ.get("CTXLIB_DEFAULT_PROJECT", "default")
DEFAULT_PRIORITY = os.environ.get("CTXLIB_DEFAULT_PRIORITY", "Medium")

# Reconciliation pacing
RECONCILE_BATCH_SIZE = _get_int("RECONCILE_BATCH_SIZE", 10)
RECONCILE_EMBED_INTERVAL_SECONDS = _get_float("RECONCILE_EMBED_INTERVAL_SECONDS", 0.2)
RECONCILE_BATCH_INTERVAL_SECONDS = _get_float("RECONCILE_BATCH_INTERVAL_SECONDS", 0.5)
RECONCILE_TIME_BUDGET_SECONDS = _get_float("RECONCILE_TIME_BUDGET_SECONDS", 0.0)


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, VECTOR_DATABASE_URL, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "json"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'json'")

    if EMBEDDING_PROVIDER not in {"openai", "none"}:
        errors.append("EMBEDDING_PROVIDER must be 'openai' or 'none'")

    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        errors.append("OPENAI_API_KEY is required when EMBEDDING_PROVIDER=openai")

    if RECONCILE_BATCH_SIZE <= 0:
        errors.append("RECONCILE_BATCH_SIZE must be positive")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    if VECTOR_BACKEND == "pgvector" and DB_BACKEND != "postgres":
        logger.warning(
            "VECTOR_BACKEND=pgvector requires DB_BACKEND=postgres; using json vectors."
        )
    VECTOR_BACKEND_EFFECTIVE = _derive_effective_vector_backend(DB_BACKEND, VECTOR_BACKEND)

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from ctxlib.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if not VECTOR_DATABASE_URL:
        VECTOR_DATABASE_URL = DATABASE_URL

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))

"""
ctxlib Database Models
Relational memories (system of record) + vector index entries
"""

from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, String, Text, DateTime, Index, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

import ctxlib.config as config

DB_BACKEND = config.DB_BACKEND
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except Exception:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if VECTOR_BACKEND_EFFECTIVE == "pgvector" and PGVECTOR_AVAILABLE:
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIM)
else:
    EMBEDDING_COLUMN_TYPE = JSON

JSON_TYPE = JSONB if DB_BACKEND == "postgres" else JSON

Base = declarative_base()


# =============================================================================
# Enums
# =============================================================================

class MemoryType(str, PyEnum):
    memory = "memory"
    artifact_section = "artifact_section"
    master_index = "master_index"


# =============================================================================
# Memories (system of record)
# =============================================================================

class Memory(Base):
    __tablename__ = "memories"

    id = Column(String(36), primary_key=True)
    namespace = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    memory_type = Column(String(32), nullable=False, default=MemoryType.memory.value)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_memories_namespace_created", "namespace", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "namespace": self.namespace,
            "content": self.content,
            "memory_type": self.memory_type,
            "metadata": dict(self.metadata_ or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# =============================================================================
# Vector index entries
# =============================================================================

class VectorRecord(Base):
    __tablename__ = "vectors"

    # Ids are partitioned per namespace so deletes cannot cross users.
    namespace = Column(String(255), primary_key=True)
    id = Column(String(36), primary_key=True)
    embedding = Column(EMBEDDING_COLUMN_TYPE, nullable=False)
    metadata_ = Column("metadata", JSON_TYPE, default=dict)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)


__all__ = [
    "Base",
    "Memory",
    "MemoryType",
    "VectorRecord",
    "EMBEDDING_COLUMN_TYPE",
    "PGVECTOR_AVAILABLE",
]

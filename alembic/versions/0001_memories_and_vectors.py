"""Create memories and vectors tables.

Revision ID: 0001_memories_and_vectors
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from ctxlib.models import EMBEDDING_COLUMN_TYPE


revision = "0001_memories_and_vectors"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON
    embedding_type = EMBEDDING_COLUMN_TYPE if is_postgres else sa.JSON

    op.create_table(
        "memories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("namespace", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("memory_type", sa.String(length=32), nullable=False),
        sa.Column("metadata", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_memories_namespace_created",
        "memories",
        ["namespace", "created_at"],
    )

    op.create_table(
        "vectors",
        sa.Column("namespace", sa.String(length=255), primary_key=True),
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("embedding", embedding_type, nullable=False),
        sa.Column("metadata", json_type),
        sa.Column("updated_at", sa.DateTime(timezone=True)),
    )
    if is_postgres:
        op.create_index(
            "ix_vectors_metadata",
            "vectors",
            ["metadata"],
            postgresql_using="gin",
        )


def downgrade() -> None:
    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        op.drop_index("ix_vectors_metadata", table_name="vectors")
    op.drop_table("vectors")
    op.drop_index("ix_memories_namespace_created", table_name="memories")
    op.drop_table("memories")

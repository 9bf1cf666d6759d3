"""Create the context_field table.

Revision ID: 0001
Revises:
Create Date: 2026-09-01 00:00:00
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "context_field",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_id", sa.String(length=255), nullable=False),
        sa.Column("domain", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("value", sa.JSON(), nullable=True),
        sa.Column("provenance", sa.Text(), nullable=False),
        sa.Column("alternatives", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_context_field"),
        sa.UniqueConstraint(
            "entity_id",
            "domain",
            "name",
            name="uq_context_field_context_field_entity_id",
        ),
    )
    op.create_index("ix_context_field_entity_id", "context_field", ["entity_id"])


def downgrade() -> None:
    op.drop_index("ix_context_field_entity_id", table_name="context_field")
    op.drop_table("context_field")

"""Initial schema: records table for retry and registration records.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "records",
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(128), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("data", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("kind", "id", name="pk_records"),
    )
    # "My registrations" lookups filter by owner within one kind
    op.create_index("ix_records_kind_user", "records", ["kind", "user_id"])
    # Startup resume and expiry cleanup scan pending retry records
    op.create_index("ix_records_kind_status", "records", ["kind", "status"])


def downgrade() -> None:
    op.drop_index("ix_records_kind_status", table_name="records")
    op.drop_index("ix_records_kind_user", table_name="records")
    op.drop_table("records")

"""create crm organizations

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "crm_organization",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("parent_id", sa.Uuid(), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("territory_id", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("row_version", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_crm_organization_parent_id", "crm_organization", ["parent_id"], unique=False)
    op.create_index("ix_crm_organization_type", "crm_organization", ["type"], unique=False)
    op.create_index("ix_crm_organization_deleted_at", "crm_organization", ["deleted_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_crm_organization_deleted_at", table_name="crm_organization")
    op.drop_index("ix_crm_organization_type", table_name="crm_organization")
    op.drop_index("ix_crm_organization_parent_id", table_name="crm_organization")
    op.drop_table("crm_organization")

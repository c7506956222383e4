"""create project archive tables

Revision ID: 3a7e5c1d2b90
Revises:
Create Date: 2026-10-17 09:00:00
"""

from alembic import op
import sqlalchemy as sa

revision = "3a7e5c1d2b90"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "project",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("topic", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_project_created_at"), "project", ["created_at"], unique=False)

    op.create_table(
        "project_asset",
        sa.Column("id", sa.String(length=32), nullable=False),
        sa.Column("project_id", sa.String(length=32), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("kind", sa.Text(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.CheckConstraint(
            "kind in ('script', 'thumbnail', 'video', 'audio')",
            name="ck_project_asset_kind",
        ),
        sa.CheckConstraint(
            "status in ('pending', 'success', 'error')",
            name="ck_project_asset_status",
        ),
        sa.ForeignKeyConstraint(["project_id"], ["project.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "position", name="uq_project_asset_position"),
    )


def downgrade() -> None:
    op.drop_table("project_asset")
    op.drop_index(op.f("ix_project_created_at"), table_name="project")
    op.drop_table("project")

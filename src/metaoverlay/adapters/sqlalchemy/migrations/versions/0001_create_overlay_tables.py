"""Create metadata_item and overlay tables.

Revision ID: 0001_create_overlay_tables
Revises:
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_create_overlay_tables"
down_revision = None
branch_labels = None
depends_on = None

_SCOPES = ("PLATFORM", "USER")
_ORIGINS = ("PACKAGE", "ADMIN", "USER", "MIGRATION", "API")


def upgrade() -> None:
    op.create_table(
        "metadata_item",
        sa.Column("base_type", sa.String(), nullable=False),
        sa.Column("base_name", sa.String(), nullable=False),
        sa.Column("document", sa.Text(), nullable=False),
        sa.Column("package_id", sa.String(), nullable=True),
        sa.Column("package_version", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("base_type", "base_name", name="pk_metadata_item"),
    )

    op.create_table(
        "overlay",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("base_type", sa.String(), nullable=False),
        sa.Column("base_name", sa.String(), nullable=False),
        sa.Column(
            "scope", sa.Enum(*_SCOPES, name="overlayscope", native_enum=False), nullable=False
        ),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("owner", sa.String(), nullable=True),
        sa.Column("patch", sa.Text(), nullable=False),
        sa.Column("changes", sa.Text(), nullable=False),
        sa.Column("package_id", sa.String(), nullable=True),
        sa.Column("package_version", sa.String(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column(
            "origin",
            sa.Enum(*_ORIGINS, name="customizationorigin", native_enum=False),
            nullable=False,
        ),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_by", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_overlay"),
    )
    op.create_index("ix_overlay_base", "overlay", ["base_type", "base_name"])
    op.create_index(
        "uq_overlay_active_identity",
        "overlay",
        [
            "base_type",
            "base_name",
            "scope",
            sa.text("coalesce(tenant_id, '')"),
            sa.text("coalesce(owner, '')"),
        ],
        unique=True,
        sqlite_where=sa.text("active"),
        postgresql_where=sa.text("active"),
    )


def downgrade() -> None:
    op.drop_index("uq_overlay_active_identity", table_name="overlay")
    op.drop_index("ix_overlay_base", table_name="overlay")
    op.drop_table("overlay")
    op.drop_table("metadata_item")

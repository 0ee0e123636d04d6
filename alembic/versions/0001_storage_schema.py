"""storage registry schema

Revision ID: 0001_storage_schema
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001_storage_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "storage_buckets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("provider", sa.String(length=20), nullable=False),
        sa.Column("endpoint", sa.String(length=1024), nullable=True),
        sa.Column("region", sa.String(length=64), nullable=True),
        sa.Column("bucket_name", sa.String(length=255), nullable=True),
        sa.Column("access_key_id", sa.String(length=255), nullable=True),
        sa.Column("secret_access_key", sa.String(length=255), nullable=True),
        sa.Column("cdn_url", sa.String(length=1024), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_size_mb", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("provider in ('local','s3','r2','b2')", name="ck_storage_buckets_provider"),
        sa.CheckConstraint("priority >= 0", name="ck_storage_buckets_priority"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "storage_dimensions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=80), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("quality", sa.Integer(), nullable=True),
        sa.Column("format", sa.String(length=10), nullable=True),
        sa.Column("applies_to", sa.String(length=10), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("maintain_aspect_ratio", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.CheckConstraint("applies_to in ('image','video','both')", name="ck_storage_dimensions_applies_to"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "storage_files",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("original_file_name", sa.String(length=512), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("file_type", sa.String(length=20), nullable=False),
        sa.Column("ext", sa.String(length=20), nullable=False),
        sa.Column("file_checksum", sa.String(length=64), nullable=False),
        sa.Column("user_file_checksum", sa.String(length=64), nullable=False),
        sa.Column("size", sa.BigInteger(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Float(), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'processing'")),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("status in ('processing','active','failed')", name="ck_storage_files_status"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_file_checksum"),
    )
    op.create_index("ix_storage_files_file_checksum", "storage_files", ["file_checksum"], unique=False)
    op.create_index("ix_storage_files_user_id", "storage_files", ["user_id"], unique=False)
    op.create_index("ix_storage_files_user_created", "storage_files", ["user_id", "created_at"], unique=False)

    op.create_table(
        "storage_file_instances",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("file_id", sa.String(length=36), nullable=False),
        sa.Column("variant_name", sa.String(length=80), nullable=False),
        sa.Column("file_name", sa.String(length=1024), nullable=False),
        sa.Column("mime_type", sa.String(length=255), nullable=False),
        sa.Column("ext", sa.String(length=20), nullable=False),
        sa.Column("checksum", sa.String(length=64), nullable=True),
        sa.Column("size", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("processing_status", sa.String(length=20), nullable=False, server_default=sa.text("'pending'")),
        *_timestamps(),
        sa.CheckConstraint(
            "processing_status in ('pending','processing','completed','failed')",
            name="ck_storage_file_instances_processing_status",
        ),
        sa.ForeignKeyConstraint(["file_id"], ["storage_files.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("file_id", "variant_name", name="uq_storage_file_instances_variant"),
    )
    op.create_index("ix_storage_file_instances_file_id", "storage_file_instances", ["file_id"], unique=False)

    op.create_table(
        "storage_file_locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("file_instance_id", sa.Integer(), nullable=False),
        sa.Column("bucket_id", sa.Integer(), nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'active'")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["file_instance_id"], ["storage_file_instances.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("file_instance_id", "bucket_id", name="uq_storage_file_locations_bucket"),
    )
    op.create_index(
        "ix_storage_file_locations_file_instance_id",
        "storage_file_locations",
        ["file_instance_id"],
        unique=False,
    )
    op.create_index("ix_storage_file_locations_bucket_id", "storage_file_locations", ["bucket_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_storage_file_locations_bucket_id", table_name="storage_file_locations")
    op.drop_index("ix_storage_file_locations_file_instance_id", table_name="storage_file_locations")
    op.drop_table("storage_file_locations")
    op.drop_index("ix_storage_file_instances_file_id", table_name="storage_file_instances")
    op.drop_table("storage_file_instances")
    op.drop_index("ix_storage_files_user_created", table_name="storage_files")
    op.drop_index("ix_storage_files_user_id", table_name="storage_files")
    op.drop_index("ix_storage_files_file_checksum", table_name="storage_files")
    op.drop_table("storage_files")
    op.drop_table("storage_dimensions")
    op.drop_table("storage_buckets")

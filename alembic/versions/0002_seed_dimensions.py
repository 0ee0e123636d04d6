"""seed default image and video dimensions

Revision ID: 0002_seed_dimensions
Revises: 0001_storage_schema
Create Date: 2026-10-18
"""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from alembic import op

revision = "0002_seed_dimensions"
down_revision = "0001_storage_schema"
branch_labels = None
depends_on = None

# name, width, height, quality, format, applies_to, maintain_aspect_ratio, order
DEFAULTS = [
    ("thumbnail", 150, 150, 85, "jpg", "image", False, 1),
    ("small", 300, 300, 85, "jpg", "image", True, 2),
    ("medium", 800, 600, 85, "jpg", "image", True, 3),
    ("large", 1920, 1080, 85, "jpg", "image", True, 4),
    ("360p", 640, 360, 28, "mp4", "video", False, 5),
    ("720p", 1280, 720, 28, "mp4", "video", False, 6),
    ("1080p", 1920, 1080, 28, "mp4", "video", False, 7),
    ("video_thumbnail", 640, 360, 85, "jpg", "video", False, 8),
]


def upgrade() -> None:
    dimensions = sa.table(
        "storage_dimensions",
        sa.column("name", sa.String),
        sa.column("width", sa.Integer),
        sa.column("height", sa.Integer),
        sa.column("quality", sa.Integer),
        sa.column("format", sa.String),
        sa.column("applies_to", sa.String),
        sa.column("enabled", sa.Boolean),
        sa.column("maintain_aspect_ratio", sa.Boolean),
        sa.column("order", sa.Integer),
        sa.column("created_at", sa.DateTime(timezone=True)),
        sa.column("updated_at", sa.DateTime(timezone=True)),
    )
    now = datetime.now(timezone.utc)
    op.bulk_insert(
        dimensions,
        [
            {
                "name": name,
                "width": width,
                "height": height,
                "quality": quality,
                "format": fmt,
                "applies_to": applies_to,
                "enabled": True,
                "maintain_aspect_ratio": keep_ratio,
                "order": order,
                "created_at": now,
                "updated_at": now,
            }
            for name, width, height, quality, fmt, applies_to, keep_ratio, order in DEFAULTS
        ],
    )


def downgrade() -> None:
    names = ", ".join(f"'{row[0]}'" for row in DEFAULTS)
    op.execute(f"DELETE FROM storage_dimensions WHERE name IN ({names})")

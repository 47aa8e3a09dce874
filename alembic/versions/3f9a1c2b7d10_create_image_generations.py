"""create_image_generations

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-10-19 10:12:44.318204

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a1c2b7d10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the generation cache table (payloads live in large objects)."""
    op.create_table(
        "image_generations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("fingerprint", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("style", sa.String(length=100), nullable=True),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("seed", sa.BigInteger(), nullable=True),
        sa.Column("strength", sa.Float(), nullable=True),
        sa.Column("preserve_composition", sa.Boolean(), nullable=False),
        sa.Column("composition_style", sa.String(length=100), nullable=True),
        sa.Column("has_base_image", sa.Boolean(), nullable=False),
        sa.Column("has_reference_images", sa.Boolean(), nullable=False),
        sa.Column("reference_count", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("app_id", sa.String(length=255), nullable=True),
        sa.Column("content_oid", postgresql.OID(), nullable=True),
        sa.Column("content_type", sa.String(length=100), nullable=True),
        sa.Column("content_sha256", sa.String(length=64), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_image_generations_fingerprint", "image_generations", ["fingerprint"], unique=True
    )
    op.create_index("ix_image_generations_provider", "image_generations", ["provider"])
    op.create_index(
        "ix_image_generations_fallback", "image_generations", ["style", "width", "height"]
    )


def downgrade() -> None:
    """Drop the generation cache table and release its large objects."""
    op.execute(
        "SELECT lo_unlink(content_oid) FROM image_generations WHERE content_oid IS NOT NULL"
    )
    op.drop_index("ix_image_generations_fallback", table_name="image_generations")
    op.drop_index("ix_image_generations_provider", table_name="image_generations")
    op.drop_index("ix_image_generations_fingerprint", table_name="image_generations")
    op.drop_table("image_generations")

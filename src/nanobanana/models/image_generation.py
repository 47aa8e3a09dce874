"""ImageGeneration entity - one cached generation attempt per request fingerprint."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Column, DateTime, Index, Text
from sqlalchemy.dialects.postgresql import OID
from sqlmodel import Field, SQLModel


class ImageGeneration(SQLModel, table=True):
    """ImageGeneration stores the latest result (or failure) for a fingerprint.

    Image bytes live in a PostgreSQL large object referenced by content_oid.
    """

    __tablename__ = "image_generations"  # type: ignore[assignment]
    __table_args__ = (Index("ix_image_generations_fallback", "style", "width", "height"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    fingerprint: str = Field(max_length=64, unique=True, index=True)
    provider: str = Field(max_length=50, index=True)

    # Request parameters
    prompt: str = Field(sa_column=Column(Text, nullable=False))
    style: Optional[str] = Field(default=None, max_length=100)
    width: int
    height: int
    seed: Optional[int] = Field(default=None, sa_column=Column(BigInteger, nullable=True))
    strength: Optional[float] = Field(default=None)
    preserve_composition: bool = Field(default=False)
    composition_style: Optional[str] = Field(default=None, max_length=100)
    has_base_image: bool = Field(default=False)
    has_reference_images: bool = Field(default=False)
    reference_count: int = Field(default=0, ge=0)

    # Actor context
    user_id: Optional[str] = Field(default=None, max_length=255)
    app_id: Optional[str] = Field(default=None, max_length=255)

    # Result (payload fields are null unless success is true)
    content_oid: Optional[int] = Field(default=None, sa_column=Column(OID, nullable=True))
    content_type: Optional[str] = Field(default=None, max_length=100)
    content_sha256: Optional[str] = Field(default=None, max_length=64)
    success: bool = Field(default=False)
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )

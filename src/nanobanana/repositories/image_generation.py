"""ImageGeneration repository - the content-addressed generation cache.

Image bytes are kept in PostgreSQL large objects (lo_from_bytea / lo_get) so
each read or write touches exactly one payload. One row exists per fingerprint;
writes claim it with INSERT ... ON CONFLICT (fingerprint) DO NOTHING, lock it,
then update it in place and unlink the large object they replaced.
"""

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import LargeBinary, cast, distinct, func, literal, select, update
from sqlalchemy.dialects.postgresql import OID, insert
from sqlalchemy.ext.asyncio import AsyncSession

from nanobanana.models.image_generation import ImageGeneration
from nanobanana.services.image_generation.params import ActorContext, GenerationParams

FALLBACK_SAME_DIMENSIONS = "same_dimensions"
FALLBACK_SAME_STYLE = "same_style"


@dataclass
class CachedImage:
    """A successful cache row together with its payload bytes."""

    id: UUID
    fingerprint: str
    provider: str
    prompt: str
    style: str | None
    width: int
    height: int
    content: bytes
    content_type: str
    content_sha256: str | None
    created_at: datetime
    fallback_type: str | None = None


@dataclass
class ProviderStats:
    """Aggregate cache counters for one provider."""

    provider: str
    total_generations: int
    successful_generations: int
    failed_generations: int
    unique_fingerprints: int


def _cached_columns() -> tuple:
    return (
        ImageGeneration.id,
        ImageGeneration.fingerprint,
        ImageGeneration.provider,
        ImageGeneration.prompt,
        ImageGeneration.style,
        ImageGeneration.width,
        ImageGeneration.height,
        ImageGeneration.content_type,
        ImageGeneration.content_sha256,
        ImageGeneration.created_at,
        func.lo_get(ImageGeneration.content_oid, type_=LargeBinary).label("content"),
    )


def _successful():
    return (
        ImageGeneration.success.is_(True),  # type: ignore[attr-defined]
        ImageGeneration.content_oid.is_not(None),  # type: ignore[union-attr]
    )


def _to_cached(row: Any, fallback_type: str | None = None) -> CachedImage:
    return CachedImage(
        id=row.id,
        fingerprint=row.fingerprint,
        provider=row.provider,
        prompt=row.prompt,
        style=row.style,
        width=row.width,
        height=row.height,
        content=bytes(row.content),
        content_type=row.content_type or "image/png",
        content_sha256=row.content_sha256,
        created_at=row.created_at,
        fallback_type=fallback_type,
    )


class ImageGenerationRepository:
    """Repository for ImageGeneration rows (the generation cache).

    Only successful rows with a payload are ever returned by the read methods.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get(self, fingerprint: str) -> CachedImage | None:
        """Retrieve the cached image for a fingerprint.

        Args:
            fingerprint: SHA-256 hex digest from build_cache_key

        Returns:
            CachedImage if a successful row exists, None otherwise
        """
        result = await self.session.execute(
            select(*_cached_columns())
            .where(
                ImageGeneration.fingerprint == fingerprint,  # type: ignore[arg-type]
                *_successful(),
            )
            .limit(1)
        )
        row = result.first()
        return _to_cached(row) if row else None

    async def get_by_id(self, record_id: UUID) -> CachedImage | None:
        """Retrieve a successful cached image by its public record id."""
        result = await self.session.execute(
            select(*_cached_columns()).where(
                ImageGeneration.id == record_id,  # type: ignore[arg-type]
                *_successful(),
            )
        )
        row = result.first()
        return _to_cached(row) if row else None

    async def put_success(
        self,
        params: GenerationParams,
        fingerprint: str,
        payload: bytes,
        content_type: str,
        provider: str,
        actor: ActorContext | None = None,
    ) -> CachedImage:
        """Store a generated image, creating or overwriting the fingerprint's row.

        Overwrites payload, content type, checksum and timestamp of an existing
        row and clears its error. The checksum is always computed here from
        the payload. A replaced large object is unlinked.

        Args:
            params: Validated request parameters
            fingerprint: Cache key for the request
            payload: Image bytes
            content_type: MIME type of payload
            provider: Provider tag (e.g. "nanobanana")
            actor: Optional user/app that triggered the generation

        Returns:
            CachedImage describing the stored row
        """
        content_sha256 = hashlib.sha256(payload).hexdigest()
        old_oid = await self._claim_row(params, fingerprint, provider, actor)

        stmt = (
            update(ImageGeneration)
            .where(ImageGeneration.fingerprint == fingerprint)  # type: ignore[arg-type]
            .values(
                content_oid=func.lo_from_bytea(cast(0, OID), literal(payload, LargeBinary)),
                content_type=content_type,
                content_sha256=content_sha256,
                success=True,
                error_message=None,
                created_at=func.clock_timestamp(),
            )
            .returning(ImageGeneration.id, ImageGeneration.created_at)  # type: ignore[arg-type]
        )

        row = (await self.session.execute(stmt)).one()
        await self._unlink(old_oid)

        return CachedImage(
            id=row.id,
            fingerprint=fingerprint,
            provider=provider,
            prompt=params.prompt_text,
            style=params.style,
            width=params.width_value,  # type: ignore[arg-type]
            height=params.height_value,  # type: ignore[arg-type]
            content=payload,
            content_type=content_type,
            content_sha256=content_sha256,
            created_at=row.created_at,
        )

    async def put_failure(
        self,
        params: GenerationParams,
        fingerprint: str,
        error_message: str,
        provider: str,
        actor: ActorContext | None = None,
    ) -> None:
        """Record a failed generation attempt, creating or overwriting the row.

        Sets success=false, clears payload/content type/checksum and refreshes
        the timestamp. A previously stored large object is unlinked.
        """
        old_oid = await self._claim_row(params, fingerprint, provider, actor)

        await self.session.execute(
            update(ImageGeneration)
            .where(ImageGeneration.fingerprint == fingerprint)  # type: ignore[arg-type]
            .values(
                content_oid=None,
                content_type=None,
                content_sha256=None,
                success=False,
                error_message=error_message,
                created_at=func.clock_timestamp(),
            )
        )
        await self._unlink(old_oid)

    async def find_fallback(self, params: GenerationParams) -> CachedImage | None:
        """Find a similar successful result to serve when generation fails.

        Tier 1: newest row with the same width, height and style.
        Tier 2: newest row with the same style.

        Returns:
            CachedImage with fallback_type set, or None when neither tier matches
        """
        base = (
            select(*_cached_columns())
            .where(*_successful())
            .order_by(ImageGeneration.created_at.desc())  # type: ignore[union-attr]
            .limit(1)
        )

        result = await self.session.execute(
            base.where(
                ImageGeneration.width == params.width_value,  # type: ignore[arg-type]
                ImageGeneration.height == params.height_value,  # type: ignore[arg-type]
                ImageGeneration.style == params.style,  # type: ignore[arg-type]
            )
        )
        row = result.first()
        if row:
            return _to_cached(row, FALLBACK_SAME_DIMENSIONS)

        result = await self.session.execute(
            base.where(ImageGeneration.style == params.style)  # type: ignore[arg-type]
        )
        row = result.first()
        if row:
            return _to_cached(row, FALLBACK_SAME_STYLE)

        return None

    async def stats(
        self, provider: str | None = None
    ) -> ProviderStats | list[ProviderStats] | None:
        """Aggregate cache counters per provider.

        Args:
            provider: Restrict to one provider tag

        Returns:
            ProviderStats (or None) when provider is given, otherwise a list
            ordered by total generations descending
        """
        total = func.count().label("total_generations")
        stmt = (
            select(
                ImageGeneration.provider,
                total,
                func.count()
                .filter(ImageGeneration.success.is_(True))  # type: ignore[attr-defined]
                .label("successful_generations"),
                func.count()
                .filter(ImageGeneration.success.is_(False))  # type: ignore[attr-defined]
                .label("failed_generations"),
                func.count(distinct(ImageGeneration.fingerprint)).label("unique_fingerprints"),
            )
            .group_by(ImageGeneration.provider)
            .order_by(total.desc())
        )
        if provider is not None:
            stmt = stmt.where(ImageGeneration.provider == provider)  # type: ignore[arg-type]

        result = await self.session.execute(stmt)
        rows = [
            ProviderStats(
                provider=row.provider,
                total_generations=row.total_generations,
                successful_generations=row.successful_generations,
                failed_generations=row.failed_generations,
                unique_fingerprints=row.unique_fingerprints,
            )
            for row in result
        ]

        if provider is not None:
            return rows[0] if rows else None
        return rows

    def _row_values(
        self,
        params: GenerationParams,
        fingerprint: str,
        provider: str,
        actor: ActorContext | None,
    ) -> dict[str, Any]:
        actor = actor or ActorContext()
        return {
            "id": uuid4(),
            "fingerprint": fingerprint,
            "provider": provider,
            "prompt": params.prompt_text,
            "style": params.style,
            "width": params.width_value,
            "height": params.height_value,
            "seed": params.seed_value,
            "strength": params.strength_value,
            "preserve_composition": bool(params.preserve_composition),
            "composition_style": params.composition_style or None,
            "has_base_image": params.has_base_image,
            "has_reference_images": params.has_reference_images,
            "reference_count": params.reference_count,
            "user_id": actor.user_id,
            "app_id": actor.app_id,
        }

    async def _claim_row(
        self,
        params: GenerationParams,
        fingerprint: str,
        provider: str,
        actor: ActorContext | None,
    ) -> int | None:
        """Ensure the fingerprint's row exists, lock it and return its current OID.

        The placeholder insert blocks on a concurrent uncommitted insert of the
        same fingerprint, so the lock below always sees the winner's row and the
        large object it will replace.
        """
        await self.session.execute(
            insert(ImageGeneration)
            .values(
                **self._row_values(params, fingerprint, provider, actor),
                success=False,
                created_at=func.clock_timestamp(),
            )
            .on_conflict_do_nothing(index_elements=["fingerprint"])
        )

        result = await self.session.execute(
            select(ImageGeneration.content_oid)  # type: ignore[call-overload]
            .where(ImageGeneration.fingerprint == fingerprint)
            .with_for_update()
        )
        return result.scalar_one()

    async def _unlink(self, oid: int | None) -> None:
        if oid is not None:
            await self.session.execute(select(func.lo_unlink(cast(oid, OID))))

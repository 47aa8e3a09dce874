"""Generation request orchestration.

validate -> fingerprint -> cache read -> provider call -> cache write, with
failure bookkeeping and similar-result fallback when the provider fails.

Each cache operation runs in its own unit of work so a slow provider call never
holds a database connection. Concurrent identical misses both reach the
provider; the last upsert wins.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError

from nanobanana.repositories.image_generation import CachedImage
from nanobanana.services.exceptions import ServiceError, StorageError, ValidationError
from nanobanana.services.image_generation.cache_key import build_cache_key
from nanobanana.services.image_generation.params import (
    ActorContext,
    GenerationParams,
    OperationType,
    detect_operation_type,
)
from nanobanana.services.image_generation.provider import GenerationResult, ImageProvider
from nanobanana.services.image_generation.validator import validate_params
from nanobanana.uow import UnitOfWorkFactory

logger = structlog.get_logger(__name__)


class CacheStatus(str, Enum):
    """How a response was produced."""

    HIT = "HIT"
    MISS = "MISS"
    FALLBACK = "FALLBACK"


@dataclass
class GenerationOutcome:
    """Image bytes plus the metadata exposed as response headers."""

    content: bytes
    content_type: str
    cache_status: CacheStatus
    operation: OperationType
    record_id: UUID | None = None
    created_at: datetime | None = None
    credit_cost: int | None = None
    fallback_type: str | None = None

    @classmethod
    def from_cached(
        cls, cached: CachedImage, status: CacheStatus, operation: OperationType
    ) -> "GenerationOutcome":
        return cls(
            content=cached.content,
            content_type=cached.content_type,
            cache_status=status,
            operation=operation,
            record_id=cached.id,
            created_at=cached.created_at,
            fallback_type=cached.fallback_type,
        )


class GenerationHandler:
    """Serve generation requests from the cache, falling back to the provider."""

    def __init__(self, provider: ImageProvider, uow_factory: UnitOfWorkFactory):
        """Initialize handler with its collaborators.

        Args:
            provider: Image provider (GeminiClient in production)
            uow_factory: Factory producing UnitOfWork instances for cache access
        """
        self.provider = provider
        self.uow_factory = uow_factory

    async def generate(
        self,
        params: GenerationParams,
        actor: ActorContext | None = None,
        allow_fallback: bool = True,
    ) -> GenerationOutcome:
        """Return an image for params.

        Args:
            params: Raw request parameters
            actor: Optional user/app recorded on new cache rows
            allow_fallback: Serve a similar cached image when generation fails

        Returns:
            GenerationOutcome with cache_status HIT, MISS or FALLBACK

        Raises:
            ValidationError: Parameters rejected (no I/O performed)
            StorageError: Cache lookup failed
            RateLimited / ProviderError / MalformedResponse: Generation failed
                and no fallback was available
        """
        violations = validate_params(params)
        if violations:
            logger.info("generation.validation_failed", violations=violations)
            raise ValidationError(violations)

        fingerprint = build_cache_key(params)
        operation = detect_operation_type(params)
        log = logger.bind(fingerprint=fingerprint[:12], provider=self.provider.name)

        cached = await self._read_cache(fingerprint)
        if cached is not None:
            log.info("generation.cache_hit", record_id=str(cached.id))
            return GenerationOutcome.from_cached(cached, CacheStatus.HIT, operation)

        log.info(
            "generation.cache_miss",
            operation=operation.value,
            width=params.width_value,
            height=params.height_value,
        )

        try:
            result = await self.provider.generate(params)
            stored = await self._store_success(params, fingerprint, result, actor)
        except ServiceError as e:
            log.warning("generation.failed", error_type=type(e).__name__, error=str(e))
            await self._record_failure(params, fingerprint, e, actor)

            if allow_fallback:
                fallback = await self._find_fallback(params)
                if fallback is not None:
                    log.info(
                        "generation.fallback_served",
                        fallback_type=fallback.fallback_type,
                        record_id=str(fallback.id),
                    )
                    return GenerationOutcome.from_cached(
                        fallback, CacheStatus.FALLBACK, operation
                    )
            raise

        log.info("generation.stored", record_id=str(stored.id), bytes=len(result.image))
        return GenerationOutcome(
            content=stored.content,
            content_type=stored.content_type,
            cache_status=CacheStatus.MISS,
            operation=result.operation,
            record_id=stored.id,
            created_at=stored.created_at,
            credit_cost=result.credit_cost,
        )

    async def get_image(self, record_id: UUID) -> CachedImage | None:
        """Load a previously generated image by record id.

        Raises:
            StorageError: Cache lookup failed
        """
        try:
            async with await self.uow_factory() as uow:
                return await uow.generations.get_by_id(record_id)
        except SQLAlchemyError as e:
            raise StorageError(f"Cache read failed: {e}") from e

    async def _read_cache(self, fingerprint: str) -> CachedImage | None:
        try:
            async with await self.uow_factory() as uow:
                return await uow.generations.get(fingerprint)
        except SQLAlchemyError as e:
            raise StorageError(f"Cache read failed: {e}") from e

    async def _store_success(
        self,
        params: GenerationParams,
        fingerprint: str,
        result: GenerationResult,
        actor: ActorContext | None,
    ) -> CachedImage:
        try:
            async with await self.uow_factory() as uow:
                return await uow.generations.put_success(
                    params,
                    fingerprint,
                    result.image,
                    result.mime_type,
                    self.provider.name,
                    actor,
                )
        except SQLAlchemyError as e:
            raise StorageError(f"Cache write failed: {e}") from e

    async def _record_failure(
        self,
        params: GenerationParams,
        fingerprint: str,
        error: ServiceError,
        actor: ActorContext | None,
    ) -> None:
        """Best-effort failure bookkeeping; never masks the original error."""
        try:
            async with await self.uow_factory() as uow:
                await uow.generations.put_failure(
                    params, fingerprint, str(error), self.provider.name, actor
                )
        except Exception as e:
            logger.error(
                "generation.failure_record_failed",
                fingerprint=fingerprint[:12],
                error=str(e),
                error_type=type(e).__name__,
                exc_info=e,
            )

    async def _find_fallback(self, params: GenerationParams) -> CachedImage | None:
        """Best-effort fallback lookup; a lookup error counts as no fallback."""
        try:
            async with await self.uow_factory() as uow:
                return await uow.generations.find_fallback(params)
        except Exception as e:
            logger.error(
                "generation.fallback_lookup_failed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=e,
            )
            return None

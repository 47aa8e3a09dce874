"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist cache writes
- Exceptions trigger rollback (large object writes included)
"""

import pytest
from sqlalchemy import text

from nanobanana.repositories.image_generation import ImageGenerationRepository
from nanobanana.services.image_generation.cache_key import build_cache_key
from nanobanana.services.image_generation.params import GenerationParams


def make_params(prompt: str = "wizard") -> GenerationParams:
    return GenerationParams(prompt=prompt, width=512, height=512, style="nanobanana")


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory, png_bytes):
    """Changes made within the context persist after the context exits."""
    params = make_params()
    fingerprint = build_cache_key(params)

    async with await uow_factory() as uow:
        await uow.generations.put_success(
            params, fingerprint, png_bytes, "image/png", "nanobanana"
        )

    async with await uow_factory() as uow:
        cached = await uow.generations.get(fingerprint)
        assert cached is not None
        assert cached.content == png_bytes


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory, session, png_bytes):
    """An exception rolls back the row and its large object, then propagates."""
    params = make_params()
    fingerprint = build_cache_key(params)
    large_objects_before = (
        await session.execute(text("SELECT count(*) FROM pg_largeobject_metadata"))
    ).scalar_one()

    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            await uow.generations.put_success(
                params, fingerprint, png_bytes, "image/png", "nanobanana"
            )
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.generations.get(fingerprint) is None

    large_objects_after = (
        await session.execute(text("SELECT count(*) FROM pg_largeobject_metadata"))
    ).scalar_one()
    assert large_objects_after == large_objects_before


@pytest.mark.asyncio
async def test_uow_provides_generation_repository(uow_factory):
    async with await uow_factory() as uow:
        assert isinstance(uow.generations, ImageGenerationRepository)

"""Repository layer for the generation cache."""

from nanobanana.repositories.image_generation import (
    CachedImage,
    ImageGenerationRepository,
    ProviderStats,
)

__all__ = [
    "CachedImage",
    "ImageGenerationRepository",
    "ProviderStats",
]

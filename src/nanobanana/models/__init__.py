"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from nanobanana.models.image_generation import ImageGeneration

__all__ = [
    "ImageGeneration",
]

"""Provider protocol for image generation.

Providers turn GenerationParams into image bytes and report failures with the
exceptions from nanobanana.services.exceptions.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from nanobanana.services.image_generation.params import GenerationParams, OperationType


@dataclass
class GenerationResult:
    """A successful provider response."""

    image: bytes
    mime_type: str
    operation: OperationType
    credit_cost: int = 1
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ImageProvider(Protocol):
    """Protocol for image generation providers."""

    name: str

    async def generate(self, params: GenerationParams) -> GenerationResult:
        """Generate one image.

        May raise RateLimited, ProviderError or MalformedResponse.
        """
        ...

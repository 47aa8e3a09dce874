"""Gemini (Nano Banana) API client for image generation with error classification."""

import base64
import binascii
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from nanobanana.services.exceptions import (
    ConfigurationError,
    MalformedResponse,
    ProviderError,
    RateLimited,
)
from nanobanana.services.image_generation.params import GenerationParams, detect_operation_type
from nanobanana.services.image_generation.provider import GenerationResult

logger = structlog.get_logger(__name__)

DEFAULT_GEMINI_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/"
    "gemini-2.5-flash-image-preview:generateContent"
)

# The API does not report usage per call, so every generation is billed as one credit.
ESTIMATED_CREDIT_COST = 1


@dataclass(frozen=True)
class GeminiConfig:
    """Provider configuration injected into GeminiClient."""

    api_key: str
    base_url: str = DEFAULT_GEMINI_URL
    timeout_seconds: float = 120.0


class GeminiClient:
    """Image generation client for Google's Gemini image model."""

    name = "nanobanana"

    def __init__(
        self,
        config: GeminiConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        name: str | None = None,
    ):
        """Initialize Gemini client.

        Args:
            config: API key, endpoint URL and timeout
            transport: Optional httpx transport (tests use httpx.MockTransport)
            name: Provider tag recorded on cache rows (default: "nanobanana")

        Raises:
            ConfigurationError: If the API key is empty
        """
        if not config.api_key:
            raise ConfigurationError("GEMINI_API_KEY environment variable is required")

        self.config = config
        if name:
            self.name = name
        # One pooled client for the lifetime of the provider; closed by aclose()
        self._client = httpx.AsyncClient(timeout=config.timeout_seconds, transport=transport)

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    def build_request_body(self, params: GenerationParams) -> dict[str, Any]:
        """Build the generateContent payload.

        Parts are the trimmed prompt, then the base image, then each reference
        image in input order.
        """
        parts: list[dict[str, Any]] = [{"text": params.prompt_text}]

        images = []
        if params.base_image is not None:
            images.append(params.base_image)
        images.extend(params.reference_images)

        for image in images:
            parts.append(
                {
                    "inlineData": {
                        "mimeType": image.mime_type,
                        "data": image.to_base64(),
                    }
                }
            )

        generation_config: dict[str, Any] = {}
        seed = params.seed_value
        if seed is not None:
            generation_config["seed"] = seed

        return {
            "contents": [{"parts": parts}],
            "generationConfig": generation_config,
        }

    async def generate(self, params: GenerationParams) -> GenerationResult:
        """Generate an image with the Gemini API.

        Args:
            params: Validated generation parameters

        Returns:
            GenerationResult with decoded image bytes and the operation label

        Raises:
            RateLimited: Provider answered 429
            ProviderError: Any other non-2xx status, or a transport failure
            MalformedResponse: 2xx answer without inline image data
        """
        operation = detect_operation_type(params)
        body = self.build_request_body(params)

        logger.info(
            "provider.request",
            provider=self.name,
            operation=operation.value,
            width=params.width_value,
            height=params.height_value,
            reference_count=params.reference_count,
        )

        try:
            response = await self._client.post(
                self.config.base_url,
                json=body,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self.config.api_key,
                },
            )
        except httpx.TimeoutException as e:
            raise ProviderError(
                None, f"Request timeout after {self.config.timeout_seconds}s: {e}"
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(None, f"Network error: {e}") from e

        if response.status_code == 429:
            logger.warning("provider.rate_limited", provider=self.name)
            raise RateLimited()

        if not response.is_success:
            message = _extract_error_message(response)
            logger.error(
                "provider.request_failed",
                provider=self.name,
                status=response.status_code,
                error=message,
            )
            raise ProviderError(response.status_code, message)

        try:
            result = response.json()
        except ValueError as e:
            raise MalformedResponse(f"Response body is not JSON: {e}") from e

        image, mime_type = _extract_inline_image(result)

        return GenerationResult(
            image=image,
            mime_type=mime_type,
            operation=operation,
            credit_cost=ESTIMATED_CREDIT_COST,
        )


def _extract_error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an error body, falling back to raw text."""
    text = response.text
    try:
        data = response.json()
    except ValueError:
        return text or "Unknown error"

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    return text or "Unknown error"


def _extract_inline_image(result: Any) -> tuple[bytes, str]:
    """Return (bytes, mime type) of the first inline image in the first candidate."""
    candidates = result.get("candidates") if isinstance(result, dict) else None
    if not candidates:
        raise MalformedResponse("No candidates returned")

    content = candidates[0].get("content") or {}
    parts = content.get("parts")
    if not parts:
        raise MalformedResponse("No content parts returned")

    for part in parts:
        inline = part.get("inlineData") or {}
        data = inline.get("data")
        if data:
            try:
                image = base64.b64decode(data, validate=True)
            except binascii.Error as e:
                raise MalformedResponse(f"Inline image data is not base64: {e}") from e
            return image, inline.get("mimeType") or "image/png"

    raise MalformedResponse("No image data returned")

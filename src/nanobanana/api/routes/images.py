"""Image generation API endpoints.

This module implements the HTTP surface consumed by the demo apps:
- GET /api/nanobanana/image/{width}/{height}?prompt=...&seed=... - image bytes for <img> tags
- GET /api/nanobanana/image/{record_id} - immutable image by record id
- POST /api/nanobanana/image - edit/compose with uploads, redirects to the record URL

No authentication: images are embedded directly by browsers.
"""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.datastructures import UploadFile

from nanobanana.api.dependencies import get_actor_context, get_generation_handler, get_settings
from nanobanana.core.config import Settings
from nanobanana.services.exceptions import (
    ProviderError,
    RateLimited,
    ServiceError,
    ValidationError,
)
from nanobanana.services.image_generation.handler import (
    CacheStatus,
    GenerationHandler,
    GenerationOutcome,
)
from nanobanana.services.image_generation.params import (
    ActorContext,
    GenerationParams,
    ImageInput,
    is_absent,
    parse_bool,
)

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/nanobanana", tags=["images"])

DEFAULT_DIMENSION = 512
MISSING_PROMPT = "Missing required parameter: prompt"
IMAGE_FIELDS = {
    "base_image",
    "base_image_base64",
    "reference_images",
    "reference_images_base64",
}


def error_response_for(exc: ServiceError) -> tuple[int, str]:
    """Map a service error to (status code, client-safe message).

    Upstream error text never reaches the client.
    """
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST, str(exc)
    if isinstance(exc, RateLimited):
        return status.HTTP_429_TOO_MANY_REQUESTS, "Rate limited by API provider"
    if isinstance(exc, ProviderError):
        return status.HTTP_502_BAD_GATEWAY, "Image generation service unavailable"
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"


def _image_response(outcome: GenerationOutcome) -> Response:
    headers = {"X-Cache-Status": outcome.cache_status.value}
    if outcome.record_id is not None:
        headers["X-Image-Id"] = str(outcome.record_id)

    if outcome.cache_status == CacheStatus.HIT and outcome.created_at is not None:
        headers["X-Generated-At"] = outcome.created_at.isoformat()
    elif outcome.cache_status == CacheStatus.MISS:
        headers["X-Operation"] = outcome.operation.value
        headers["X-Credits-Used"] = str(outcome.credit_cost or 0)
    elif outcome.cache_status == CacheStatus.FALLBACK:
        headers["X-Fallback-Type"] = outcome.fallback_type or "unknown"
        # A fallback stands in for a failed generation; let clients retry later.
        headers["Cache-Control"] = "no-store"

    return Response(content=outcome.content, media_type=outcome.content_type, headers=headers)


@router.get("/image/{width}/{height}")
async def generate_image(
    width: str,
    height: str,
    prompt: str | None = Query(default=None),
    seed: str | None = Query(default=None),
    handler: GenerationHandler = Depends(get_generation_handler),
    actor: ActorContext = Depends(get_actor_context),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Return image bytes for a prompt at the given size.

    Responses carry X-Cache-Status (HIT, MISS or FALLBACK). On MISS the
    operation type and estimated credit cost are included as well.
    """
    if not prompt or not prompt.strip():
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content={"error": MISSING_PROMPT}
        )

    params = GenerationParams(
        prompt=prompt.strip(),
        width=width,
        height=height,
        seed=seed,
        style=settings.default_style,
    )

    try:
        outcome = await handler.generate(params, actor)
    except ValidationError as e:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": str(e), "violations": e.violations},
        )
    except ServiceError as e:
        status_code, message = error_response_for(e)
        logger.error(
            "image.generation_failed",
            status=status_code,
            error_type=type(e).__name__,
            width=width,
            height=height,
        )
        return JSONResponse(status_code=status_code, content={"error": message})

    return _image_response(outcome)


@router.get("/image/{record_id}", name="get_image_by_id")
async def get_image_by_id(
    record_id: str,
    request: Request,
    handler: GenerationHandler = Depends(get_generation_handler),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Serve a stored image by record id.

    Content at a record id never changes, so responses are cacheable forever.
    """
    try:
        image_id = UUID(record_id)
    except ValueError:
        return _not_found()

    try:
        cached = await handler.get_image(image_id)
    except ServiceError as e:
        logger.error("image.fetch_failed", record_id=record_id, error=str(e))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to fetch image"},
        )

    if cached is None:
        return _not_found()

    etag = f'"nanobanana-{image_id}"'
    headers = {
        "Cache-Control": f"public, max-age={settings.image_cache_max_age}, immutable",
        "ETag": etag,
    }
    if request.headers.get("if-none-match") == etag:
        return Response(status_code=status.HTTP_304_NOT_MODIFIED, headers=headers)

    return Response(content=cached.content, media_type=cached.content_type, headers=headers)


@router.post("/image")
async def create_image(
    request: Request,
    handler: GenerationHandler = Depends(get_generation_handler),
    actor: ActorContext = Depends(get_actor_context),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Generate (or edit/compose) an image and redirect to its record URL.

    Accepts multipart/form-data (base_image file, repeated reference_images
    files) or JSON (base_image_base64, reference_images_base64). Both answer
    303 See Other pointing at GET /image/{record_id}. Failures are recorded
    but never answered with a fallback image.
    """
    content_type = request.headers.get("content-type", "")

    try:
        if content_type.startswith("multipart/form-data"):
            fields = await _fields_from_form(request)
        elif content_type.startswith("application/json"):
            fields = await _fields_from_json(request)
        else:
            return _post_error(
                status.HTTP_400_BAD_REQUEST,
                "Content-Type must be multipart/form-data or application/json",
            )
    except ValueError as e:
        logger.info("image.upload_rejected", error=str(e))
        return _post_error(status.HTTP_400_BAD_REQUEST, "Failed to process request body")

    prompt = fields.get("prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        return _post_error(status.HTTP_400_BAD_REQUEST, MISSING_PROMPT)

    params = GenerationParams(
        prompt=prompt.strip(),
        width=DEFAULT_DIMENSION if is_absent(fields.get("width")) else fields["width"],
        height=DEFAULT_DIMENSION if is_absent(fields.get("height")) else fields["height"],
        seed=fields.get("seed"),
        strength=fields.get("strength"),
        style=fields.get("style") or settings.default_style,
        type=fields.get("type") or "image",
        preserve_composition=parse_bool(fields.get("preserve_composition", False)),
        composition_style=fields.get("composition_style") or None,
        base_image=fields.get("base_image"),
        reference_images=fields.get("reference_images", []),
    )

    try:
        outcome = await handler.generate(params, actor, allow_fallback=False)
    except ServiceError as e:
        status_code, message = error_response_for(e)
        logger.error("image.post_failed", status=status_code, error_type=type(e).__name__)
        return _post_error(status_code, message)

    location = str(request.url_for("get_image_by_id", record_id=str(outcome.record_id)))
    return RedirectResponse(url=location, status_code=status.HTTP_303_SEE_OTHER)


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"error": "Image not found"})


def _post_error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _read_upload(value: Any) -> ImageInput | None:
    """Turn a form value (file upload or base64 string) into an ImageInput."""
    if isinstance(value, UploadFile):
        data = await value.read()
        if not data:
            return None
        return ImageInput(data=data, mime_type=value.content_type or "image/png")
    if isinstance(value, str) and value.strip():
        return ImageInput.from_base64(value.strip())
    return None


async def _fields_from_form(request: Request) -> dict[str, Any]:
    form = await request.form()
    fields: dict[str, Any] = {
        key: value
        for key, value in form.multi_items()
        if isinstance(value, str) and key not in IMAGE_FIELDS
    }

    base_image = await _read_upload(form.get("base_image") or form.get("base_image_base64"))
    if base_image is not None:
        fields["base_image"] = base_image

    references = []
    for value in [*form.getlist("reference_images"), *form.getlist("reference_images_base64")]:
        image = await _read_upload(value)
        if image is not None:
            references.append(image)
    fields["reference_images"] = references

    return fields


async def _fields_from_json(request: Request) -> dict[str, Any]:
    body = await request.json()
    if not isinstance(body, dict):
        raise ValueError("JSON body must be an object")

    fields = {key: value for key, value in body.items() if key not in IMAGE_FIELDS}

    base_image = body.get("base_image_base64")
    if isinstance(base_image, str) and base_image.strip():
        fields["base_image"] = ImageInput.from_base64(base_image.strip())

    references = body.get("reference_images_base64") or []
    if isinstance(references, str):
        references = [references]
    fields["reference_images"] = [
        ImageInput.from_base64(item.strip())
        for item in references
        if isinstance(item, str) and item.strip()
    ]

    return fields

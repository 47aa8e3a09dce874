"""Deterministic cache fingerprints for generation requests."""

import hashlib
import json

from nanobanana.services.image_generation.params import GenerationParams


def normalize_params(params: GenerationParams) -> dict:
    """Build the canonical field mapping hashed into the fingerprint.

    Field order is fixed. The operation type (generate/edit/compose) is left
    out on purpose; it is re-derived from the image flags when serving.

    Raises:
        ValueError: If width or height cannot be parsed (validate first)
    """
    width = params.width_value
    height = params.height_value
    if width is None or height is None:
        raise ValueError("width and height must be integers")

    return {
        "prompt": params.prompt_text.lower(),
        "width": width,
        "height": height,
        "seed": params.seed_value,
        "strength": params.strength_value,
        "preserve_composition": bool(params.preserve_composition),
        "composition_style": params.composition_style or None,
        "type": params.type or "image",
        "has_base_image": params.has_base_image,
        "has_reference_images": params.has_reference_images,
        "reference_count": params.reference_count,
    }


def build_cache_key(params: GenerationParams) -> str:
    """Return the SHA-256 hex fingerprint of the normalized parameters."""
    canonical = json.dumps(normalize_params(params), separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
